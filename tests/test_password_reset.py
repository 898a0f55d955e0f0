"""
tests/test_password_reset.py -- Unit tests for PasswordResetFlow.

Coverage:
  - request_reset: identical message for known, unknown and unverified emails;
    mail only sent for real accounts; mail and store failures are swallowed
  - single-active-token policy: a second request kills the first link
  - verify_reset_token: masked email; unknown / used / expired tokens rejected
  - reset_password: new password works, old does not; every session revoked;
    token single use; concurrent redemption loses; consume failure tolerated;
    account disabled after the request cannot redeem the link
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from auth.errors import UnauthorizedError, WeakPasswordError
from auth.models import AuditAction
from auth.password_reset import MSG_RESET_REQUESTED
from auth.tokens import verify_password


@pytest.fixture
def account(make_user):
    user, password = make_user("alice@example.com", "old-password")
    return user, password


def _reset_token(service, mailer, email: str = "alice@example.com") -> str:
    service.password_reset.request_reset(email)
    return mailer.last_token(email, "password_reset")


class TestRequestReset:
    def test_same_message_for_known_and_unknown(self, service, account, mailer) -> None:
        known = service.password_reset.request_reset("alice@example.com")
        unknown = service.password_reset.request_reset("nobody@example.com")
        assert known == unknown == MSG_RESET_REQUESTED
        assert [m.email for m in mailer.sent] == ["alice@example.com"]

    def test_unverified_account_gets_no_mail(self, service, make_user, mailer) -> None:
        make_user("pending@example.com", is_email_verified=False)
        assert service.password_reset.request_reset("pending@example.com") == MSG_RESET_REQUESTED
        assert mailer.sent == []

    def test_mail_failure_is_swallowed(self, service, account, mailer, audit) -> None:
        mailer.fail = True
        assert service.password_reset.request_reset("alice@example.com") == MSG_RESET_REQUESTED
        assert AuditAction.EMAIL_SEND_FAILED.value in audit.actions()

    def test_store_failure_is_swallowed(self, service, store) -> None:
        with patch.object(store, "get_user_by_email", side_effect=RuntimeError("db down")):
            assert service.password_reset.request_reset("alice@example.com") == MSG_RESET_REQUESTED

    def test_request_is_audited(self, service, account, audit) -> None:
        user, _ = account
        service.password_reset.request_reset("alice@example.com")
        assert audit.actions(user_id=user.id) == [AuditAction.PASSWORD_RESET_REQUEST.value]

    def test_new_request_invalidates_previous_link(self, service, account, mailer) -> None:
        first = _reset_token(service, mailer)
        second = _reset_token(service, mailer)
        with pytest.raises(UnauthorizedError):
            service.password_reset.verify_reset_token(first)
        assert service.password_reset.verify_reset_token(second).email == "al***@example.com"


class TestVerifyResetToken:
    def test_returns_masked_email(self, service, account, mailer) -> None:
        info = service.password_reset.verify_reset_token(_reset_token(service, mailer))
        assert info.email == "al***@example.com"

    def test_unknown_token(self, service) -> None:
        with pytest.raises(UnauthorizedError):
            service.password_reset.verify_reset_token("0" * 64)

    def test_expired_token(self, service, account, mailer, clock) -> None:
        token = _reset_token(service, mailer)
        clock.advance(minutes=15, seconds=1)
        with pytest.raises(UnauthorizedError) as excinfo:
            service.password_reset.verify_reset_token(token)
        assert "expired" in excinfo.value.message

    def test_verify_does_not_consume(self, service, account, mailer) -> None:
        token = _reset_token(service, mailer)
        service.password_reset.verify_reset_token(token)
        service.password_reset.verify_reset_token(token)
        service.password_reset.reset_password(token, "new-password")


class TestResetPassword:
    def test_password_replaced(self, service, account, mailer) -> None:
        _, old_password = account
        service.password_reset.reset_password(_reset_token(service, mailer), "new-password")

        assert service.sessions.login("alice@example.com", "new-password", "laptop").access_token
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", old_password, "laptop")

    def test_all_sessions_revoked(self, service, store, account, mailer, audit) -> None:
        user, password = account
        laptop = service.sessions.login("alice@example.com", password, "laptop")
        phone = service.sessions.login("alice@example.com", password, "phone")

        service.password_reset.reset_password(_reset_token(service, mailer), "new-password")

        assert store.list_refresh_tokens(user.id) == []
        for raw, device in ((laptop.refresh_token, "laptop"), (phone.refresh_token, "phone")):
            with pytest.raises(UnauthorizedError):
                service.rotation.refresh(raw, device)
        actions = audit.actions(user_id=user.id)
        assert actions[-2:] == [AuditAction.TOKEN_REVOKED.value, AuditAction.PASSWORD_RESET_COMPLETED.value]

    def test_token_single_use(self, service, account, mailer) -> None:
        token = _reset_token(service, mailer)
        service.password_reset.reset_password(token, "new-password")
        with pytest.raises(UnauthorizedError):
            service.password_reset.reset_password(token, "another-password")

    def test_concurrent_redemption_loses(self, service, store, account, mailer) -> None:
        token = _reset_token(service, mailer)
        with patch.object(store, "consume_reset_token", return_value=False):
            with pytest.raises(UnauthorizedError):
                service.password_reset.reset_password(token, "new-password")
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", "new-password", "laptop")

    def test_consume_failure_does_not_block_reset(self, service, store, account, mailer) -> None:
        user, password = account
        laptop = service.sessions.login("alice@example.com", password, "laptop")
        token = _reset_token(service, mailer)

        with patch.object(store, "consume_reset_token", side_effect=RuntimeError("db hiccup")):
            service.password_reset.reset_password(token, "new-password")

        assert service.sessions.login("alice@example.com", "new-password", "phone").access_token
        with pytest.raises(UnauthorizedError):
            service.rotation.refresh(laptop.refresh_token, "laptop")

    def test_short_password_rejected_before_token_use(self, service, account, mailer) -> None:
        token = _reset_token(service, mailer)
        with pytest.raises(WeakPasswordError):
            service.password_reset.reset_password(token, "123")
        service.password_reset.reset_password(token, "long-enough")

    def test_expired_token_rejected(self, service, account, mailer, clock) -> None:
        token = _reset_token(service, mailer)
        clock.advance(minutes=16)
        with pytest.raises(UnauthorizedError):
            service.password_reset.reset_password(token, "new-password")

    def test_account_disabled_after_request(self, service, store, account, mailer) -> None:
        user, old_password = account
        token = _reset_token(service, mailer)
        store.set_disabled(user.id, True)

        with pytest.raises(UnauthorizedError):
            service.password_reset.verify_reset_token(token)
        with pytest.raises(UnauthorizedError):
            service.password_reset.reset_password(token, "new-password")
        assert verify_password(old_password, store.get_user_by_id(user.id).password_hash)
