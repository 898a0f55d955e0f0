"""
tests/test_sessions.py -- Unit tests for SessionIssuer (login and token issuance).

Coverage:
  - Successful login: token pair shape, access token claims, stored refresh
    row (digest only, device binding, 7-day expiry), last_login_at stamped
  - Failures share one error: unknown email, wrong password, unverified,
    disabled, deleted, federated-only
  - Audit trail: wrong then right password -> login_failed, login_success
  - Email matching is case-insensitive
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from auth.errors import UnauthorizedError
from auth.models import AuditAction, AuthProvider, User
from auth.tokens import decode_access_token, digest_token


def _error_message(callable_, *args) -> str:
    with pytest.raises(UnauthorizedError) as excinfo:
        callable_(*args)
    return excinfo.value.message


class TestLoginSuccess:
    def test_returns_token_pair(self, service, make_user) -> None:
        user, password = make_user()
        pair = service.sessions.login("alice@example.com", password, "laptop")

        assert pair.expires_in == 900
        assert len(pair.refresh_token) == 128
        claims = decode_access_token(pair.access_token)
        assert claims["sub"] == user.id
        assert claims["roles"] == ["customer"]
        assert claims["device_id"] == "laptop"

    def test_refresh_row_stores_digest_bound_to_device(self, service, store, make_user, clock) -> None:
        user, password = make_user()
        pair = service.sessions.login(
            "alice@example.com", password, "laptop", device_name="Work laptop", ip="192.0.2.1"
        )

        assert store.get_refresh_token_by_hash(pair.refresh_token) is None
        row = store.get_active_refresh_token(digest_token(pair.refresh_token), "laptop")
        assert row is not None
        assert row.user_id == user.id
        assert row.device_name == "Work laptop"
        assert row.ip == "192.0.2.1"
        assert row.last_seen_at is None
        assert row.expires_at == clock.now + timedelta(days=7)

    def test_login_stamps_last_login(self, service, store, make_user) -> None:
        user, password = make_user()
        assert store.get_user_by_id(user.id).last_login_at is None
        service.sessions.login("alice@example.com", password, "laptop")
        assert store.get_user_by_id(user.id).last_login_at is not None

    def test_email_is_case_insensitive(self, service, make_user) -> None:
        _, password = make_user()
        assert service.sessions.login("  ALICE@example.com", password, "laptop").access_token

    def test_each_login_opens_separate_session(self, service, store, make_user) -> None:
        user, password = make_user()
        service.sessions.login("alice@example.com", password, "laptop")
        service.sessions.login("alice@example.com", password, "phone")
        assert {t.device_id for t in store.list_refresh_tokens(user.id)} == {"laptop", "phone"}


class TestLoginFailure:
    def test_unknown_and_wrong_password_are_indistinguishable(self, service, make_user) -> None:
        make_user()
        unknown = _error_message(service.sessions.login, "nobody@example.com", "s3cret-pass", "laptop")
        wrong = _error_message(service.sessions.login, "alice@example.com", "wrong-pass", "laptop")
        assert unknown == wrong == "Invalid credentials."

    @pytest.mark.parametrize(
        "fields",
        [
            {"is_email_verified": False},
            {"disabled": True},
        ],
    )
    def test_inactive_accounts_rejected_with_same_error(self, service, make_user, fields) -> None:
        _, password = make_user(**fields)
        assert _error_message(service.sessions.login, "alice@example.com", password, "laptop") == "Invalid credentials."

    def test_deleted_account_rejected(self, service, store, make_user) -> None:
        user, password = make_user()
        store.soft_delete_user(user.id)
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", password, "laptop")

    def test_federated_only_account_has_no_local_login(self, service, store) -> None:
        store.create_user(
            User(email="fed@example.com", auth_provider=AuthProvider.GOOGLE.value, is_email_verified=True)
        )
        with pytest.raises(UnauthorizedError):
            service.sessions.login("fed@example.com", "", "laptop")

    def test_unknown_email_still_runs_bcrypt(self, service) -> None:
        with patch("auth.sessions.verify_password", return_value=False) as verify:
            with pytest.raises(UnauthorizedError):
                service.sessions.login("nobody@example.com", "pw", "laptop")
        verify.assert_called_once()

    def test_failed_login_issues_nothing(self, service, store, make_user) -> None:
        user, _ = make_user()
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", "wrong-pass", "laptop")
        assert store.list_refresh_tokens(user.id) == []


class TestLoginAudit:
    def test_wrong_then_right_password(self, service, audit, make_user) -> None:
        user, password = make_user()
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", "wrong-pass", "laptop")
        service.sessions.login("alice@example.com", password, "laptop")

        assert audit.actions() == [AuditAction.LOGIN_FAILED.value, AuditAction.LOGIN_SUCCESS.value]
        failed = audit.events[0]
        assert failed.metadata == {"email": "alice@example.com"}

    def test_broken_audit_sink_does_not_block_login(self, service, make_user) -> None:
        _, password = make_user()
        with patch.object(service.sessions.audit, "enqueue", side_effect=RuntimeError("sink down")):
            assert service.sessions.login("alice@example.com", password, "laptop").access_token
