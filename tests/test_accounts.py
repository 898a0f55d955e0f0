"""
tests/test_accounts.py -- Unit tests for AccountService.

Coverage:
  - get_profile: live user / deleted user
  - update_profile: display name; password change requires the current one;
    no-op update emits no audit event
  - delete_account: soft delete, sessions revoked, login refused, email stays
    reserved; admins refused
"""

from __future__ import annotations

import pytest

from auth.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
    WeakPasswordError,
)
from auth.models import AuditAction, Role


class TestProfile:
    def test_get_profile(self, service, make_user) -> None:
        user, _ = make_user(display_name="Alice")
        assert service.accounts.get_profile(user.id).display_name == "Alice"

    def test_update_display_name(self, service, make_user, audit) -> None:
        user, _ = make_user()
        updated = service.accounts.update_profile(user.id, display_name="  Alice L. ")
        assert updated.display_name == "Alice L."
        assert audit.events[-1].action == AuditAction.UPDATE_PROFILE.value
        assert audit.events[-1].metadata == {"fields": ["display_name"]}

    def test_unchanged_profile_is_not_audited(self, service, make_user, audit) -> None:
        user, _ = make_user(display_name="Alice")
        service.accounts.update_profile(user.id, display_name="Alice")
        assert audit.events == []

    def test_change_password(self, service, make_user) -> None:
        user, password = make_user()
        service.accounts.update_profile(user.id, old_password=password, new_password="brand-new")
        assert service.sessions.login("alice@example.com", "brand-new", "laptop").access_token

    @pytest.mark.parametrize("old_password", [None, "", "not-it"])
    def test_change_password_requires_current(self, service, make_user, old_password) -> None:
        user, _ = make_user()
        with pytest.raises(InvalidInputError):
            service.accounts.update_profile(user.id, old_password=old_password, new_password="brand-new")

    def test_change_password_enforces_policy(self, service, make_user) -> None:
        user, password = make_user()
        with pytest.raises(WeakPasswordError):
            service.accounts.update_profile(user.id, old_password=password, new_password="123")


class TestDeleteAccount:
    def test_delete_revokes_and_blocks_login(self, service, store, make_user, audit) -> None:
        user, password = make_user()
        pair = service.sessions.login("alice@example.com", password, "laptop")

        service.accounts.delete_account(user.id)

        assert store.get_user_by_id(user.id).deleted_at is not None
        with pytest.raises(UnauthorizedError):
            service.rotation.refresh(pair.refresh_token, "laptop")
        with pytest.raises(UnauthorizedError):
            service.sessions.login("alice@example.com", password, "laptop")
        with pytest.raises(NotFoundError):
            service.accounts.get_profile(user.id)
        assert audit.actions(user_id=user.id)[-1] == AuditAction.USER_DELETED.value

    def test_deleted_email_stays_reserved(self, service, make_user) -> None:
        user, _ = make_user()
        service.accounts.delete_account(user.id)
        with pytest.raises(ConflictError):
            service.registration.register("alice@example.com", "hunter22")

    def test_admin_cannot_delete_self(self, service, store, make_user) -> None:
        admin, _ = make_user("root@example.com", role=Role.ADMIN.value)
        with pytest.raises(ForbiddenError):
            service.accounts.delete_account(admin.id)
        assert store.get_user_by_id(admin.id).deleted_at is None
