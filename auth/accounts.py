"""
auth/accounts.py -- Profile management for the signed-in user.

Profile updates cover the display name and a password change that requires
the current password. Deletion is a soft delete: the row stays (keeping the
email reserved), every session is revoked, and login is refused from then on.
Admins cannot delete their own account through this path.
"""

from __future__ import annotations

import logging

from auth.errors import ForbiddenError, InvalidInputError, NotFoundError
from auth.models import AuditAction, Role, User
from auth.ports import AuditSink, CredentialStore, record
from auth.rotation import RefreshRotation
from auth.tokens import hash_password, validate_password, verify_password
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.auth.accounts")

MSG_ACCOUNT_DELETED = "Account deleted."


class AccountService:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditSink,
        rotation: RefreshRotation,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.rotation = rotation
        self.settings = settings or get_settings()

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_user_by_id(user_id)
        if user is None or user.deleted_at is not None:
            raise NotFoundError("User not found.")
        return user

    def update_profile(
        self,
        user_id: str,
        *,
        display_name: str | None = None,
        old_password: str | None = None,
        new_password: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Apply the given changes and return the updated user.

        Raises:
            NotFoundError:     user missing or deleted.
            InvalidInputError: password change without the correct current password.
            WeakPasswordError: new password shorter than the configured minimum.
        """
        user = self.get_profile(user_id)
        changed: list[str] = []

        if new_password is not None:
            if not old_password or user.password_hash is None or not verify_password(old_password, user.password_hash):
                raise InvalidInputError("Current password is incorrect.")
            validate_password(new_password, self.settings.password_min_length)
            self.store.update_password(user.id, hash_password(new_password, self.settings.bcrypt_rounds))
            changed.append("password")

        if display_name is not None and display_name.strip() != user.display_name:
            self.store.update_profile(user.id, display_name=display_name.strip())
            changed.append("display_name")

        if changed:
            record(
                self.audit,
                AuditAction.UPDATE_PROFILE,
                user_id=user.id,
                ip=ip,
                user_agent=user_agent,
                metadata={"fields": changed},
            )
        return self.get_profile(user.id)

    def delete_account(self, user_id: str, *, ip: str | None = None, user_agent: str | None = None) -> str:
        """Soft-delete the account and revoke all of its sessions.

        Raises:
            NotFoundError:  user missing or already deleted.
            ForbiddenError: the user is an admin.
        """
        user = self.get_profile(user_id)
        if user.role == Role.ADMIN.value:
            raise ForbiddenError("Admins cannot delete their own account.")
        if not self.store.soft_delete_user(user.id):
            raise NotFoundError("User not found.")
        self.rotation.logout_all(user.id, reason="account_deleted")
        record(self.audit, AuditAction.USER_DELETED, user_id=user.id, ip=ip, user_agent=user_agent)
        logger.info("User %s deleted their account", user.id)
        return MSG_ACCOUNT_DELETED
