"""
auth/ports.py -- Collaborator contracts for the auth services.

The services depend on these protocols, not on concrete classes, so the
SQLAlchemy store, SMTP mailer, and queued audit sink can be swapped for test
doubles or alternative backends. Concrete implementations live in
auth/store.py, mailer/smtp.py, and audit/sink.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from auth.models import AuditAction, PasswordResetToken, PreRegistration, RefreshToken, User

logger = logging.getLogger("authkeep.auth")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore(Protocol):
    """Transactional persistence for users, pending sign-ups, and tokens.

    Methods documented as conditional must perform their check and write as
    one atomic statement so concurrent callers cannot both succeed.
    """

    # Users
    def get_user_by_email(self, email: str) -> User | None: ...

    def get_user_by_id(self, user_id: str) -> User | None: ...

    def update_password(self, user_id: str, password_hash: str) -> bool: ...

    def update_profile(self, user_id: str, *, display_name: str) -> bool: ...

    def update_last_login(self, user_id: str) -> None: ...

    def soft_delete_user(self, user_id: str) -> bool: ...

    # Pre-registrations
    def upsert_pre_registration(self, pre: PreRegistration) -> PreRegistration: ...

    def get_pre_registration_by_email(self, email: str) -> PreRegistration | None: ...

    def get_pre_registration_by_token_hash(self, token_hash: str) -> PreRegistration | None: ...

    def promote_pre_registration(
        self,
        pre_registration_id: str,
        token_hash: str,
        user: User,
        *,
        now: datetime | None = None,
    ) -> User | None:
        """Delete the pending record if its token digest still matches and it has
        not expired, then insert the user, atomically.

        Returns None when no record matched. Raises ConflictError when the
        email is already taken.
        """
        ...

    # Refresh tokens
    def create_refresh_token(self, token: RefreshToken) -> RefreshToken: ...

    def get_refresh_token_by_hash(self, token_hash: str) -> RefreshToken | None: ...

    def get_active_refresh_token(self, token_hash: str, device_id: str) -> RefreshToken | None: ...

    def revoke_refresh_token(self, token_id: str) -> bool:
        """Conditional: revoke only if not already revoked."""
        ...

    def rotate_refresh_token(self, old_token_id: str, replacement: RefreshToken, *, seen_at: datetime) -> bool:
        """Conditionally revoke the old token and insert the replacement, atomically."""
        ...

    def revoke_all_refresh_tokens(self, user_id: str) -> int: ...

    # Password reset tokens
    def replace_reset_token(self, token: PasswordResetToken) -> PasswordResetToken: ...

    def get_reset_token_by_hash(self, token_hash: str) -> PasswordResetToken | None: ...

    def consume_reset_token(self, token_id: str) -> bool:
        """Conditional: mark used only if still unused."""
        ...


class Mailer(Protocol):
    """Outbound email. Both methods raise on delivery failure."""

    def send_verification(self, email: str, raw_token: str) -> None: ...

    def send_password_reset(self, email: str, raw_token: str) -> None: ...


class AuditSink(Protocol):
    """Fire-and-forget audit log. enqueue() must return immediately."""

    def enqueue(
        self,
        action: str,
        *,
        user_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        metadata: dict | None = None,
    ) -> None: ...


def record(
    sink: AuditSink,
    action: AuditAction,
    *,
    user_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    metadata: dict | None = None,
) -> None:
    """Hand an event to the audit sink. Auth outcomes never depend on the sink."""
    try:
        sink.enqueue(action.value, user_id=user_id, ip=ip, user_agent=user_agent, metadata=metadata)
    except Exception:
        logger.exception("Audit sink rejected %s event", action.value)
