"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Stores map rows
onto these, services do the work, routes map them onto API models.

Timestamps are timezone-aware UTC datetimes in the domain. The store converts
them to fixed-width ISO 8601 strings at the persistence boundary.

Layer rule: no imports from api/, audit/, or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class AuthProvider(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"


class AuditAction(str, Enum):
    """Security-relevant events written to the audit log."""

    REGISTER_REQUEST = "register_request"
    EMAIL_SEND_FAILED = "email_send_failed"
    EMAIL_VERIFIED = "email_verified"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    REFRESH = "refresh"
    LOGOUT = "logout"
    TOKEN_REVOKED = "token_revoked"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    UPDATE_PROFILE = "update_profile"
    USER_DELETED = "user_deleted"


@dataclass
class User:
    """A verified identity.

    password_hash is None for federated-only accounts (they have no local
    password and can never pass a local login). deleted_at is the soft-delete
    marker; a deleted user keeps its email reserved.
    """

    email: str  # lower-cased, stripped
    id: str | None = None
    password_hash: str | None = None  # None = federated-only user
    display_name: str = ""
    auth_provider: str = AuthProvider.LOCAL.value
    role: str = Role.CUSTOMER.value
    is_email_verified: bool = False
    disabled: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def can_login(self) -> bool:
        return self.is_email_verified and not self.disabled and self.deleted_at is None


@dataclass
class PreRegistration:
    """A pending sign-up awaiting email confirmation. At most one per email."""

    email: str
    password_hash: str
    token_hash: str  # digest of the verification token, never the raw value
    expires_at: datetime
    display_name: str = ""
    id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


@dataclass
class RefreshToken:
    """A long-lived, device-bound session credential.

    last_seen_at is None for tokens issued by login and set to the rotation
    time for tokens minted by refresh; the rotation cooldown keys on it.
    Rows are revoked, never deleted.
    """

    user_id: str
    token_hash: str
    device_id: str
    expires_at: datetime
    id: str | None = None
    device_name: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    last_seen_at: datetime | None = None
    revoked: bool = False


@dataclass
class PasswordResetToken:
    user_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    used: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AuditEvent:
    action: str
    user_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    metadata: dict = field(default_factory=dict)
    id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    """Credentials handed to the client once. The raw refresh token is never stored."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
