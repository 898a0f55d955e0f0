"""
auth/password_reset.py -- Self-service password reset.

request_reset() never reveals whether an account exists: it returns the same
message whether the email is unknown, the lookup fails, or the email goes
out. Internally a user holds at most one redeemable token -- issuing a new
one invalidates the previous ones in the same transaction.

Completing a reset replaces the password digest and revokes every refresh
token of the user, so a stolen session dies with the old password.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.errors import UnauthorizedError
from auth.models import AuditAction, PasswordResetToken, User
from auth.ports import AuditSink, Clock, CredentialStore, Mailer, record, utcnow
from auth.rotation import RefreshRotation
from auth.tokens import (
    RESET_TOKEN_BYTES,
    digest_token,
    generate_token,
    hash_password,
    mask_email,
    normalize_email,
    validate_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.auth.password_reset")

MSG_RESET_REQUESTED = (
    "If an account with that email exists, a password reset link was sent. Please check your email."
)
MSG_RESET_INVALID = "This reset link is invalid or has already been used."
MSG_RESET_EXPIRED = "This reset link has expired. Please request a new one."
MSG_RESET_DONE = "Password has been reset. Please log in with your new password."


@dataclass(frozen=True)
class ResetTokenInfo:
    email: str  # masked


class PasswordResetFlow:
    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        audit: AuditSink,
        rotation: RefreshRotation,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.audit = audit
        self.rotation = rotation
        self.settings = settings or get_settings()
        self._now = clock or utcnow

    def request_reset(self, email: str, *, ip: str | None = None, user_agent: str | None = None) -> str:
        """Email a reset link if the account exists. Always returns the same message."""
        email = normalize_email(email)
        try:
            self._issue_and_send(email, ip=ip, user_agent=user_agent)
        except Exception:
            logger.exception("Password reset request for %s failed", mask_email(email))
        return MSG_RESET_REQUESTED

    def _issue_and_send(self, email: str, *, ip: str | None, user_agent: str | None) -> None:
        user = self.store.get_user_by_email(email)
        if user is None or not user.can_login:
            logger.info("Password reset requested for unknown or inactive account %s", mask_email(email))
            return

        raw_token = generate_token(RESET_TOKEN_BYTES)
        self.store.replace_reset_token(
            PasswordResetToken(
                user_id=user.id,
                token_hash=digest_token(raw_token),
                expires_at=self._now() + timedelta(minutes=self.settings.reset_token_expire_minutes),
            )
        )

        try:
            self.mailer.send_password_reset(user.email, raw_token)
        except Exception as exc:
            logger.error("Password reset email to %s failed: %s", mask_email(email), exc)
            record(
                self.audit,
                AuditAction.EMAIL_SEND_FAILED,
                user_id=user.id,
                ip=ip,
                user_agent=user_agent,
                metadata={"email": email, "kind": "password_reset", "error": type(exc).__name__},
            )
            return

        record(
            self.audit,
            AuditAction.PASSWORD_RESET_REQUEST,
            user_id=user.id,
            ip=ip,
            user_agent=user_agent,
            metadata={"email": email},
        )

    def _load_redeemable(self, raw_token: str) -> tuple[PasswordResetToken, User]:
        token = self.store.get_reset_token_by_hash(digest_token(raw_token)) if raw_token else None
        if token is None or token.used:
            raise UnauthorizedError(MSG_RESET_INVALID)
        if self._now() > token.expires_at:
            raise UnauthorizedError(MSG_RESET_EXPIRED)
        user = self.store.get_user_by_id(token.user_id)
        if user is None or not user.can_login:
            raise UnauthorizedError(MSG_RESET_INVALID)
        return token, user

    def verify_reset_token(self, raw_token: str) -> ResetTokenInfo:
        """Check a reset link before the user types a new password.

        Raises:
            UnauthorizedError: unknown, used or expired token.
        """
        _, user = self._load_redeemable(raw_token)
        return ResetTokenInfo(email=mask_email(user.email))

    def reset_password(
        self,
        raw_token: str,
        new_password: str,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Set a new password with a reset token and revoke all sessions.

        The token is claimed with a conditional update first; losing that race
        means another request already redeemed it. A store error while
        claiming is logged and does not block the password change.

        Raises:
            WeakPasswordError: new password shorter than the configured minimum.
            UnauthorizedError: unknown, used, expired, or concurrently redeemed token.
        """
        validate_password(new_password, self.settings.password_min_length)
        token, user = self._load_redeemable(raw_token)
        password_hash = hash_password(new_password, self.settings.bcrypt_rounds)

        try:
            claimed = self.store.consume_reset_token(token.id)
        except Exception:
            logger.exception("Could not mark reset token %s used; continuing with the reset", token.id)
            claimed = True
        if not claimed:
            raise UnauthorizedError(MSG_RESET_INVALID)

        self.store.update_password(user.id, password_hash)
        self.rotation.logout_all(user.id, reason="password_reset")
        record(
            self.audit,
            AuditAction.PASSWORD_RESET_COMPLETED,
            user_id=user.id,
            ip=ip,
            user_agent=user_agent,
        )
        logger.info("Password reset completed for user %s", user.id)
        return MSG_RESET_DONE
