"""
auth/registration.py -- Sign-up with email confirmation.

State machine per email:

    NoRecord --register--> PendingVerification --verify_email--> Verified
                               |      ^
                               +------+  register again: token, expiry and
                                         password overwritten in place

A User row only ever exists in the Verified state. Until then the sign-up is
a PreRegistration keyed by email, so repeated registrations (a user who lost
the first email, or a client retry after a mail failure) converge on one row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.errors import ConflictError, InternalError, InvalidOrExpiredError
from auth.models import AuditAction, PreRegistration, Role, User
from auth.ports import AuditSink, Clock, CredentialStore, Mailer, record, utcnow
from auth.tokens import (
    VERIFICATION_TOKEN_BYTES,
    digest_token,
    generate_token,
    hash_password,
    mask_email,
    normalize_email,
    validate_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.auth.registration")

MSG_VERIFICATION_SENT = "Verification email sent. Please check your inbox."
MSG_VERIFICATION_RESENT = "Verification email resent. Please check your inbox."
MSG_SEND_FAILED = "Failed to send verification email. Please try again later."


@dataclass(frozen=True)
class RegistrationResult:
    message: str
    created: bool  # False when an existing pending sign-up was re-issued


class RegistrationService:
    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        audit: AuditSink,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.audit = audit
        self.settings = settings or get_settings()
        self._now = clock or utcnow

    def register(
        self,
        email: str,
        password: str,
        display_name: str = "",
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> RegistrationResult:
        """Create or refresh a pending sign-up and email a fresh verification link.

        Raises:
            WeakPasswordError: password shorter than the configured minimum.
            ConflictError:     an account already owns the email.
            InternalError:     the verification email could not be sent. The
                               pending record already holds the undelivered
                               token and password, so any earlier link is
                               dead; a retry overwrites it again.
        """
        email = normalize_email(email)
        validate_password(password, self.settings.password_min_length)

        if self.store.get_user_by_email(email) is not None:
            raise ConflictError("Email already in use.")

        existing = self.store.get_pre_registration_by_email(email)
        raw_token = generate_token(VERIFICATION_TOKEN_BYTES)
        self.store.upsert_pre_registration(
            PreRegistration(
                email=email,
                password_hash=hash_password(password, self.settings.bcrypt_rounds),
                display_name=display_name.strip(),
                token_hash=digest_token(raw_token),
                expires_at=self._now() + timedelta(minutes=self.settings.verification_token_expire_minutes),
                ip=ip,
                user_agent=user_agent,
            )
        )

        try:
            self.mailer.send_verification(email, raw_token)
        except Exception as exc:
            logger.error("Verification email to %s failed: %s", mask_email(email), exc)
            record(
                self.audit,
                AuditAction.EMAIL_SEND_FAILED,
                ip=ip,
                user_agent=user_agent,
                metadata={"email": email, "kind": "verification", "error": type(exc).__name__},
            )
            raise InternalError(MSG_SEND_FAILED) from exc

        record(
            self.audit,
            AuditAction.REGISTER_REQUEST,
            ip=ip,
            user_agent=user_agent,
            metadata={"email": email, "reissued": existing is not None},
        )
        logger.info("Pending registration %s for %s", "re-issued" if existing else "created", mask_email(email))
        if existing is not None:
            return RegistrationResult(MSG_VERIFICATION_RESENT, created=False)
        return RegistrationResult(MSG_VERIFICATION_SENT, created=True)

    def verify_email(self, raw_token: str) -> User:
        """Exchange a verification token for a verified User.

        The pending record is deleted and the user inserted in one transaction,
        so the token is redeemable exactly once even under concurrent clicks.

        Raises:
            InvalidOrExpiredError: unknown, expired or already-used token.
            ConflictError:         the email was claimed in the meantime.
        """
        if not raw_token:
            raise InvalidOrExpiredError("Invalid or expired token.")

        pre = self.store.get_pre_registration_by_token_hash(digest_token(raw_token))
        if pre is None:
            raise InvalidOrExpiredError("Invalid or expired token.")
        if self._now() > pre.expires_at:
            raise InvalidOrExpiredError("Verification link has expired. Please register again.")

        user = User(
            email=pre.email,
            password_hash=pre.password_hash,
            display_name=pre.display_name,
            role=Role.CUSTOMER.value,
            is_email_verified=True,
        )
        created = self.store.promote_pre_registration(pre.id, pre.token_hash, user, now=self._now())
        if created is None:
            raise InvalidOrExpiredError("Invalid or expired token.")

        record(
            self.audit,
            AuditAction.EMAIL_VERIFIED,
            user_id=created.id,
            ip=pre.ip,
            user_agent=pre.user_agent,
            metadata={"email": created.email},
        )
        logger.info("Email verified for user %s", created.id)
        return created
