"""
auth/sessions.py -- Credential login and token issuance.

SessionIssuer is the only place that signs access tokens. Both login and the
refresh rotation engine go through mint(), so every session carries the same
claims and lifetimes.

Security:
  login() always runs bcrypt -- against _DUMMY_HASH when the email is unknown
  or the account has no local password -- so response time does not reveal
  whether an account exists. Every failure (unknown email, wrong password,
  unverified, disabled or deleted account) raises the same UnauthorizedError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from auth.errors import UnauthorizedError
from auth.models import AuditAction, RefreshToken, TokenPair, User
from auth.ports import AuditSink, Clock, CredentialStore, record, utcnow
from auth.tokens import (
    _DUMMY_HASH,
    REFRESH_TOKEN_BYTES,
    create_access_token,
    digest_token,
    generate_token,
    normalize_email,
    verify_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.auth.sessions")

MSG_INVALID_CREDENTIALS = "Invalid credentials."


class SessionIssuer:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditSink,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.settings = settings or get_settings()
        self._now = clock or utcnow

    def login(
        self,
        email: str,
        password: str,
        device_id: str,
        *,
        device_name: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Verify credentials and open a session bound to device_id.

        Raises:
            UnauthorizedError: on any credential or account-state failure.
        """
        email = normalize_email(email)
        user = self.store.get_user_by_email(email)

        if user is None or user.password_hash is None:
            verify_password(password, _DUMMY_HASH)
            authenticated = False
        else:
            authenticated = verify_password(password, user.password_hash) and user.can_login

        if not authenticated:
            record(
                self.audit,
                AuditAction.LOGIN_FAILED,
                user_id=user.id if user is not None else None,
                ip=ip,
                user_agent=user_agent,
                metadata={"email": email},
            )
            raise UnauthorizedError(MSG_INVALID_CREDENTIALS)

        pair = self.issue_tokens(
            user,
            device_id,
            device_name=device_name,
            ip=ip,
            user_agent=user_agent,
        )
        self.store.update_last_login(user.id)
        record(
            self.audit,
            AuditAction.LOGIN_SUCCESS,
            user_id=user.id,
            ip=ip,
            user_agent=user_agent,
            metadata={"device_id": device_id},
        )
        logger.info("User %s logged in on device %s", user.id, device_id)
        return pair

    def mint(
        self,
        user: User,
        device_id: str,
        *,
        device_name: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        last_seen_at: datetime | None = None,
    ) -> tuple[TokenPair, RefreshToken]:
        """Build a token pair and the (unsaved) refresh token row that backs it.

        The raw refresh secret exists only in the returned TokenPair; the row
        carries its digest.
        """
        raw_refresh = generate_token(REFRESH_TOKEN_BYTES)
        now = self._now()
        row = RefreshToken(
            user_id=user.id,
            token_hash=digest_token(raw_refresh),
            device_id=device_id,
            device_name=device_name,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
            last_seen_at=last_seen_at,
            expires_at=now + timedelta(days=self.settings.refresh_token_expire_days),
        )
        expires_in = self.settings.access_token_expire_seconds
        pair = TokenPair(
            access_token=create_access_token(user.id, user.role, device_id, expire_seconds=expires_in),
            refresh_token=raw_refresh,
            expires_in=expires_in,
        )
        return pair, row

    def issue_tokens(
        self,
        user: User,
        device_id: str,
        *,
        device_name: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Mint a token pair and persist its refresh token."""
        pair, row = self.mint(user, device_id, device_name=device_name, ip=ip, user_agent=user_agent)
        self.store.create_refresh_token(row)
        return pair
