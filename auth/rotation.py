"""
auth/rotation.py -- Refresh token rotation and session revocation.

Every successful refresh revokes the presented token and mints a new one for
the same device, so each refresh token works exactly once. The revoke is a
conditional UPDATE (WHERE revoked = false) executed in the same transaction
as the replacement INSERT; of two requests racing on one token, only the one
whose UPDATE matched gets a new pair, the other sees UnauthorizedError.

Check order for refresh():
  1. unrevoked row with this digest on this device  -> else Unauthorized
  2. not expired                                    -> else Unauthorized
  3. cooldown since the row was minted by rotation  -> else TooSoon
  4. owner still allowed to log in                  -> else Unauthorized
  5. conditional revoke + insert                    -> else Unauthorized

Tokens issued by login have no last_seen_at and are never subject to the
cooldown; it only throttles clients that rotate the freshly rotated token in
a tight loop.
"""

from __future__ import annotations

import logging
import math

from auth.errors import NotFoundError, TooSoonError, UnauthorizedError
from auth.models import AuditAction, TokenPair
from auth.ports import AuditSink, Clock, CredentialStore, record, utcnow
from auth.sessions import SessionIssuer
from auth.tokens import digest_token
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.auth.rotation")

MSG_INVALID_REFRESH = "Invalid or revoked refresh token."
MSG_EXPIRED_REFRESH = "Refresh token expired."
MSG_LOGGED_OUT = "Logged out."
MSG_LOGGED_OUT_ALL = "Logged out from all devices."


class RefreshRotation:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditSink,
        issuer: SessionIssuer,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.issuer = issuer
        self.settings = settings or get_settings()
        self._now = clock or utcnow

    def refresh(self, raw_refresh_token: str, device_id: str) -> TokenPair:
        """Trade a refresh token for a new pair on the same device.

        Raises:
            UnauthorizedError: unknown, revoked, expired, wrong device, or lost
                               a race with a concurrent rotation.
            TooSoonError:      the token was itself minted by a rotation less
                               than refresh_cooldown_seconds ago.
        """
        now = self._now()
        token = self.store.get_active_refresh_token(digest_token(raw_refresh_token), device_id)
        if token is None:
            raise UnauthorizedError(MSG_INVALID_REFRESH)
        if token.expires_at <= now:
            raise UnauthorizedError(MSG_EXPIRED_REFRESH)

        cooldown = self.settings.refresh_cooldown_seconds
        if cooldown and token.last_seen_at is not None:
            elapsed = (now - token.last_seen_at).total_seconds()
            if elapsed < cooldown:
                raise TooSoonError(retry_after=math.ceil(cooldown - elapsed))

        user = self.store.get_user_by_id(token.user_id)
        if user is None or not user.can_login:
            raise UnauthorizedError(MSG_INVALID_REFRESH)

        pair, replacement = self.issuer.mint(
            user,
            device_id,
            device_name=token.device_name,
            ip=token.ip,
            user_agent=token.user_agent,
            last_seen_at=now,
        )
        if not self.store.rotate_refresh_token(token.id, replacement, seen_at=now):
            logger.warning("Refresh token %s was already revoked when rotation committed", token.id)
            raise UnauthorizedError(MSG_INVALID_REFRESH)

        record(
            self.audit,
            AuditAction.REFRESH,
            user_id=user.id,
            ip=token.ip,
            user_agent=token.user_agent,
            metadata={"device_id": device_id, "token_id": token.id},
        )
        return pair

    def logout(self, raw_refresh_token: str) -> str:
        """Revoke one session.

        Raises:
            NotFoundError: no active token matches (including a second logout).
        """
        token = self.store.get_refresh_token_by_hash(digest_token(raw_refresh_token))
        if token is None or token.revoked or not self.store.revoke_refresh_token(token.id):
            raise NotFoundError("Refresh token not found.")

        record(
            self.audit,
            AuditAction.LOGOUT,
            user_id=token.user_id,
            ip=token.ip,
            user_agent=token.user_agent,
            metadata={"device_id": token.device_id, "token_id": token.id},
        )
        return MSG_LOGGED_OUT

    def logout_all(self, user_id: str, *, reason: str = "logout_all") -> str:
        """Revoke every session of the user, on every device."""
        revoked = self.store.revoke_all_refresh_tokens(user_id)
        record(
            self.audit,
            AuditAction.TOKEN_REVOKED,
            user_id=user_id,
            metadata={"reason": reason, "revoked": revoked},
        )
        logger.info("Revoked %d refresh token(s) for user %s (%s)", revoked, user_id, reason)
        return MSG_LOGGED_OUT_ALL
