"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
SQLCredentialStore is the repository; the _row_to_* functions are the mappers.
Service and route code never touches SQL directly.

Concurrency:
  Every "at most once" guarantee is an UPDATE/DELETE whose WHERE clause
  re-checks the state it transitions from, followed by a rowcount check:

    revoke_refresh_token   WHERE id = ? AND revoked = false
    rotate_refresh_token   same, plus the replacement INSERT in one transaction
    consume_reset_token    WHERE id = ? AND used = false
    promote_pre_registration  DELETE WHERE id = ? AND token_hash = ? AND expires_at >= ?,
                              plus the user INSERT

  The database serializes writers on the row, so of two racing callers
  exactly one sees rowcount == 1. No process-local state is consulted.

Security:
  All queries use bound parameters. No f-strings in SQL. Only token digests
  are stored; raw tokens never reach this module.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so lexical comparison in SQL matches chronological order.

Layer rule: no imports from api/, audit/, or mailer/.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, false, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import ConflictError
from auth.models import PasswordResetToken, PreRegistration, RefreshToken, User
from core.config import get_settings

logger = logging.getLogger("authkeep.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for federated-only users
    Column("display_name", String(100), nullable=False, server_default=""),
    Column("auth_provider", String(20), nullable=False, server_default="local"),
    Column("role", String(20), nullable=False, server_default="customer"),
    Column("is_email_verified", Boolean, nullable=False, server_default=false()),
    Column("disabled", Boolean, nullable=False, server_default=false()),
    Column("deleted_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_pre_registrations = Table(
    "pre_registrations",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("display_name", String(100), nullable=False, server_default=""),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("ip", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("device_id", String(255), nullable=False),
    Column("device_name", String(255)),
    Column("ip", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", String(32)),  # NULL until the token is minted by a rotation
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default=false()),
)

_password_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("used", Boolean, nullable=False, server_default=false()),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SQLCredentialStore:
    """Repository for users, pre-registrations, refresh tokens, and reset tokens.

    Usage:
        store = SQLCredentialStore("sqlite:///authkeep.db")
        user = store.get_user_by_email("alice@example.com")
        store.close()

    SQLite and PostgreSQL are supported; the only dialect-specific statement
    is the pre-registration upsert.
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        if self.engine.dialect.name not in ("sqlite", "postgresql"):
            raise ValueError(f"Unsupported database dialect: {self.engine.dialect.name}")
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a user and return it with id and timestamps filled in.

        Raises ConflictError if the email is already taken.
        """
        now = _now()
        user = replace(user, id=user.id or _new_id(), created_at=now, updated_at=now)
        try:
            with self.engine.begin() as conn:
                conn.execute(_users.insert().values(**_user_values(user)))
        except IntegrityError as exc:
            raise ConflictError("Email already in use.") from exc
        return user

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by normalized email, including soft-deleted users."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the password digest. Returns False if user_id was not found."""
        return self._update_user(user_id, password_hash=password_hash)

    def update_profile(self, user_id: str, *, display_name: str) -> bool:
        return self._update_user(user_id, display_name=display_name)

    def update_last_login(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_iso(_now())))

    def set_disabled(self, user_id: str, disabled: bool) -> bool:
        return self._update_user(user_id, disabled=disabled)

    def soft_delete_user(self, user_id: str) -> bool:
        """Stamp deleted_at on a live user. Returns False if missing or already deleted."""
        now = _iso(_now())
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None)))
                .values(deleted_at=now, updated_at=now)
            )
        return result.rowcount == 1

    def _update_user(self, user_id: str, **fields) -> bool:
        fields["updated_at"] = _iso(_now())
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Pre-registrations
    # ------------------------------------------------------------------

    def upsert_pre_registration(self, pre: PreRegistration) -> PreRegistration:
        """Insert the pending sign-up, or overwrite the existing one for the same email.

        A single INSERT ... ON CONFLICT (email) DO UPDATE statement, so two
        concurrent registrations for one email still leave exactly one row.
        The row keeps its original id and created_at on overwrite.
        """
        insert = postgresql.insert if self.engine.dialect.name == "postgresql" else sqlite.insert
        stmt = insert(_pre_registrations).values(
            id=pre.id or _new_id(),
            email=pre.email,
            password_hash=pre.password_hash,
            display_name=pre.display_name,
            token_hash=pre.token_hash,
            expires_at=_iso(pre.expires_at),
            ip=pre.ip,
            user_agent=pre.user_agent,
            created_at=_iso(pre.created_at or _now()),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_pre_registrations.c.email],
            set_={
                "password_hash": stmt.excluded.password_hash,
                "display_name": stmt.excluded.display_name,
                "token_hash": stmt.excluded.token_hash,
                "expires_at": stmt.excluded.expires_at,
                "ip": stmt.excluded.ip,
                "user_agent": stmt.excluded.user_agent,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(
                _pre_registrations.select().where(_pre_registrations.c.email == pre.email)
            ).fetchone()
        return _row_to_pre_registration(row)

    def get_pre_registration_by_email(self, email: str) -> PreRegistration | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _pre_registrations.select().where(_pre_registrations.c.email == email)
            ).fetchone()
        return _row_to_pre_registration(row) if row is not None else None

    def get_pre_registration_by_token_hash(self, token_hash: str) -> PreRegistration | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _pre_registrations.select().where(_pre_registrations.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_pre_registration(row) if row is not None else None

    def promote_pre_registration(
        self,
        pre_registration_id: str,
        token_hash: str,
        user: User,
        *,
        now: datetime | None = None,
    ) -> User | None:
        """Delete the pending record and create the verified user in one transaction.

        The DELETE re-checks the token digest and expiry, so a record that was
        re-issued (new token) or has expired since it was read is not promoted.

        Returns None, with nothing written, if no pending record matches (a
        concurrent verification consumed it, or a repeat registration replaced
        its token). Raises ConflictError, with the pending record left in
        place, if the email is already taken.
        """
        now = now or _now()
        user = replace(user, id=user.id or _new_id(), created_at=now, updated_at=now)
        try:
            with self.engine.begin() as conn:
                deleted = conn.execute(
                    _pre_registrations.delete().where(
                        _pre_registrations.c.id == pre_registration_id,
                        _pre_registrations.c.token_hash == token_hash,
                        _pre_registrations.c.expires_at >= _iso(now),
                    )
                )
                if deleted.rowcount != 1:
                    return None
                conn.execute(_users.insert().values(**_user_values(user)))
        except IntegrityError as exc:
            raise ConflictError("Email already in use.") from exc
        return user

    def purge_expired_pre_registrations(self, now: datetime | None = None) -> int:
        """Delete pending sign-ups whose verification link has expired. Returns the count."""
        cutoff = _iso(now or _now())
        with self.engine.begin() as conn:
            result = conn.execute(_pre_registrations.delete().where(_pre_registrations.c.expires_at < cutoff))
        return result.rowcount

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        token = replace(token, id=token.id or _new_id(), created_at=token.created_at or _now())
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(token)))
        return token

    def get_refresh_token_by_hash(self, token_hash: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_active_refresh_token(self, token_hash: str, device_id: str) -> RefreshToken | None:
        """Return the unrevoked token with this digest bound to this device, or None.

        Expiry is not checked here; the caller compares expires_at with its clock.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash)
                    & (_refresh_tokens.c.device_id == device_id)
                    & (_refresh_tokens.c.revoked == false())
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_refresh_tokens(self, user_id: str, *, active_only: bool = True) -> list[RefreshToken]:
        """Return a user's refresh tokens, newest first."""
        stmt = _refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id)
        if active_only:
            stmt = stmt.where(_refresh_tokens.c.revoked == false())
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_refresh_tokens.c.created_at.desc())).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def revoke_refresh_token(self, token_id: str) -> bool:
        """Revoke a token if it is still active. Returns True only for the caller that revoked it."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked == false()))
                .values(revoked=True)
            )
        return result.rowcount == 1

    def rotate_refresh_token(self, old_token_id: str, replacement: RefreshToken, *, seen_at: datetime) -> bool:
        """Revoke the old token and insert its replacement, all or nothing.

        Returns False, with nothing written, if the old token was already
        revoked -- either replayed or rotated by a concurrent request.
        """
        replacement = replace(replacement, id=replacement.id or _new_id(), created_at=replacement.created_at or seen_at)
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == old_token_id) & (_refresh_tokens.c.revoked == false()))
                .values(revoked=True, last_seen_at=_iso(seen_at))
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(replacement)))
        return True

    def revoke_all_refresh_tokens(self, user_id: str) -> int:
        """Revoke every active refresh token of a user, on every device. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == false()))
                .values(revoked=True)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: PasswordResetToken) -> PasswordResetToken:
        """Invalidate every unused reset token of the user and insert the new one.

        Both statements run in one transaction, so at most one token per user
        is ever redeemable.
        """
        now = _now()
        token = replace(token, id=token.id or _new_id(), created_at=now, updated_at=now)
        with self.engine.begin() as conn:
            conn.execute(
                _password_reset_tokens.update()
                .where(
                    (_password_reset_tokens.c.user_id == token.user_id)
                    & (_password_reset_tokens.c.used == false())
                )
                .values(used=True, updated_at=_iso(now))
            )
            conn.execute(
                _password_reset_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=_iso(token.expires_at),
                    used=token.used,
                    created_at=_iso(now),
                    updated_at=_iso(now),
                )
            )
        return token

    def get_reset_token_by_hash(self, token_hash: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _password_reset_tokens.select().where(_password_reset_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def list_reset_tokens(self, user_id: str) -> list[PasswordResetToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _password_reset_tokens.select()
                .where(_password_reset_tokens.c.user_id == user_id)
                .order_by(_password_reset_tokens.c.created_at)
            ).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def consume_reset_token(self, token_id: str) -> bool:
        """Mark a reset token used if it is still unused. Returns True only for the first caller."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _password_reset_tokens.update()
                .where((_password_reset_tokens.c.id == token_id) & (_password_reset_tokens.c.used == false()))
                .values(used=True, updated_at=_iso(_now()))
            )
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Value builders and row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_values(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "password_hash": user.password_hash,
        "display_name": user.display_name,
        "auth_provider": user.auth_provider,
        "role": user.role,
        "is_email_verified": user.is_email_verified,
        "disabled": user.disabled,
        "deleted_at": _iso(user.deleted_at),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "last_login_at": _iso(user.last_login_at),
    }


def _refresh_token_values(token: RefreshToken) -> dict:
    return {
        "id": token.id,
        "user_id": token.user_id,
        "token_hash": token.token_hash,
        "device_id": token.device_id,
        "device_name": token.device_name,
        "ip": token.ip,
        "user_agent": token.user_agent,
        "created_at": _iso(token.created_at),
        "last_seen_at": _iso(token.last_seen_at),
        "expires_at": _iso(token.expires_at),
        "revoked": token.revoked,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        display_name=row.display_name,
        auth_provider=row.auth_provider,
        role=row.role,
        is_email_verified=bool(row.is_email_verified),
        disabled=bool(row.disabled),
        deleted_at=_parse(row.deleted_at),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
        last_login_at=_parse(row.last_login_at),
    )


def _row_to_pre_registration(row) -> PreRegistration:
    return PreRegistration(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        display_name=row.display_name,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        ip=row.ip,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        device_id=row.device_id,
        device_name=row.device_name,
        ip=row.ip,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
        last_seen_at=_parse(row.last_seen_at),
        expires_at=_parse(row.expires_at),
        revoked=bool(row.revoked),
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        used=bool(row.used),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )
