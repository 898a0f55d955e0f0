"""
auth/tokens.py -- Secret generation, digests, password hashing, and JWTs.

Security design decisions:
  Opaque tokens: verification, reset, and refresh tokens are
       secrets.token_hex(n) strings -- 32 random bytes for email links, 64 for
       refresh tokens. Only HMAC-SHA256(SECRET_KEY, raw) is persisted, so a DB
       leak exposes nothing usable without SECRET_KEY. The digest is
       deterministic, enabling lookup by digest through a UNIQUE index.
       bcrypt's intentional slowness is unnecessary for high-entropy secrets.

  Passwords: bcrypt directly (no passlib wrapper), cost from
       Settings.bcrypt_rounds. The _DUMMY_HASH constant enables timing
       equalization in login so response time does not reveal whether an
       email is registered.

  JWT: python-jose with HS256. Access tokens carry sub (user id), roles,
       device_id and expiry. Verification returns None on any failure --
       the dependency layer turns that into a 401.

Layer rule: no imports from api/, audit/, or mailer/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import WeakPasswordError
from core.config import get_settings

logger = logging.getLogger("authkeep.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

VERIFICATION_TOKEN_BYTES = 32
RESET_TOKEN_BYTES = 32
REFRESH_TOKEN_BYTES = 64

# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_token(nbytes: int = VERIFICATION_TOKEN_BYTES) -> str:
    """Return nbytes of CSPRNG output as a hex string (2 * nbytes chars)."""
    return secrets.token_hex(nbytes)


def digest_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a 64-char hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def digests_match(a: str, b: str) -> bool:
    """Constant-time comparison of two digests."""
    return hmac.compare_digest(a.encode(), b.encode())


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 bytes take part in the hash (bcrypt limit). Recent bcrypt
    releases reject longer input, so it is cut here explicitly.
    """
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(_bcrypt_input(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


def validate_password(plain: str, min_length: int | None = None) -> None:
    """Raise WeakPasswordError if the password is shorter than the policy minimum."""
    minimum = min_length if min_length is not None else _settings.password_min_length
    if len(plain) < minimum:
        raise WeakPasswordError(f"Password must be at least {minimum} characters long.")


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email does not exist.
_DUMMY_HASH: str = hash_password("authkeep_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, role: str, device_id: str, expire_seconds: int = 0) -> str:
    """Encode a signed access token.

    Args:
        user_id:        Opaque user id, stored as the JWT subject claim.
        role:           User role ("customer" or "admin").
        device_id:      Client-supplied device identifier the session is bound to.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "roles": [role],
        "device_id": device_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def mask_email(email: str) -> str:
    """Return a partially masked email ("al***@example.com") for logs and responses."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:2]}***@{domain}"
