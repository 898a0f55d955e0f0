"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Coverage:
  - Opaque token generation: length, hex alphabet, uniqueness
  - Digests: deterministic, fixed length, never equal to the raw token
  - Password hashing: verify ok / wrong password / malformed stored hash
  - Password policy: minimum length
  - Access tokens: claims, tampering, expiry, wrong token type
  - Email helpers: normalization and masking
"""

from __future__ import annotations

import string
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import WeakPasswordError
from auth.tokens import (
    REFRESH_TOKEN_BYTES,
    VERIFICATION_TOKEN_BYTES,
    create_access_token,
    decode_access_token,
    digest_token,
    digests_match,
    generate_token,
    hash_password,
    mask_email,
    normalize_email,
    validate_password,
    verify_password,
)
from core.config import get_settings


class TestOpaqueTokens:
    def test_lengths_match_byte_counts(self) -> None:
        assert len(generate_token(VERIFICATION_TOKEN_BYTES)) == 64
        assert len(generate_token(REFRESH_TOKEN_BYTES)) == 128

    def test_tokens_are_hex(self) -> None:
        assert set(generate_token()) <= set(string.hexdigits.lower())

    def test_tokens_are_unique(self) -> None:
        assert len({generate_token() for _ in range(100)}) == 100


class TestDigests:
    def test_digest_is_deterministic_and_fixed_length(self) -> None:
        raw = generate_token()
        assert digest_token(raw) == digest_token(raw)
        assert len(digest_token(raw)) == 64
        assert len(digest_token("x")) == 64

    def test_digest_differs_from_raw_and_between_tokens(self) -> None:
        a, b = generate_token(), generate_token()
        assert digest_token(a) != a
        assert digest_token(a) != digest_token(b)

    def test_digests_match(self) -> None:
        raw = generate_token()
        assert digests_match(digest_token(raw), digest_token(raw))
        assert not digests_match(digest_token(raw), digest_token(raw + "0"))


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_long_passwords_are_accepted(self) -> None:
        long_password = "p" * 200
        assert verify_password(long_password, hash_password(long_password))

    def test_validate_password_minimum(self) -> None:
        validate_password("12345", 5)
        with pytest.raises(WeakPasswordError):
            validate_password("1234", 5)


class TestAccessTokens:
    def test_claims_round_trip(self) -> None:
        token = create_access_token("user-1", "customer", "laptop")
        payload = decode_access_token(token)
        assert payload is not None
        assert payload["sub"] == "user-1"
        assert payload["roles"] == ["customer"]
        assert payload["device_id"] == "laptop"

    def test_default_lifetime(self) -> None:
        payload = decode_access_token(create_access_token("user-1", "customer", "laptop"))
        assert payload["exp"] - payload["iat"] == get_settings().access_token_expire_seconds

    def test_tampered_token_rejected(self) -> None:
        token = create_access_token("user-1", "customer", "laptop")
        head, body, sig = token.split(".")
        tampered = f"{head}.{body}.{'A' * len(sig)}"
        assert decode_access_token(tampered) is None

    def test_token_signed_with_other_key_rejected(self) -> None:
        forged = jwt.encode({"sub": "user-1", "type": "access"}, "x" * 40, algorithm="HS256")
        assert decode_access_token(forged) is None

    def test_expired_token_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        expired = jwt.encode(
            {"sub": "user-1", "type": "access", "exp": past},
            get_settings().secret_key,
            algorithm="HS256",
        )
        assert decode_access_token(expired) is None

    def test_non_access_token_rejected(self) -> None:
        other = jwt.encode({"sub": "user-1", "type": "refresh"}, get_settings().secret_key, algorithm="HS256")
        assert decode_access_token(other) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt") is None


class TestEmailHelpers:
    def test_normalize(self) -> None:
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    def test_mask(self) -> None:
        assert mask_email("alice@example.com") == "al***@example.com"
        assert mask_email("not-an-email") == "***"
