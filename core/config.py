"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authkeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, refresh_cooldown_seconds ->
      REFRESH_COOLDOWN_SECONDS). Type coercion and validation are built in.
      List fields (allowed_hosts, cors_origins) are read as JSON arrays.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY signs access tokens and keys the HMAC used for token digests.
  Shorter than 32 chars is rejected outright. Rotating it invalidates every
  outstanding access token, verification link, reset link and refresh token.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, or mailer/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkeep.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'authkeep.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 900
    refresh_token_expire_days: int = 7
    verification_token_expire_minutes: int = 60
    reset_token_expire_minutes: int = 15
    # A refresh token minted by rotation cannot itself be rotated again for
    # this many seconds. 0 disables the cooldown.
    refresh_cooldown_seconds: int = 10

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_min_length: int = 5
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Mail (empty smtp_host = dev mode, messages are logged instead of sent)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    # False = implicit TLS (SMTP_SSL, port 465); True = STARTTLS (port 587)
    smtp_starttls: bool = False
    smtp_timeout_seconds: int = 10
    mail_from: str = "no-reply@localhost"
    mail_from_name: str = "authkeep"

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5173"
    verification_url: str = "http://localhost:8000/api/v1/auth/verify-email"
    reset_password_url: str = "http://localhost:8000/api/v1/auth/verify-reset"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    register_rate_limit: str = "5/minute"
    login_rate_limit: str = "5/minute"
    reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    audit_queue_size: int = 1000
    purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.password_min_length < 1:
            raise ValueError("PASSWORD_MIN_LENGTH must be at least 1.")
        if self.refresh_cooldown_seconds < 0:
            raise ValueError("REFRESH_COOLDOWN_SECONDS must not be negative.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. Services accept an explicit Settings object as well, so tests
    can pass get_settings().model_copy(update={...}) to tweak one knob.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
