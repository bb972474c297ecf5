"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the note service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY handling. Dev
      mode generates a key with a warning, production refuses to start without
      one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode a missing SECRET_KEY is a hard startup failure.
       A random key would silently invalidate every bearer token on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notes/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("noteapp.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # Bearer tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 7 * 24 * 3600
    token_issuer: str = "noteapp-backend"
    token_audience: str = "noteapp-frontend"
    # Sliding refresh: a token this close to expiry gets a replacement in
    # the X-New-Token response header.
    sliding_refresh_enabled: bool = True
    token_refresh_window_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # Passwords and one-time codes
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    otp_length: int = 6
    otp_ttl_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Storage (empty string = store module default, a SQLite file)
    # ------------------------------------------------------------------

    accounts_db_url: str = ""
    notes_db_url: str = ""
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Federated login (empty client id = Google login disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    google_jwks_cache_seconds: int = 3600
    federated_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Outbound email (empty host = log-only sender)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 10.0
    email_from: str = "Note App <no-reply@localhost>"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    register_rate_limit: str = "5/15minutes"
    login_rate_limit: str = "10/15minutes"
    otp_rate_limit: str = "5/15minutes"
    resend_rate_limit: str = "3/15minutes"
    note_create_rate_limit: str = "50/15minutes"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_otp_and_cost(self) -> "Settings":
        """bcrypt accepts cost factors 4..31; OTP codes need at least 4 digits."""
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.otp_length < 4:
            raise ValueError("OTP_LENGTH must be at least 4.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
