"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ReelTalk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
and pass the resulting Settings object to the components that need it
(TokenIssuer, RefreshTokenLedger, GoogleIdentityBridge) at construction time.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Security notes:
  [M6] ACCESS_TOKEN_SECRET shorter than 32 chars is rejected outright. HS256
       signing relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing
       ACCESS_TOKEN_SECRET is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("reeltalk.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'reeltalk_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the key).
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; see validate_secret().
    access_token_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60

    secure_cookies: bool = False
    refresh_cookie_name: str = "refresh_token"

    # ------------------------------------------------------------------
    # Google sign-in (empty client id means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_certs_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    google_certs_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    signin_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    token_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret(self) -> "Settings":
        """Enforce the ACCESS_TOKEN_SECRET policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if the key is missing.

        Both modes: reject keys shorter than 32 characters, and TTLs that are
            not positive.
        """
        if not self.access_token_secret:
            if self.debug:
                self.access_token_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated ACCESS_TOKEN_SECRET. " "Access tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "ACCESS_TOKEN_SECRET is required in production mode. "
                    "Set ACCESS_TOKEN_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.access_token_secret) < 32:
            raise ValueError("ACCESS_TOKEN_SECRET must be at least 32 characters.")
        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_seconds <= 0:
            raise ValueError("Token lifetimes must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and hand it to the components under test.
    """
    return Settings()
