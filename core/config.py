"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PM Connect happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. jira_oauth_client_id -> JIRA_OAUTH_CLIENT_ID). Type coercion and
      validation are built in.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved -- SECRET_KEY policy and TOKEN_ENCRYPTION_KEY format.

Static fallback credentials:
  Each provider has two groups of settings. The OAuth client pair
  (*_CLIENT_ID / *_CLIENT_SECRET) drives the authorization-code flow. The
  static group (JIRA_EMAIL/JIRA_API_TOKEN/JIRA_DOMAIN, SLACK_BOT_TOKEN,
  GOOGLE_REFRESH_TOKEN, GITHUB_TOKEN) is the fallback the resolvers use when
  no stored OAuth credential exists. Empty string means "not configured".

Layer rule: core/ is the kernel. This module may not import from api/,
vault/, or providers/.
"""

import logging
import re
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pmconnect.config")

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. TOKEN_ENCRYPTION_KEY is the one
    value the credential core cannot run without; its absence is reported by
    vault.cipher.load_cipher() at startup, not here, so CLI commands such as
    `keygen` still work on an unconfigured host.
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
    # Signs the Starlette session cookie that carries the OAuth state value.
    secret_key: str = ""
    # 32 bytes, hex encoded (64 chars). Encrypts every stored credential.
    token_encryption_key: str = ""

    app_url: str = "http://localhost:3000"
    secure_cookies: bool = False
    # Host header allowlist for TrustedHostMiddleware. JSON list in the env.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    http_timeout_seconds: float = 10.0
    # How long a completed refresh is shared with requests still presenting
    # the pre-rotation refresh token.
    refresh_grace_seconds: float = 30.0

    oauth_rate_limit: str = "20/minute"

    # ------------------------------------------------------------------
    # Jira (issue tracker)
    # ------------------------------------------------------------------

    jira_oauth_client_id: str = ""
    jira_oauth_client_secret: str = ""
    jira_email: str = ""
    jira_api_token: str = ""
    jira_domain: str = ""
    jira_project_key: str = ""

    # ------------------------------------------------------------------
    # Slack (chat)
    # ------------------------------------------------------------------

    slack_client_id: str = ""
    slack_client_secret: str = ""
    slack_bot_token: str = ""
    slack_channel_id: str = ""

    # ------------------------------------------------------------------
    # Google Calendar
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""

    # ------------------------------------------------------------------
    # GitHub (code host)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_token: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            OAuth flows in progress across a restart will fail the state check.

        Production mode: refuse to start without a key, and reject keys
            shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. OAuth sessions will not survive restarts.")
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
    def validate_token_encryption_key(self) -> "Settings":
        """Reject a TOKEN_ENCRYPTION_KEY that is set but malformed.

        An empty value is allowed here and reported by the cipher loader.
        A malformed value is always an operator mistake -- fail at load.
        """
        if self.token_encryption_key and not _HEX_KEY_PATTERN.match(self.token_encryption_key):
            raise ValueError("TOKEN_ENCRYPTION_KEY must be 64 hex characters (32 bytes).")
        return self

    @property
    def app_base_url(self) -> str:
        return self.app_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
