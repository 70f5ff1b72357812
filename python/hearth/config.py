"""Application settings loaded from environment variables.

Environment Configuration:
    HEARTH_ENV: Deployment environment (local | test | staging | prod)
    HEARTH_DATA_DIR: Directory holding the embedded database (default ./data)
    DATABASE_PATH: SQLite file path (defaults to <HEARTH_DATA_DIR>/hearth.db)
    STATIC_DIR: Root directory for served files; photos live under <STATIC_DIR>/photos
    SITE_ROOT: Deployed site URL, used for the WebSocket Origin allow-list

Session Configuration:
    SESSION_SIGNING_KEY: HS256 key for session tokens (required in staging/prod)
    SESSION_COOKIE_NAME: Cookie carrying the session token (default authToken)

Queue Configuration:
    MEDIA_QUEUE_CAPACITY: Bounded media job queue size
    PUSH_QUEUE_CAPACITY: Bounded push job queue size
    SWEEP_PENDING_ON_BOOT: Re-queue or fail leftover pending photos at startup

APNs Configuration (push is disabled unless all four are set):
    APNS_TEAM_ID, APNS_KEY_ID, APNS_BUNDLE_ID, APNS_KEY_PATH
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Used only in local/test when SESSION_SIGNING_KEY is not configured
DEV_SESSION_SIGNING_KEY = "hearth-dev-session-key-not-for-production-use"

LOCALHOST_NAMES = {"localhost", "127.0.0.1", "family.localhost"}


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - SESSION_SIGNING_KEY is required in staging and prod only
    - Queue capacities must be positive
    """

    hearth_env: Environment = Field(default=Environment.LOCAL, alias="HEARTH_ENV")
    data_dir: str = Field(default="data", alias="HEARTH_DATA_DIR")
    database_path: str | None = Field(default=None, alias="DATABASE_PATH")
    static_dir: str = Field(default="static", alias="STATIC_DIR")
    site_root: str = Field(default="http://localhost:3000", alias="SITE_ROOT")

    # Session auth
    session_signing_key: str | None = Field(default=None, alias="SESSION_SIGNING_KEY")
    session_cookie_name: str = Field(default="authToken", alias="SESSION_COOKIE_NAME")
    session_ttl_s: int = Field(default=30 * 24 * 3600, alias="SESSION_TTL_S")  # 30 days

    # Upload limits
    max_upload_bytes: int = Field(default=32 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")  # 32 MB

    # Background queues
    media_queue_capacity: int = Field(default=100, alias="MEDIA_QUEUE_CAPACITY")
    push_queue_capacity: int = Field(default=100, alias="PUSH_QUEUE_CAPACITY")
    sweep_pending_on_boot: bool = Field(default=True, alias="SWEEP_PENDING_ON_BOOT")

    # APNs provider credentials
    apns_team_id: str | None = Field(default=None, alias="APNS_TEAM_ID")
    apns_key_id: str | None = Field(default=None, alias="APNS_KEY_ID")
    apns_bundle_id: str | None = Field(default=None, alias="APNS_BUNDLE_ID")
    apns_key_path: str | None = Field(default=None, alias="APNS_KEY_PATH")

    # Whether a device token may move to a different user on re-registration
    push_allow_token_transfer: bool = Field(default=True, alias="PUSH_ALLOW_TOKEN_TRANSFER")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the selected environment."""
        if self.hearth_env in (Environment.STAGING, Environment.PROD):
            if not self.session_signing_key:
                raise ValueError(
                    f"SESSION_SIGNING_KEY is required for HEARTH_ENV={self.hearth_env.value}"
                )

        if self.media_queue_capacity < 1:
            raise ValueError("MEDIA_QUEUE_CAPACITY must be at least 1")
        if self.push_queue_capacity < 1:
            raise ValueError("PUSH_QUEUE_CAPACITY must be at least 1")

        return self

    @property
    def effective_database_path(self) -> str:
        """Return the SQLite path, falling back to <data_dir>/hearth.db."""
        if self.database_path:
            return self.database_path
        return str(Path(self.data_dir) / "hearth.db")

    @property
    def effective_session_signing_key(self) -> str:
        """Return the session key, using the dev key in local/test when unset."""
        if self.session_signing_key:
            return self.session_signing_key
        return DEV_SESSION_SIGNING_KEY

    @property
    def apns_configured(self) -> bool:
        """Whether every APNs credential setting is present."""
        return all(
            (self.apns_team_id, self.apns_key_id, self.apns_bundle_id, self.apns_key_path)
        )

    @property
    def allowed_ws_origins(self) -> list[str]:
        """Origin patterns accepted on /ws/* upgrades.

        The configured site root is always allowed. When it points at a
        localhost host, any port on the local development hosts is allowed too.
        """
        site = self.site_root.rstrip("/")
        origins = [site]
        host = urlparse(site).hostname or ""
        if host in LOCALHOST_NAMES:
            origins.extend(
                [
                    "http://localhost:*",
                    "http://127.0.0.1:*",
                    "http://family.localhost:*",
                ]
            )
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
