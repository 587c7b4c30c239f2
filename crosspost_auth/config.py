"""
Runtime configuration for the auth subsystem.

Values come from environment variables, optionally seeded from a .env file.
Settings are read once at process start and passed explicitly to
AuthContext; nothing in the package reads the environment at import time.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Transient OAuth state lives one hour
DEFAULT_AUTH_STATE_TTL_SECONDS = 3600

# Treat tokens as expired this long before their real expiry
DEFAULT_REFRESH_BUFFER_SECONDS = 300

DEFAULT_AUDIT_LOG_LIMIT = 100

DEFAULT_KEY_PREFIX = "crosspost:"

DEFAULT_SCOPES: List[str] = [
    "tweet.read",
    "tweet.write",
    "users.read",
    "offline.access",
    "like.read",
    "like.write",
]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class AuthSettings:
    """Resolved settings for one process."""

    encryption_key: str
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = DEFAULT_KEY_PREFIX
    environment: str = "development"
    auth_state_ttl_seconds: int = DEFAULT_AUTH_STATE_TTL_SECONDS
    refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS
    allow_legacy_envelopes: bool = True
    audit_log_limit: int = DEFAULT_AUDIT_LOG_LIMIT
    default_scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AuthSettings":
        """
        Build settings from the process environment.

        Args:
            env_file: Optional path to a .env file loaded before reading.
                Existing environment variables take precedence.

        Raises:
            ValueError: If ENCRYPTION_KEY is not set
        """
        if env_file:
            load_dotenv(env_file)

        encryption_key = os.getenv("ENCRYPTION_KEY")
        if not encryption_key:
            raise ValueError("ENCRYPTION_KEY environment variable is required")

        return cls(
            encryption_key=encryption_key,
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            key_prefix=os.getenv("KV_KEY_PREFIX", DEFAULT_KEY_PREFIX),
            environment=os.getenv("ENVIRONMENT", "development"),
            auth_state_ttl_seconds=int(
                os.getenv("AUTH_STATE_TTL_SECONDS", str(DEFAULT_AUTH_STATE_TTL_SECONDS))
            ),
            refresh_buffer_seconds=int(
                os.getenv("TOKEN_REFRESH_BUFFER_SECONDS", str(DEFAULT_REFRESH_BUFFER_SECONDS))
            ),
            allow_legacy_envelopes=_env_bool("ALLOW_LEGACY_ENVELOPES", True),
            audit_log_limit=int(os.getenv("AUDIT_LOG_LIMIT", str(DEFAULT_AUDIT_LOG_LIMIT))),
            default_scopes=_env_list("DEFAULT_SCOPES", DEFAULT_SCOPES),
        )
