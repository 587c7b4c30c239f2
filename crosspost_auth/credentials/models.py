"""
Credential bundle model.

SECURITY: secret fields are excluded from repr() so a bundle can be passed
to a logger or an exception message without leaking tokens.
"""

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenType(str, enum.Enum):
    """OAuth scheme that issued the credential."""
    OAUTH1 = "oauth1"
    OAUTH2 = "oauth2"


class CredentialBundle(BaseModel):
    """
    Credentials for one (platform, platform user).

    Invariants:
    - expires_at is None: the access token does not expire
    - expired and no refresh_token: unusable, must be purged by the caller
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    token_secret: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    scope: list[str] = Field(default_factory=list)
    token_type: TokenType = TokenType.OAUTH2

    @field_validator("scope", mode="before")
    @classmethod
    def split_scope_string(cls, v: Union[str, list, None]) -> list:
        # Token endpoints return space-delimited scope strings
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator("expires_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: Optional[datetime] = None, buffer_seconds: int = 0) -> bool:
        """True once now + buffer reaches expires_at. Never true without an expiry."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=buffer_seconds) >= self.expires_at

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now) or self.can_refresh
