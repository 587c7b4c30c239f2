"""Wallet identity records."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkedAccount(BaseModel):
    """One social account bound to a wallet."""

    platform: str
    user_id: str
    linked_at: datetime = Field(default_factory=_utcnow)

    def matches(self, platform: str, user_id: str) -> bool:
        return self.platform == platform and self.user_id == user_id


class WalletAuthorization(BaseModel):
    """Wallet-level authorization flag, independent of linked accounts."""

    authorized: bool
    timestamp: datetime = Field(default_factory=_utcnow)


class UnlinkResult(BaseModel):
    """
    Outcome of unlink.

    Index removal and credential deletion are attempted independently and
    reported separately.
    """

    index_removed: bool = False
    credential_deleted: bool = False
    index_error: Optional[str] = None
    credential_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.index_removed and self.credential_deleted
