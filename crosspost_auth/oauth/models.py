"""
OAuth flow records and results.

SECURITY: results that carry token values exclude them from repr().
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from crosspost_auth.credentials.models import CredentialBundle


class AuthState(BaseModel):
    """Transient OAuth flow state, stored under auth/{state} until the callback."""

    state: str
    platform: str
    wallet_id: str
    redirect_uri: str
    code_verifier: Optional[str] = Field(default=None, repr=False)
    scopes: list[str] = Field(default_factory=list)
    success_url: Optional[str] = None
    error_url: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AuthorizationRequest:
    """What a platform strategy returns when building the authorization URL."""
    url: str
    state: str
    code_verifier: Optional[str] = field(default=None, repr=False)


@dataclass
class ExchangeResult:
    """Credential and platform user id obtained from a code exchange."""
    user_id: str
    bundle: CredentialBundle


@dataclass
class AuthInitResult:
    auth_url: str
    state: str
    code_verifier: Optional[str] = field(default=None, repr=False)


@dataclass
class CallbackResult:
    user_id: str
    bundle: CredentialBundle
    success_url: Optional[str] = None
