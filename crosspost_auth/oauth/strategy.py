"""
Platform strategy interface.

A strategy knows one platform's OAuth endpoints and token semantics. It
returns values and raises auth errors; it never touches storage. The
orchestrator owns persistence, deletion and linking.

Error contract for implementations:
- UnauthorizedError: the platform rejected the code or refresh token
- PlatformRequestError: the platform rejected the client or request;
  the credential itself may still be valid
- RateLimitedError / TransientNetworkError: retry may succeed
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from crosspost_auth.credentials.models import CredentialBundle
from crosspost_auth.oauth.models import AuthorizationRequest, ExchangeResult


class PlatformStrategy(ABC):

    @abstractmethod
    async def build_auth_url(self, redirect_uri: str, scopes: List[str]) -> AuthorizationRequest:
        """Build the authorization URL, state token and PKCE verifier."""

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str],
    ) -> ExchangeResult:
        """Trade an authorization code for a credential and the platform user id."""

    @abstractmethod
    async def refresh_credential(self, bundle: CredentialBundle) -> CredentialBundle:
        """Return a new bundle obtained with bundle.refresh_token."""

    @abstractmethod
    async def revoke_credential(self, bundle: CredentialBundle) -> None:
        """Revoke the credential at the platform."""
