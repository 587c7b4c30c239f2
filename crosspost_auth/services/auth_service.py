"""
Platform registry and entry point for the HTTP layer.

Routes each call to the orchestrator registered for the platform named in
the request. Unknown platforms raise UnsupportedPlatformError.
"""

import logging
from typing import Dict, List, Optional

from crosspost_auth.credentials.models import CredentialBundle
from crosspost_auth.identity.linker import IdentityLinker
from crosspost_auth.identity.models import UnlinkResult
from crosspost_auth.oauth.models import AuthInitResult, CallbackResult
from crosspost_auth.oauth.orchestrator import OAuthOrchestrator
from crosspost_auth.platform.errors import UnsupportedPlatformError

logger = logging.getLogger(__name__)


class AuthService:

    def __init__(self, linker: IdentityLinker):
        self.linker = linker
        self._orchestrators: Dict[str, OAuthOrchestrator] = {}

    def register(self, orchestrator: OAuthOrchestrator) -> None:
        if orchestrator.platform in self._orchestrators:
            raise ValueError(f"Platform '{orchestrator.platform}' is already registered")
        self._orchestrators[orchestrator.platform] = orchestrator
        logger.info("Platform registered", extra={"platform": orchestrator.platform})

    @property
    def platforms(self) -> List[str]:
        return sorted(self._orchestrators)

    def orchestrator(self, platform: str) -> OAuthOrchestrator:
        try:
            return self._orchestrators[platform]
        except KeyError:
            raise UnsupportedPlatformError(platform) from None

    async def initialize_auth(
        self,
        platform: str,
        wallet_id: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        success_url: Optional[str] = None,
        error_url: Optional[str] = None,
    ) -> AuthInitResult:
        return await self.orchestrator(platform).initialize_auth(
            wallet_id,
            redirect_uri,
            scopes=scopes,
            success_url=success_url,
            error_url=error_url,
        )

    async def handle_callback(self, platform: str, code: str, state: str) -> CallbackResult:
        return await self.orchestrator(platform).handle_callback(code, state)

    async def refresh_token(self, platform: str, user_id: str) -> CredentialBundle:
        return await self.orchestrator(platform).refresh_token(user_id)

    async def revoke_token(self, platform: str, user_id: str) -> bool:
        return await self.orchestrator(platform).revoke_token(user_id)

    async def get_credential(self, platform: str, user_id: str) -> CredentialBundle:
        return await self.orchestrator(platform).get_credential(user_id)

    async def unlink(self, wallet_id: str, platform: str, user_id: str) -> UnlinkResult:
        self.orchestrator(platform)  # rejects unknown platforms
        return await self.linker.unlink(wallet_id, platform, user_id)
