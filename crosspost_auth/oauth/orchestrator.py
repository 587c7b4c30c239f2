"""
OAuth flow orchestration for one platform.

State machine:

    INIT --initialize_auth--> AWAITING_CALLBACK --handle_callback--> LINKED
    LINKED --refresh_token--> LINKED (new bundle) | UNLINKED (refresh rejected)
    LINKED --revoke_token--> UNLINKED

Platform specifics live in the injected PlatformStrategy. The orchestrator
owns every side effect: storing flow state, saving and deleting bundles,
and linking the wallet.

SECURITY:
- Callback state is consumed with an atomic pop, so a replayed callback
  can never run the code exchange twice
- A refresh token the platform rejects is deleted immediately, so later
  calls fail fast with NotFound instead of retrying a dead credential
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from crosspost_auth.config import DEFAULT_AUTH_STATE_TTL_SECONDS, DEFAULT_REFRESH_BUFFER_SECONDS
from crosspost_auth.credentials.models import CredentialBundle
from crosspost_auth.credentials.vault import TokenVault
from crosspost_auth.identity.linker import IdentityLinker
from crosspost_auth.oauth.models import AuthInitResult, AuthState, CallbackResult
from crosspost_auth.oauth.strategy import PlatformStrategy
from crosspost_auth.platform.errors import (
    AppError,
    CorruptCredentialError,
    CredentialNotFoundError,
    InvalidStateError,
    UnauthorizedError,
)
from crosspost_auth.storage.kv import KeyedStore

logger = logging.getLogger(__name__)


class OAuthOrchestrator:
    """Drives the OAuth lifecycle for a single platform."""

    def __init__(
        self,
        platform: str,
        strategy: PlatformStrategy,
        vault: TokenVault,
        linker: IdentityLinker,
        state_store: KeyedStore,
        state_ttl_seconds: int = DEFAULT_AUTH_STATE_TTL_SECONDS,
        refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
        default_scopes: Optional[List[str]] = None,
    ):
        """
        Args:
            platform: Platform name used in storage keys ("twitter")
            strategy: Platform-specific OAuth implementation
            vault: Credential storage
            linker: Wallet identity index
            state_store: Store scoped to the auth-state namespace
            state_ttl_seconds: Lifetime of an unconsumed flow
            refresh_buffer_seconds: Refresh this long before expiry
            default_scopes: Scopes requested when the caller passes none
        """
        self.platform = platform
        self.strategy = strategy
        self._vault = vault
        self._linker = linker
        self._states = state_store
        self._state_ttl = state_ttl_seconds
        self._refresh_buffer = refresh_buffer_seconds
        self._default_scopes = list(default_scopes or [])

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    async def initialize_auth(
        self,
        wallet_id: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        success_url: Optional[str] = None,
        error_url: Optional[str] = None,
    ) -> AuthInitResult:
        """
        Start an authorization flow for a wallet.

        Strategy errors propagate unchanged.
        """
        requested = list(scopes) if scopes else list(self._default_scopes)
        request = await self.strategy.build_auth_url(redirect_uri, requested)

        auth_state = AuthState(
            state=request.state,
            platform=self.platform,
            wallet_id=wallet_id,
            redirect_uri=redirect_uri,
            code_verifier=request.code_verifier,
            scopes=requested,
            success_url=success_url,
            error_url=error_url,
        )
        await self._states.set(request.state, auth_state.model_dump(mode="json"), ttl=self._state_ttl)

        logger.info(
            "OAuth flow started",
            extra={"platform": self.platform, "wallet_id": wallet_id, "scopes": requested},
        )
        return AuthInitResult(
            auth_url=request.url,
            state=request.state,
            code_verifier=request.code_verifier,
        )

    def _parse_state(self, raw) -> AuthState:
        try:
            auth_state = AuthState.model_validate(raw)
        except ValidationError as e:
            raise InvalidStateError("OAuth state record is malformed") from e
        if auth_state.platform != self.platform:
            raise InvalidStateError("OAuth state belongs to a different platform")
        return auth_state

    async def get_auth_state(self, state: str) -> AuthState:
        """
        Read flow state without consuming it.

        Used by the callback handler to find the error redirect before the
        exchange is attempted.

        Raises:
            InvalidStateError: Unknown, expired or consumed state
        """
        raw = await self._states.get(state)
        if raw is None:
            logger.warning("Unknown OAuth state", extra={"platform": self.platform})
            raise InvalidStateError("OAuth state is missing, expired or already used")
        return self._parse_state(raw)

    async def handle_callback(self, code: str, state: str) -> CallbackResult:
        """
        Complete a flow: consume state, exchange code, save, link.

        State belonging to another platform is rejected without being
        consumed, so that platform's own callback still completes.

        Raises:
            InvalidStateError: State missing, expired, already used or
                issued for another platform
        """
        await self.get_auth_state(state)

        raw = await self._states.pop(state)
        if raw is None:
            logger.warning("OAuth callback with unknown state", extra={"platform": self.platform})
            raise InvalidStateError("OAuth state is missing, expired or already used")
        auth_state = self._parse_state(raw)

        exchange = await self.strategy.exchange_code(
            code, auth_state.redirect_uri, auth_state.code_verifier
        )
        await self._vault.save(self.platform, exchange.user_id, exchange.bundle)
        await self._linker.link(auth_state.wallet_id, self.platform, exchange.user_id)

        logger.info(
            "OAuth flow completed",
            extra={"platform": self.platform, "wallet_id": auth_state.wallet_id},
        )
        return CallbackResult(
            user_id=exchange.user_id,
            bundle=exchange.bundle,
            success_url=auth_state.success_url,
        )

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    async def _purge(self, user_id: str) -> None:
        try:
            await self._vault.delete(self.platform, user_id)
        except Exception:
            logger.warning(
                "Failed to purge credential",
                extra={"platform": self.platform},
                exc_info=True,
            )

    async def refresh_token(self, user_id: str) -> CredentialBundle:
        """
        Exchange the stored refresh token for a new bundle and save it.

        Raises:
            CredentialNotFoundError: Nothing stored for the user
            UnauthorizedError: No refresh token (bundle kept), or the
                platform rejected it (bundle deleted)
            TransientNetworkError, RateLimitedError: Retry later; bundle kept
            PlatformRequestError: Client or request rejected; bundle kept
        """
        bundle = await self._vault.get(self.platform, user_id)
        if not bundle.can_refresh:
            raise UnauthorizedError(
                "No refresh token available; re-authentication required",
                details={"platform": self.platform},
            )

        try:
            refreshed = await self.strategy.refresh_credential(bundle)
        except UnauthorizedError:
            logger.warning(
                "Refresh token rejected by platform, deleting credential",
                extra={"platform": self.platform},
            )
            await self._purge(user_id)
            raise
        except AppError:
            raise
        except Exception as e:
            logger.exception("Unexpected token refresh failure", extra={"platform": self.platform})
            raise UnauthorizedError(
                "Token refresh failed",
                details={"platform": self.platform},
            ) from e

        await self._vault.save(self.platform, user_id, refreshed)
        logger.info(
            "Credential refreshed",
            extra={
                "platform": self.platform,
                "expires_at": refreshed.expires_at.isoformat() if refreshed.expires_at else None,
            },
        )
        return refreshed

    async def revoke_token(self, user_id: str) -> bool:
        """
        Revoke at the platform (best effort) and delete locally.

        Returns:
            True if nothing is stored afterwards
        """
        bundle: Optional[CredentialBundle] = None
        try:
            bundle = await self._vault.get(self.platform, user_id)
        except CredentialNotFoundError:
            return True
        except CorruptCredentialError:
            logger.warning(
                "Revoking corrupt credential locally only",
                extra={"platform": self.platform},
            )

        if bundle is not None:
            try:
                await self.strategy.revoke_credential(bundle)
            except Exception:
                logger.warning(
                    "Platform revocation failed, deleting locally",
                    extra={"platform": self.platform},
                    exc_info=True,
                )

        try:
            await self._vault.delete(self.platform, user_id)
        except AppError:
            logger.error(
                "Failed to delete revoked credential",
                extra={"platform": self.platform},
                exc_info=True,
            )
            return False

        logger.info("Credential revoked", extra={"platform": self.platform})
        return True

    async def get_credential(self, user_id: str) -> CredentialBundle:
        """
        Return a usable bundle, refreshing it first when it is expiring.

        An expired bundle without a refresh token is deleted.

        Raises:
            CredentialNotFoundError: Nothing stored for the user
            UnauthorizedError: Expired with no way to refresh
        """
        bundle = await self._vault.get(self.platform, user_id)
        if not bundle.is_expired(buffer_seconds=self._refresh_buffer):
            return bundle

        if bundle.can_refresh:
            return await self.refresh_token(user_id)

        if not bundle.is_usable():
            await self._purge(user_id)
            raise UnauthorizedError(
                "Credential expired; re-authentication required",
                details={"platform": self.platform},
            )

        # Inside the refresh window but still valid, and nothing to refresh with
        return bundle
