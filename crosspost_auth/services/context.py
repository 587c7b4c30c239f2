"""
Process-wide wiring of the auth subsystem.

AuthContext builds every component once, on top of one explicitly opened
store, and closes that store at shutdown. There are no module-level
singletons; request handlers receive the context (or its service) through
the web framework's application state.

Usage with FastAPI:

    @asynccontextmanager
    async def lifespan(app):
        settings = AuthSettings.from_env()
        async with AuthContext.open(settings) as auth:
            auth.add_platform("twitter", OAuth2PkceStrategy(twitter_endpoints(), client_id=...))
            app.state.auth = auth
            yield
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from crosspost_auth.config import AuthSettings
from crosspost_auth.credentials.audit import AccessAuditor
from crosspost_auth.credentials.encryption import CredentialEncryptor
from crosspost_auth.credentials.redaction import setup_credential_logging
from crosspost_auth.credentials.vault import TokenVault
from crosspost_auth.identity.linker import IdentityLinker
from crosspost_auth.oauth.orchestrator import OAuthOrchestrator
from crosspost_auth.oauth.strategy import PlatformStrategy
from crosspost_auth.services.auth_service import AuthService
from crosspost_auth.storage.kv import KeyedStore
from crosspost_auth.storage.namespaced import NamespacedStore
from crosspost_auth.storage.redis_store import RedisKeyedStore

logger = logging.getLogger(__name__)

# Sub-namespaces under settings.key_prefix
TOKEN_NAMESPACE = "token/"
AUTH_STATE_NAMESPACE = "auth/"
WALLET_INDEX_NAMESPACE = "wallet-index/"
WALLET_AUTH_NAMESPACE = "wallet-auth/"
AUDIT_NAMESPACE = "audit/"


class AuthContext:
    """All auth components sharing one store."""

    def __init__(self, settings: AuthSettings, store: KeyedStore):
        self.settings = settings
        self.store = store

        root = NamespacedStore(store, settings.key_prefix)
        self.auth_states = root.child(AUTH_STATE_NAMESPACE)

        self.encryptor = CredentialEncryptor(
            settings.encryption_key,
            allow_legacy_reads=settings.allow_legacy_envelopes,
        )
        self.auditor = AccessAuditor(
            root.child(AUDIT_NAMESPACE),
            environment=settings.environment,
            default_limit=settings.audit_log_limit,
        )
        self.vault = TokenVault(root.child(TOKEN_NAMESPACE), self.encryptor, self.auditor)
        self.linker = IdentityLinker(
            root.child(WALLET_INDEX_NAMESPACE),
            root.child(WALLET_AUTH_NAMESPACE),
            self.vault,
        )
        self.service = AuthService(self.linker)
        self._strategies: List[PlatformStrategy] = []

    def add_platform(self, platform: str, strategy: PlatformStrategy) -> OAuthOrchestrator:
        orchestrator = OAuthOrchestrator(
            platform,
            strategy,
            self.vault,
            self.linker,
            self.auth_states,
            state_ttl_seconds=self.settings.auth_state_ttl_seconds,
            refresh_buffer_seconds=self.settings.refresh_buffer_seconds,
            default_scopes=self.settings.default_scopes,
        )
        self.service.register(orchestrator)
        self._strategies.append(strategy)
        return orchestrator

    async def aclose(self) -> None:
        for strategy in self._strategies:
            close = getattr(strategy, "aclose", None)
            if close is not None:
                await close()
        await self.store.close()
        logger.info("Auth context closed")

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        settings: AuthSettings,
        store: Optional[KeyedStore] = None,
    ) -> AsyncIterator["AuthContext"]:
        """
        Open the store, build the components, and close everything on exit.

        Args:
            settings: Resolved settings
            store: Store to use instead of connecting to settings.redis_url.
                It is closed on exit like an owned store.
        """
        if store is None:
            redis_store = RedisKeyedStore.from_url(settings.redis_url)
            try:
                await redis_store.ping()
            except Exception:
                await redis_store.close()
                raise
            store = redis_store

        setup_credential_logging()
        context = cls(settings, store)
        logger.info(
            "Auth context opened",
            extra={"environment": settings.environment, "key_prefix": settings.key_prefix},
        )
        try:
            yield context
        finally:
            await context.aclose()
