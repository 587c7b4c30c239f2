"""
Shared pytest fixtures for auth subsystem tests.

Everything runs against MemoryKeyedStore; Redis and HTTP are mocked in the
tests that exercise them directly.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from crosspost_auth.config import AuthSettings
from crosspost_auth.credentials.audit import AccessAuditor
from crosspost_auth.credentials.encryption import CredentialEncryptor
from crosspost_auth.credentials.models import CredentialBundle
from crosspost_auth.credentials.vault import TokenVault
from crosspost_auth.identity.linker import IdentityLinker
from crosspost_auth.oauth.models import AuthorizationRequest, ExchangeResult
from crosspost_auth.oauth.orchestrator import OAuthOrchestrator
from crosspost_auth.oauth.strategy import PlatformStrategy
from crosspost_auth.services.context import AuthContext
from crosspost_auth.storage.kv import MemoryKeyedStore
from crosspost_auth.storage.namespaced import NamespacedStore

TEST_ENCRYPTION_KEY = "test-credential-encryption-key-not-real"


# ============================================================================
# FAKE PLATFORM
# ============================================================================

class FakeStrategy(PlatformStrategy):
    """
    In-memory platform strategy.

    Set the *_error attributes to make the next calls fail.
    """

    def __init__(self, user_id: str = "U1"):
        self.user_id = user_id
        self.issued = 0
        self.exchange_calls: List[tuple] = []
        self.refresh_calls = 0
        self.revoked: List[str] = []
        self.build_error: Optional[Exception] = None
        self.exchange_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.revoke_error: Optional[Exception] = None

    async def build_auth_url(self, redirect_uri, scopes) -> AuthorizationRequest:
        if self.build_error:
            raise self.build_error
        self.issued += 1
        state = f"state-{self.issued}"
        return AuthorizationRequest(
            url=f"https://platform.test/authorize?state={state}&scope={'+'.join(scopes)}",
            state=state,
            code_verifier=f"verifier-{self.issued}",
        )

    async def exchange_code(self, code, redirect_uri, code_verifier) -> ExchangeResult:
        if self.exchange_error:
            raise self.exchange_error
        self.exchange_calls.append((code, redirect_uri, code_verifier))
        bundle = CredentialBundle(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
            scope=["tweet.read", "users.read"],
        )
        return ExchangeResult(user_id=self.user_id, bundle=bundle)

    async def refresh_credential(self, bundle) -> CredentialBundle:
        self.refresh_calls += 1
        if self.refresh_error:
            raise self.refresh_error
        return CredentialBundle(
            access_token=f"{bundle.access_token}-r{self.refresh_calls}",
            refresh_token=bundle.refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
            scope=bundle.scope,
        )

    async def revoke_credential(self, bundle) -> None:
        if self.revoke_error:
            raise self.revoke_error
        self.revoked.append(bundle.access_token)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def encryption_key(monkeypatch):
    """Set up encryption key for testing."""
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def settings():
    return AuthSettings(encryption_key=TEST_ENCRYPTION_KEY, environment="test")


@pytest.fixture
def store():
    return MemoryKeyedStore()


@pytest.fixture
def root(store):
    return NamespacedStore(store, "crosspost:")


@pytest.fixture
def encryptor():
    return CredentialEncryptor(TEST_ENCRYPTION_KEY)


@pytest.fixture
def auditor(root):
    return AccessAuditor(root.child("audit/"), environment="test")


@pytest.fixture
def vault(root, encryptor, auditor):
    return TokenVault(root.child("token/"), encryptor, auditor)


@pytest.fixture
def linker(root, vault):
    return IdentityLinker(root.child("wallet-index/"), root.child("wallet-auth/"), vault)


@pytest.fixture
def strategy():
    return FakeStrategy()


@pytest.fixture
def orchestrator(root, vault, linker, strategy):
    return OAuthOrchestrator(
        "demo",
        strategy,
        vault,
        linker,
        root.child("auth/"),
        default_scopes=["tweet.read", "users.read"],
    )


@pytest.fixture
def context(settings, store):
    return AuthContext(settings, store)


@pytest.fixture
def sample_bundle():
    """Sample credential bundle.

    NOTE: Obviously fake token values, to keep secret scanners quiet.
    """
    return CredentialBundle(
        access_token="test_access_token_not_real_xxxxx",
        refresh_token="test_refresh_token_not_real_xxxxx",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        scope=["tweet.read", "tweet.write"],
    )
