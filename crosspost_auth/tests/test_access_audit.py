"""
Access audit and log redaction tests.

CRITICAL: These tests verify:
1. User ids are masked before they are written
2. Tokens NEVER appear in audit records or logs
3. The auditor never raises
"""

import logging
from io import StringIO
from unittest.mock import AsyncMock

import pytest

from crosspost_auth.credentials.audit import AccessAuditor, AuditOperation
from crosspost_auth.credentials.redaction import (
    REDACTED_VALUE,
    CredentialLoggingFilter,
    is_credential_secret_key,
    redact_credential_data,
    redact_credential_value,
    redact_user_id,
)
from crosspost_auth.storage.kv import MemoryKeyedStore


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def log_capture():
    """Capture log output for testing token leakage."""
    log_stream = StringIO()
    handler = logging.StreamHandler(log_stream)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
    handler.addFilter(CredentialLoggingFilter())

    logger = logging.getLogger("test_credentials")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield log_stream

    logger.removeHandler(handler)


# ============================================================================
# TEST SUITE: USER ID REDACTION
# ============================================================================

class TestRedactUserId:

    @pytest.mark.parametrize("user_id,expected", [
        ("1234567890", "1234***7890"),
        ("alice.near.account", "alic***ount"),
        ("123456789", "1234***6789"),
        ("12345678", "12345678"),
        ("U1", "U1"),
        ("", ""),
    ])
    def test_masking(self, user_id, expected):
        assert redact_user_id(user_id) == expected


# ============================================================================
# TEST SUITE: SECRET REDACTION
# ============================================================================

class TestSecretRedaction:

    @pytest.mark.parametrize("key", [
        "access_token", "refresh_token", "token_secret", "client_secret",
        "Authorization", "code_verifier", "oauth_token",
    ])
    def test_secret_keys_detected(self, key):
        assert is_credential_secret_key(key)

    @pytest.mark.parametrize("key", [
        "platform", "user_id", "token_type", "operation", "scope", "refreshable",
    ])
    def test_safe_keys_not_flagged(self, key):
        assert not is_credential_secret_key(key)

    def test_bearer_header_redacted(self):
        text = "request failed with Authorization: Bearer abc.def-123"
        result = redact_credential_value(text)
        assert "abc.def-123" not in result
        assert REDACTED_VALUE in result

    def test_query_string_tokens_redacted(self):
        text = "POST refresh_token=test_refresh_not_real&client_id=app"
        result = redact_credential_value(text)
        assert "test_refresh_not_real" not in result
        assert "client_id=app" in result

    def test_nested_data_redacted(self):
        data = {
            "platform": "twitter",
            "response": {"access_token": "secret", "scope": ["tweet.read"]},
            "history": [{"refresh_token": "secret2"}],
        }
        result = redact_credential_data(data)
        assert result["platform"] == "twitter"
        assert result["response"]["access_token"] == REDACTED_VALUE
        assert result["response"]["scope"] == ["tweet.read"]
        assert result["history"][0]["refresh_token"] == REDACTED_VALUE
        assert data["response"]["access_token"] == "secret"

    def test_logging_filter_redacts_extra_fields(self, log_capture):
        logger = logging.getLogger("test_credentials")
        logger.info("Token refreshed: Bearer leaked-value", extra={"access_token": "leaked-extra"})

        output = log_capture.getvalue()
        assert "leaked-value" not in output
        assert "leaked-extra" not in output

    def test_logging_filter_redacts_args(self, log_capture):
        logger = logging.getLogger("test_credentials")
        logger.info("Payload %s", "access_token=leaked-arg")
        assert "leaked-arg" not in log_capture.getvalue()

    def test_logging_filter_keeps_vault_metadata(self):
        record = logging.makeLogRecord({
            "msg": "Credential stored",
            "platform": "twitter",
            "token_type": "oauth2",
            "refreshable": True,
        })

        assert CredentialLoggingFilter().filter(record)
        assert record.refreshable is True
        assert record.token_type == "oauth2"


# ============================================================================
# TEST SUITE: ACCESS AUDITOR
# ============================================================================

class TestAccessAuditor:

    @pytest.fixture
    def store(self):
        return MemoryKeyedStore()

    @pytest.fixture
    def auditor(self, store):
        return AccessAuditor(store, environment="production")

    @pytest.mark.asyncio
    async def test_record_written_with_redacted_user(self, auditor, store):
        await auditor.record(AuditOperation.SAVE, "9876543210", True, platform="twitter")

        [entry] = await store.list("")
        assert entry.value["user_id"] == "9876***3210"
        assert entry.value["operation"] == "save"
        assert entry.value["success"] is True
        assert entry.value["platform"] == "twitter"

    @pytest.mark.asyncio
    async def test_error_text_redacted(self, auditor):
        await auditor.record(
            AuditOperation.GET, "U1", False, error="upstream said Bearer leaked.token"
        )
        [record] = await auditor.recent()
        assert "leaked.token" not in record.error

    @pytest.mark.asyncio
    async def test_recent_newest_first_and_bounded(self, auditor):
        for i in range(5):
            await auditor.record(AuditOperation.CHECK, f"user-{i}", True)

        records = await auditor.recent(limit=3)
        assert [r.user_id for r in records] == ["user-4", "user-3", "user-2"]

    @pytest.mark.asyncio
    async def test_recent_uses_configured_default_limit(self, store):
        auditor = AccessAuditor(store, environment="production", default_limit=2)
        for i in range(4):
            await auditor.record(AuditOperation.CHECK, f"user-{i}", True)

        records = await auditor.recent()
        assert [r.user_id for r in records] == ["user-3", "user-2"]

    @pytest.mark.asyncio
    async def test_keys_sort_chronologically(self, auditor, store):
        for _ in range(20):
            await auditor.record(AuditOperation.GET, "u", True)
        keys = [e.key for e in await store.list("")]
        stamps = [k.split("-")[0] for k in keys]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 20

    @pytest.mark.asyncio
    async def test_record_never_raises(self, auditor, store, caplog):
        store.set = AsyncMock(side_effect=ConnectionError("store down"))
        with caplog.at_level(logging.WARNING, logger="crosspost_auth.credentials.audit"):
            await auditor.record(AuditOperation.DELETE, "U1", True)
        assert "Failed to write audit record" in caplog.text

    @pytest.mark.asyncio
    async def test_recent_returns_empty_on_store_failure(self, auditor, store):
        store.list = AsyncMock(side_effect=ConnectionError("store down"))
        assert await auditor.recent() == []

    @pytest.mark.asyncio
    async def test_malformed_records_skipped(self, auditor, store):
        await auditor.record(AuditOperation.GET, "U1", True)
        await store.set("99999999999999999999-zzzz", {"unexpected": True})
        records = await auditor.recent()
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_non_production_echoes_to_log(self, store, caplog):
        auditor = AccessAuditor(store, environment="development")
        with caplog.at_level(logging.INFO, logger="crosspost_auth.credentials.audit"):
            await auditor.record(AuditOperation.GET, "1234567890", True, platform="twitter")
        assert "Token access" in caplog.text
        assert "1234567890" not in caplog.text

    @pytest.mark.asyncio
    async def test_production_does_not_echo(self, auditor, caplog):
        with caplog.at_level(logging.INFO, logger="crosspost_auth.credentials.audit"):
            await auditor.record(AuditOperation.GET, "U1", True)
        assert "Token access" not in caplog.text
