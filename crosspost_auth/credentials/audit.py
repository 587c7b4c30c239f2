"""
Append-only audit trail of token vault operations.

Every vault get/save/delete/check writes one AuditRecord into the audit
namespace, keyed by a zero-padded nanosecond timestamp so that key order is
chronological order.

SECURITY:
- User ids are masked (first 4 + *** + last 4) before they are written
- Error text is scrubbed of token-shaped strings
- Token values are NEVER passed to the auditor

The auditor never raises: a failed audit write is reported through the
module logger and the vault operation proceeds.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from crosspost_auth.config import DEFAULT_AUDIT_LOG_LIMIT
from crosspost_auth.credentials.redaction import redact_credential_value, redact_user_id
from crosspost_auth.storage.kv import KeyedStore

logger = logging.getLogger(__name__)


class AuditOperation(str, Enum):
    """Token vault operations recorded in the audit trail."""
    GET = "get"
    SAVE = "save"
    DELETE = "delete"
    CHECK = "check"
    REWRAP = "rewrap"


class AuditRecord(BaseModel):
    """Single audit trail entry."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    operation: AuditOperation
    user_id: str
    success: bool
    error: Optional[str] = None
    platform: Optional[str] = None


class AccessAuditor:
    """Writes and reads vault audit records through a namespaced store."""

    def __init__(
        self,
        store: KeyedStore,
        environment: str = "development",
        default_limit: int = DEFAULT_AUDIT_LOG_LIMIT,
    ):
        """
        Args:
            store: Store scoped to the audit namespace
            environment: Records are echoed to the local log outside production
            default_limit: Records returned by recent() when no limit is given
        """
        if default_limit <= 0:
            raise ValueError("default_limit must be positive")
        self._store = store
        self.default_limit = default_limit
        self._echo = environment.lower() != "production"
        self._last_ns = 0

    def _next_key(self) -> str:
        # Strictly increasing within a process; the random suffix separates processes
        self._last_ns = max(time.time_ns(), self._last_ns + 1)
        return f"{self._last_ns:020d}-{secrets.token_hex(4)}"

    async def record(
        self,
        operation: AuditOperation,
        user_id: str,
        success: bool,
        error: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> None:
        """Append one audit record. Never raises."""
        try:
            entry = AuditRecord(
                operation=operation,
                user_id=redact_user_id(user_id),
                success=success,
                error=redact_credential_value(error) if error else None,
                platform=platform,
            )
            await self._store.set(self._next_key(), entry.model_dump(mode="json"))

            if self._echo:
                logger.info(
                    "Token access",
                    extra={
                        "operation": entry.operation.value,
                        "user_id": entry.user_id,
                        "success": entry.success,
                        "platform": entry.platform,
                        "error": entry.error,
                    },
                )
        except Exception:
            logger.warning(
                "Failed to write audit record",
                extra={"operation": getattr(operation, "value", operation), "platform": platform},
                exc_info=True,
            )

    async def recent(self, limit: Optional[int] = None) -> List[AuditRecord]:
        """
        Most recent audit records, newest first.

        Returns [] if the store cannot be read.
        """
        if limit is None:
            limit = self.default_limit
        try:
            entries = await self._store.list("", reverse=True, limit=limit)
        except Exception:
            logger.warning("Failed to read audit records", exc_info=True)
            return []

        records: List[AuditRecord] = []
        for entry in entries:
            try:
                records.append(AuditRecord.model_validate(entry.value))
            except ValidationError:
                logger.warning("Skipping malformed audit record", extra={"key": entry.key})
        return records
