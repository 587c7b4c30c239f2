"""
Encrypted storage of OAuth credential bundles.

SECURITY REQUIREMENTS:
- Bundles are encrypted before they reach the store
- Decryption or parse failures ALWAYS raise CorruptCredentialError
- Every operation is audited (success and failure)

Key schema (inside the token namespace):
- {platform}/{user_id} -> EncryptedEnvelope (base64 string)

The vault does not interpret expiry. An expired bundle is returned as
stored; refresh and purge decisions belong to the OAuth orchestrator.

Usage:
    vault = TokenVault(store.child("token/"), encryptor, auditor)

    await vault.save("twitter", user_id, bundle)
    bundle = await vault.get("twitter", user_id)
    await vault.delete("twitter", user_id)
"""

import logging

from pydantic import ValidationError

from crosspost_auth.credentials.audit import AccessAuditor, AuditOperation
from crosspost_auth.credentials.encryption import (
    CredentialEncryptor,
    DecryptionError,
)
from crosspost_auth.credentials.models import CredentialBundle
from crosspost_auth.platform.errors import (
    AppError,
    CorruptCredentialError,
    CredentialNotFoundError,
)
from crosspost_auth.storage.kv import KeyedStore

logger = logging.getLogger(__name__)


class TokenVault:
    """Per-(platform, user) credential persistence with envelope encryption."""

    def __init__(self, store: KeyedStore, encryptor: CredentialEncryptor, auditor: AccessAuditor):
        """
        Args:
            store: Store scoped to the token namespace
            encryptor: Envelope encryptor
            auditor: Audit trail writer
        """
        self._store = store
        self._encryptor = encryptor
        self.audit = auditor

    @staticmethod
    def _key(platform: str, user_id: str) -> str:
        return f"{platform}/{user_id}"

    def _decode(self, platform: str, user_id: str, envelope) -> CredentialBundle:
        if not isinstance(envelope, str):
            raise CorruptCredentialError(platform, user_id, "Stored credential has an unexpected type")
        try:
            data = self._encryptor.decrypt(envelope)
            return CredentialBundle.model_validate(data)
        except DecryptionError as e:
            raise CorruptCredentialError(platform, user_id, "Credential failed authentication") from e
        except ValidationError as e:
            raise CorruptCredentialError(platform, user_id, "Credential payload is malformed") from e

    async def get(self, platform: str, user_id: str) -> CredentialBundle:
        """
        Load and decrypt a credential bundle.

        Raises:
            CredentialNotFoundError: No bundle stored
            CorruptCredentialError: Envelope failed authentication or parsing
            StoreUnavailableError: Store could not be read
        """
        try:
            envelope = await self._store.get(self._key(platform, user_id))
            if envelope is None:
                raise CredentialNotFoundError(platform, user_id)
            bundle = self._decode(platform, user_id, envelope)
        except AppError as e:
            await self.audit.record(AuditOperation.GET, user_id, False, error=e.message, platform=platform)
            if isinstance(e, CorruptCredentialError):
                logger.error(
                    "Stored credential is corrupt",
                    extra={"platform": platform, "reason": e.message},
                )
            raise

        await self.audit.record(AuditOperation.GET, user_id, True, platform=platform)
        return bundle

    async def save(self, platform: str, user_id: str, bundle: CredentialBundle) -> None:
        """
        Encrypt and store a bundle, replacing any existing one.

        Concurrent saves for the same key are last-writer-wins.
        """
        try:
            envelope = self._encryptor.encrypt(bundle.model_dump(mode="json"))
            await self._store.set(self._key(platform, user_id), envelope)
        except Exception as e:
            await self.audit.record(AuditOperation.SAVE, user_id, False, error=str(e), platform=platform)
            raise

        await self.audit.record(AuditOperation.SAVE, user_id, True, platform=platform)
        logger.info(
            "Credential stored",
            extra={
                "platform": platform,
                "token_type": bundle.token_type.value,
                "refreshable": bundle.can_refresh,
                "expires_at": bundle.expires_at.isoformat() if bundle.expires_at else None,
            },
        )

    async def delete(self, platform: str, user_id: str) -> None:
        """Remove a bundle. Deleting an absent bundle succeeds."""
        try:
            await self._store.delete(self._key(platform, user_id))
        except AppError as e:
            await self.audit.record(AuditOperation.DELETE, user_id, False, error=e.message, platform=platform)
            raise

        await self.audit.record(AuditOperation.DELETE, user_id, True, platform=platform)
        logger.info("Credential deleted", extra={"platform": platform})

    async def exists(self, platform: str, user_id: str) -> bool:
        """Check for a stored bundle without decrypting it."""
        try:
            found = await self._store.get(self._key(platform, user_id)) is not None
        except AppError as e:
            await self.audit.record(AuditOperation.CHECK, user_id, False, error=e.message, platform=platform)
            raise

        await self.audit.record(AuditOperation.CHECK, user_id, True, platform=platform)
        return found

    async def rewrap(self, platform: str, user_id: str) -> bool:
        """
        Re-encrypt a legacy-format envelope in the current format.

        Returns:
            True if the envelope was rewritten, False if it was absent or
            already current.

        Raises:
            CorruptCredentialError: Envelope cannot be opened
        """
        key = self._key(platform, user_id)
        envelope = await self._store.get(key)
        if envelope is None:
            return False
        if not isinstance(envelope, str):
            raise CorruptCredentialError(platform, user_id, "Stored credential has an unexpected type")

        try:
            opened = self._encryptor.open(envelope)
            bundle = CredentialBundle.model_validate(opened.data)
        except (DecryptionError, ValidationError) as e:
            await self.audit.record(AuditOperation.REWRAP, user_id, False, error=str(e), platform=platform)
            raise CorruptCredentialError(platform, user_id, "Credential failed authentication") from e

        if not opened.legacy:
            return False

        # Only replace the exact envelope we read so a concurrent save wins
        rewritten = await self._store.compare_and_set(
            key, envelope, self._encryptor.encrypt(bundle.model_dump(mode="json"))
        )
        await self.audit.record(AuditOperation.REWRAP, user_id, rewritten, platform=platform)
        if rewritten:
            logger.info("Credential re-encrypted in current format", extra={"platform": platform})
        return rewritten
