"""
Envelope encryption for credential bundles at rest.

Implements AES-GCM with a versioned wire format:

    base64( [version: 1 byte][nonce: 12 bytes][ciphertext || tag: 16 bytes] )

SECURITY:
- Each encryption uses a unique random nonce
- Authentication tag mismatch ALWAYS fails (no partial plaintext)
- Unknown version bytes fail closed
- Only FORMAT_VERSION is ever written. The legacy unversioned layout
  ([nonce][ciphertext || tag]) is readable for migration only.

Key derivation:
- Secrets that are already 16, 24 or 32 bytes of UTF-8 are used as-is
  (AES-128/192/256)
- Anything else is hashed with SHA-256 to a 32-byte key

Usage:
    from crosspost_auth.credentials.encryption import CredentialEncryptor

    encryptor = CredentialEncryptor(settings.encryption_key)
    envelope = encryptor.encrypt({"access_token": "secret"})
    data = encryptor.decrypt(envelope)
"""

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)


# AES-GCM constants
NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for derived keys
ACCEPTED_KEY_SIZES = (16, 24, 32)

FORMAT_VERSION = 0x01


class EncryptionError(Exception):
    """Raised when encryption fails."""
    pass


class DecryptionError(Exception):
    """Raised when an envelope cannot be authenticated or parsed."""
    pass


class InvalidKeyError(Exception):
    """Raised when encryption key is invalid."""
    pass


@dataclass
class OpenedEnvelope:
    """Decrypted payload plus the wire format it was read from."""
    data: Dict[str, Any]
    legacy: bool = False


def derive_key(secret: str) -> bytes:
    """
    Derive an AES key from the configured secret.

    Args:
        secret: Configured encryption secret

    Returns:
        16, 24 or 32 byte key

    Raises:
        InvalidKeyError: If secret is empty
    """
    if not secret:
        raise InvalidKeyError("Encryption key is required")

    raw = secret.encode("utf-8")
    if len(raw) in ACCEPTED_KEY_SIZES:
        return raw

    digest = hashes.Hash(hashes.SHA256())
    digest.update(raw)
    return digest.finalize()


class CredentialEncryptor:
    """
    AES-GCM encryptor producing versioned envelopes.

    SECURITY:
    - Never reuse nonces with the same key
    - Store the secret securely (never in code or logs)
    """

    def __init__(self, secret: str, allow_legacy_reads: bool = True):
        """
        Args:
            secret: Encryption secret from configuration
            allow_legacy_reads: Accept unversioned envelopes on decrypt

        Raises:
            InvalidKeyError: If secret is missing
        """
        self._aesgcm = AESGCM(derive_key(secret))
        self.allow_legacy_reads = allow_legacy_reads

    @staticmethod
    def generate_key_string() -> str:
        """Generate a random secret suitable for ENCRYPTION_KEY."""
        return secrets.token_urlsafe(KEY_SIZE)

    @staticmethod
    def generate_nonce() -> bytes:
        return secrets.token_bytes(NONCE_SIZE)

    def encrypt(self, data: Dict[str, Any]) -> str:
        """
        Encrypt a JSON-serializable dict into a current-format envelope.

        Raises:
            EncryptionError: If serialization or encryption fails
        """
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
            nonce = self.generate_nonce()
            ciphertext_with_tag = self._aesgcm.encrypt(nonce, plaintext, None)
            blob = bytes([FORMAT_VERSION]) + nonce + ciphertext_with_tag
            return base64.b64encode(blob).decode("ascii")
        except (TypeError, ValueError) as e:
            logger.error("Encryption failed", extra={"error_type": type(e).__name__})
            raise EncryptionError(f"Failed to encrypt data: {type(e).__name__}") from e

    def decrypt(self, envelope: str) -> Dict[str, Any]:
        """
        Decrypt an envelope.

        Raises:
            DecryptionError: On any authentication, version or parse failure
        """
        return self.open(envelope).data

    def open(self, envelope: str) -> OpenedEnvelope:
        """Decrypt an envelope and report whether it used the legacy layout."""
        try:
            blob = base64.b64decode(envelope, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise DecryptionError("Envelope is not valid base64") from e

        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Envelope is too short")

        if blob[0] == FORMAT_VERSION and len(blob) >= 1 + NONCE_SIZE + TAG_SIZE:
            try:
                return OpenedEnvelope(data=self._open_raw(blob[1:]), legacy=False)
            except DecryptionError:
                # A legacy nonce can start with the version byte by chance
                if not self.allow_legacy_reads:
                    raise

        if not self.allow_legacy_reads:
            logger.error("Unsupported envelope version", extra={"version": blob[0]})
            raise DecryptionError(f"Unsupported envelope version: {blob[0]}")

        data = self._open_raw(blob)
        logger.info("Read credential envelope in legacy format")
        return OpenedEnvelope(data=data, legacy=True)

    def _open_raw(self, body: bytes) -> Dict[str, Any]:
        nonce = body[:NONCE_SIZE]
        ciphertext_with_tag = body[NONCE_SIZE:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext_with_tag, None)
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch")
            raise DecryptionError(
                "Decryption failed: data may have been tampered with"
            )

        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError("Decrypted data is not valid JSON") from e

        if not isinstance(data, dict):
            raise DecryptionError("Decrypted data is not an object")
        return data
