"""PKCE (RFC 7636) helpers, S256 method only."""

import base64
import hashlib
import secrets

# 64 bytes of entropy -> 86 url-safe characters, inside the 43..128 range
VERIFIER_BYTES = 64
STATE_BYTES = 32


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(VERIFIER_BYTES)


def code_challenge(verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    return secrets.token_urlsafe(STATE_BYTES)
