"""
Secret redaction for logs and audit records.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token, token_secret)
- Platform user ids are masked before they are persisted to the audit trail
- Error text is scrubbed before it is stored or logged

Usage:
    from crosspost_auth.credentials.redaction import redact_credential_data

    logger.info("Token response", extra=redact_credential_data(payload))
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"

# Key names that always carry secrets
SECRET_KEY_PATTERNS = [
    "token", "secret", "credential", "bearer", "oauth",
    "api_key", "apikey", "password", "code_verifier", "authorization",
]

# Literal secret shapes that can leak into free text (error messages, URLs)
CREDENTIAL_SECRET_PATTERNS = [
    re.compile(r"(bearer\s+[A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
    re.compile(r"((?:access|refresh)_token=[^&\s]+)", re.IGNORECASE),
    re.compile(r"(code_verifier=[^&\s]+)", re.IGNORECASE),
    re.compile(r"(client_secret=[^&\s]+)", re.IGNORECASE),
    re.compile(r"(AAAAAAAAAAAAAAAAAAAAA[A-Za-z0-9%]+)"),  # X/Twitter app bearer tokens
    re.compile(r"(ya29\.[a-zA-Z0-9_-]+)"),  # Google OAuth tokens
    re.compile(r"(EAA[a-zA-Z0-9]{20,})"),  # Facebook tokens
]

# Fields explicitly allowed through even though they look sensitive
ALLOWED_KEYS = ("token_type", "platform", "operation")

MAX_DEPTH = 10


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    key_lower = key.lower()
    if key_lower in ALLOWED_KEYS:
        return False
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """Redact secret patterns from a string. Non-strings are returned unchanged."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_SECRET_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    if _depth > MAX_DEPTH:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


def redact_user_id(user_id: str) -> str:
    """
    Mask the middle of a platform user id for audit storage.

    Ids of 8 characters or fewer are too short to mask meaningfully and
    are kept as-is.
    """
    if not user_id or len(user_id) <= 8:
        return user_id
    return f"{user_id[:4]}***{user_id[-4:]}"


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        logger.addFilter(CredentialLoggingFilter())
    """

    # LogRecord attributes that never carry user data
    _RESERVED = frozenset(
        vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
    ) | {"message", "asctime"}

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        for key in list(record.__dict__.keys()):
            if key in self._RESERVED:
                continue
            value = record.__dict__[key]
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(value, (str, dict, list)):
                setattr(record, key, redact_credential_data(value))

        return True


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Call this during application startup so every crosspost_auth logger
    carries the redaction filter.
    """
    log_filter = CredentialLoggingFilter()

    credential_loggers = [
        "crosspost_auth.credentials",
        "crosspost_auth.credentials.vault",
        "crosspost_auth.credentials.audit",
        "crosspost_auth.oauth",
        "crosspost_auth.oauth.orchestrator",
        "crosspost_auth.oauth.generic",
        "crosspost_auth.identity.linker",
    ]

    for logger_name in credential_loggers:
        logging.getLogger(logger_name).addFilter(log_filter)

    logger.info("Credential logging configured with redaction filter")
