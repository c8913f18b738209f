"""Identifier redaction for application logs.

User and responder identifiers are replaced by a short salted digest
before they reach a log record. The digest is stable within a process so
log lines for the same user can still be correlated.
"""
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)


_LOG_SALT: str = ""


def configure_log_salt(salt: str) -> None:
    """Configure the salt mixed into redacted identifiers.

    Args:
        salt: Secret salt value; at least 16 characters

    Raises:
        ValueError: If salt is empty or too short
    """
    global _LOG_SALT
    if not salt or len(salt) < 16:
        logger.error(
            "LOG_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": 16}
        )
        raise ValueError("Log salt must be at least 16 characters")

    _LOG_SALT = salt
    logger.info("LOG_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def redact_id(value: Optional[str]) -> Optional[str]:
    """Return a 12-char digest of an identifier, or None for None.

    Example:
        >>> redact_id("user_123")
        'id_3f1c0a9be2d4'
    """
    if value is None:
        return None
    salted = f"{_LOG_SALT}{value}"
    return "id_" + hashlib.sha256(salted.encode()).hexdigest()[:12]
