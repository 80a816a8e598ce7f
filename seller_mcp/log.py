"""
Logging setup - loguru sink with sensitive data redaction.

Modules log through `from loguru import logger` directly; this only decides
where records go and masks credentials and personal data before they do.
"""

import re
import sys
from typing import Any

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def _token_pattern(field: str) -> re.Pattern[str]:
    return re.compile(rf"({field}[\"']?\s*[:=]\s*[\"']?)[\w\-.]+", re.IGNORECASE)


# name -> (pattern, keeps the field prefix as group 1)
REDACTION_PATTERNS: dict[str, tuple[re.Pattern[str], bool]] = {
    "access_token": (_token_pattern("access_?token"), True),
    "refresh_token": (_token_pattern("refresh_?token"), True),
    "client_secret": (_token_pattern("client_?secret"), True),
    "secret_access_key": (_token_pattern("secret_?access_?key"), True),
    "seller_auth_token": (_token_pattern("seller_?auth_?token"), True),
    "credit_card": (re.compile(r"\b(?:\d{4}[ -]?){3}\d{4}\b"), False),
    "email": (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), False),
    "phone": (
        re.compile(r"(?<!\d)(?:\+\d{1,2}\s?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b"),
        False,
    ),
}


def redact_sensitive_data(message: str) -> str:
    """Replace credentials and personal data with [REDACTED_<NAME>] markers."""
    for name, (pattern, keeps_prefix) in REDACTION_PATTERNS.items():
        marker = f"[REDACTED_{name.upper()}]"
        replacement = rf"\g<1>{marker}" if keeps_prefix else marker
        message = pattern.sub(replacement, message)
    return message


def _redact_record(record: dict[str, Any]) -> None:
    record["message"] = redact_sensitive_data(record["message"])


def _passthrough(record: dict[str, Any]) -> None:
    pass


def configure_logging(level: str = "INFO", redact: bool = True, sink: Any = None) -> int:
    """
    Replace loguru's handlers with a single sink.

    Args:
        level: Minimum level name
        redact: Mask sensitive data in every record
        sink: Any loguru sink, stderr by default

    Returns:
        The handler id
    """
    logger.remove()
    logger.configure(patcher=_redact_record if redact else _passthrough)
    return logger.add(sink or sys.stderr, level=level.upper(), format=LOG_FORMAT)
