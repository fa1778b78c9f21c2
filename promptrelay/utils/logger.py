"""
Logging utilities.

WHAT: Centralized logging configuration and secret redaction
WHY: Consistent log format, and credentials must never reach a log verbatim
HOW: Python logging with console and optional file handlers, masking helpers
"""

import logging
import re
import sys
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from ..core.config import settings

SENSITIVE_QUERY_PARAMS = ("key", "token", "auth", "password", "secret")


def setup_logging():
    """
    Configure library logging.

    WHAT: Set up root logger with console and (optional) file handlers
    WHY: Hosts embedding the library get readable provider logs with one call
    HOW: Create handlers with formatters, set levels from config
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # httpx logs full request URLs at INFO, query-string credentials included
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={settings.LOG_LEVEL}, file={settings.LOG_FILE or 'none'})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def mask_secret(value: str | None) -> str:
    """Render a credential as stars plus its last four characters."""
    if not value:
        return "<none>"
    if len(value) <= 4:
        return "***"
    return "*" * 10 + value[-4:]


def sanitize_url(url: str) -> str:
    """
    Redact credential-bearing query parameters from a URL.

    Args:
        url: URL that may carry ?key=... or similar

    Returns:
        URL safe to log
    """
    try:
        parts = urlsplit(url)
        if not parts.query:
            return url
        query = [
            (k, "[REDACTED]" if k.lower() in SENSITIVE_QUERY_PARAMS else v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
        ]
        return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))
    except ValueError:
        return re.sub(
            r'([?&](?:key|token|auth|password|secret))=[^&]*',
            r'\1=[REDACTED]',
            url,
            flags=re.IGNORECASE,
        )
