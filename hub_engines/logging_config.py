"""
Logging configuration for the hub engines service.

Usage:
    from hub_engines.logging_config import setup_logging
    setup_logging()  # Call once at application startup

Environment variables:
    LOG_LEVEL: Set to DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
"""
import logging
import os
import sys
from typing import Any, Dict

# Any key containing one of these is never written to logs, even at DEBUG
SENSITIVE_LOG_KEYS = (
    "client_secret",
    "secret",
    "api_key",
    "key",
    "card",
    "payment_method",
    "stripe",
    "raw",
    "payload",
    "headers",
    "cookies",
    "session",
    "token",
)


def setup_logging(level: str = None) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If not provided, reads from LOG_LEVEL env var, defaults to INFO.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if level not in valid_levels:
        level = "INFO"

    numeric_level = getattr(logging, level)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    logging.getLogger("hub_engines").setLevel(numeric_level)

    # Reduce noise from third-party libraries in non-debug mode
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured at %s level", level)


def safe_log_context(context: Dict[str, Any]) -> Dict[str, Any]:
    """
    Strip a logging context down to scalar, non-sensitive values.

    Payment and webhook code logs dictionaries of ids and statuses. Keys that
    contain a sensitive fragment ("token", "secret", ...) are dropped and
    nested structures are replaced with "[omitted]".
    """
    safe: Dict[str, Any] = {}
    for key, value in (context or {}).items():
        lowered = str(key).lower()
        if any(fragment in lowered for fragment in SENSITIVE_LOG_KEYS):
            continue
        if value is None or isinstance(value, (str, int, float, bool)):
            safe[key] = value
        else:
            safe[key] = "[omitted]"
    return safe
