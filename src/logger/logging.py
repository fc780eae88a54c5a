# src/logger/logging.py
# Centralized logging configuration
# Every module gets its logger from get_logger(__name__); setup_logging()
# decides format, level and destination once for the whole process.
#
# Components log structured events: a message plus key/value fields passed
# through `extra=fields(...)`. The ContextFilter renders those fields after
# the message, so sinks that only understand text still get everything.
# Note: the package is named 'logger' to avoid shadowing the stdlib 'logging'.

import logging
import sys
from typing import Any, Dict, Optional

# Attribute on LogRecord that carries structured fields
FIELDS_ATTR = "fields"

LOG_FORMAT = (
    "%(asctime)s - [%(correlation_id)s] - %(name)s - %(levelname)s - %(message)s%(fields_text)s"
)


def fields(**values: Any) -> Dict[str, Dict[str, Any]]:
    """
    Build the `extra` mapping for a structured log call.

    Example:
        logger.info("Query executed", extra=fields(query_id=qid, duration_ms=12.5))
    """
    return {FIELDS_ATTR: values}


def render_fields(values: Optional[Dict[str, Any]]) -> str:
    """Render structured fields as ' | key=value key=value' (empty if none)."""
    if not values:
        return ""
    return " | " + " ".join(f"{key}={value}" for key, value in values.items())


class ContextFilter(logging.Filter):
    """
    Stamp every record with the current correlation ID and its rendered fields.

    Records without a correlation ID get "-" so the format string never fails.
    """

    def filter(self, record):
        try:
            from tracking.correlation import get_correlation_id
            record.correlation_id = get_correlation_id() or "-"
        except ImportError:
            record.correlation_id = "-"

        record.fields_text = render_fields(getattr(record, FIELDS_ATTR, None))
        return True


def setup_logging(level: Optional[str] = None):
    """
    Configure logging for the entire application.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
               If None, uses settings.app.log_level.
    """
    try:
        from config import settings
        log_level = level or settings.app.log_level
    except ImportError:
        log_level = level or "INFO"

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ContextFilter())

    # force=True so a second call (tests, scripts) replaces the handler
    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)


def get_logger(name: Optional[str] = None):
    """
    Get a logger for a module.

    Args:
        name: Usually __name__ of the calling module. None means the root logger.

    Returns:
        A standard logging.Logger
    """
    return logging.getLogger(name)


# Configure on first import so every entry point logs the same way
setup_logging()
