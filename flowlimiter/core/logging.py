"""Logging for the flow limiter.

The package only emits records under the ``flowlimiter`` logger and leaves
output to the embedding application. Call ``setup_logging`` to opt into the
package's own console handler.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from flowlimiter.core.config import settings

LOGGER_NAME = "flowlimiter"

# Extra fields the limiters attach to their records
CONTEXT_FIELDS = ("limiter", "action_id", "bucket", "store_key", "operation")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT
    + " - limiter=%(limiter)s - action_id=%(action_id)s"
    + " - bucket=%(bucket)s - store_key=%(store_key)s"
)

logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

_console_handler: Optional[logging.Handler] = None


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line.

    Only the limiter context fields are emitted besides the basics; other
    ``extra`` values are left out.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Fill in missing context fields so ``%(limiter)s`` style formats work."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def build_formatter(log_format: str) -> logging.Formatter:
    """Return the formatter for a ``log_format`` setting value."""
    if log_format == "json":
        return JSONFormatter()
    if log_format == "structured":
        return logging.Formatter(STRUCTURED_FORMAT)
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """Attach a console handler to the ``flowlimiter`` logger.

    Calling it again replaces the handler installed by the previous call.
    The root logger is left alone.

    Args:
        level: Log level name, defaults to ``settings.log_level``
        log_format: text, structured or json, defaults to ``settings.log_format``
        stream: Output stream, defaults to stderr

    Returns:
        The installed handler.
    """
    global _console_handler

    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    logger = logging.getLogger(LOGGER_NAME)
    if _console_handler is not None:
        logger.removeHandler(_console_handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(build_formatter(log_format))
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    logger.setLevel(level)
    _console_handler = handler
    return handler


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping fields that are None.

    Example:
        >>> logger.debug(
        ...     "Action admitted",
        ...     extra=get_log_context(limiter="sliding_window", action_id="read_topic:10089"),
        ... )
    """
    return {key: value for key, value in fields.items() if value is not None}
