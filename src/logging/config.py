"""Logging configuration with JSON formatting."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from src.config import settings

# Full credentials must never reach the logs; lookup prefixes may.
_CREDENTIAL_RE = re.compile(r"\b(mk_(?:live|test)_[a-f0-9]{8})[a-f0-9]{56}\b")


def redact_credentials(text: str) -> str:
    """Replace any full credential in ``text`` with its masked prefix."""
    return _CREDENTIAL_RE.sub(r"\1...", text)


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON.

    Each log record is formatted as a JSON object with the following fields:
    - timestamp: ISO 8601 timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message, with credentials redacted
    - correlation_id: Request correlation ID (if present in extra)
    - Additional fields from the `context` dict passed in `extra`
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as JSON.

        Args:
            record: The log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_credentials(record.getMessage()),
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if hasattr(record, "context"):
            log_data.update(record.context)

        if record.exc_info:
            log_data["exception"] = redact_credentials(
                self.formatException(record.exc_info)
            )

        # File location only at DEBUG level
        if record.levelno == logging.DEBUG:
            log_data["file"] = record.pathname
            log_data["line"] = record.lineno
            log_data["function"] = record.funcName

        return json.dumps(log_data, default=str)


def configure_logging() -> None:
    """
    Configure application logging with JSON formatter.

    Sets up the root logger to output structured JSON logs to stdout.
    Log level is determined by the LOG_LEVEL environment variable.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    # botocore is chatty at DEBUG and may echo request payloads
    logging.getLogger("botocore").setLevel(max(log_level, logging.INFO))

    root_logger.info(
        "Logging configured",
        extra={"context": {"log_level": settings.log_level}},
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: The name of the logger (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
