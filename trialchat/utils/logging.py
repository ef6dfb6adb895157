"""
Structured JSON Logging
Per-turn log context (session_id / turn_id) for streaming chat sessions.
"""
import json
import logging
import sys
from datetime import datetime, timezone
import os

from trialchat.config import LOG_JSON

# Attributes every LogRecord carries; anything else came in through `extra=`
_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

CONTEXT_FIELDS = ("session_id", "turn_id")


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Log format:
    {
        "ts": "2024-01-01T00:00:00+00:00",
        "level": "INFO",
        "logger": "trialchat.services.session.coordinator",
        "message": "...",
        "session_id": "abc",
        "turn_id": "1a2b3c4d",
        "error": null
    }
    """

    def __init__(self, json_output: bool = LOG_JSON, fmt: str = None):
        super().__init__(fmt or "%(asctime)s %(levelname)s [%(name)s] %(message)s")
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        if not self.json_output:
            text = super().format(record)
            context = " ".join(
                f"{name}={getattr(record, name)}" for name in CONTEXT_FIELDS if hasattr(record, name)
            )
            return f"{text} ({context})" if context else text

        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["error"] = self.formatException(record.exc_info)
        elif hasattr(record, "error"):
            log_data["error"] = record.error

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_structured_logging(json_output: bool = LOG_JSON):
    """Setup structured JSON logging."""
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create console handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter(json_output=json_output))
    root_logger.addHandler(handler)

    # Set log level
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    return root_logger
