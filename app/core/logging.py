"""Structured logging configuration."""

import logging
import sys
from typing import Any

from app.core.config import settings

# Extra record attributes promoted into structured output
STRUCTURED_FIELDS = (
    "request_id",
    "user_id",
    "action",
    "patient_id",
    "token_id",
    "actor_id",
    "event",
    "attempt",
)


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured log output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with structured data."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Simple key=value format for readability
        parts = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(parts)


def setup_logging() -> None:
    """Configure application logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_dev:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


# Audit metadata keys whose values never reach log output
REDACTED_METADATA_KEYS = frozenset(
    {"token", "consent_url", "phone", "patient_phone", "phone_e164", "decline_notes", "notes"}
)


def redact_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Copy of audit metadata safe to write to logs."""
    return {
        key: "[redacted]" if key in REDACTED_METADATA_KEYS else value
        for key, value in (metadata or {}).items()
    }


class AuditLogger:
    """Mirrors persisted audit events to the ``audit`` log stream.

    The database row keeps the full metadata; the log line gets a redacted copy.
    """

    def __init__(self) -> None:
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        actor_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str | None,
        patient_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an audit event."""
        self.logger.info(
            f"AUDIT: action={action} actor={actor_type}:{actor_id} "
            f"entity={entity_type}:{entity_id} metadata={redact_metadata(metadata)}",
            extra={"action": action, "patient_id": patient_id},
        )


audit_logger = AuditLogger()
