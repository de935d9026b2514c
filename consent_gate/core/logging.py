"""Structured logging configuration."""

import logging
import sys
from typing import Any

from consent_gate.core.config import settings


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

        # Correlation fields passed through `extra=`
        for field in ("request_id", "actor_id", "event_type", "session_id", "consent_request_id"):
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

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


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class AuditLogger:
    """Logger that mirrors persisted audit entries."""

    def __init__(self) -> None:
        self.logger = get_logger("audit")

    def log(
        self,
        event_type: str,
        actor_role: str,
        actor_id: str,
        target_type: str,
        target_id: str,
        success: bool,
        failure_reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log an audit entry."""
        outcome = "ok" if success else f"failed({failure_reason})"
        self.logger.info(
            f"AUDIT: event={event_type} actor={actor_role}:{actor_id} "
            f"target={target_type}:{target_id} outcome={outcome} details={details or {}}",
            extra={"event_type": event_type, "actor_id": actor_id},
        )

    def degraded(self, event_type: str, error: BaseException) -> None:
        """Log an audit entry that could not be persisted."""
        self.logger.warning(
            f"AUDIT SINK DEGRADED: failed to persist event={event_type}: {error!r}",
            extra={"event_type": event_type},
        )


audit_logger = AuditLogger()
