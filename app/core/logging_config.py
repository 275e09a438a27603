"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from app.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # Use JSON formatter in production, standard in development
    if settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class HierarchyAuditLogger:
    """Specialized logger for hierarchy and cascade events."""

    def __init__(self) -> None:
        self.logger = get_logger("hierarchy.audit")

    def _emit(self, level: int, message: str, **fields) -> None:
        self.logger.log(level, message, extra={"extra_fields": fields})

    def log_admin_status_change(
        self,
        admin_id: str,
        actor_id: str,
        enabled: bool,
        reason: str | None = None,
    ) -> None:
        """Log an admin being disabled or re-enabled."""
        self._emit(
            logging.INFO,
            f"Admin {admin_id} {'enabled' if enabled else 'disabled'} by {actor_id}",
            event_type="admin_enabled" if enabled else "admin_disabled",
            admin_id=admin_id,
            actor_id=actor_id,
            reason=reason,
        )

    def log_admin_approval(
        self, admin_id: str, actor_id: str, approved: bool, reason: str | None = None
    ) -> None:
        """Log an approval decision on a pending admin."""
        self._emit(
            logging.INFO,
            f"Admin {admin_id} {'approved' if approved else 'rejected'} by {actor_id}",
            event_type="admin_approved" if approved else "admin_rejected",
            admin_id=admin_id,
            actor_id=actor_id,
            reason=reason,
        )

    def log_reassignment(
        self,
        mode: str,
        source_id: str,
        destination_id: str,
        actor_id: str,
        jurisdiction: dict | None = None,
    ) -> None:
        """Log an admin replacement or jurisdiction transfer."""
        self._emit(
            logging.INFO,
            f"Jurisdiction {mode}: {source_id} -> {destination_id} by {actor_id}",
            event_type=f"jurisdiction_{mode}",
            source_id=source_id,
            destination_id=destination_id,
            actor_id=actor_id,
            jurisdiction=jurisdiction,
        )

    def log_delegation(
        self, event_id: str, admin_id: str, target_set: str, added: list[str]
    ) -> None:
        """Log a delegation append on an event."""
        self._emit(
            logging.INFO,
            f"Event {event_id}: {admin_id} delegated {len(added)} new {target_set}",
            event_type="event_delegation",
            event_id=event_id,
            admin_id=admin_id,
            target_set=target_set,
            added=added,
        )

    def log_event_status_change(
        self, event_id: str, actor_id: str, previous: str | None, current: str
    ) -> None:
        """Log an event status transition."""
        self._emit(
            logging.INFO,
            f"Event {event_id} status {previous} -> {current} by {actor_id}",
            event_type="event_status_changed",
            event_id=event_id,
            actor_id=actor_id,
            previous_status=previous,
            status=current,
        )

    def log_access_denied(
        self, actor_id: str | None, action: str, reason: str
    ) -> None:
        """Log a rejected action."""
        self._emit(
            logging.WARNING,
            f"Access denied for {actor_id}: {action}",
            event_type="access_denied",
            actor_id=actor_id,
            action=action,
            reason=reason,
        )


# Global audit logger instance
audit_logger = HierarchyAuditLogger()
