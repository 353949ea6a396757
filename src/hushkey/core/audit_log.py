# HushKey: Audit Logging
#
# Append-only structured audit trail for security-relevant operations:
# backup export, restore, container validation and vault unlock.
# Events are rendered as JSON lines by structlog into daily files
# (audit_YYYY-MM-DD.log). Keys, PINs and passwords are never logged.

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of audit events."""

    # Backup Events
    BACKUP_CREATED = "backup.created"
    BACKUP_FAILED = "backup.failed"
    BACKUP_RESTORED = "backup.restored"
    BACKUP_RESTORE_FAILED = "backup.restore_failed"
    BACKUP_VALIDATED = "backup.validated"

    # Vault Events
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"

    # API Events
    SESSION_ROTATED = "session.rotated"


class EventSeverity(str, Enum):
    """Severity levels for audit events."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    CRITICAL = "critical"


_LEVELS = {
    EventSeverity.INFO: logging.INFO,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.ALERT: logging.WARNING,
    EventSeverity.CRITICAL: logging.ERROR,
}


class AuditLogger:
    """
    Append-only audit logger.

    Each instance owns a dedicated stdlib logger with a single file handler
    pointing at today's log file, wrapped by structlog for JSON rendering.

    Args:
        log_dir: Directory for audit logs (default: ./audit_logs)
    """

    LOGGER_NAME = "hushkey.audit"

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{datetime.now().strftime('%Y-%m-%d')}.log"

        self._stdlib_logger = logging.getLogger(f"{self.LOGGER_NAME}.{id(self):x}")
        self._stdlib_logger.setLevel(logging.INFO)
        self._stdlib_logger.propagate = False
        handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))  # structlog renders
        self._stdlib_logger.addHandler(handler)
        self._handler = handler

        self.logger = structlog.wrap_logger(
            self._stdlib_logger,
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
        )

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append an audit event.

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.log(
            _LEVELS[severity],
            "audit_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            details=details or {},
        )
        self._handler.flush()
        return event_id

    def log_backup_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """Log a backup lifecycle event."""
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Backup: {message}",
            details=details,
        )

    def recent_events(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Return up to `limit` events from today's log file, newest last."""
        if not self.log_file.exists():
            return []
        events = []
        for line in self.log_file.read_text(encoding="utf-8").splitlines():
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events[-limit:]

    def close(self) -> None:
        self._stdlib_logger.removeHandler(self._handler)
        self._handler.close()


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def set_audit_logger(instance: Optional[AuditLogger]) -> None:
    """Replace the singleton (for testing and CLI configuration)."""
    global _audit_logger
    _audit_logger = instance


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs,
) -> str:
    """
    Convenience function for logging audit events.

    Usage:
        log_security_event(
            EventType.BACKUP_CREATED,
            EventSeverity.INFO,
            "HKB backup created",
            details={"item_count": 12, "size_bytes": 4096},
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)

