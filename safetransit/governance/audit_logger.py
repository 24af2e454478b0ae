"""
Audit logging of administrative actions on incident reports and alerts.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from safetransit.database.models import AuditLog
from safetransit.database.repositories import AuditLogRepository
from safetransit.logging_config import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogger:
    """
    Records who did what to which report.

    Entries are written through the given repository, so when the repository
    is bound to a transaction the entry commits or rolls back with the
    action it describes. Every entry is also emitted to the structured log.
    Notes are free text written by administrators; report descriptions are
    never passed here.
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the AuditLogger.

        Args:
            repository: Audit log repository to write entries through
            clock: Returns the current UTC time
        """
        self.repository = repository
        self._clock = clock

    def _write_audit_entry(
        self,
        actor: str,
        action: str,
        report_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> int:
        entry = AuditLog(
            actor=actor,
            action=action,
            report_id=report_id,
            notes=notes,
            created_at=self._clock()
        )
        entry_id = self.repository.create(entry)

        logger.info(
            "audit_entry",
            audit_id=entry_id,
            actor=actor,
            action=action,
            report_id=str(report_id) if report_id else None
        )
        return entry_id

    def log_status_change(self, actor: str, action: str, report_id: str, notes: Optional[str]) -> int:
        """
        Log a Verify/Reject/Resolve action.

        Args:
            actor: Administrator identifier, e.g. "Admin - 42"
            action: Action name
            report_id: Target report
            notes: Administrator notes
        """
        return self._write_audit_entry(
            actor, f"INCIDENT_STATUS_CHANGE_{action.upper()}", report_id, notes
        )

    def log_alert_created(self, actor: str, alert_id: int, report_id: Optional[str]) -> int:
        return self._write_audit_entry(
            actor, "SAFETY_ALERT_CREATED", report_id, f"Alert {alert_id} created"
        )

    def log_alerts_expired(self, actor: str, report_id: str, count: int) -> int:
        return self._write_audit_entry(
            actor, "SAFETY_ALERT_EXPIRED", report_id, f"{count} active alert(s) expired"
        )

    def log_report_deleted(self, actor: str, report_id: str, notes: Optional[str] = None) -> int:
        return self._write_audit_entry(actor, "INCIDENT_DELETED", report_id, notes)
