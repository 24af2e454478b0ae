"""
Administrator review of incident reports and the alerts tied to them.

Verify, Reject and Resolve each update the report status, append a
timestamped note and write an audit entry in one transaction. Resolve also
soft-expires the report's active alerts inside that transaction. Verify
raises its alert afterwards in a separate transaction: if alert creation
fails the status change stays committed and the failure is only logged.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog

from safetransit.config import ReportingConfig, settings
from safetransit.database.connection import DatabaseConnection
from safetransit.database.models import (
    AlertSeverity,
    AlertType,
    ReportStatus,
    ReviewAction,
    SafetyAlert,
)
from safetransit.database.repositories import Repositories
from safetransit.exceptions import (
    DecryptionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from safetransit.governance.audit_logger import AuditLogger
from safetransit.governance.crypto_service import CryptographyService
from safetransit.metrics import ALERTS_CREATED, REVIEW_ACTIONS

logger = structlog.get_logger(__name__)

RESOLVED_MARKER = " (RESOLVED)"
NOTE_TIME_FORMAT = "%Y-%m-%d %H:%M"
MAX_MANUAL_ALERT_HOURS = 168

# Statuses each action may be applied from
ALLOWED_TRANSITIONS = {
    ReviewAction.VERIFY: {ReportStatus.PENDING, ReportStatus.VERIFIED},
    ReviewAction.REJECT: {ReportStatus.PENDING},
    ReviewAction.RESOLVE: {ReportStatus.PENDING, ReportStatus.VERIFIED, ReportStatus.REJECTED},
}

TARGET_STATUS = {
    ReviewAction.VERIFY: ReportStatus.VERIFIED,
    ReviewAction.REJECT: ReportStatus.REJECTED,
    ReviewAction.RESOLVE: ReportStatus.RESOLVED,
}

MANUAL_ALERT_TYPES = {
    AlertSeverity.CRITICAL: AlertType.IMMEDIATE_DANGER,
    AlertSeverity.WARNING: AlertType.SEVERE_WARNING,
    AlertSeverity.INFORMATIONAL: AlertType.INFORMATIONAL,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_report_id(report_id: Any) -> str:
    """Normalize a report id, rejecting anything that is not a UUID."""
    try:
        return str(uuid.UUID(str(report_id)))
    except (TypeError, ValueError):
        raise ValidationError("Invalid report id", field="report_id")


def append_admin_note(existing: Optional[str], actor: str, notes: str, now: datetime) -> str:
    """Append "[actor] YYYY-MM-DD HH:MM: notes" on a new line."""
    entry = f"[{actor}] {now.strftime(NOTE_TIME_FORMAT)}: {notes}"
    return f"{existing}\n{entry}" if existing else entry


class AlertLifecycleService:
    """Applies review actions and manages report-linked alerts."""

    def __init__(
        self,
        db: DatabaseConnection,
        crypto: CryptographyService,
        repositories: Callable[[Any], Repositories] = Repositories,
        clock: Callable[[], datetime] = utc_now,
        config: Optional[ReportingConfig] = None
    ):
        """
        Initialize AlertLifecycleService.

        Args:
            db: Database connection used to open transactions
            crypto: Decrypts report descriptions for administrators
            repositories: Builds the repository bundle for an executor
            clock: Returns the current UTC time
            config: Alert radius and lifetime settings
        """
        self.db = db
        self.crypto = crypto
        self.repositories = repositories
        self._clock = clock
        self.config = config or settings.reporting

    def apply_action(
        self,
        report_id: Any,
        action: Any,
        actor: str,
        admin_notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply Verify, Reject or Resolve to a report.

        Args:
            report_id: Target report
            action: "Verify", "Reject" or "Resolve"
            actor: Administrator identifier recorded in notes and audit log
            admin_notes: Free-text notes

        Returns:
            {"success", "message", "new_status"}

        Raises:
            ValidationError: Unknown action or malformed report id
            InvalidTransitionError: Action not allowed from the current status
            NotFoundError: No such report
        """
        report_id = parse_report_id(report_id)
        try:
            review_action = ReviewAction(action)
        except ValueError:
            raise ValidationError(
                "Invalid action: must be one of Verify, Reject, Resolve", field="action"
            )
        notes = CryptographyService.sanitize_string(admin_notes) or review_action.value
        now = self._clock()

        with self.db.transaction() as tx:
            repos = self.repositories(tx)
            report = repos.reports.get_by_id(report_id)
            if report is None:
                raise NotFoundError("Incident report not found", details={"report_id": report_id})

            current = ReportStatus(report["status"])
            if current not in ALLOWED_TRANSITIONS[review_action]:
                raise InvalidTransitionError(
                    f"Cannot {review_action.value} a report that is {current.value}",
                    field="action",
                    details={"current_status": current.value}
                )

            new_status = TARGET_STATUS[review_action]
            repos.reports.update_review(
                report_id,
                new_status,
                append_admin_note(report.get("admin_notes"), actor, notes, now),
                now
            )
            audit = AuditLogger(repos.audit_logs, self._clock)
            audit.log_status_change(actor, review_action.value, report_id, notes)

            if review_action is ReviewAction.RESOLVE:
                expired = repos.alerts.expire_for_report(report_id, now, RESOLVED_MARKER)
                if expired:
                    audit.log_alerts_expired(actor, report_id, expired)

        REVIEW_ACTIONS.labels(action=review_action.value).inc()
        logger.info(
            "report_status_changed",
            report_id=report_id,
            action=review_action.value,
            previous_status=current.value,
            new_status=new_status.value
        )

        if review_action is ReviewAction.VERIFY and current is not ReportStatus.VERIFIED:
            self._raise_verification_alert(report, actor, now)

        if current is new_status:
            message = f"Report already {new_status.value}; note recorded."
        else:
            message = f"Report status updated to {new_status.value}."
        return {"success": True, "message": message, "new_status": new_status.value}

    def _raise_verification_alert(self, report: Dict[str, Any], actor: str, now: datetime) -> Optional[int]:
        severity = report["severity"]
        radius = report.get("radius_km") or self.config.default_alert_radius_km
        try:
            with self.db.transaction() as tx:
                repos = self.repositories(tx)
                alert_id = repos.alerts.create(SafetyAlert(
                    report_id=report["report_id"],
                    alert_type=AlertType.for_severity(severity).value,
                    severity=severity,
                    message=f"Verified report of a **{severity}** incident in the area.",
                    location_radius_km=float(radius),
                    sent_at=now,
                    expires_at=now + timedelta(hours=self.config.verification_alert_ttl_hours),
                ))
                AuditLogger(repos.audit_logs, self._clock).log_alert_created(
                    actor, alert_id, str(report["report_id"])
                )
        except Exception as e:
            logger.error(
                "verification_alert_failed",
                report_id=str(report["report_id"]),
                error_type=type(e).__name__
            )
            return None

        ALERTS_CREATED.labels(trigger="verification").inc()
        logger.info("verification_alert_created", report_id=str(report["report_id"]), alert_id=alert_id)
        return alert_id

    def get_report_detail(self, report_id: Any) -> Dict[str, Any]:
        """
        Full report for administrators, with the description decrypted.

        Raises:
            NotFoundError: No such report
            DecryptionError: The stored description failed to decrypt
        """
        report_id = parse_report_id(report_id)
        repos = self.repositories(self.db)
        report = repos.reports.get_by_id(report_id)
        if report is None:
            raise NotFoundError("Incident report not found", details={"report_id": report_id})

        try:
            description = self.crypto.decrypt(report["description"])
        except DecryptionError as e:
            logger.error(
                "report_decryption_failed",
                report_id=report_id,
                error_type=type(e).__name__
            )
            raise

        return {
            **report,
            "report_id": str(report["report_id"]),
            "description": description,
            "alerts": repos.alerts.find_by_report(report_id),
        }

    def delete_report(self, report_id: Any, actor: str) -> Dict[str, Any]:
        """
        Delete a report with its alerts and location.

        Raises:
            NotFoundError: No such report
        """
        report_id = parse_report_id(report_id)
        with self.db.transaction() as tx:
            repos = self.repositories(tx)
            report = repos.reports.get_by_id(report_id)
            if report is None:
                raise NotFoundError("Incident report not found", details={"report_id": report_id})

            alerts_deleted = repos.alerts.delete_for_report(report_id)
            repos.reports.delete(report_id)
            repos.locations.delete(report["location_id"])
            AuditLogger(repos.audit_logs, self._clock).log_report_deleted(
                actor, report_id, f"{alerts_deleted} alert(s) removed"
            )

        logger.info("report_deleted", report_id=report_id, alerts_deleted=alerts_deleted)
        return {"success": True, "message": "Incident report deleted.", "alerts_deleted": alerts_deleted}

    def create_manual_alert(
        self,
        actor: str,
        severity: Any,
        message: Any,
        report_id: Any = None,
        radius_km: Optional[float] = None,
        duration_hours: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Create an alert by hand, optionally linked to a report.

        An alert without a report applies everywhere.

        Raises:
            ValidationError: Bad severity, message, radius or duration
            NotFoundError: The linked report does not exist
        """
        try:
            alert_severity = AlertSeverity(severity)
        except ValueError:
            raise ValidationError(
                "Invalid severity: must be one of Critical, Warning, Informational",
                field="severity"
            )

        text = CryptographyService.sanitize_string(message if isinstance(message, str) else None)
        if not text:
            raise ValidationError("Alert message is required", field="message")

        radius = self.config.default_alert_radius_km if radius_km is None else float(radius_km)
        if not 0 < radius <= settings.proximity.radius_max_km:
            raise ValidationError("Invalid alert radius", field="radius_km")

        hours = self.config.verification_alert_ttl_hours if duration_hours is None else float(duration_hours)
        if not 0 < hours <= MAX_MANUAL_ALERT_HOURS:
            raise ValidationError("Invalid alert duration", field="duration_hours")

        linked_id = parse_report_id(report_id) if report_id else None
        now = self._clock()

        with self.db.transaction() as tx:
            repos = self.repositories(tx)
            if linked_id and repos.reports.get_by_id(linked_id) is None:
                raise NotFoundError("Incident report not found", details={"report_id": linked_id})

            alert = SafetyAlert(
                report_id=linked_id,
                alert_type=MANUAL_ALERT_TYPES[alert_severity].value,
                severity=alert_severity.value,
                message=text,
                location_radius_km=radius,
                sent_at=now,
                expires_at=now + timedelta(hours=hours),
            )
            alert_id = repos.alerts.create(alert)
            AuditLogger(repos.audit_logs, self._clock).log_alert_created(actor, alert_id, linked_id)

        ALERTS_CREATED.labels(trigger="manual").inc()
        logger.info("manual_alert_created", alert_id=alert_id, report_id=linked_id)
        return {
            "success": True,
            "alert_id": alert_id,
            "alert_type": alert.alert_type,
            "expires_at": alert.expires_at,
        }
