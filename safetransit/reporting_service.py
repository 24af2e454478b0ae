"""
Anonymous incident report submission.

AnonymousReportingService validates a raw payload, encrypts the free-text
description, derives an anonymous hash from non-identifying seed material,
and stores location, report and (for Critical reports) an emergency alert in
one transaction.
"""

import secrets
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog

from safetransit.config import settings
from safetransit.database.connection import DatabaseConnection
from safetransit.database.models import (
    AlertType,
    IncidentReport,
    Location,
    ReportStatus,
    SafetyAlert,
    Severity,
)
from safetransit.database.repositories import Repositories
from safetransit.exceptions import PersistenceError, ValidationError
from safetransit.governance.crypto_service import CryptographyService
from safetransit.ingestion.validation import ReportValidator, ValidatedReport
from safetransit.metrics import ALERTS_CREATED, REPORTS_REJECTED, REPORTS_SUBMITTED

logger = structlog.get_logger(__name__)

SUCCESS_MESSAGE = "Incident reported successfully. Thank you for making transport safer."
CRITICAL_ALERT_MESSAGE = "CRITICAL SAFETY INCIDENT: Authorities are dispatched to the area."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReportSubmissionResult:
    """Outcome of a submission; failures carry an error label and HTTP status."""
    success: bool
    message: str
    report_id: Optional[str] = None
    error: Optional[str] = None
    field: Optional[str] = None
    status_code: int = 200

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AnonymousReportingService:
    """
    Stores anonymous incident reports.

    Nothing that identifies the submitter is accepted or derived: the
    anonymous hash is seeded from the generated report id, the current time
    and a random value.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        crypto: CryptographyService,
        repositories: Callable[[Any], Repositories] = Repositories,
        validator: Optional[ReportValidator] = None,
        clock: Callable[[], datetime] = utc_now,
        alert_radius_km: Optional[float] = None,
        alert_ttl_hours: Optional[float] = None
    ):
        """
        Initialize AnonymousReportingService.

        Args:
            db: Database connection used to open transactions
            crypto: Cryptography service for encryption and hashing
            repositories: Builds the repository bundle for a transaction
            validator: Payload validator
            clock: Returns the current UTC time
            alert_radius_km: Radius of the alert raised for Critical reports
            alert_ttl_hours: Lifetime of the alert raised for Critical reports
        """
        self.db = db
        self.crypto = crypto
        self.repositories = repositories
        self.validator = validator or ReportValidator()
        self._clock = clock
        self.alert_radius_km = (
            alert_radius_km if alert_radius_km is not None
            else settings.reporting.submission_alert_radius_km
        )
        self.alert_ttl = timedelta(
            hours=alert_ttl_hours if alert_ttl_hours is not None
            else settings.reporting.submission_alert_ttl_hours
        )

    def submit_report(self, payload: Dict[str, Any]) -> ReportSubmissionResult:
        """
        Validate and store a report.

        Validation and persistence failures are returned as results rather
        than raised. Any failure after validation rolls back the location,
        report and alert rows together.

        Args:
            payload: Decoded JSON body

        Returns:
            ReportSubmissionResult
        """
        try:
            report = self.validator.validate(payload)
        except ValidationError as e:
            REPORTS_REJECTED.labels(reason="validation").inc()
            logger.info("report_validation_failed", field=e.field, reason=e.message)
            return ReportSubmissionResult(
                success=False,
                message=e.message,
                error="Validation Error",
                field=e.field,
                status_code=ValidationError.status_code
            )

        try:
            report_id, anonymous_hash, alert_id = self._store(report)
        except PersistenceError as e:
            REPORTS_REJECTED.labels(reason="persistence").inc()
            logger.error("report_persistence_failed", error=e.message)
            return self._internal_failure()
        except Exception as e:
            REPORTS_REJECTED.labels(reason="internal").inc()
            logger.error("report_submission_failed", error_type=type(e).__name__, exc_info=True)
            return self._internal_failure()

        REPORTS_SUBMITTED.labels(severity=report.severity.value).inc()
        logger.info(
            "report_submitted",
            report_id=report_id,
            anonymous_hash=anonymous_hash,
            severity=report.severity.value,
            alert_id=alert_id
        )
        return ReportSubmissionResult(success=True, message=SUCCESS_MESSAGE, report_id=report_id)

    def _store(self, report: ValidatedReport):
        now = self._clock()
        report_id = str(uuid.uuid4())
        anonymous_hash = self.crypto.generate_anonymous_hash(
            f"{report_id}{time.time_ns()}{secrets.randbelow(100000)}"
        )

        alert_id = None
        with self.db.transaction() as tx:
            repos = self.repositories(tx)

            location_id = repos.locations.create(Location(
                latitude=report.latitude,
                longitude=report.longitude,
                transportation_mode=report.transportation_mode,
                route_identifier=report.route_identifier,
                address_description=report.address_description,
            ))

            repos.reports.create(IncidentReport(
                report_id=report_id,
                incident_type_id=report.incident_type_id,
                location_id=location_id,
                severity=report.severity,
                description=self.crypto.encrypt(report.description),
                timestamp=report.timestamp,
                status=ReportStatus.PENDING,
                verification_score=0,
                anonymous_hash=anonymous_hash,
            ))

            if report.severity is Severity.CRITICAL:
                alert_id = self._trigger_critical_alert(repos, report_id, now)

        return report_id, anonymous_hash, alert_id

    def _trigger_critical_alert(self, repos: Repositories, report_id: str, now: datetime) -> int:
        alert_id = repos.alerts.create(SafetyAlert(
            report_id=report_id,
            alert_type=AlertType.EMERGENCY_BROADCAST.value,
            severity=Severity.CRITICAL.value,
            message=CRITICAL_ALERT_MESSAGE,
            location_radius_km=self.alert_radius_km,
            sent_at=now,
            expires_at=now + self.alert_ttl,
        ))
        ALERTS_CREATED.labels(trigger="submission").inc()
        logger.warning("critical_alert_triggered", report_id=report_id, alert_id=alert_id)
        return alert_id

    @staticmethod
    def _internal_failure() -> ReportSubmissionResult:
        return ReportSubmissionResult(
            success=False,
            message="A database error occurred during submission. Please try again.",
            error="Internal Server Error",
            status_code=PersistenceError.status_code
        )
