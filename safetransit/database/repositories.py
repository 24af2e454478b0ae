"""Repository classes for database access."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from safetransit.database.connection import QueryExecutor
from safetransit.database.models import (
    AuditLog,
    IncidentReport,
    Location,
    ReportStatus,
    SafetyAlert,
)

logger = logging.getLogger(__name__)

# Reports that may be shown to the public
PUBLIC_STATUSES = (ReportStatus.VERIFIED.value, ReportStatus.PENDING.value)


class BaseRepository:
    """Base repository with common database operations."""

    def __init__(self, executor: QueryExecutor):
        """
        Initialize repository.

        Args:
            executor: DatabaseConnection, or a Transaction when the
                repository takes part in a unit of work
        """
        self.db = executor


class LocationRepository(BaseRepository):
    """Repository for locations table."""

    def create(self, location: Location) -> int:
        """
        Create a new location record.

        Args:
            location: Location model instance

        Returns:
            ID of created location
        """
        location_id = self.db.insert(
            "locations",
            {
                "latitude": location.latitude,
                "longitude": location.longitude,
                "transportation_mode": location.transportation_mode.value,
                "route_identifier": location.route_identifier,
                "address_description": location.address_description,
                "radius_km": location.radius_km,
            },
            returning="location_id"
        )
        logger.info(f"Created location {location_id}")
        return location_id

    def get_by_id(self, location_id: int) -> Optional[Dict[str, Any]]:
        return self.db.query(
            "SELECT * FROM locations WHERE location_id = %s",
            (location_id,),
            single=True
        )

    def delete(self, location_id: int) -> int:
        return self.db.delete("locations", "location_id = %s", (location_id,))


class IncidentReportRepository(BaseRepository):
    """Repository for incident_reports table."""

    def create(self, report: IncidentReport) -> str:
        """
        Create a new incident report record.

        Args:
            report: IncidentReport model instance with an encrypted description

        Returns:
            Report ID
        """
        self.db.insert(
            "incident_reports",
            {
                "report_id": str(report.report_id),
                "incident_type_id": report.incident_type_id,
                "location_id": report.location_id,
                "severity": report.severity.value,
                "description": report.description,
                "timestamp": report.timestamp,
                "status": report.status.value,
                "verification_score": report.verification_score,
                "anonymous_hash": report.anonymous_hash,
            }
        )
        logger.info(f"Created incident report {report.report_id}")
        return str(report.report_id)

    def get_by_id(self, report_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a report with its location and incident type name.

        Args:
            report_id: Report ID

        Returns:
            Row dict or None if not found
        """
        return self.db.query(
            """
            SELECT r.report_id, r.incident_type_id, t.type_name AS incident_type,
                   r.location_id, r.severity, r.description, r.timestamp,
                   r.status, r.verification_score, r.anonymous_hash,
                   r.admin_notes, r.created_at, r.updated_at,
                   l.latitude, l.longitude, l.transportation_mode,
                   l.route_identifier, l.address_description, l.radius_km
            FROM incident_reports r
            JOIN locations l ON l.location_id = r.location_id
            LEFT JOIN incident_types t ON t.type_id = r.incident_type_id
            WHERE r.report_id = %s
            """,
            (str(report_id),),
            single=True
        )

    def update_review(
        self,
        report_id: str,
        status: ReportStatus,
        admin_notes: Optional[str],
        updated_at: datetime
    ) -> int:
        """
        Set the status and admin notes of a report.

        Returns:
            Number of rows updated
        """
        return self.db.update(
            "incident_reports",
            {
                "status": status.value,
                "admin_notes": admin_notes,
                "updated_at": updated_at,
            },
            "report_id = %s",
            (str(report_id),)
        )

    def find_public_since(self, since: datetime) -> List[Dict[str, Any]]:
        """
        Get publicly visible reports with event time at or after a cutoff.

        Only the anonymized columns are selected.

        Args:
            since: Earliest report timestamp

        Returns:
            Row dicts with report_id, incident_type, severity, timestamp,
            latitude and longitude
        """
        return self.db.query(
            """
            SELECT r.report_id, t.type_name AS incident_type, r.severity,
                   r.timestamp, l.latitude, l.longitude
            FROM incident_reports r
            JOIN locations l ON l.location_id = r.location_id
            LEFT JOIN incident_types t ON t.type_id = r.incident_type_id
            WHERE r.status IN (%s, %s)
              AND r.timestamp >= %s
            """,
            (*PUBLIC_STATUSES, since)
        )

    def delete(self, report_id: str) -> int:
        return self.db.delete("incident_reports", "report_id = %s", (str(report_id),))


class SafetyAlertRepository(BaseRepository):
    """Repository for safety_alerts table."""

    def create(self, alert: SafetyAlert) -> int:
        """
        Create a new safety alert record.

        Args:
            alert: SafetyAlert model instance

        Returns:
            ID of created alert
        """
        alert_id = self.db.insert(
            "safety_alerts",
            {
                "report_id": str(alert.report_id) if alert.report_id else None,
                "alert_type": alert.alert_type,
                "severity": alert.severity,
                "message": alert.message,
                "location_radius_km": alert.location_radius_km,
                "sent_at": alert.sent_at,
                "expires_at": alert.expires_at,
            },
            returning="alert_id"
        )
        logger.info(f"Created safety alert {alert_id} ({alert.alert_type})")
        return alert_id

    def find_active(self, now: datetime) -> List[Dict[str, Any]]:
        """
        Get alerts that have not expired.

        Alerts without a report (or whose report has no location) come back
        with NULL latitude and longitude.

        Args:
            now: Current time

        Returns:
            Row dicts including the alert's location coordinates
        """
        return self.db.query(
            """
            SELECT a.alert_id, a.report_id, a.alert_type, a.severity, a.message,
                   a.location_radius_km, a.sent_at, a.expires_at,
                   l.latitude, l.longitude
            FROM safety_alerts a
            LEFT JOIN incident_reports r ON r.report_id = a.report_id
            LEFT JOIN locations l ON l.location_id = r.location_id
            WHERE a.expires_at > %s
            """,
            (now,)
        )

    def find_by_report(self, report_id: str) -> List[Dict[str, Any]]:
        return self.db.query(
            "SELECT * FROM safety_alerts WHERE report_id = %s ORDER BY sent_at DESC",
            (str(report_id),)
        )

    def expire_for_report(self, report_id: str, now: datetime, marker: str) -> int:
        """
        Soft-expire the active alerts of a report.

        Args:
            report_id: Report ID
            now: New expiry time
            marker: Text appended to each alert message

        Returns:
            Number of alerts expired
        """
        return self.db.execute(
            """
            UPDATE safety_alerts
            SET expires_at = %s, message = message || %s
            WHERE report_id = %s AND expires_at > %s
            """,
            (now, marker, str(report_id), now)
        )

    def delete_for_report(self, report_id: str) -> int:
        return self.db.delete("safety_alerts", "report_id = %s", (str(report_id),))


class AuditLogRepository(BaseRepository):
    """Repository for audit_logs table."""

    def create(self, audit_log: AuditLog) -> int:
        """
        Create a new audit log entry.

        Args:
            audit_log: AuditLog model instance

        Returns:
            ID of created audit log
        """
        return self.db.insert(
            "audit_logs",
            {
                "actor": audit_log.actor,
                "action": audit_log.action,
                "report_id": str(audit_log.report_id) if audit_log.report_id else None,
                "notes": audit_log.notes,
                "created_at": audit_log.created_at,
            },
            returning="id"
        )

    def get_by_report(self, report_id: str, limit: int = 100) -> List[AuditLog]:
        """
        Get audit log entries for a report, newest first.

        Args:
            report_id: Report ID
            limit: Maximum number of results

        Returns:
            List of AuditLog instances
        """
        rows = self.db.query(
            """
            SELECT * FROM audit_logs
            WHERE report_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (str(report_id), limit)
        )
        return [AuditLog(**row) for row in rows]


class Repositories:
    """All repositories bound to one executor."""

    def __init__(self, executor: QueryExecutor):
        self.locations = LocationRepository(executor)
        self.reports = IncidentReportRepository(executor)
        self.alerts = SafetyAlertRepository(executor)
        self.audit_logs = AuditLogRepository(executor)

