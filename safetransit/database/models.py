"""Database models for Safe Transit."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Incident severity, listed from least to most severe."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def display_rank(self) -> int:
        """Rank for display ordering; Critical sorts first."""
        return _SEVERITY_DISPLAY_RANK[self]


_SEVERITY_DISPLAY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class TransportMode(str, Enum):
    BUS = "Bus"
    TRAIN = "Train"
    SUBWAY = "Subway"
    TAXI_RIDESHARE = "Taxi/RideShare"
    WALKING = "Walking"
    CYCLING = "Cycling"
    OTHER = "Other"


class ReportStatus(str, Enum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    REJECTED = "Rejected"
    RESOLVED = "Resolved"


class ReviewAction(str, Enum):
    """Administrator actions on a report."""

    VERIFY = "Verify"
    REJECT = "Reject"
    RESOLVE = "Resolve"


class AlertType(str, Enum):
    IMMEDIATE_DANGER = "IMMEDIATE_DANGER"
    SEVERE_WARNING = "SEVERE_WARNING"
    SAFETY_ADVISORY = "SAFETY_ADVISORY"
    INFORMATIONAL = "INFORMATIONAL"
    EMERGENCY_BROADCAST = "Emergency Broadcast"

    @classmethod
    def for_severity(cls, severity: Any) -> "AlertType":
        """Alert type raised when a report of the given severity is verified."""
        return _ALERT_TYPE_BY_SEVERITY.get(getattr(severity, "value", severity), cls.INFORMATIONAL)


_ALERT_TYPE_BY_SEVERITY = {
    Severity.CRITICAL.value: AlertType.IMMEDIATE_DANGER,
    Severity.HIGH.value: AlertType.SEVERE_WARNING,
    Severity.MEDIUM.value: AlertType.SAFETY_ADVISORY,
}


class AlertSeverity(str, Enum):
    """Severity tiers used when ordering and creating alerts."""

    CRITICAL = "Critical"
    WARNING = "Warning"
    INFORMATIONAL = "Informational"


def alert_severity_rank(severity: Optional[str]) -> int:
    """
    Ordering rank of an alert severity.

    Alerts copy their severity from the originating report, so both the
    alert tiers and the incident levels show up here. Critical ranks first,
    Warning and High second, everything else last.
    """
    if severity == AlertSeverity.CRITICAL.value:
        return 0
    if severity in (AlertSeverity.WARNING.value, Severity.HIGH.value):
        return 1
    return 2


class Location(BaseModel):
    """Location record model."""

    location_id: Optional[int] = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    transportation_mode: TransportMode
    route_identifier: Optional[str] = None
    address_description: Optional[str] = None
    radius_km: Optional[float] = Field(default=None, gt=0)


class IncidentReport(BaseModel):
    """Incident report record model. The description is stored encrypted."""

    report_id: UUID
    incident_type_id: int = Field(gt=0)
    location_id: int
    severity: Severity
    description: str
    timestamp: datetime
    status: ReportStatus = ReportStatus.PENDING
    verification_score: float = 0
    anonymous_hash: str
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SafetyAlert(BaseModel):
    """Safety alert record model."""

    alert_id: Optional[int] = None
    report_id: Optional[UUID] = None
    alert_type: str
    severity: str
    message: str
    location_radius_km: float = Field(gt=0)
    sent_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


class AuditLog(BaseModel):
    """Audit log record model."""

    id: Optional[int] = None
    actor: str
    action: str
    report_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
