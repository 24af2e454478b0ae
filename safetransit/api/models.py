"""Request and response models for the Safe Transit API"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubmitReportResponse(BaseModel):
    """Response to an anonymous report submission"""
    success: bool
    report_id: Optional[str] = Field(None, description="Generated report ID")
    message: str
    error: Optional[str] = Field(None, description="Error category when success is false")
    field: Optional[str] = Field(None, description="Field that failed validation")


class PointModel(BaseModel):
    lat: float
    lng: float


class IncidentSummary(BaseModel):
    """Anonymized nearby incident"""
    report_id: str
    incident_type: Optional[str] = None
    severity: str
    distance_km: float
    timestamp: str
    location: PointModel


class NearbyIncidentsResponse(BaseModel):
    success: bool = True
    incidents: List[IncidentSummary]
    count: int


class AlertSummary(BaseModel):
    """Active safety alert"""
    alert_id: int
    alert_type: str
    severity: str
    message: str
    location_radius_km: float
    sent_at: str
    expires_at: str
    location: Optional[PointModel] = None
    distance_km: Optional[float] = None


class SafetyAlertsResponse(BaseModel):
    success: bool = True
    alerts: List[AlertSummary]
    count: int


class VerifyIncidentRequest(BaseModel):
    """Administrator review action"""
    report_id: str = Field(..., description="Report to act on")
    action: str = Field(..., description="Verify, Reject or Resolve")
    admin_notes: Optional[str] = Field(None, max_length=2000)


class VerifyIncidentResponse(BaseModel):
    success: bool
    message: str
    new_status: str


class ManualAlertRequest(BaseModel):
    """Alert created by an administrator"""
    severity: str = Field(..., description="Critical, Warning or Informational")
    message: str = Field(..., min_length=1, max_length=1000)
    report_id: Optional[str] = Field(None, description="Linked report; omit for a global alert")
    radius_km: Optional[float] = Field(None, gt=0)
    duration_hours: Optional[float] = Field(None, gt=0)


class ManualAlertResponse(BaseModel):
    success: bool
    alert_id: int
    alert_type: str
    expires_at: datetime


class ReportDetailResponse(BaseModel):
    """Full report for administrators, description decrypted"""
    report_id: str
    incident_type_id: int
    incident_type: Optional[str] = None
    severity: str
    description: str
    timestamp: datetime
    status: str
    verification_score: float
    admin_notes: Optional[str] = None
    latitude: float
    longitude: float
    transportation_mode: str
    route_identifier: Optional[str] = None
    address_description: Optional[str] = None
    radius_km: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    alerts: List[Dict[str, Any]] = Field(default_factory=list)


class DeleteReportResponse(BaseModel):
    success: bool
    message: str
    alerts_deleted: int


class LogoutResponse(BaseModel):
    success: bool
    message: str


class CsrfTokenResponse(BaseModel):
    csrf_token: str
    field_name: str


class ErrorResponse(BaseModel):
    """Error response model"""
    success: bool = False
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict] = Field(None, description="Additional error details")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Error timestamp"
    )
