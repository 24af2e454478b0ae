"""Safe Transit API endpoints"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.responses import JSONResponse

from safetransit.api.auth import AuthResult, bearer_scheme, require_admin
from safetransit.api.models import (
    CsrfTokenResponse,
    DeleteReportResponse,
    LogoutResponse,
    ManualAlertRequest,
    ManualAlertResponse,
    NearbyIncidentsResponse,
    ReportDetailResponse,
    SafetyAlertsResponse,
    SubmitReportResponse,
    VerifyIncidentRequest,
    VerifyIncidentResponse,
)
from safetransit.exceptions import CsrfError, RateLimitExceededError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

CSRF_HEADER = "X-CSRF-Token"


def _client_id(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/csrf-token", response_model=CsrfTokenResponse, tags=["Reports"])
def issue_csrf_token(request: Request):
    """
    Issue the session's CSRF token for web form submissions.

    Returns:
        The current token and the form field it is expected in
    """
    crypto = request.app.state.crypto
    token = crypto.generate_csrf_token(request.session)
    return CsrfTokenResponse(csrf_token=token, field_name=crypto.csrf_field_name)


@router.post(
    "/submit-report",
    response_model=SubmitReportResponse,
    responses={400: {}, 403: {}, 429: {}, 500: {}},
    tags=["Reports"]
)
def submit_report(request: Request, payload: Dict[str, Any] = Body(...)):
    """
    Submit an anonymous incident report.

    A CSRF token is checked when one is sent, either in the body field or
    the X-CSRF-Token header; API clients that send none are not checked.

    Returns:
        SubmitReportResponse with 200 on success, or 400/500 on failure
    """
    state = request.app.state

    if not state.rate_limiter.allow(_client_id(request)):
        raise RateLimitExceededError(
            "Too many reports submitted from this address. Please wait an hour."
        )

    crypto = state.crypto
    token = payload.pop(crypto.csrf_field_name, None) or request.headers.get(CSRF_HEADER)
    if token and not crypto.validate_csrf_token(request.session, token):
        raise CsrfError("Security check failed. Invalid or missing CSRF token.")

    result = state.reporting_service.submit_report(payload)
    response = SubmitReportResponse(
        success=result.success,
        report_id=result.report_id,
        message=result.message,
        error=result.error,
        field=result.field,
    )
    return JSONResponse(status_code=result.status_code, content=response.model_dump(mode="json"))


@router.get("/nearby-incidents", response_model=NearbyIncidentsResponse, tags=["Public"])
def nearby_incidents(
    request: Request,
    lat: Optional[str] = Query(None),
    lng: Optional[str] = Query(None),
    radius_km: Optional[str] = Query(None),
    days_back: Optional[str] = Query(None)
):
    """
    Verified and pending incidents near a point, nearest first.

    Query values are taken as text and parsed and clamped by the service,
    so malformed radius or day values fall back to their defaults.
    """
    incidents = request.app.state.proximity_service.nearby_incidents(
        lat, lng, radius_km=radius_km, days_back=days_back
    )
    return NearbyIncidentsResponse(incidents=incidents, count=len(incidents))


@router.get("/safety-alerts", response_model=SafetyAlertsResponse, tags=["Public"])
def safety_alerts(
    request: Request,
    lat: Optional[str] = Query(None),
    lng: Optional[str] = Query(None),
    radius_km: Optional[str] = Query(None)
):
    """Active safety alerts, filtered by distance when a location is given."""
    alerts = request.app.state.proximity_service.active_alerts(lat, lng, radius_km=radius_km)
    return SafetyAlertsResponse(alerts=alerts, count=len(alerts))


@router.post("/admin/verify-incident", response_model=VerifyIncidentResponse, tags=["Admin"])
def verify_incident(
    request: Request,
    body: VerifyIncidentRequest,
    auth: AuthResult = Depends(require_admin)
):
    """Verify, reject or resolve a report."""
    result = request.app.state.lifecycle_service.apply_action(
        body.report_id, body.action, auth.actor, body.admin_notes
    )
    return VerifyIncidentResponse(**result)


@router.get("/admin/reports/{report_id}", response_model=ReportDetailResponse, tags=["Admin"])
def get_report(request: Request, report_id: str, auth: AuthResult = Depends(require_admin)):
    """Full report with its decrypted description."""
    logger.info(f"Report {report_id} viewed by {auth.actor}")
    return request.app.state.lifecycle_service.get_report_detail(report_id)


@router.delete("/admin/reports/{report_id}", response_model=DeleteReportResponse, tags=["Admin"])
def delete_report(request: Request, report_id: str, auth: AuthResult = Depends(require_admin)):
    """Delete a report together with its alerts and location."""
    return request.app.state.lifecycle_service.delete_report(report_id, auth.actor)


@router.post("/admin/alerts", response_model=ManualAlertResponse, tags=["Admin"])
def create_alert(
    request: Request,
    body: ManualAlertRequest,
    auth: AuthResult = Depends(require_admin)
):
    """Create an alert by hand, optionally linked to a report."""
    return request.app.state.lifecycle_service.create_manual_alert(
        auth.actor,
        body.severity,
        body.message,
        report_id=body.report_id,
        radius_km=body.radius_km,
        duration_hours=body.duration_hours,
    )


@router.post("/admin/logout", response_model=LogoutResponse, tags=["Admin"])
def logout(
    request: Request,
    auth: AuthResult = Depends(require_admin),
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
):
    """Revoke the caller's token for the rest of its lifetime."""
    request.app.state.authenticator.revoke_token(credentials.credentials)
    logger.info(f"{auth.actor} logged out")
    return {"success": True, "message": "Token revoked."}
