"""
Nearby incident and active alert lookups.

Rows are narrowed in SQL by status, time window and expiry using bound
parameters only; distance filtering and ranking happen here.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from safetransit.alerts.geo import (
    format_timestamp,
    haversine_km,
    optional_point,
    parse_bounded_float,
    parse_bounded_int,
    require_point,
)
from safetransit.config import ProximityConfig, settings
from safetransit.database.connection import DatabaseConnection
from safetransit.database.models import alert_severity_rank
from safetransit.database.repositories import Repositories

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProximityService:
    """Read-only queries that rank incidents and alerts by distance to a caller."""

    def __init__(
        self,
        db: DatabaseConnection,
        repositories: Callable[[Any], Repositories] = Repositories,
        clock: Callable[[], datetime] = utc_now,
        config: Optional[ProximityConfig] = None
    ):
        self.repos = repositories(db)
        self._clock = clock
        self.config = config or settings.proximity

    def nearby_incidents(
        self,
        lat: Any,
        lng: Any,
        radius_km: Any = None,
        days_back: Any = None
    ) -> List[Dict[str, Any]]:
        """
        Verified and pending incidents near a point.

        Args:
            lat, lng: Caller coordinates (required)
            radius_km: Search radius, clamped to the configured range
            days_back: Look-back window in days, clamped to the configured range

        Returns:
            Anonymized incident summaries, nearest first, most recent first
            among equal distances

        Raises:
            ValidationError: If the coordinates are missing or invalid
        """
        cfg = self.config
        origin_lat, origin_lng = require_point(lat, lng)
        radius = parse_bounded_float(
            radius_km, cfg.radius_default_km, cfg.radius_min_km, cfg.radius_max_km
        )
        days = parse_bounded_int(days_back, cfg.days_default, cfg.days_min, cfg.days_max)

        since = self._clock() - timedelta(days=days)
        matches = []
        for row in self.repos.reports.find_public_since(since):
            distance = haversine_km(origin_lat, origin_lng, row["latitude"], row["longitude"])
            if distance <= radius:
                matches.append((distance, row))

        # Stable sorts: recency first, then distance as the primary key
        matches.sort(key=lambda match: match[1]["timestamp"], reverse=True)
        matches.sort(key=lambda match: match[0])

        incidents = [
            {
                "report_id": str(row["report_id"]),
                "incident_type": row.get("incident_type"),
                "severity": row["severity"],
                "distance_km": round(distance, 2),
                "timestamp": format_timestamp(row["timestamp"]),
                "location": {"lat": float(row["latitude"]), "lng": float(row["longitude"])},
            }
            for distance, row in matches[:cfg.incident_limit]
        ]

        logger.info(
            "nearby_incidents_query",
            radius_km=radius,
            days_back=days,
            count=len(incidents)
        )
        return incidents

    def active_alerts(
        self,
        lat: Any = None,
        lng: Any = None,
        radius_km: Any = None
    ) -> List[Dict[str, Any]]:
        """
        Alerts that have not expired.

        With valid caller coordinates an alert is kept only when the caller
        is inside both the alert's own radius and the requested radius.
        Alerts without a location apply everywhere and are always kept.

        Args:
            lat, lng: Optional caller coordinates; ignored unless both are valid
            radius_km: Caller search radius

        Returns:
            Alert summaries. With a location: global alerts first, then by
            distance, severity tier and newest first. Without: by severity
            tier and newest first.
        """
        cfg = self.config
        point = optional_point(lat, lng)
        radius = parse_bounded_float(
            radius_km, cfg.radius_default_km, cfg.radius_min_km, cfg.radius_max_km
        )

        rows = self.repos.alerts.find_active(self._clock())

        candidates = []
        for row in rows:
            has_location = row.get("latitude") is not None and row.get("longitude") is not None
            distance = None
            if point is not None and has_location:
                distance = haversine_km(point[0], point[1], row["latitude"], row["longitude"])
                if distance > float(row["location_radius_km"]) or distance > radius:
                    continue
            candidates.append((distance, row))

        candidates.sort(key=lambda item: item[1]["sent_at"], reverse=True)
        candidates.sort(key=lambda item: alert_severity_rank(item[1]["severity"]))
        if point is not None:
            candidates.sort(
                key=lambda item: (item[0] is not None, item[0] if item[0] is not None else 0.0)
            )

        alerts = [
            self._alert_summary(row, distance, point is not None)
            for distance, row in candidates[:cfg.alert_limit]
        ]

        logger.info(
            "active_alerts_query",
            has_location=point is not None,
            radius_km=radius if point is not None else None,
            count=len(alerts)
        )
        return alerts

    @staticmethod
    def _alert_summary(row: Dict[str, Any], distance: Optional[float], located: bool) -> Dict[str, Any]:
        location = None
        if row.get("latitude") is not None and row.get("longitude") is not None:
            location = {"lat": float(row["latitude"]), "lng": float(row["longitude"])}

        return {
            "alert_id": row["alert_id"],
            "alert_type": row["alert_type"],
            "severity": row["severity"],
            "message": row["message"],
            "location_radius_km": float(row["location_radius_km"]),
            "sent_at": format_timestamp(row["sent_at"]),
            "expires_at": format_timestamp(row["expires_at"]),
            "location": location,
            "distance_km": round(distance, 2) if located and distance is not None else None,
        }
