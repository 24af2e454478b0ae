"""Proximity queries and alert lifecycle for Safe Transit"""

from safetransit.alerts.geo import EARTH_RADIUS_KM, haversine_km
from safetransit.alerts.proximity import ProximityService
from safetransit.alerts.lifecycle import AlertLifecycleService

__all__ = [
    "EARTH_RADIUS_KM",
    "haversine_km",
    "ProximityService",
    "AlertLifecycleService",
]
