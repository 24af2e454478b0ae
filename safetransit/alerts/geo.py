"""Great-circle distance and query parameter helpers"""

import math
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from safetransit.exceptions import ValidationError
from safetransit.ingestion.validation import TIMESTAMP_FORMAT, parse_coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Distance in kilometers between two points on a sphere of radius 6371 km.

    Args:
        lat1, lng1: First point in degrees
        lat2, lng2: Second point in degrees

    Returns:
        Great-circle distance in km
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def parse_bounded_float(value: Any, default: float, low: float, high: float) -> float:
    """
    Parse an optional numeric parameter and clamp it to [low, high].

    Missing, zero, non-numeric and non-finite values fall back to the default.
    """
    if value is None or isinstance(value, bool):
        return clamp(default, low, high)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return clamp(default, low, high)
    if not math.isfinite(number) or number == 0:
        number = default
    return clamp(number, low, high)


def parse_bounded_int(value: Any, default: int, low: int, high: int) -> int:
    """Integer counterpart of parse_bounded_float; fractional input is malformed."""
    if value is None or isinstance(value, bool):
        return int(clamp(default, low, high))
    if isinstance(value, str):
        value = value.strip()
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    if number == 0:
        number = default
    return int(clamp(number, low, high))


def require_point(lat: Any, lng: Any) -> Tuple[float, float]:
    """
    Parse caller coordinates that must be present and valid.

    Raises:
        ValidationError: If either coordinate is missing or out of range
    """
    try:
        return (
            parse_coordinate(lat, "lat", -90, 90),
            parse_coordinate(lng, "lng", -180, 180),
        )
    except ValidationError as e:
        raise ValidationError("Invalid or missing coordinates (lat, lng).", field=e.field)


def optional_point(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    """Parse caller coordinates, returning None unless both are present and valid."""
    if lat is None or lng is None:
        return None
    try:
        return require_point(lat, lng)
    except ValidationError:
        return None


def format_timestamp(value: datetime) -> str:
    """Render a datetime as YYYY-MM-DD HH:MM:SS in UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)
