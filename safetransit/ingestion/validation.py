"""Validation of anonymous incident report payloads"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator

from safetransit.config import settings
from safetransit.database.models import Severity, TransportMode
from safetransit.exceptions import ValidationError
from safetransit.governance.crypto_service import CryptographyService


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

REQUIRED_FIELDS = (
    "incident_type_id",
    "latitude",
    "longitude",
    "description",
    "severity",
    "transportation_mode",
    "timestamp",
)

OPTIONAL_TEXT_LIMITS = {
    "route_identifier": 100,
    "address_description": 255,
}

POSITIVE_INTEGER_TEXT = r"^\+?0*[1-9][0-9]*$"
DECIMAL_TEXT = r"^[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?$"
TIMESTAMP_TEXT = r"^[0-9]{4}-[0-9]{2}-[0-9]{2} [0-9]{2}:[0-9]{2}:[0-9]{2}$"

FIELD_MESSAGES = {
    "incident_type_id": "Invalid incident type",
    "latitude": "Invalid latitude: must be between -90 and 90",
    "longitude": "Invalid longitude: must be between -180 and 180",
    "description": "Description must be text",
    "severity": "Invalid severity: must be one of " + ", ".join(s.value for s in Severity),
    "transportation_mode": (
        "Invalid transportation mode: must be one of " + ", ".join(m.value for m in TransportMode)
    ),
    "timestamp": "Invalid timestamp format",
    "route_identifier": "Invalid route identifier",
    "address_description": "Invalid address description",
}


@dataclass
class ValidatedReport:
    """A report payload that passed validation, with sanitized text"""
    incident_type_id: int
    latitude: float
    longitude: float
    severity: Severity
    transportation_mode: TransportMode
    description: str
    timestamp: datetime
    route_identifier: Optional[str] = None
    address_description: Optional[str] = None


def is_missing(value: Any) -> bool:
    """Absent, None and blank strings count as missing; 0 does not."""
    return value is None or (isinstance(value, str) and not value.strip())


def _coordinate_schema(bound: float) -> Dict[str, Any]:
    return {
        "anyOf": [
            {"type": "number", "minimum": -bound, "maximum": bound},
            {"type": "string", "pattern": DECIMAL_TEXT},
        ]
    }


def build_report_schema(description_max_length: int) -> Dict[str, Any]:
    """
    Draft-7 schema for a report payload.

    Values are expected trimmed, with blank strings removed, so `required`
    also catches empty fields and `maxLength` applies to the text as typed.
    """
    properties = {
        "incident_type_id": {
            "anyOf": [
                {"type": "integer", "minimum": 1},
                {"type": "string", "pattern": POSITIVE_INTEGER_TEXT},
            ]
        },
        "latitude": _coordinate_schema(90),
        "longitude": _coordinate_schema(180),
        "description": {"type": "string", "maxLength": description_max_length},
        "severity": {"enum": [severity.value for severity in Severity]},
        "transportation_mode": {"enum": [mode.value for mode in TransportMode]},
        "timestamp": {"type": "string", "pattern": TIMESTAMP_TEXT},
    }
    for field, limit in OPTIONAL_TEXT_LIMITS.items():
        properties[field] = {"type": "string", "maxLength": limit}

    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "required": list(REQUIRED_FIELDS),
        "properties": properties,
    }


def parse_coordinate(value: Any, field: str, low: float, high: float) -> float:
    """
    Parse a latitude or longitude and check its range.

    Raises:
        ValidationError: If the value is not a finite number within [low, high]
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", field=field)

    if not math.isfinite(number) or not low <= number <= high:
        raise ValidationError(
            f"Invalid {field}: must be between {low:g} and {high:g}",
            field=field
        )
    return number


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """
    Parse a YYYY-MM-DD HH:MM:SS timestamp as UTC.

    The value must survive a parse/format round trip unchanged, so
    impossible dates and unpadded fields are rejected rather than normalized.
    """
    if not isinstance(value, str):
        raise ValidationError("Invalid timestamp format", field=field)
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        raise ValidationError("Invalid timestamp format", field=field)

    if parsed.strftime(TIMESTAMP_FORMAT) != value:
        raise ValidationError("Invalid timestamp format", field=field)
    return parsed.replace(tzinfo=timezone.utc)


def _normalize(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Trim strings and drop missing values."""
    normalized = {}
    for key, value in payload.items():
        if is_missing(value):
            continue
        normalized[key] = value.strip() if isinstance(value, str) else value
    return normalized


def _error_field(error) -> Optional[str]:
    if error.path:
        return str(error.path[0])
    if error.validator == "required":
        # One error per missing property; the first absent name is the one reported
        return next(name for name in error.validator_value if name not in error.instance)
    return None


class ReportValidator:
    """
    Validates a raw report payload, stopping at the first violation.

    Structure, types, ranges, choices and maximum lengths are checked against
    a JSON schema. Violations are reported in a fixed order: missing fields
    first, then incident type, coordinates, severity, transportation mode,
    description, timestamp and the optional text fields. The minimum
    description length (after sanitization) and the calendar validity of the
    timestamp are checked in Python at their place in that order.
    """

    def __init__(
        self,
        description_min_length: Optional[int] = None,
        description_max_length: Optional[int] = None
    ):
        self.description_min_length = (
            description_min_length if description_min_length is not None
            else settings.reporting.description_min_length
        )
        self.description_max_length = (
            description_max_length if description_max_length is not None
            else settings.reporting.description_max_length
        )

        self.schema = build_report_schema(self.description_max_length)
        Draft7Validator.check_schema(self.schema)
        self._validator = Draft7Validator(self.schema)

    def validate(self, payload: Dict[str, Any]) -> ValidatedReport:
        """
        Validate and sanitize a report payload.

        Args:
            payload: Decoded JSON body

        Returns:
            ValidatedReport

        Raises:
            ValidationError: On the first violated rule
        """
        if not isinstance(payload, dict):
            raise ValidationError("Invalid request payload")

        data = _normalize(payload)
        failures = self._schema_failures(data)

        for field in REQUIRED_FIELDS:
            error = failures.get(field)
            if error is not None and error.validator == "required":
                raise ValidationError(f"Missing required field: {field}", field=field)

        self._raise_first(failures, ("incident_type_id", "latitude", "longitude"))
        latitude = parse_coordinate(data["latitude"], "latitude", -90, 90)
        longitude = parse_coordinate(data["longitude"], "longitude", -180, 180)

        self._raise_first(failures, ("severity", "transportation_mode", "description"))
        description = CryptographyService.sanitize_string(data["description"])
        if len(description) < self.description_min_length:
            raise ValidationError(
                f"Description must be at least {self.description_min_length} characters",
                field="description"
            )

        self._raise_first(failures, ("timestamp", *OPTIONAL_TEXT_LIMITS))
        timestamp = parse_timestamp(data["timestamp"])
        if failures:
            raise ValidationError("Invalid request payload")

        optional = {
            field: CryptographyService.sanitize_string(data[field]) if field in data else None
            for field in OPTIONAL_TEXT_LIMITS
        }

        return ValidatedReport(
            incident_type_id=int(data["incident_type_id"]),
            latitude=latitude,
            longitude=longitude,
            severity=Severity(data["severity"]),
            transportation_mode=TransportMode(data["transportation_mode"]),
            description=description,
            timestamp=timestamp,
            **optional
        )

    def _schema_failures(self, data: Dict[str, Any]) -> Dict[Optional[str], Any]:
        """First schema error per field."""
        failures: Dict[Optional[str], Any] = {}
        for error in self._validator.iter_errors(data):
            failures.setdefault(_error_field(error), error)
        return failures

    def _raise_first(self, failures: Dict[Optional[str], Any], fields: Tuple[str, ...]) -> None:
        for field in fields:
            error = failures.get(field)
            if error is None:
                continue
            if error.validator == "maxLength":
                raise ValidationError(
                    f"{field.replace('_', ' ').capitalize()} must be at most "
                    f"{error.validator_value} characters",
                    field=field
                )
            raise ValidationError(FIELD_MESSAGES[field], field=field)
