"""Report ingestion module for Safe Transit"""

from safetransit.ingestion.validation import (
    ReportValidator,
    ValidatedReport,
    parse_coordinate,
    parse_timestamp,
)

__all__ = [
    "ReportValidator",
    "ValidatedReport",
    "parse_coordinate",
    "parse_timestamp",
]
