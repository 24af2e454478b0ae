"""Database module for Safe Transit."""

from .connection import DatabaseConnection, QueryExecutor, Transaction
from .repositories import (
    LocationRepository,
    IncidentReportRepository,
    SafetyAlertRepository,
    AuditLogRepository,
    Repositories,
)

__all__ = [
    "DatabaseConnection",
    "QueryExecutor",
    "Transaction",
    "LocationRepository",
    "IncidentReportRepository",
    "SafetyAlertRepository",
    "AuditLogRepository",
    "Repositories",
]
