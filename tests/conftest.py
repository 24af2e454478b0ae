"""Shared fixtures: in-memory database, deterministic clock and services"""

import copy
import itertools
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from safetransit.alerts.lifecycle import AlertLifecycleService
from safetransit.alerts.proximity import ProximityService
from safetransit.api.app import create_app
from safetransit.api.auth import Authenticator
from safetransit.config import ProximityConfig, ReportingConfig, Settings
from safetransit.exceptions import PersistenceError
from safetransit.governance.crypto_service import CryptographyService
from safetransit.governance.rate_limiter import NoOpRateLimiter
from safetransit.reporting_service import AnonymousReportingService


START_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeDatabase:
    """
    In-memory stand-in for DatabaseConnection.

    transaction() snapshots every table and restores the snapshot when the
    block raises. Operations named in fail_on ("table.operation") raise
    PersistenceError.
    """

    def __init__(self):
        self.tables = {
            "incident_types": {1: "Harassment", 2: "Theft", 3: "Assault"},
            "locations": {},
            "incident_reports": {},
            "safety_alerts": {},
            "audit_logs": {},
        }
        self._sequence = itertools.count(1)
        self.fail_on = set()
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy(self.tables)
        try:
            yield self
        except BaseException:
            self.tables = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    def next_id(self):
        return next(self._sequence)

    def check(self, operation):
        if operation in self.fail_on:
            raise PersistenceError(f"Injected failure: {operation}")


class FakeLocationRepository:
    def __init__(self, db):
        self.db = db

    def create(self, location):
        self.db.check("locations.create")
        location_id = self.db.next_id()
        self.db.tables["locations"][location_id] = {
            "location_id": location_id,
            **location.model_dump(exclude={"location_id"}, mode="json"),
        }
        return location_id

    def get_by_id(self, location_id):
        row = self.db.tables["locations"].get(location_id)
        return dict(row) if row else None

    def delete(self, location_id):
        return 1 if self.db.tables["locations"].pop(location_id, None) else 0


class FakeIncidentReportRepository:
    def __init__(self, db):
        self.db = db

    def create(self, report):
        self.db.check("incident_reports.create")
        row = report.model_dump()
        row["report_id"] = str(report.report_id)
        row["severity"] = report.severity.value
        row["status"] = report.status.value
        row["created_at"] = row["created_at"] or START_TIME
        self.db.tables["incident_reports"][row["report_id"]] = row
        return row["report_id"]

    def _joined(self, row):
        location = self.db.tables["locations"][row["location_id"]]
        return {
            **row,
            "incident_type": self.db.tables["incident_types"].get(row["incident_type_id"]),
            "latitude": location["latitude"],
            "longitude": location["longitude"],
            "transportation_mode": location["transportation_mode"],
            "route_identifier": location["route_identifier"],
            "address_description": location["address_description"],
            "radius_km": location["radius_km"],
        }

    def get_by_id(self, report_id):
        row = self.db.tables["incident_reports"].get(str(report_id))
        return self._joined(row) if row else None

    def update_review(self, report_id, status, admin_notes, updated_at):
        self.db.check("incident_reports.update_review")
        row = self.db.tables["incident_reports"].get(str(report_id))
        if row is None:
            return 0
        row.update(status=status.value, admin_notes=admin_notes, updated_at=updated_at)
        return 1

    def find_public_since(self, since):
        return [
            {
                key: joined[key]
                for key in ("report_id", "incident_type", "severity", "timestamp", "latitude", "longitude")
            }
            for joined in map(self._joined, self.db.tables["incident_reports"].values())
            if joined["status"] in ("Verified", "Pending") and joined["timestamp"] >= since
        ]

    def delete(self, report_id):
        return 1 if self.db.tables["incident_reports"].pop(str(report_id), None) else 0


class FakeSafetyAlertRepository:
    def __init__(self, db):
        self.db = db

    def create(self, alert):
        self.db.check("safety_alerts.create")
        alert_id = self.db.next_id()
        row = alert.model_dump()
        row["alert_id"] = alert_id
        row["report_id"] = str(alert.report_id) if alert.report_id else None
        self.db.tables["safety_alerts"][alert_id] = row
        return alert_id

    def find_active(self, now):
        rows = []
        for alert in self.db.tables["safety_alerts"].values():
            if alert["expires_at"] <= now:
                continue
            latitude = longitude = None
            report = self.db.tables["incident_reports"].get(alert["report_id"])
            if report is not None:
                location = self.db.tables["locations"].get(report["location_id"])
                if location is not None:
                    latitude, longitude = location["latitude"], location["longitude"]
            rows.append({**alert, "latitude": latitude, "longitude": longitude})
        return rows

    def find_by_report(self, report_id):
        return [
            dict(alert) for alert in self.db.tables["safety_alerts"].values()
            if alert["report_id"] == str(report_id)
        ]

    def expire_for_report(self, report_id, now, marker):
        count = 0
        for alert in self.db.tables["safety_alerts"].values():
            if alert["report_id"] == str(report_id) and alert["expires_at"] > now:
                alert["expires_at"] = now
                alert["message"] += marker
                count += 1
        return count

    def delete_for_report(self, report_id):
        doomed = [
            alert_id for alert_id, alert in self.db.tables["safety_alerts"].items()
            if alert["report_id"] == str(report_id)
        ]
        for alert_id in doomed:
            del self.db.tables["safety_alerts"][alert_id]
        return len(doomed)


class FakeAuditLogRepository:
    def __init__(self, db):
        self.db = db

    def create(self, audit_log):
        self.db.check("audit_logs.create")
        entry_id = self.db.next_id()
        self.db.tables["audit_logs"][entry_id] = {
            **audit_log.model_dump(),
            "id": entry_id,
            "report_id": str(audit_log.report_id) if audit_log.report_id else None,
        }
        return entry_id

    def get_by_report(self, report_id, limit=100):
        return [
            entry for entry in self.db.tables["audit_logs"].values()
            if entry["report_id"] == str(report_id)
        ][:limit]


class FakeRepositories:
    def __init__(self, executor):
        self.locations = FakeLocationRepository(executor)
        self.reports = FakeIncidentReportRepository(executor)
        self.alerts = FakeSafetyAlertRepository(executor)
        self.audit_logs = FakeAuditLogRepository(executor)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def repositories():
    return FakeRepositories


@pytest.fixture
def crypto(clock):
    return CryptographyService(
        encryption_key="0123456789abcdef0123456789abcdef",
        anonymization_salt="test-salt",
        clock=lambda: clock().timestamp()
    )


@pytest.fixture
def reporting_config():
    return ReportingConfig()


@pytest.fixture
def proximity_config():
    return ProximityConfig()


@pytest.fixture
def reporting_service(fake_db, crypto, clock):
    return AnonymousReportingService(fake_db, crypto, repositories=FakeRepositories, clock=clock)


@pytest.fixture
def proximity_service(fake_db, clock, proximity_config):
    return ProximityService(
        fake_db, repositories=FakeRepositories, clock=clock, config=proximity_config
    )


@pytest.fixture
def lifecycle_service(fake_db, crypto, clock, reporting_config):
    return AlertLifecycleService(
        fake_db, crypto, repositories=FakeRepositories, clock=clock, config=reporting_config
    )


@pytest.fixture
def valid_payload():
    return {
        "incident_type_id": 1,
        "latitude": 12.34,
        "longitude": 56.78,
        "description": "Man harassing passengers near the rear doors",
        "severity": "Medium",
        "transportation_mode": "Bus",
        "timestamp": "2024-03-01 11:30:00",
        "route_identifier": "Route 42",
    }


@pytest.fixture
def submit(reporting_service, valid_payload):
    """Submit a report built from the valid payload with overrides"""
    def _submit(**overrides):
        result = reporting_service.submit_report({**valid_payload, **overrides})
        assert result.success, result.message
        return result.report_id
    return _submit


@pytest.fixture
def authenticator():
    return Authenticator(secret_key="test-secret", algorithm="HS256", expiry_hours=1)


@pytest.fixture
def rate_limiter():
    return NoOpRateLimiter()


@pytest.fixture
def app(fake_db, crypto, authenticator, rate_limiter, clock):
    return create_app(
        app_settings=Settings(),
        db=fake_db,
        crypto=crypto,
        authenticator=authenticator,
        rate_limiter=rate_limiter,
        repositories=FakeRepositories,
        clock=clock,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def admin_headers(authenticator):
    token = authenticator.generate_token("42", role="Admin")
    return {"Authorization": f"Bearer {token}"}
