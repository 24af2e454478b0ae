"""Tests for anonymous report submission"""

from datetime import timedelta

from safetransit.reporting_service import CRITICAL_ALERT_MESSAGE, SUCCESS_MESSAGE


class TestSubmitReport:
    """Test AnonymousReportingService.submit_report"""

    def test_valid_report_creates_report_and_location(self, reporting_service, fake_db, valid_payload):
        result = reporting_service.submit_report(valid_payload)

        assert result.success
        assert result.message == SUCCESS_MESSAGE
        assert result.status_code == 200
        assert len(fake_db.tables["incident_reports"]) == 1
        assert len(fake_db.tables["locations"]) == 1
        assert fake_db.tables["safety_alerts"] == {}

    def test_report_row_contents(self, reporting_service, fake_db, crypto, valid_payload):
        result = reporting_service.submit_report(valid_payload)
        row = fake_db.tables["incident_reports"][result.report_id]

        assert row["status"] == "Pending"
        assert row["verification_score"] == 0
        assert row["severity"] == "Medium"
        assert len(row["anonymous_hash"]) == 64
        assert row["description"] != valid_payload["description"]
        assert crypto.decrypt(row["description"]) == valid_payload["description"]

    def test_location_row_contents(self, reporting_service, fake_db, valid_payload):
        reporting_service.submit_report(valid_payload)
        location = next(iter(fake_db.tables["locations"].values()))

        assert location["latitude"] == 12.34
        assert location["longitude"] == 56.78
        assert location["transportation_mode"] == "Bus"
        assert location["route_identifier"] == "Route 42"

    def test_report_ids_and_hashes_are_unique(self, reporting_service, fake_db, valid_payload):
        ids = {reporting_service.submit_report(valid_payload).report_id for _ in range(20)}
        hashes = {row["anonymous_hash"] for row in fake_db.tables["incident_reports"].values()}

        assert len(ids) == 20
        assert len(hashes) == 20

    def test_critical_report_triggers_broadcast_alert(self, reporting_service, fake_db, clock, valid_payload):
        result = reporting_service.submit_report({**valid_payload, "severity": "Critical"})
        alerts = list(fake_db.tables["safety_alerts"].values())

        assert result.success
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert["report_id"] == result.report_id
        assert alert["alert_type"] == "Emergency Broadcast"
        assert alert["severity"] == "Critical"
        assert alert["message"] == CRITICAL_ALERT_MESSAGE
        assert alert["location_radius_km"] == 1.0
        assert alert["sent_at"] == clock.now
        assert alert["expires_at"] == clock.now + timedelta(hours=2)

    def test_non_critical_severities_raise_no_alert(self, reporting_service, fake_db, valid_payload):
        for severity in ("Low", "Medium", "High"):
            reporting_service.submit_report({**valid_payload, "severity": severity})

        assert fake_db.tables["safety_alerts"] == {}

    def test_validation_failure_is_returned(self, reporting_service, fake_db, valid_payload):
        result = reporting_service.submit_report({**valid_payload, "latitude": 123})

        assert not result.success
        assert result.status_code == 400
        assert result.field == "latitude"
        assert result.error == "Validation Error"
        assert fake_db.tables["locations"] == {}
        assert fake_db.commits == 0

    def test_alert_failure_rolls_back_everything(self, reporting_service, fake_db, valid_payload):
        fake_db.fail_on.add("safety_alerts.create")

        result = reporting_service.submit_report({**valid_payload, "severity": "Critical"})

        assert not result.success
        assert result.status_code == 500
        assert result.report_id is None
        assert fake_db.tables["locations"] == {}
        assert fake_db.tables["incident_reports"] == {}
        assert fake_db.tables["safety_alerts"] == {}
        assert fake_db.rollbacks == 1

    def test_report_insert_failure_rolls_back_location(self, reporting_service, fake_db, valid_payload):
        fake_db.fail_on.add("incident_reports.create")

        result = reporting_service.submit_report(valid_payload)

        assert not result.success
        assert fake_db.tables["locations"] == {}

    def test_persistence_failure_message_is_generic(self, reporting_service, fake_db, valid_payload):
        fake_db.fail_on.add("locations.create")

        result = reporting_service.submit_report(valid_payload)

        assert "Injected" not in result.message
        assert result.error == "Internal Server Error"
