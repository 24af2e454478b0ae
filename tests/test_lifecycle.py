"""Tests for administrator review actions and alert lifecycle"""

from datetime import timedelta
from uuid import uuid4

import pytest

from safetransit.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    TamperError,
    ValidationError,
)

ACTOR = "Admin - 42"


def alerts_for(fake_db, report_id):
    return [alert for alert in fake_db.tables["safety_alerts"].values() if alert["report_id"] == report_id]


def audit_actions(fake_db):
    return [entry["action"] for entry in fake_db.tables["audit_logs"].values()]


class TestVerify:
    """Test the Verify action"""

    def test_verify_creates_four_hour_alert(self, lifecycle_service, fake_db, clock, submit):
        report_id = submit(severity="High")

        result = lifecycle_service.apply_action(report_id, "Verify", ACTOR, "Confirmed by CCTV")

        assert result == {
            "success": True,
            "message": "Report status updated to Verified.",
            "new_status": "Verified",
        }
        alerts = alerts_for(fake_db, report_id)
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "SEVERE_WARNING"
        assert alerts[0]["severity"] == "High"
        assert alerts[0]["location_radius_km"] == 2.0
        assert alerts[0]["message"] == "Verified report of a **High** incident in the area."
        assert alerts[0]["expires_at"] == clock.now + timedelta(hours=4)

    @pytest.mark.parametrize("severity,alert_type", [
        ("Critical", "IMMEDIATE_DANGER"),
        ("Medium", "SAFETY_ADVISORY"),
        ("Low", "INFORMATIONAL"),
    ])
    def test_alert_type_mapping(self, lifecycle_service, fake_db, submit, severity, alert_type):
        report_id = submit(severity=severity)

        lifecycle_service.apply_action(report_id, "Verify", ACTOR)

        types = [alert["alert_type"] for alert in alerts_for(fake_db, report_id)]
        assert alert_type in types

    def test_location_radius_used_when_set(self, lifecycle_service, fake_db, submit):
        report_id = submit()
        report = fake_db.tables["incident_reports"][report_id]
        fake_db.tables["locations"][report["location_id"]]["radius_km"] = 3.5

        lifecycle_service.apply_action(report_id, "Verify", ACTOR)

        assert alerts_for(fake_db, report_id)[0]["location_radius_km"] == 3.5

    def test_second_verify_creates_no_duplicate_alert(self, lifecycle_service, fake_db, submit):
        report_id = submit()
        lifecycle_service.apply_action(report_id, "Verify", ACTOR)

        result = lifecycle_service.apply_action(report_id, "Verify", ACTOR, "Second look")

        assert result["new_status"] == "Verified"
        assert len(alerts_for(fake_db, report_id)) == 1
        assert "Second look" in fake_db.tables["incident_reports"][report_id]["admin_notes"]

    def test_alert_failure_keeps_status_change(self, lifecycle_service, fake_db, submit):
        report_id = submit()
        fake_db.fail_on.add("safety_alerts.create")

        result = lifecycle_service.apply_action(report_id, "Verify", ACTOR)

        assert result["success"]
        assert fake_db.tables["incident_reports"][report_id]["status"] == "Verified"
        assert alerts_for(fake_db, report_id) == []

    def test_audit_entries(self, lifecycle_service, fake_db, submit):
        report_id = submit()

        lifecycle_service.apply_action(report_id, "Verify", ACTOR, "ok")

        assert audit_actions(fake_db) == ["INCIDENT_STATUS_CHANGE_VERIFY", "SAFETY_ALERT_CREATED"]
        entry = next(iter(fake_db.tables["audit_logs"].values()))
        assert entry["actor"] == ACTOR
        assert entry["report_id"] == report_id
        assert entry["notes"] == "ok"


class TestRejectAndResolve:
    """Test the Reject and Resolve actions"""

    def test_reject_has_no_alert_side_effects(self, lifecycle_service, fake_db, submit):
        report_id = submit(severity="Critical")

        result = lifecycle_service.apply_action(report_id, "Reject", ACTOR, "Duplicate")

        assert result["new_status"] == "Rejected"
        assert len(alerts_for(fake_db, report_id)) == 1
        assert audit_actions(fake_db) == ["INCIDENT_STATUS_CHANGE_REJECT"]

    def test_resolve_soft_expires_alerts(self, lifecycle_service, fake_db, clock, submit):
        report_id = submit()
        lifecycle_service.apply_action(report_id, "Verify", ACTOR)
        clock.advance(minutes=30)

        result = lifecycle_service.apply_action(report_id, "Resolve", ACTOR, "Police attended")

        assert result["new_status"] == "Resolved"
        alerts = alerts_for(fake_db, report_id)
        assert len(alerts) == 1
        assert alerts[0]["expires_at"] <= clock.now
        assert alerts[0]["message"].endswith(" (RESOLVED)")
        assert "SAFETY_ALERT_EXPIRED" in audit_actions(fake_db)

    def test_resolve_without_active_alert(self, lifecycle_service, fake_db, submit):
        report_id = submit()

        result = lifecycle_service.apply_action(report_id, "Resolve", ACTOR)

        assert result["new_status"] == "Resolved"
        assert "SAFETY_ALERT_EXPIRED" not in audit_actions(fake_db)

    def test_resolve_leaves_expired_alerts_alone(self, lifecycle_service, fake_db, clock, submit):
        report_id = submit(severity="Critical")
        clock.advance(hours=3)

        lifecycle_service.apply_action(report_id, "Resolve", ACTOR)

        assert not alerts_for(fake_db, report_id)[0]["message"].endswith("(RESOLVED)")

    def test_admin_notes_accumulate(self, lifecycle_service, fake_db, submit):
        report_id = submit()

        lifecycle_service.apply_action(report_id, "Verify", ACTOR, "first")
        lifecycle_service.apply_action(report_id, "Resolve", ACTOR, "<b>second</b>")

        notes = fake_db.tables["incident_reports"][report_id]["admin_notes"].split("\n")
        assert notes == [
            "[Admin - 42] 2024-03-01 12:00: first",
            "[Admin - 42] 2024-03-01 12:00: &lt;b&gt;second&lt;/b&gt;",
        ]


class TestTransitions:
    """Test the allowed transition table"""

    @pytest.mark.parametrize("first,second", [
        ("Verify", "Reject"),
        ("Reject", "Verify"),
        ("Reject", "Reject"),
        ("Resolve", "Verify"),
        ("Resolve", "Resolve"),
    ])
    def test_invalid_transitions(self, lifecycle_service, fake_db, submit, first, second):
        report_id = submit()
        lifecycle_service.apply_action(report_id, first, ACTOR)
        status_before = fake_db.tables["incident_reports"][report_id]["status"]

        with pytest.raises(InvalidTransitionError):
            lifecycle_service.apply_action(report_id, second, ACTOR)

        assert fake_db.tables["incident_reports"][report_id]["status"] == status_before

    def test_rejected_report_can_be_resolved(self, lifecycle_service, submit):
        report_id = submit()
        lifecycle_service.apply_action(report_id, "Reject", ACTOR)

        assert lifecycle_service.apply_action(report_id, "Resolve", ACTOR)["new_status"] == "Resolved"

    def test_unknown_action(self, lifecycle_service, submit):
        with pytest.raises(ValidationError) as exc_info:
            lifecycle_service.apply_action(submit(), "Escalate", ACTOR)

        assert exc_info.value.field == "action"

    def test_unknown_report(self, lifecycle_service):
        with pytest.raises(NotFoundError):
            lifecycle_service.apply_action(str(uuid4()), "Verify", ACTOR)

    def test_malformed_report_id(self, lifecycle_service):
        with pytest.raises(ValidationError):
            lifecycle_service.apply_action("1 OR 1=1", "Verify", ACTOR)


class TestAdminOperations:
    """Test report detail, deletion and manual alerts"""

    def test_report_detail_decrypts_description(self, lifecycle_service, submit, valid_payload):
        report_id = submit()

        detail = lifecycle_service.get_report_detail(report_id)

        assert detail["description"] == valid_payload["description"]
        assert detail["latitude"] == 12.34
        assert detail["alerts"] == []

    def test_report_detail_tampered_description(self, lifecycle_service, fake_db, submit):
        report_id = submit()
        fake_db.tables["incident_reports"][report_id]["description"] = "AAAA"

        with pytest.raises(TamperError):
            lifecycle_service.get_report_detail(report_id)

    def test_delete_cascades(self, lifecycle_service, fake_db, submit):
        report_id = submit(severity="Critical")

        result = lifecycle_service.delete_report(report_id, ACTOR)

        assert result["alerts_deleted"] == 1
        assert fake_db.tables["incident_reports"] == {}
        assert fake_db.tables["locations"] == {}
        assert fake_db.tables["safety_alerts"] == {}
        assert audit_actions(fake_db) == ["INCIDENT_DELETED"]

    def test_delete_unknown_report(self, lifecycle_service):
        with pytest.raises(NotFoundError):
            lifecycle_service.delete_report(str(uuid4()), ACTOR)

    def test_manual_alert_linked_to_report(self, lifecycle_service, fake_db, clock, submit):
        report_id = submit()

        result = lifecycle_service.create_manual_alert(
            ACTOR, "Warning", "Avoid the north exit", report_id=report_id, radius_km=0.5, duration_hours=1
        )

        alert = fake_db.tables["safety_alerts"][result["alert_id"]]
        assert alert["report_id"] == report_id
        assert alert["alert_type"] == "SEVERE_WARNING"
        assert alert["location_radius_km"] == 0.5
        assert alert["expires_at"] == clock.now + timedelta(hours=1)

    def test_manual_alert_defaults(self, lifecycle_service, fake_db, clock):
        result = lifecycle_service.create_manual_alert(ACTOR, "Critical", "Station closed")

        alert = fake_db.tables["safety_alerts"][result["alert_id"]]
        assert alert["report_id"] is None
        assert alert["location_radius_km"] == 2.0
        assert alert["expires_at"] == clock.now + timedelta(hours=4)

    @pytest.mark.parametrize("kwargs,field", [
        ({"severity": "High", "message": "x"}, "severity"),
        ({"severity": "Warning", "message": "   "}, "message"),
        ({"severity": "Warning", "message": "x", "radius_km": 0}, "radius_km"),
        ({"severity": "Warning", "message": "x", "duration_hours": 500}, "duration_hours"),
    ])
    def test_manual_alert_validation(self, lifecycle_service, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            lifecycle_service.create_manual_alert(ACTOR, **kwargs)

        assert exc_info.value.field == field

    def test_manual_alert_unknown_report(self, lifecycle_service, fake_db):
        with pytest.raises(NotFoundError):
            lifecycle_service.create_manual_alert(ACTOR, "Warning", "x", report_id=str(uuid4()))

        assert fake_db.tables["safety_alerts"] == {}
