"""
HSSE - Health Monitoring API Tests
===================================
Tests: Health records, medical conditions, vaccinations & compliance,
       health incidents, emergency contacts, dashboard & alerts
"""

import datetime

import pytest
from tests.conftest import db_count, db_execute, login_as


@pytest.fixture
def nurse(client, seeded_db):
    return login_as(client, "health@hsse.test")


def _days(n):
    return (datetime.date.today() + datetime.timedelta(days=n)).isoformat()


def _record(client, **overrides):
    payload = {"person_name": "Jordan Lee", "person_type": "Student", "blood_type": "OPositive"}
    payload.update(overrides)
    resp = client.post("/api/health/records", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["record"]


def _vaccine_row(client, name):
    compliance = client.get("/api/health/analytics/vaccination-compliance").json()["compliance"]
    return next(b for b in compliance["by_vaccine"] if b["vaccine_name"] == name)


class TestHealthRecords:

    def test_create_record(self, nurse):
        record = _record(nurse)
        assert record["is_active"] is True
        assert record["medical_conditions"] == []
        assert record["has_critical_conditions"] is False

    def test_name_required(self, nurse):
        assert nurse.post("/api/health/records", json={"person_type": "Staff"}).status_code == 400

    def test_invalid_blood_type(self, nurse):
        resp = nurse.post("/api/health/records", json={"person_name": "X", "blood_type": "Z+"})
        assert resp.status_code == 400

    def test_linked_user_fills_email_once(self, nurse, seeded_db):
        user_id = seeded_db["viewer@hsse.test"]
        record = _record(nurse, person_name="Vic Viewer", person_type="Staff", person_id=user_id)
        assert record["person_email"] == "viewer@hsse.test"
        resp = nurse.post("/api/health/records", json={"person_name": "Vic Again", "person_id": user_id})
        assert resp.status_code == 400

    def test_my_record(self, client, seeded_db):
        login_as(client, "health@hsse.test")
        assert client.get("/api/health/my-record").status_code == 404
        _record(client, person_name="Hana Health", person_type="Staff",
                person_id=seeded_db["health@hsse.test"])
        resp = client.get("/api/health/my-record")
        assert resp.json()["record"]["person_name"] == "Hana Health"

    def test_deactivated_record_is_read_only(self, nurse):
        record = _record(nurse, person_name="Leaving Student")
        assert nurse.delete(f"/api/health/records/{record['id']}").status_code == 200
        resp = nurse.put(f"/api/health/records/{record['id']}", json={"medical_notes": "x"})
        assert resp.status_code == 400
        listed = nurse.get("/api/health/records", params={"search": "Leaving Student"}).json()["items"]
        assert listed == []

    def test_export(self, nurse):
        _record(nurse, person_name="Export Person")
        resp = nurse.get("/api/health/records/export")
        assert resp.text.splitlines()[0].startswith("Name,Email,Type")

    def test_viewer_denied(self, viewer_session):
        assert viewer_session.get("/api/health/records").status_code == 403


class TestMedicalConditions:

    def test_critical_condition_flags_record(self, nurse):
        record = _record(nurse, person_name="Peanut Allergy")
        resp = nurse.post(f"/api/health/records/{record['id']}/conditions", json={
            "name": "Peanut anaphylaxis", "condition_type": "Allergy", "severity": "Critical",
            "emergency_protocol": "Administer EpiPen", "requires_emergency_action": True})
        assert resp.status_code == 200
        assert resp.json()["condition"]["requires_emergency_action"] is True
        detail = nurse.get(f"/api/health/records/{record['id']}").json()["record"]
        assert detail["has_critical_conditions"] is True

        alerts = nurse.get("/api/health/alerts").json()["alerts"]
        assert any(a["alert_type"] == "CriticalCondition" and a["health_record_id"] == record["id"]
                   for a in alerts)
        assert alerts[0]["severity"] == "Critical"

    def test_invalid_condition_type(self, nurse):
        record = _record(nurse, person_name="Bad Condition")
        resp = nurse.post(f"/api/health/records/{record['id']}/conditions",
                          json={"name": "X", "condition_type": "Curse"})
        assert resp.status_code == 400

    def test_update_and_remove(self, nurse):
        record = _record(nurse, person_name="Asthma Case")
        cond = nurse.post(f"/api/health/records/{record['id']}/conditions", json={
            "name": "Asthma", "condition_type": "ChronicCondition", "severity": "Medium"}).json()["condition"]
        resp = nurse.put(f"/api/health/conditions/{cond['id']}", json={"severity": "High"})
        assert resp.json()["condition"]["severity"] == "High"
        assert nurse.delete(f"/api/health/conditions/{cond['id']}").status_code == 200
        detail = nurse.get(f"/api/health/records/{record['id']}").json()["record"]
        assert detail["medical_conditions"] == []
        assert nurse.put(f"/api/health/conditions/{cond['id']}", json={"severity": "Low"}).status_code == 404


class TestVaccinations:

    def test_default_status(self, nurse):
        record = _record(nurse, person_name="Default Status")
        base = f"/api/health/records/{record['id']}/vaccinations"
        given = nurse.post(base, json={"vaccine_name": "Tetanus", "date_administered": _days(-10)}).json()
        assert given["vaccination"]["status"] == "Administered"
        planned = nurse.post(base, json={"vaccine_name": "Hepatitis B", "next_due_date": _days(20)}).json()
        assert planned["vaccination"]["status"] == "Scheduled"

    def test_validation(self, nurse):
        record = _record(nurse, person_name="Bad Dates")
        base = f"/api/health/records/{record['id']}/vaccinations"
        assert nurse.post(base, json={"vaccine_name": "A", "date_administered": _days(3)}).status_code == 400
        assert nurse.post(base, json={"vaccine_name": "A", "date_administered": _days(-3),
                                      "expiry_date": _days(-5)}).status_code == 400
        assert nurse.post(base, json={"vaccine_name": "A", "dose_number": 3,
                                      "total_doses_required": 2}).status_code == 400
        assert nurse.post(base, json={"vaccine_name": "A", "status": "Exempted"}).status_code == 400

    def test_compliance_counts_required_only(self, nurse):
        record = _record(nurse, person_name="Compliance Check", person_type="Staff")
        base = f"/api/health/records/{record['id']}/vaccinations"
        nurse.post(base, json={"vaccine_name": "MeaslesCheck", "is_required": True,
                               "date_administered": _days(-30), "expiry_date": _days(300)})
        nurse.post(base, json={"vaccine_name": "MeaslesCheck", "is_required": True,
                               "next_due_date": _days(10)})
        nurse.post(base, json={"vaccine_name": "OptionalFlu", "is_required": False,
                               "next_due_date": _days(10)})
        row = _vaccine_row(nurse, "MeaslesCheck")
        assert row["required"] == 2
        assert row["compliant"] == 1
        assert row["compliance_rate"] == 50.0
        compliance = nurse.get("/api/health/analytics/vaccination-compliance").json()["compliance"]
        assert all(b["vaccine_name"] != "OptionalFlu" for b in compliance["by_vaccine"])

    def test_exemption(self, nurse):
        record = _record(nurse, person_name="Exempt Person")
        base = f"/api/health/records/{record['id']}/vaccinations"
        valid = nurse.post(base, json={"vaccine_name": "ExemptVax", "is_required": True,
                                       "date_administered": _days(-5)}).json()["vaccination"]
        assert nurse.post(f"/api/health/vaccinations/{valid['id']}/exemption",
                          json={"reason": "Medical"}).status_code == 400

        due = nurse.post(base, json={"vaccine_name": "ExemptVax", "is_required": True,
                                     "next_due_date": _days(5)}).json()["vaccination"]
        assert nurse.post(f"/api/health/vaccinations/{due['id']}/exemption", json={}).status_code == 400
        resp = nurse.post(f"/api/health/vaccinations/{due['id']}/exemption",
                          json={"reason": "Documented allergy to component"})
        data = resp.json()["vaccination"]
        assert data["status"] == "Exempted"
        assert data["is_compliant"] is True
        assert _vaccine_row(nurse, "ExemptVax")["compliance_rate"] == 100.0

    def test_reporter_cannot_exempt(self, nurse, client):
        record = _record(nurse, person_name="Reporter Exempt")
        vacc = nurse.post(f"/api/health/records/{record['id']}/vaccinations", json={
            "vaccine_name": "Polio", "next_due_date": _days(5)}).json()["vaccination"]
        login_as(client, "reporter@hsse.test")
        resp = client.post(f"/api/health/vaccinations/{vacc['id']}/exemption", json={"reason": "x"})
        assert resp.status_code == 403

    def test_expiry_sweep_marks_overdue(self, nurse):
        record = _record(nurse, person_name="Lapsed Person")
        base = f"/api/health/records/{record['id']}/vaccinations"
        lapsed = nurse.post(base, json={"vaccine_name": "SweepVax", "is_required": True,
                                        "date_administered": _days(-400), "expiry_date": _days(30)}
                            ).json()["vaccination"]
        missed = nurse.post(base, json={"vaccine_name": "SweepVax", "is_required": True,
                                        "next_due_date": _days(5)}).json()["vaccination"]
        db_execute("UPDATE vaccinations SET expiry_date = ? WHERE id = ?", (_days(-1), lapsed["id"]))
        db_execute("UPDATE vaccinations SET next_due_date = ? WHERE id = ?", (_days(-1), missed["id"]))

        from hsse.health import expire_vaccinations
        assert expire_vaccinations() >= 2
        assert db_count("vaccinations", "id IN (?, ?) AND status = 'Overdue'", (lapsed["id"], missed["id"])) == 2
        row = _vaccine_row(nurse, "SweepVax")
        assert row["overdue"] == 2
        assert row["compliance_rate"] == 0.0

        alerts = nurse.get("/api/health/alerts").json()["alerts"]
        assert any(a["alert_type"] == "VaccinationOverdue" and a["health_record_id"] == record["id"]
                   for a in alerts)

    def test_compliance_by_person_type_filter(self, nurse):
        resp = nurse.get("/api/health/analytics/vaccination-compliance", params={"person_type": "Alien"})
        assert resp.status_code == 400
        data = nurse.get("/api/health/analytics/vaccination-compliance",
                         params={"person_type": "Student"}).json()["compliance"]
        assert data["by_person_type"]["Staff"]["required"] == 0


class TestHealthIncidents:

    def test_record_and_resolve(self, nurse):
        record = _record(nurse, person_name="Playground Fall")
        resp = nurse.post(f"/api/health/records/{record['id']}/incidents", json={
            "incident_type": "Injury", "severity": "Severe", "symptoms": "Wrist pain",
            "treatment_provided": "Splint", "parent_notified": True})
        assert resp.status_code == 200
        incident = resp.json()["incident"]
        assert incident["person_name"] == "Playground Fall"
        assert incident["parent_notified"] is True
        assert incident["is_resolved"] is False

        listed = nurse.get("/api/health/incidents", params={"severity": "Severe"}).json()["incidents"]
        assert incident["id"] in {i["id"] for i in listed}

        resp = nurse.post(f"/api/health/incidents/{incident['id']}/resolve", json={"notes": "X-ray clear"})
        assert resp.json()["incident"]["is_resolved"] is True
        assert nurse.post(f"/api/health/incidents/{incident['id']}/resolve", json={}).status_code == 400

    def test_future_incident_rejected(self, nurse):
        record = _record(nurse, person_name="Future Incident")
        resp = nurse.post(f"/api/health/records/{record['id']}/incidents", json={
            "incident_type": "Illness", "occurred_at": _days(2)})
        assert resp.status_code == 400


class TestEmergencyContacts:

    def _contact(self, client, record_id, name, **extra):
        payload = {"name": name, "relationship": "Parent", "primary_phone": "+1 555 0100"}
        payload.update(extra)
        resp = client.post(f"/api/health/records/{record_id}/emergency-contacts", json=payload)
        assert resp.status_code == 200, resp.text
        return resp.json()["contact"]

    def test_first_contact_is_primary(self, nurse):
        record = _record(nurse, person_name="Contact Owner")
        first = self._contact(nurse, record["id"], "Alex Parent")
        assert first["is_primary"] is True
        second = self._contact(nurse, record["id"], "Sam Parent", priority=2)
        assert second["is_primary"] is False

        third = self._contact(nurse, record["id"], "Grandma", is_primary=True, priority=3)
        contacts = nurse.get(f"/api/health/records/{record['id']}/emergency-contacts").json()["contacts"]
        assert [c["id"] for c in contacts if c["is_primary"]] == [third["id"]]

    def test_removing_primary_promotes_next(self, nurse):
        record = _record(nurse, person_name="Promotion Case")
        first = self._contact(nurse, record["id"], "Primary One")
        second = self._contact(nurse, record["id"], "Backup Two", priority=2)
        assert nurse.delete(f"/api/health/emergency-contacts/{first['id']}").status_code == 200
        contacts = nurse.get(f"/api/health/records/{record['id']}/emergency-contacts").json()["contacts"]
        assert [(c["id"], c["is_primary"]) for c in contacts] == [(second["id"], True)]

    def test_required_fields_and_priority(self, nurse):
        record = _record(nurse, person_name="Contact Validation")
        resp = nurse.post(f"/api/health/records/{record['id']}/emergency-contacts",
                          json={"name": "No Phone", "relationship": "Aunt"})
        assert resp.status_code == 400
        resp = nurse.post(f"/api/health/records/{record['id']}/emergency-contacts", json={
            "name": "Bad Priority", "relationship": "Aunt", "primary_phone": "1", "priority": 0})
        assert resp.status_code == 400

    def test_missing_contact_alert(self, nurse):
        record = _record(nurse, person_name="Nobody To Call")
        alerts = nurse.get("/api/health/alerts").json()["alerts"]
        assert any(a["alert_type"] == "MissingEmergencyContact" and a["health_record_id"] == record["id"]
                   for a in alerts)


class TestHealthDashboard:

    def test_dashboard_shape(self, nurse):
        dash = nurse.get("/api/health/dashboard").json()["dashboard"]
        assert dash["active_records"] == dash["student_records"] + dash["staff_records"]
        assert "compliance_rate" in dash["vaccination_compliance"]
        assert dash["risk_summary"]["risk_level"] in ("Low", "Medium", "High", "Critical")
        assert isinstance(dash["risk_summary"]["recommendations"], list)

    def test_record_trail(self, nurse):
        record = _record(nurse, person_name="Trail Person")
        nurse.put(f"/api/health/records/{record['id']}", json={"medical_notes": "Wears glasses"})
        trail = nurse.get(f"/api/health/records/{record['id']}/audit-trail").json()["trail"]
        assert {"Created", "Updated"} <= {t["action"] for t in trail}
