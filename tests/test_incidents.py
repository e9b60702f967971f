"""
HSSE - Incident API Tests
==========================
Tests: Incident reporting, status transitions, attachments,
       involved persons, corrective actions, statistics
"""

import datetime

import pytest
from tests.conftest import db_count, db_query, login_as


@pytest.fixture
def incident_mgr(client, seeded_db):
    return login_as(client, "incidents@hsse.test")


def _report(client, **overrides):
    payload = {
        "title": "Slip on wet floor",
        "description": "Operator slipped near wash bay",
        "location": "Wash Bay",
        "severity": "Moderate",
        "department": "Operations",
    }
    payload.update(overrides)
    resp = client.post("/api/incidents", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["incident"]


class TestIncidentReporting:

    def test_create_numbers_incident(self, incident_mgr, seeded_db):
        incident = _report(incident_mgr)
        assert incident["incident_number"].startswith(f"INC-{datetime.date.today().year}-")
        assert incident["status"] == "Reported"
        assert incident["reporter_id"] == seeded_db["incidents@hsse.test"]

    def test_required_fields(self, incident_mgr):
        resp = incident_mgr.post("/api/incidents", json={"title": "No location", "description": "x"})
        assert resp.status_code == 400
        assert "Location" in resp.json()["error"]

    def test_invalid_severity(self, incident_mgr):
        resp = incident_mgr.post("/api/incidents", json={
            "title": "X", "description": "Y", "location": "Z", "severity": "Catastrophic"})
        assert resp.status_code == 400

    def test_future_date_rejected(self, incident_mgr):
        future = (datetime.date.today() + datetime.timedelta(days=1)).isoformat()
        resp = incident_mgr.post("/api/incidents", json={
            "title": "X", "description": "Y", "location": "Z", "incident_date": future})
        assert resp.status_code == 400

    def test_my_reports(self, incident_mgr):
        incident = _report(incident_mgr)
        items = incident_mgr.get("/api/incidents/my-reports").json()["items"]
        assert incident["id"] in {i["id"] for i in items}

    def test_search_and_filter(self, incident_mgr):
        _report(incident_mgr, title="Forklift tipped pallet", severity="Serious")
        data = incident_mgr.get("/api/incidents", params={"search": "Forklift", "severity": "Serious"}).json()
        assert data["total"] >= 1
        assert all(i["severity"] == "Serious" for i in data["items"])

    def test_update_and_delete(self, incident_mgr):
        incident = _report(incident_mgr)
        resp = incident_mgr.put(f"/api/incidents/{incident['id']}", json={"root_cause": "Leaking hose"})
        assert resp.json()["incident"]["root_cause"] == "Leaking hose"
        assert incident_mgr.put(f"/api/incidents/{incident['id']}", json={"nope": 1}).status_code == 400
        assert incident_mgr.delete(f"/api/incidents/{incident['id']}").status_code == 200
        assert incident_mgr.get(f"/api/incidents/{incident['id']}").status_code == 404

    def test_other_managers_denied(self, client, seeded_db):
        login_as(client, "ppe@hsse.test")
        assert client.get("/api/incidents").status_code == 403


class TestIncidentStatus:

    def test_full_lifecycle(self, incident_mgr):
        incident = _report(incident_mgr)
        base = f"/api/incidents/{incident['id']}/status"

        assert incident_mgr.post(base, json={"status": "UnderInvestigation"}).status_code == 400
        resp = incident_mgr.post(base, json={"status": "UnderInvestigation", "comment": "Team assigned"})
        assert resp.json()["incident"]["status"] == "UnderInvestigation"
        incident_mgr.post(base, json={"status": "AwaitingAction", "comment": "Hose on order"})
        resp = incident_mgr.post(base, json={"status": "Resolved", "comment": "Hose replaced"})
        assert resp.json()["incident"]["resolved_at"] is not None
        resp = incident_mgr.post(base, json={"status": "Closed"})
        assert resp.json()["incident"]["status"] == "Closed"

        assert incident_mgr.put(f"/api/incidents/{incident['id']}", json={"title": "X"}).status_code == 400

        resp = incident_mgr.post(base, json={"status": "UnderInvestigation", "comment": "Recurred"})
        reopened = resp.json()["incident"]
        assert reopened["closed_at"] is None
        assert reopened["resolved_at"] is None

    def test_illegal_transition(self, incident_mgr):
        incident = _report(incident_mgr)
        resp = incident_mgr.post(f"/api/incidents/{incident['id']}/status",
                                 json={"status": "Closed", "comment": "Skip"})
        assert resp.status_code == 400
        assert "Cannot change status" in resp.json()["error"]

    def test_unknown_status(self, incident_mgr):
        incident = _report(incident_mgr)
        resp = incident_mgr.post(f"/api/incidents/{incident['id']}/status",
                                 json={"status": "Vanished", "comment": "x"})
        assert resp.status_code == 400

    def test_detail_lists_allowed_transitions(self, incident_mgr):
        incident = _report(incident_mgr)
        detail = incident_mgr.get(f"/api/incidents/{incident['id']}/detail").json()["incident"]
        assert detail["allowed_transitions"] == ["Resolved", "UnderInvestigation"]

    def test_status_change_logged(self, incident_mgr):
        incident = _report(incident_mgr)
        incident_mgr.post(f"/api/incidents/{incident['id']}/status",
                          json={"status": "Resolved", "comment": "Minor, fixed on the spot"})
        trail = incident_mgr.get(f"/api/incidents/{incident['id']}/audit-trail").json()["trail"]
        assert {"Created", "StatusChanged"} <= {t["action"] for t in trail}


class TestIncidentChildren:

    def test_attachment_round_trip(self, incident_mgr):
        incident = _report(incident_mgr)
        resp = incident_mgr.post(f"/api/incidents/{incident['id']}/attachments",
                                 files={"file": ("photo.jpg", b"\xff\xd8fakejpeg", "image/jpeg")})
        assert resp.status_code == 200
        att_id = resp.json()["attachment_id"]
        assert resp.json()["file_size"] == 10

        resp = incident_mgr.get(f"/api/incidents/{incident['id']}/attachments/{att_id}")
        assert resp.content == b"\xff\xd8fakejpeg"
        assert incident_mgr.delete(f"/api/incidents/{incident['id']}/attachments/{att_id}").status_code == 200
        assert incident_mgr.get(f"/api/incidents/{incident['id']}/attachments/{att_id}").status_code == 404

    def test_blocked_and_empty_uploads(self, incident_mgr):
        incident = _report(incident_mgr)
        url = f"/api/incidents/{incident['id']}/attachments"
        resp = incident_mgr.post(url, files={"file": ("tool.exe", b"MZ", "application/octet-stream")})
        assert resp.status_code == 400
        resp = incident_mgr.post(url, files={"file": ("empty.txt", b"", "text/plain")})
        assert resp.status_code == 400

    def test_involved_person_by_user_id(self, incident_mgr, seeded_db):
        incident = _report(incident_mgr)
        url = f"/api/incidents/{incident['id']}/involved-persons"
        resp = incident_mgr.post(url, json={"person_id": seeded_db["viewer@hsse.test"],
                                            "involvement_type": "Witness"})
        assert resp.status_code == 200
        row_id = resp.json()["id"]
        persons = db_query("SELECT person_name FROM incident_involved_persons WHERE id = ?", (row_id,))
        assert persons[0]["person_name"] == "Vic Viewer"
        assert incident_mgr.post(url, json={"person_name": "No Role"}).status_code == 400
        assert incident_mgr.delete(f"{url}/{row_id}").status_code == 200
        assert incident_mgr.delete(f"{url}/{row_id}").status_code == 404

    def test_corrective_action_complete_once(self, incident_mgr):
        incident = _report(incident_mgr)
        resp = incident_mgr.post(f"/api/incidents/{incident['id']}/corrective-actions",
                                 json={"description": "Install anti-slip matting", "priority": "High"})
        action_id = resp.json()["id"]
        url = f"/api/incidents/{incident['id']}/corrective-actions/{action_id}/complete"
        resp = incident_mgr.post(url, json={"notes": "Matting installed"})
        assert resp.json()["action"]["status"] == "Completed"
        assert incident_mgr.post(url, json={}).status_code == 400

    def test_overdue_corrective_actions_sweep(self, incident_mgr):
        incident = _report(incident_mgr)
        past = (datetime.date.today() - datetime.timedelta(days=3)).isoformat()
        resp = incident_mgr.post(f"/api/incidents/{incident['id']}/corrective-actions",
                                 json={"description": "Retrain crew", "due_date": past})
        action_id = resp.json()["id"]
        from hsse.incidents.models import mark_overdue_corrective_actions
        assert mark_overdue_corrective_actions() >= 1
        assert db_count("incident_corrective_actions", "id = ? AND status = 'Overdue'", (action_id,)) == 1
        dash = incident_mgr.get("/api/incidents/dashboard").json()["dashboard"]
        assert dash["overdue_corrective_actions"] >= 1


class TestIncidentAnalytics:

    def test_statistics(self, incident_mgr):
        _report(incident_mgr, severity="Critical", title="Gas leak")
        stats = incident_mgr.get("/api/incidents/statistics").json()["statistics"]
        assert stats["total"] == sum(stats["by_status"].values())
        assert stats["by_severity"]["Critical"] >= 1

    def test_dashboard(self, incident_mgr):
        dash = incident_mgr.get("/api/incidents/dashboard").json()["dashboard"]
        assert dash["critical_open"] >= 0
        assert len(dash["recent"]) <= 5

    def test_export_csv(self, incident_mgr):
        resp = incident_mgr.get("/api/incidents/export", params={"format": "csv"})
        assert resp.status_code == 200
        assert resp.text.splitlines()[0].startswith("Number,Title,Severity,Status")

    def test_export_bad_format(self, incident_mgr):
        assert incident_mgr.get("/api/incidents/export", params={"format": "pdf"}).status_code == 400

    def test_available_users(self, incident_mgr):
        users = incident_mgr.get("/api/incidents/available-users").json()["users"]
        assert any(u["email"] == "viewer@hsse.test" for u in users)
