"""
HSSE - Inspection API Tests
============================
Tests: Inspection lifecycle, checklist responses, findings workflow
"""

import datetime

import pytest
from tests.conftest import db_count, db_execute, login_as


@pytest.fixture
def inspector(client, seeded_db):
    return login_as(client, "inspector@hsse.test")


def _new_inspection(client, **overrides):
    payload = {
        "title": "Boiler room walkdown",
        "inspection_type": "Safety",
        "scheduled_date": (datetime.date.today() + datetime.timedelta(days=2)).isoformat(),
        "location": "Plant 1",
        "items": [
            {"question": "Guards in place?", "item_type": "YesNo"},
            {"question": "Boiler pressure", "item_type": "Measurement", "min_value": 1.0,
             "max_value": 2.5, "unit": "bar"},
            {"question": "Housekeeping rating", "item_type": "MultipleChoice",
             "options": ["Good", "Fair", "Poor"], "is_required": False},
        ],
    }
    payload.update(overrides)
    resp = client.post("/api/inspections", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["inspection"]


def _running_inspection(client, **overrides):
    insp = _new_inspection(client, **overrides)
    client.post(f"/api/inspections/{insp['id']}/schedule", json={})
    resp = client.post(f"/api/inspections/{insp['id']}/start")
    assert resp.status_code == 200, resp.text
    return client.get(f"/api/inspections/{insp['id']}").json()["inspection"]


class TestInspectionLifecycle:

    def test_create_numbers_and_items(self, inspector, seeded_db):
        insp = _new_inspection(inspector)
        stamp = datetime.date.today().strftime("%Y%m%d")
        assert insp["inspection_number"].startswith(f"INS-{stamp}-")
        assert insp["status"] == "Draft"
        assert len(insp["items"]) == 3
        assert insp["items"][2]["options"] == "Good,Fair,Poor"
        assert insp["inspector_id"] == seeded_db["inspector@hsse.test"]
        assert insp["progress"] == 0

    def test_scheduled_date_required(self, inspector):
        resp = inspector.post("/api/inspections", json={"title": "No date"})
        assert resp.status_code == 400

    def test_invalid_item_type(self, inspector):
        resp = inspector.post("/api/inspections", json={
            "title": "Bad item", "scheduled_date": "2030-01-01",
            "items": [{"question": "Q", "item_type": "Telepathy"}]})
        assert resp.status_code == 400

    def test_draft_cannot_start(self, inspector):
        insp = _new_inspection(inspector)
        assert inspector.post(f"/api/inspections/{insp['id']}/start").status_code == 400

    def test_overdue_sweep_then_start(self, inspector):
        insp = _new_inspection(inspector)
        inspector.post(f"/api/inspections/{insp['id']}/schedule", json={})
        db_execute("UPDATE inspections SET scheduled_date = ? WHERE id = ?",
                   ((datetime.date.today() - datetime.timedelta(days=1)).isoformat(), insp["id"]))
        from hsse.inspections import mark_overdue_inspections
        assert mark_overdue_inspections() >= 1
        data = inspector.get(f"/api/inspections/{insp['id']}").json()["inspection"]
        assert data["status"] == "Overdue"
        assert data["is_overdue"] is True
        resp = inspector.post(f"/api/inspections/{insp['id']}/start")
        assert resp.json()["inspection"]["status"] == "InProgress"

    def test_cancel_then_archive(self, inspector):
        insp = _new_inspection(inspector)
        assert inspector.post(f"/api/inspections/{insp['id']}/archive").status_code == 400
        assert inspector.post(f"/api/inspections/{insp['id']}/cancel", json={}).status_code == 400
        inspector.post(f"/api/inspections/{insp['id']}/cancel", json={"reason": "Shutdown week"})
        resp = inspector.post(f"/api/inspections/{insp['id']}/archive")
        assert resp.json()["inspection"]["status"] == "Archived"
        assert inspector.put(f"/api/inspections/{insp['id']}", json={"title": "X"}).status_code == 400

    def test_viewer_denied(self, viewer_session):
        assert viewer_session.get("/api/inspections").status_code == 403


class TestInspectionResponses:

    def test_responses_only_while_running(self, inspector):
        insp = _new_inspection(inspector)
        item = insp["items"][0]
        resp = inspector.post(f"/api/inspections/{insp['id']}/items/{item['id']}/response",
                              json={"response": "Yes"})
        assert resp.status_code == 400

    def test_measurement_out_of_range_fails(self, inspector):
        insp = _running_inspection(inspector)
        item = insp["items"][1]
        base = f"/api/inspections/{insp['id']}/items/{item['id']}/response"
        resp = inspector.post(base, json={"response": 3.1})
        assert resp.json()["item"]["status"] == "Failed"
        assert resp.json()["item"]["passed"] is False
        resp = inspector.post(base, json={"response": 2.0})
        assert resp.json()["item"]["status"] == "Completed"
        assert inspector.post(base, json={"response": "high"}).status_code == 400

    def test_multiple_choice_must_match_options(self, inspector):
        insp = _running_inspection(inspector)
        item = insp["items"][2]
        base = f"/api/inspections/{insp['id']}/items/{item['id']}/response"
        assert inspector.post(base, json={"response": "Great"}).status_code == 400
        assert inspector.post(base, json={"response": "Fair"}).json()["item"]["status"] == "Completed"

    def test_required_items_cannot_be_skipped(self, inspector):
        insp = _running_inspection(inspector)
        required, _, optional = insp["items"]
        base = f"/api/inspections/{insp['id']}/items"
        assert inspector.post(f"{base}/{required['id']}/response", json={"skip": True}).status_code == 400
        resp = inspector.post(f"{base}/{optional['id']}/response", json={"skip": True})
        assert resp.json()["item"]["status"] == "Skipped"

    def test_complete_requires_all_required_items(self, inspector):
        insp = _running_inspection(inspector)
        guards, pressure, _ = insp["items"]
        base = f"/api/inspections/{insp['id']}"
        inspector.post(f"{base}/items/{guards['id']}/response", json={"response": "yes"})
        resp = inspector.post(f"{base}/complete", json={"summary": "Partial"})
        assert resp.status_code == 400
        assert "1 required item" in resp.json()["error"]

        inspector.post(f"{base}/items/{pressure['id']}/response", json={"response": 1.8})
        resp = inspector.post(f"{base}/complete", json={"summary": "All good", "recommendations": "None"})
        assert resp.status_code == 200
        done = resp.json()["inspection"]
        assert done["status"] == "Completed"
        assert done["actual_duration_minutes"] is not None
        assert done["summary"] == "All good"

    def test_item_added_and_removed(self, inspector):
        insp = _new_inspection(inspector, items=[])
        resp = inspector.post(f"/api/inspections/{insp['id']}/items", json={"question": "Eyewash flushed?"})
        item = resp.json()["item"]
        assert item["sort_order"] == 1
        assert inspector.delete(f"/api/inspections/{insp['id']}/items/{item['id']}").status_code == 200
        assert db_count("inspection_items", "id = ?", (item["id"],)) == 0


class TestInspectionFindings:

    def test_risk_follows_worst_severity(self, inspector):
        insp = _running_inspection(inspector)
        base = f"/api/inspections/{insp['id']}/findings"
        resp = inspector.post(base, json={"description": "Oil on floor", "severity": "Moderate"})
        assert resp.json()["finding"]["finding_number"] == f"{insp['inspection_number']}-F01"
        assert resp.json()["inspection"]["risk_level"] == "Medium"
        resp = inspector.post(base, json={"description": "Relief valve seized", "severity": "Critical"})
        assert resp.json()["inspection"]["risk_level"] == "Critical"

    def test_invalid_severity(self, inspector):
        insp = _running_inspection(inspector)
        resp = inspector.post(f"/api/inspections/{insp['id']}/findings",
                              json={"description": "X", "severity": "Apocalyptic"})
        assert resp.status_code == 400

    def test_finding_workflow(self, inspector):
        insp = _running_inspection(inspector)
        finding = inspector.post(f"/api/inspections/{insp['id']}/findings", json={
            "description": "Missing guard on pump", "severity": "Major",
            "inspection_item_id": insp["items"][0]["id"]}).json()["finding"]
        base = f"/api/inspections/{insp['id']}/findings/{finding['id']}"

        assert inspector.post(f"{base}/resolve").status_code == 400
        resp = inspector.post(f"{base}/corrective-action", json={"corrective_action": "Refit guard"})
        assert resp.json()["finding"]["status"] == "InProgress"
        inspector.post(f"{base}/resolve")
        assert inspector.post(f"{base}/close", json={}).status_code == 400
        assert inspector.post(f"{base}/verify").json()["finding"]["status"] == "Verified"
        resp = inspector.post(f"{base}/close", json={"notes": "Guard refitted"})
        assert resp.json()["finding"]["status"] == "Closed"
        assert inspector.post(f"{base}/corrective-action",
                              json={"corrective_action": "Again"}).status_code == 400

        resp = inspector.post(f"{base}/reopen", json={"reason": "Guard removed again"})
        assert resp.json()["finding"]["status"] == "Open"
        assert resp.json()["finding"]["closure_notes"] == "Reopened: Guard removed again"

    def test_finding_for_foreign_item_rejected(self, inspector):
        a = _running_inspection(inspector)
        b = _running_inspection(inspector)
        resp = inspector.post(f"/api/inspections/{a['id']}/findings", json={
            "description": "Wrong item", "inspection_item_id": b["items"][0]["id"]})
        assert resp.status_code == 404


class TestInspectionExtras:

    def test_dashboard(self, inspector):
        dash = inspector.get("/api/inspections/dashboard").json()["dashboard"]
        assert dash["total"] == sum(dash["by_status"].values())
        assert 0 <= dash["compliance_rate"] <= 100

    def test_export_xlsx(self, inspector):
        resp = inspector.get("/api/inspections/export", params={"format": "xlsx"})
        assert resp.status_code == 200
        assert resp.content[:2] == b"PK"

    def test_my_inspections_and_trail(self, inspector, seeded_db):
        insp = _new_inspection(inspector)
        items = inspector.get("/api/inspections/my-inspections").json()["items"]
        assert insp["id"] in {i["id"] for i in items}
        inspector.post(f"/api/inspections/{insp['id']}/comments", json={"comment": "Bring gas meter"})
        trail = inspector.get(f"/api/inspections/{insp['id']}/audit-trail").json()["trail"]
        assert "Created" in {t["action"] for t in trail}
