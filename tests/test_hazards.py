"""
HSSE - Hazard & Risk API Tests
===============================
Tests: Hazard reporting, risk assessments, approval, mitigation actions
"""

import datetime

import pytest
from tests.conftest import db_count, db_execute, login_as


@pytest.fixture
def risk_mgr(client, seeded_db):
    return login_as(client, "risk@hsse.test")


def _hazard(client, **overrides):
    payload = {
        "title": "Unguarded conveyor nip point",
        "description": "Return roller exposed on line 2",
        "location": "Packing Line 2",
        "category": "Mechanical",
        "severity": "Major",
    }
    payload.update(overrides)
    resp = client.post("/api/hazards", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["hazard"]


def _assess(client, hazard_id, probability, severity, **extra):
    resp = client.post(f"/api/hazards/{hazard_id}/assessments", json={
        "probability_score": probability, "severity_score": severity, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()["assessment"]


class TestHazards:

    def test_report_hazard(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assert hazard["hazard_number"].startswith(f"HAZ-{datetime.date.today().year}-")
        assert hazard["status"] == "Reported"
        assert hazard["identified_date"] == datetime.date.today().isoformat()

    def test_invalid_severity(self, risk_mgr):
        resp = risk_mgr.post("/api/hazards", json={"title": "X", "description": "Y", "location": "Z",
                                                   "severity": "Apocalyptic"})
        assert resp.status_code == 400

    def test_status_change(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        url = f"/api/hazards/{hazard['id']}/status"
        assert risk_mgr.post(url, json={"status": "Reported"}).status_code == 400
        resp = risk_mgr.post(url, json={"status": "Monitoring", "notes": "Temporary barrier"})
        assert resp.json()["hazard"]["status"] == "Monitoring"

    def test_closed_hazard_is_locked(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        resp = risk_mgr.post(f"/api/hazards/{hazard['id']}/close", json={"notes": "Guard fitted"})
        assert resp.json()["hazard"]["status"] == "Closed"
        assert risk_mgr.post(f"/api/hazards/{hazard['id']}/close", json={}).status_code == 400
        assert risk_mgr.put(f"/api/hazards/{hazard['id']}", json={"title": "X"}).status_code == 400
        resp = risk_mgr.post(f"/api/hazards/{hazard['id']}/assessments",
                             json={"probability_score": 2, "severity_score": 2})
        assert resp.status_code == 400

    def test_delete_hides_hazard(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assert risk_mgr.delete(f"/api/hazards/{hazard['id']}").status_code == 200
        assert risk_mgr.get(f"/api/hazards/{hazard['id']}").status_code == 404

    def test_reporter_read_only(self, reporter_session):
        assert reporter_session.get("/api/hazards").status_code == 200
        resp = reporter_session.post("/api/hazards", json={"title": "X", "description": "Y", "location": "Z"})
        assert resp.status_code == 403


class TestRiskAssessments:

    def test_scoring_and_review_date(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assessment = _assess(risk_mgr, hazard["id"], 5, 4)
        assert assessment["risk_score"] == 20
        assert assessment["risk_level"] == "Critical"
        review = datetime.date.fromisoformat(assessment["next_review_date"])
        assert 28 <= (review - datetime.date.today()).days <= 31

        detail = risk_mgr.get(f"/api/hazards/{hazard['id']}").json()["hazard"]
        assert detail["status"] == "UnderAssessment"
        assert detail["current_risk_assessment"]["id"] == assessment["id"]

    def test_scores_out_of_range(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        for p, s in ((0, 3), (6, 1), (3, "4")):
            resp = risk_mgr.post(f"/api/hazards/{hazard['id']}/assessments",
                                 json={"probability_score": p, "severity_score": s})
            assert resp.status_code == 400

    def test_new_assessment_supersedes(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        first = _assess(risk_mgr, hazard["id"], 2, 2)
        assert first["risk_level"] == "VeryLow"
        second = _assess(risk_mgr, hazard["id"], 3, 4, assessment_type="JSA")
        assert second["risk_level"] == "Medium"
        listed = risk_mgr.get(f"/api/hazards/{hazard['id']}/assessments").json()["assessments"]
        active = [a["id"] for a in listed if a["is_active"]]
        assert active == [second["id"]]
        resp = risk_mgr.put(f"/api/hazards/assessments/{first['id']}", json={"probability_score": 1})
        assert resp.status_code == 400

    def test_rescoring_resets_approval(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assessment = _assess(risk_mgr, hazard["id"], 3, 3)
        url = f"/api/hazards/assessments/{assessment['id']}"
        resp = risk_mgr.post(f"{url}/approve", json={"notes": "Agreed"})
        assert resp.json()["assessment"]["is_approved"] is True
        assert risk_mgr.post(f"{url}/approve", json={}).status_code == 400

        resp = risk_mgr.put(url, json={"existing_controls": "Signage"})
        assert resp.json()["assessment"]["is_approved"] is True
        resp = risk_mgr.put(url, json={"severity_score": 5})
        updated = resp.json()["assessment"]
        assert updated["risk_score"] == 15
        assert updated["risk_level"] == "High"
        assert updated["is_approved"] is False

    def test_same_level_rescore_keeps_approval(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assessment = _assess(risk_mgr, hazard["id"], 1, 5)
        url = f"/api/hazards/assessments/{assessment['id']}"
        risk_mgr.post(f"{url}/approve", json={"notes": "Agreed"})
        resp = risk_mgr.put(url, json={"probability_score": 2, "severity_score": 3})
        updated = resp.json()["assessment"]
        assert updated["risk_score"] == 6
        assert updated["risk_level"] == "Low"
        assert updated["is_approved"] is True

    def test_overdue_review_listed(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        assessment = _assess(risk_mgr, hazard["id"], 4, 4)
        db_execute("UPDATE risk_assessments SET next_review_date = ? WHERE id = ?",
                   ((datetime.date.today() - datetime.timedelta(days=1)).isoformat(), assessment["id"]))
        overdue = risk_mgr.get("/api/hazards/overdue-assessments").json()["assessments"]
        assert assessment["id"] in {a["id"] for a in overdue}
        assert all(a["is_overdue"] for a in overdue)


class TestMitigationActions:

    def test_action_moves_hazard_to_mitigating(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        _assess(risk_mgr, hazard["id"], 3, 4)
        resp = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions", json={
            "action_description": "Fit fixed guard", "action_type": "Engineering"})
        assert resp.json()["action"]["status"] == "Planned"
        detail = risk_mgr.get(f"/api/hazards/{hazard['id']}").json()["hazard"]
        assert detail["status"] == "Mitigating"

    def test_action_lifecycle_with_verification(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        action = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions", json={
            "action_description": "Replace solvent", "action_type": "Substitution",
            "requires_verification": True}).json()["action"]
        url = f"/api/hazards/actions/{action['id']}"
        assert risk_mgr.post(f"{url}/complete", json={}).status_code == 400
        assert risk_mgr.post(f"{url}/start").json()["action"]["status"] == "InProgress"
        assert risk_mgr.post(f"{url}/verify", json={"effectiveness_rating": 4}).status_code == 400
        resp = risk_mgr.post(f"{url}/complete", json={"notes": "Water-based cleaner", "actual_cost": 120})
        assert resp.json()["action"]["status"] == "Completed"
        assert risk_mgr.post(f"{url}/verify", json={"effectiveness_rating": 9}).status_code == 400
        resp = risk_mgr.post(f"{url}/verify", json={"effectiveness_rating": 4, "notes": "Fumes gone"})
        assert resp.json()["action"]["effectiveness_rating"] == 4
        assert risk_mgr.post(f"{url}/cancel", json={"reason": "x"}).status_code == 400

    def test_pending_elimination_blocks_close(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        action = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions", json={
            "action_description": "Remove redundant pit", "action_type": "Elimination"}).json()["action"]
        resp = risk_mgr.post(f"/api/hazards/{hazard['id']}/close", json={})
        assert resp.status_code == 400
        url = f"/api/hazards/actions/{action['id']}"
        risk_mgr.post(f"{url}/start")
        risk_mgr.post(f"{url}/complete", json={})
        assert risk_mgr.post(f"/api/hazards/{hazard['id']}/close", json={}).status_code == 200

    def test_overdue_then_extended(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        yesterday = (datetime.date.today() - datetime.timedelta(days=1)).isoformat()
        action = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions", json={
            "action_description": "Toolbox talk", "target_date": yesterday}).json()["action"]
        from hsse.hazards import mark_overdue_actions
        assert mark_overdue_actions() >= 1
        assert db_count("hazard_mitigation_actions", "id = ? AND status = 'Overdue'", (action["id"],)) == 1

        url = f"/api/hazards/actions/{action['id']}/extend"
        assert risk_mgr.post(url, json={"target_date": yesterday}).status_code == 400
        next_week = (datetime.date.today() + datetime.timedelta(days=7)).isoformat()
        resp = risk_mgr.post(url, json={"target_date": next_week, "reason": "Trainer sick"})
        assert resp.json()["action"]["status"] == "InProgress"
        assert resp.json()["action"]["target_date"] == next_week

    def test_cancel_needs_reason(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        action = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions",
                               json={"action_description": "Paint walkway"}).json()["action"]
        url = f"/api/hazards/actions/{action['id']}/cancel"
        assert risk_mgr.post(url, json={}).status_code == 400
        assert risk_mgr.post(url, json={"reason": "Duplicate"}).json()["action"]["status"] == "Cancelled"

    def test_reassign(self, risk_mgr, seeded_db):
        hazard = _hazard(risk_mgr)
        action = risk_mgr.post(f"/api/hazards/{hazard['id']}/actions",
                               json={"action_description": "Lockout procedure"}).json()["action"]
        resp = risk_mgr.post(f"/api/hazards/actions/{action['id']}/reassign",
                             json={"assigned_to_id": seeded_db["manager@hsse.test"], "reason": "Owner change"})
        assert resp.json()["action"]["assigned_to_id"] == seeded_db["manager@hsse.test"]


class TestHazardDashboard:

    def test_dashboard_and_export(self, risk_mgr):
        dash = risk_mgr.get("/api/hazards/dashboard").json()["dashboard"]
        assert dash["total"] == dash["open"] + dash["closed"]
        resp = risk_mgr.get("/api/hazards/export")
        assert resp.text.splitlines()[0].startswith("Number,Title,Category")

    def test_my_hazards_and_trail(self, risk_mgr):
        hazard = _hazard(risk_mgr)
        mine = risk_mgr.get("/api/hazards/my-hazards").json()["items"]
        assert hazard["id"] in {h["id"] for h in mine}
        trail = risk_mgr.get(f"/api/hazards/{hazard['id']}/audit-trail").json()["trail"]
        assert "Created" in {t["action"] for t in trail}
