"""
HSSE - Work Permit API Tests
=============================
Tests: Permit numbering, multi-level approval, risk rating, execution, precautions
"""

import datetime

import pytest
from tests.conftest import login_as


def _permit(client, **overrides):
    start = datetime.date.today() + datetime.timedelta(days=1)
    payload = {
        "title": "Weld bracket on tank T-4",
        "permit_type": "HotWork",
        "work_location": "Tank farm",
        "planned_start_date": start.isoformat(),
        "planned_end_date": (start + datetime.timedelta(days=1)).isoformat(),
        "requires_hot_work": True,
        "requires_fire_watch": True,
        "contractor_company": "Spark Ltd",
    }
    payload.update(overrides)
    resp = client.post("/api/work-permits", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["permit"]


def _approve_all(client, permit):
    client.post(f"/api/work-permits/{permit['id']}/submit")
    detail = client.get(f"/api/work-permits/{permit['id']}").json()["permit"]
    for level in detail["required_approvals"]:
        resp = client.post(f"/api/work-permits/{permit['id']}/approve", json={"approval_level": level})
        assert resp.status_code == 200, resp.text
    return resp.json()["permit"]


class TestPermitCreation:

    def test_number_priority_and_risk(self, manager_session):
        permit = _permit(manager_session)
        month = datetime.date.today().strftime("%Y%m")
        assert permit["permit_number"].startswith(f"HW-{month}-")
        assert permit["priority"] == "High"
        assert permit["risk_level"] == "Medium"
        assert permit["requires_fire_watch"] is True
        assert permit["status"] == "Draft"

    def test_general_permit_defaults(self, manager_session):
        permit = _permit(manager_session, permit_type="General", requires_hot_work=False)
        assert permit["permit_number"].startswith("GP-")
        assert permit["priority"] == "Medium"
        assert permit["risk_level"] == "Low"

    @pytest.mark.parametrize("override", [
        {"work_location": ""},
        {"permit_type": "Lunch"},
        {"planned_end_date": "2000-01-01"},
        {"planned_start_date": None},
    ])
    def test_validation(self, manager_session, override):
        payload = {"title": "Bad", "work_location": "Yard", "planned_start_date": "2030-01-02",
                   "planned_end_date": "2030-01-03"}
        payload.update(override)
        assert manager_session.post("/api/work-permits", json=payload).status_code == 400

    def test_update_recomputes_risk(self, manager_session):
        permit = _permit(manager_session)
        resp = manager_session.put(f"/api/work-permits/{permit['id']}", json={
            "requires_confined_space": True, "requires_gas_monitoring": True})
        assert resp.json()["permit"]["risk_level"] == "High"
        assert manager_session.put(f"/api/work-permits/{permit['id']}", json={"nope": 1}).status_code == 400

    def test_hazards_raise_risk(self, manager_session):
        permit = _permit(manager_session)
        url = f"/api/work-permits/{permit['id']}/hazards"
        assert manager_session.post(url, json={"hazard_description": "X", "risk_level": "Epic"}).status_code == 400
        manager_session.post(url, json={"hazard_description": "Residual vapour", "risk_level": "High"})
        resp = manager_session.post(url, json={"hazard_description": "Sparks on insulation",
                                               "risk_level": "Critical", "control_measures": "Fire blankets"})
        detail = resp.json()["permit"]
        assert detail["risk_level"] == "Critical"
        assert len(detail["hazards"]) == 2
        manager_session.post(url, json={"hazard_description": "Trip hazard", "risk_level": "Low"})
        assert manager_session.get(f"/api/work-permits/{permit['id']}").json()["permit"]["risk_level"] == "Critical"


class TestPermitApproval:

    def test_all_levels_required(self, manager_session):
        permit = _permit(manager_session)
        base = f"/api/work-permits/{permit['id']}"
        assert manager_session.post(f"{base}/approve", json={"approval_level": "SafetyOfficer"}).status_code == 400
        manager_session.post(f"{base}/submit")

        resp = manager_session.post(f"{base}/approve", json={"approval_level": "ElectricalSupervisor"})
        assert resp.status_code == 400
        assert "HotWorkSpecialist" in resp.json()["error"]

        resp = manager_session.post(f"{base}/approve", json={"approval_level": "SafetyOfficer",
                                                              "comments": "Fire watch briefed"})
        detail = resp.json()["permit"]
        assert detail["status"] == "PendingApproval"
        assert detail["pending_approvals"] == ["DepartmentHead", "HotWorkSpecialist"]
        assert manager_session.post(f"{base}/approve", json={"approval_level": "SafetyOfficer"}).status_code == 400

        manager_session.post(f"{base}/approve", json={"approval_level": "DepartmentHead"})
        resp = manager_session.post(f"{base}/approve", json={"approval_level": "HotWorkSpecialist"})
        assert resp.json()["permit"]["status"] == "Approved"
        assert resp.json()["permit"]["pending_approvals"] == []
        assert len(manager_session.get(f"{base}/approvals").json()["approvals"]) == 3

    def test_reject_then_edit_and_resubmit(self, manager_session):
        permit = _permit(manager_session)
        base = f"/api/work-permits/{permit['id']}"
        assert manager_session.post(f"{base}/reject", json={"reason": "Too early"}).status_code == 400
        manager_session.post(f"{base}/submit")
        assert manager_session.post(f"{base}/reject", json={}).status_code == 400
        resp = manager_session.post(f"{base}/reject", json={"reason": "No gas test plan"})
        assert resp.json()["permit"]["status"] == "Rejected"
        assert manager_session.put(base, json={"requires_gas_monitoring": True}).status_code == 200
        assert manager_session.post(f"{base}/submit").status_code == 400

    def test_pending_approval_list(self, manager_session):
        permit = _permit(manager_session)
        manager_session.post(f"/api/work-permits/{permit['id']}/submit")
        items = manager_session.get("/api/work-permits/pending-approval").json()["items"]
        assert permit["id"] in {p["id"] for p in items}


class TestPermitExecution:

    def test_start_and_complete(self, manager_session):
        permit = _approve_all(manager_session, _permit(manager_session, permit_type="ColdWork",
                                                       requires_hot_work=False))
        base = f"/api/work-permits/{permit['id']}"
        assert manager_session.put(base, json={"title": "Late change"}).status_code == 400
        assert manager_session.post(f"{base}/complete", json={}).status_code == 400
        started = manager_session.post(f"{base}/start").json()["permit"]
        assert started["status"] == "InProgress"
        assert started["actual_start_date"] is not None

        resp = manager_session.post(f"{base}/complete", json={
            "completion_notes": "Valve replaced", "is_completed_safely": False,
            "lessons_learned": "Isolate upstream first"})
        done = resp.json()["permit"]
        assert done["status"] == "Completed"
        assert done["is_completed_safely"] is False
        assert manager_session.post(f"{base}/cancel", json={"reason": "x"}).status_code == 400
        resp = manager_session.post(f"{base}/hazards", json={"hazard_description": "Late"})
        assert resp.status_code == 400

    def test_cancel_records_reason(self, manager_session):
        permit = _permit(manager_session)
        resp = manager_session.post(f"/api/work-permits/{permit['id']}/cancel", json={"reason": "Scope changed"})
        assert resp.json()["permit"]["status"] == "Cancelled"
        assert resp.json()["permit"]["completion_notes"] == "Cancelled: Scope changed"

    def test_precautions(self, manager_session):
        permit = _permit(manager_session)
        base = f"/api/work-permits/{permit['id']}/precautions"
        assert manager_session.post(base, json={}).status_code == 400
        precaution = manager_session.post(base, json={"description": "Fire extinguisher within 10 m",
                                                      "category": "Fire"}).json()["precaution"]
        assert precaution["is_required"] == 1
        url = f"{base}/{precaution['id']}/complete"
        assert manager_session.post(url, json={"notes": "Checked"}).json()["precaution"]["is_completed"] == 1
        assert manager_session.post(url, json={}).status_code == 400
        assert manager_session.post(f"{base}/99999/complete", json={}).status_code == 404


class TestPermitExtras:

    def test_dashboard_and_export(self, manager_session):
        _permit(manager_session)
        dash = manager_session.get("/api/work-permits/dashboard").json()["dashboard"]
        assert dash["by_type"]["HotWork"] >= 1
        resp = manager_session.get("/api/work-permits/export")
        assert resp.text.splitlines()[0].startswith("Number,Title,Type,Status,Priority")

    def test_my_permits_and_trail(self, manager_session):
        permit = _permit(manager_session)
        items = manager_session.get("/api/work-permits/my-permits").json()["items"]
        assert permit["id"] in {p["id"] for p in items}
        trail = manager_session.get(f"/api/work-permits/{permit['id']}/audit-trail").json()["trail"]
        assert "Created" in {t["action"] for t in trail}

    def test_reporter_cannot_approve(self, manager_session):
        permit = _permit(manager_session)
        reporter = login_as(manager_session, "reporter@hsse.test")
        resp = reporter.post(f"/api/work-permits/{permit['id']}/approve",
                         json={"approval_level": "SafetyOfficer"})
        assert resp.status_code == 403
