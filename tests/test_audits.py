"""
HSSE - Audit API Tests
=======================
Tests: Audit lifecycle, checklist scoring, findings workflow, risk level
"""

import datetime

import pytest
from tests.conftest import db_query, db_count, db_execute, login_as


def _new_audit(client, **overrides):
    payload = {
        "title": "Quarterly warehouse safety audit",
        "audit_type": "Safety",
        "priority": "High",
        "scheduled_date": (datetime.date.today() + datetime.timedelta(days=3)).isoformat(),
        "location": "Warehouse B",
        "items": [
            {"description": "Fire exits unobstructed", "max_points": 10},
            {"description": "Extinguishers inspected", "max_points": 10},
            {"description": "Spill kits stocked", "max_points": 5},
        ],
    }
    payload.update(overrides)
    resp = client.post("/api/audits", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["audit"]


def _running_audit(client, **overrides):
    audit = _new_audit(client, **overrides)
    client.post(f"/api/audits/{audit['id']}/schedule", json={})
    resp = client.post(f"/api/audits/{audit['id']}/start")
    assert resp.status_code == 200, resp.text
    return client.get(f"/api/audits/{audit['id']}").json()["audit"]


class TestAuditLifecycle:

    def test_create_assigns_number_and_items(self, manager_session):
        audit = _new_audit(manager_session)
        stamp = datetime.date.today().strftime("%Y%m%d")
        assert audit["audit_number"].startswith(f"SA-{stamp}-")
        assert audit["status"] == "Draft"
        assert [i["item_number"] for i in audit["items"]] == ["001", "002", "003"]
        assert audit["risk_level"] == "Low"

    def test_prefix_follows_type(self, manager_session):
        audit = _new_audit(manager_session, audit_type="Environmental", items=[])
        assert audit["audit_number"].startswith("EA-")

    def test_invalid_type_rejected(self, manager_session):
        resp = manager_session.post("/api/audits", json={"title": "X", "audit_type": "Vibes",
                                                         "scheduled_date": "2030-01-01"})
        assert resp.status_code == 400

    def test_title_required(self, manager_session):
        resp = manager_session.post("/api/audits", json={"scheduled_date": "2030-01-01"})
        assert resp.status_code == 400

    def test_start_requires_schedule(self, manager_session):
        audit = _new_audit(manager_session)
        resp = manager_session.post(f"/api/audits/{audit['id']}/start")
        assert resp.status_code == 400

    def test_only_drafts_deleted(self, manager_session):
        audit = _running_audit(manager_session)
        assert manager_session.delete(f"/api/audits/{audit['id']}").status_code == 400
        draft = _new_audit(manager_session)
        assert manager_session.delete(f"/api/audits/{draft['id']}").status_code == 200
        assert manager_session.get(f"/api/audits/{draft['id']}").status_code == 404

    def test_cancel_needs_reason(self, manager_session):
        audit = _new_audit(manager_session)
        assert manager_session.post(f"/api/audits/{audit['id']}/cancel", json={}).status_code == 400
        resp = manager_session.post(f"/api/audits/{audit['id']}/cancel", json={"reason": "Site closed"})
        assert resp.json()["audit"]["status"] == "Cancelled"
        resp = manager_session.post(f"/api/audits/{audit['id']}/archive")
        assert resp.json()["audit"]["status"] == "Archived"

    def test_overdue_sweep_and_restart(self, manager_session):
        audit = _new_audit(manager_session)
        manager_session.post(f"/api/audits/{audit['id']}/schedule", json={})
        db_execute("UPDATE audits SET scheduled_date = ? WHERE id = ?",
                   ((datetime.date.today() - datetime.timedelta(days=2)).isoformat(), audit["id"]))
        from hsse.audits import mark_overdue_audits
        assert mark_overdue_audits() >= 1
        assert manager_session.get(f"/api/audits/{audit['id']}").json()["audit"]["status"] == "Overdue"
        resp = manager_session.post(f"/api/audits/{audit['id']}/start")
        assert resp.json()["audit"]["status"] == "InProgress"

    def test_reporter_cannot_create(self, reporter_session):
        resp = reporter_session.post("/api/audits", json={"title": "X", "scheduled_date": "2030-01-01"})
        assert resp.status_code == 403


class TestAuditScoring:

    def test_assess_only_while_running(self, manager_session):
        audit = _new_audit(manager_session)
        item = audit["items"][0]
        resp = manager_session.post(f"/api/audits/{audit['id']}/items/{item['id']}/assess",
                                    json={"is_compliant": True, "actual_points": 10})
        assert resp.status_code == 400

    def test_points_bounded_by_max(self, manager_session):
        audit = _running_audit(manager_session)
        item = audit["items"][2]
        resp = manager_session.post(f"/api/audits/{audit['id']}/items/{item['id']}/assess",
                                    json={"is_compliant": True, "actual_points": 6})
        assert resp.status_code == 400

    def test_complete_computes_score_from_completed_items(self, manager_session):
        audit = _running_audit(manager_session)
        a, b, c = audit["items"]
        base = f"/api/audits/{audit['id']}/items"
        manager_session.post(f"{base}/{a['id']}/assess", json={"is_compliant": True, "actual_points": 9})
        manager_session.post(f"{base}/{b['id']}/assess", json={"is_compliant": True, "actual_points": 8})
        resp = manager_session.post(f"{base}/{c['id']}/assess", json={"is_compliant": False, "actual_points": 0})
        assert resp.json()["item"]["status"] == "NonCompliant"

        live = manager_session.get(f"/api/audits/{audit['id']}").json()["audit"]
        assert live["current_score"] == 85.0

        manager_session.post(f"/api/audits/{audit['id']}/submit-review")
        resp = manager_session.post(f"/api/audits/{audit['id']}/complete",
                                    json={"summary": "Mostly fine", "recommendations": "Restock spill kits"})
        assert resp.status_code == 200
        done = resp.json()["audit"]
        assert done["status"] == "Completed"
        assert done["score_percentage"] == 85.0
        assert done["overall_score"] == "Good"
        assert done["total_possible_points"] == 20
        assert done["achieved_points"] == 17

    def test_completed_audit_is_locked(self, manager_session):
        audit = _running_audit(manager_session, items=[{"description": "Only item"}])
        item = audit["items"][0]
        manager_session.post(f"/api/audits/{audit['id']}/items/{item['id']}/assess", json={"is_compliant": True})
        manager_session.post(f"/api/audits/{audit['id']}/complete", json={})
        assert manager_session.put(f"/api/audits/{audit['id']}", json={"title": "Late edit"}).status_code == 400
        assert manager_session.post(f"/api/audits/{audit['id']}/items",
                                    json={"description": "Late item"}).status_code == 400
        assert manager_session.post(f"/api/audits/{audit['id']}/cancel",
                                    json={"reason": "Too late"}).status_code == 400

    def test_not_applicable_excluded(self, manager_session):
        audit = _running_audit(manager_session, items=[{"description": "A", "max_points": 4},
                                                       {"description": "B", "max_points": 4}])
        a, b = audit["items"]
        base = f"/api/audits/{audit['id']}/items"
        manager_session.post(f"{base}/{a['id']}/assess", json={"is_compliant": True, "actual_points": 3})
        manager_session.post(f"{base}/{b['id']}/assess", json={"not_applicable": True, "reason": "No chemicals"})
        done = manager_session.post(f"/api/audits/{audit['id']}/complete", json={}).json()["audit"]
        assert done["score_percentage"] == 75.0
        assert done["overall_score"] == "Satisfactory"


class TestAuditFindings:

    def test_major_finding_raises_risk_and_needs_verification(self, manager_session):
        audit = _running_audit(manager_session)
        resp = manager_session.post(f"/api/audits/{audit['id']}/findings", json={
            "description": "Blocked emergency exit", "finding_type": "NonConformance", "severity": "Major"})
        assert resp.status_code == 200
        finding = resp.json()["finding"]
        assert finding["finding_number"] == f"{audit['audit_number']}-F01"
        assert resp.json()["audit"]["risk_level"] == "High"

        base = f"/api/audits/{audit['id']}/findings/{finding['id']}"
        assert manager_session.post(f"{base}/resolve").status_code == 400
        resp = manager_session.post(f"{base}/corrective-action", json={"corrective_action": "Clear exit"})
        assert resp.json()["finding"]["status"] == "InProgress"
        assert manager_session.post(f"{base}/resolve").json()["finding"]["status"] == "Resolved"
        assert manager_session.post(f"{base}/close", json={}).status_code == 400
        manager_session.post(f"{base}/verify", json={"verification_method": "Site walk"})
        resp = manager_session.post(f"{base}/close", json={"notes": "Verified clear"})
        assert resp.json()["finding"]["status"] == "Closed"
        assert resp.json()["audit"]["risk_level"] == "Low"

        resp = manager_session.post(f"{base}/reopen", json={"reason": "Blocked again"})
        assert resp.json()["finding"]["status"] == "InProgress"
        assert resp.json()["audit"]["risk_level"] == "High"

    def test_critical_finding_is_critical_risk(self, manager_session):
        audit = _running_audit(manager_session)
        resp = manager_session.post(f"/api/audits/{audit['id']}/findings", json={
            "description": "Live wiring exposed", "severity": "Critical"})
        assert resp.json()["audit"]["risk_level"] == "Critical"

    def test_minor_finding_closes_from_resolved(self, manager_session):
        audit = _running_audit(manager_session)
        finding = manager_session.post(f"/api/audits/{audit['id']}/findings", json={
            "description": "Faded signage", "severity": "Minor"}).json()["finding"]
        base = f"/api/audits/{audit['id']}/findings/{finding['id']}"
        manager_session.post(f"{base}/corrective-action", json={"corrective_action": "Replace signs"})
        manager_session.post(f"{base}/resolve")
        assert manager_session.post(f"{base}/close", json={}).json()["finding"]["status"] == "Closed"

    def test_no_findings_on_cancelled_audit(self, manager_session):
        audit = _new_audit(manager_session)
        manager_session.post(f"/api/audits/{audit['id']}/cancel", json={"reason": "Duplicate"})
        resp = manager_session.post(f"/api/audits/{audit['id']}/findings", json={"description": "X"})
        assert resp.status_code == 400


class TestAuditExtras:

    def test_comment_and_trail(self, manager_session):
        audit = _new_audit(manager_session)
        resp = manager_session.post(f"/api/audits/{audit['id']}/comments", json={"comment": "Bring PPE"})
        assert resp.status_code == 200
        trail = manager_session.get(f"/api/audits/{audit['id']}/audit-trail").json()["trail"]
        assert {t["action"] for t in trail} >= {"Created"}

    def test_attachment_round_trip(self, manager_session):
        audit = _new_audit(manager_session)
        resp = manager_session.post(f"/api/audits/{audit['id']}/attachments",
                                    files={"file": ("checklist.txt", b"signed checklist", "text/plain")})
        assert resp.status_code == 200
        att_id = resp.json()["attachment_id"]
        resp = manager_session.get(f"/api/audits/{audit['id']}/attachments/{att_id}")
        assert resp.status_code == 200
        assert resp.content == b"signed checklist"

    def test_dashboard_and_export(self, manager_session):
        dash = manager_session.get("/api/audits/dashboard").json()["dashboard"]
        assert dash["total"] == sum(dash["by_status"].values())
        resp = manager_session.get("/api/audits/export", params={"format": "csv"})
        assert resp.status_code == 200
        assert resp.text.splitlines()[0].startswith("Number,Title")

    def test_my_audits(self, manager_session, seeded_db):
        _new_audit(manager_session)
        items = manager_session.get("/api/audits/my-audits").json()["items"]
        assert items and all(a["auditor_id"] == seeded_db["manager@hsse.test"] for a in items)
