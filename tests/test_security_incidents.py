"""
HSSE - Security Incident API Tests
===================================
Tests: Reporting, assignment, threat/impact assessment, response phases, closure
"""

import datetime

import pytest
from tests.conftest import db_count, db_execute, login_as


@pytest.fixture
def secmgr(client, seeded_db):
    return login_as(client, "secmgr@hsse.test")


def _report(client, **overrides):
    payload = {
        "title": "Tailgating at gate 3",
        "description": "Visitor followed staff through turnstile",
        "location": "Gate 3",
        "incident_type": "PhysicalSecurity",
        "category": "UnauthorizedAccess",
        "severity": "Medium",
    }
    payload.update(overrides)
    resp = client.post("/api/security-incidents", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["incident"]


class TestSecurityReporting:

    def test_report_numbers_per_year(self, secmgr):
        incident = _report(secmgr)
        assert incident["incident_number"].startswith(f"SEC-{datetime.date.today().year}-")
        assert incident["status"] == "Open"
        assert incident["threat_level"] == "Low"
        assert incident["impact"] == "None"
        assert incident["data_breach_occurred"] is False

    def test_location_required(self, secmgr):
        resp = secmgr.post("/api/security-incidents", json={"title": "X", "description": "Y"})
        assert resp.status_code == 400

    def test_category_must_match_type(self, secmgr):
        resp = secmgr.post("/api/security-incidents", json={
            "title": "Phish", "description": "Mail", "location": "HQ",
            "incident_type": "PhysicalSecurity", "category": "PhishingAttempt"})
        assert resp.status_code == 400
        assert "does not belong" in resp.json()["error"]

    def test_future_date_rejected(self, secmgr):
        future = (datetime.date.today() + datetime.timedelta(days=5)).isoformat()
        resp = secmgr.post("/api/security-incidents", json={
            "title": "Later", "description": "Y", "location": "HQ", "incident_datetime": future})
        assert resp.status_code == 400

    def test_officer_can_report(self, client, seeded_db):
        login_as(client, "secofficer@hsse.test")
        incident = _report(client, title="Broken fence panel", category="PerimeterBreach")
        mine = client.get("/api/security-incidents/my-incidents").json()["items"]
        assert incident["id"] in {i["id"] for i in mine}

    def test_incident_manager_has_no_access(self, client, seeded_db):
        login_as(client, "incidents@hsse.test")
        assert client.get("/api/security-incidents").status_code == 403


class TestSecurityResponse:

    def test_assign_needs_active_user(self, secmgr, seeded_db):
        incident = _report(secmgr)
        resp = secmgr.post(f"/api/security-incidents/{incident['id']}/assign", json={"assigned_to_id": 99999})
        assert resp.status_code == 404
        officer_id = seeded_db["secofficer@hsse.test"]
        resp = secmgr.post(f"/api/security-incidents/{incident['id']}/assign", json={"assigned_to_id": officer_id})
        data = resp.json()["incident"]
        assert data["status"] == "Assigned"
        assert data["assigned_to_email"] == "secofficer@hsse.test"

        resp = secmgr.post(f"/api/security-incidents/{incident['id']}/investigator",
                           json={"investigator_id": seeded_db["secmgr@hsse.test"]})
        assert resp.json()["incident"]["status"] == "Investigating"

    def test_threat_and_impact_assessment(self, secmgr):
        incident = _report(secmgr, incident_type="Cybersecurity", category="DataBreach", severity="High")
        base = f"/api/security-incidents/{incident['id']}"
        assert secmgr.post(f"{base}/threat-assessment", json={"threat_level": "Extreme"}).status_code == 400
        resp = secmgr.post(f"{base}/threat-assessment", json={
            "threat_level": "Severe", "threat_actor_type": "External",
            "threat_actor_description": "Credential stuffing botnet"})
        assert resp.json()["incident"]["threat_level"] == "Severe"

        assert secmgr.post(f"{base}/impact-assessment", json={
            "impact": "Major", "affected_persons_count": -3}).status_code == 400
        resp = secmgr.post(f"{base}/impact-assessment", json={
            "impact": "Major", "affected_persons_count": 1200, "data_breach_occurred": True})
        data = resp.json()["incident"]
        assert data["data_breach_occurred"] is True
        assert data["affected_persons_count"] == 1200

    def test_phases_in_order_and_closure(self, secmgr):
        incident = _report(secmgr)
        base = f"/api/security-incidents/{incident['id']}"
        assert secmgr.post(f"{base}/eradication").status_code == 400
        assert secmgr.post(f"{base}/containment", json={}).status_code == 400
        resp = secmgr.post(f"{base}/containment", json={"containment_actions": "Badge disabled"})
        assert resp.json()["incident"]["status"] == "Contained"
        assert secmgr.post(f"{base}/recovery").status_code == 400
        assert secmgr.post(f"{base}/eradication").json()["incident"]["status"] == "Eradicating"
        assert secmgr.post(f"{base}/recovery").json()["incident"]["status"] == "Recovering"

        assert secmgr.post(f"{base}/close").status_code == 400
        assert secmgr.post(f"{base}/resolve", json={}).status_code == 400
        secmgr.post(f"{base}/resolve", json={"root_cause": "Turnstile sensor fault"})

        resp = secmgr.post(f"{base}/close")
        assert resp.status_code == 400
        assert "Lessons learned" in resp.json()["error"]

        resp = secmgr.post(f"{base}/responses", json={
            "response_type": "LessonsLearned", "action_taken": "Briefed guards on tailgating"})
        assert resp.json()["response"]["was_successful"] == 1
        resp = secmgr.post(f"{base}/close")
        assert resp.json()["incident"]["status"] == "Closed"
        assert resp.json()["incident"]["is_overdue"] is False

        assert secmgr.put(base, json={"title": "Edited"}).status_code == 400
        assert secmgr.post(f"{base}/escalate", json={"reason": "Late"}).status_code == 400

    def test_escalation_steps_severity(self, secmgr):
        incident = _report(secmgr, severity="High")
        base = f"/api/security-incidents/{incident['id']}"
        resp = secmgr.post(f"{base}/escalate", json={"reason": "Weapon seen"})
        assert resp.json()["incident"]["severity"] == "Critical"
        assert secmgr.post(f"{base}/escalate", json={"reason": "Again"}).status_code == 400

    def test_invalid_response_type(self, secmgr):
        incident = _report(secmgr)
        resp = secmgr.post(f"/api/security-incidents/{incident['id']}/responses",
                           json={"response_type": "Prayer", "action_taken": "Hope"})
        assert resp.status_code == 400

    def test_reporter_cannot_report(self, reporter_session):
        resp = reporter_session.post("/api/security-incidents", json={
            "title": "X", "description": "Y", "location": "Z"})
        assert resp.status_code == 403


class TestSecurityDashboard:

    def test_overdue_by_sla(self, secmgr):
        incident = _report(secmgr, severity="Critical", title="Armed intruder")
        stale = (datetime.datetime.now() - datetime.timedelta(days=2)).strftime("%Y-%m-%d %H:%M:%S")
        db_execute("UPDATE security_incidents SET created_at = ? WHERE id = ?", (stale, incident["id"]))
        data = secmgr.get(f"/api/security-incidents/{incident['id']}").json()["incident"]
        assert data["is_overdue"] is True
        dash = secmgr.get("/api/security-incidents/dashboard").json()["dashboard"]
        assert incident["id"] in {r["id"] for r in dash["overdue"]}
        assert incident["id"] in {r["id"] for r in dash["critical_open"]}

    def test_dashboard_counts(self, secmgr):
        dash = secmgr.get("/api/security-incidents/dashboard", params={"days": 7}).json()["dashboard"]
        assert dash["period_days"] == 7
        assert dash["total"] == dash["open"] + dash["closed"]

    def test_export_and_trail(self, secmgr):
        incident = _report(secmgr)
        resp = secmgr.get("/api/security-incidents/export")
        assert resp.text.splitlines()[0].startswith("Number,Title,Type")
        trail = secmgr.get(f"/api/security-incidents/{incident['id']}/audit-trail").json()["trail"]
        assert "Reported" in {t["action"] for t in trail}
        assert db_count("activity_log", "entity_type = 'SecurityIncident' AND action = 'Reported'") >= 1
