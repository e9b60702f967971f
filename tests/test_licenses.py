"""
HSSE - License API Tests
=========================
Tests: License approval workflow, renewal, conditions, compliance score, expiry sweep
"""

import datetime

import pytest
from tests.conftest import db_execute, login_as


def _days(n):
    return (datetime.date.today() + datetime.timedelta(days=n)).isoformat()


def _license(client, **overrides):
    payload = {
        "title": "Air emissions permit",
        "license_type": "Environmental",
        "issuing_authority": "Regional Environment Agency",
        "issued_date": _days(-200),
        "expiry_date": _days(165),
        "renewal_required": True,
        "renewal_period_days": 60,
    }
    payload.update(overrides)
    resp = client.post("/api/licenses", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["license"]


def _active(client, **overrides):
    lic = _license(client, **overrides)
    base = f"/api/licenses/{lic['id']}"
    client.post(f"{base}/submit")
    client.post(f"{base}/approve", json={"notes": "Meets requirements"})
    resp = client.post(f"{base}/activate")
    assert resp.status_code == 200, resp.text
    return resp.json()["license"]


class TestLicenseRecords:

    def test_auto_number_and_renewal_date(self, manager_session):
        lic = _license(manager_session)
        assert lic["license_number"].startswith(f"LIC-{datetime.date.today().year}-")
        assert lic["status"] == "Draft"
        assert lic["next_renewal_date"] == _days(105)
        assert lic["days_until_expiry"] == 165
        assert lic["is_expiring_soon"] is False
        assert lic["compliance_score"] == 100.0

    def test_explicit_number_must_be_unique(self, manager_session):
        _license(manager_session, license_number="EPA-77-001")
        resp = manager_session.post("/api/licenses", json={
            "title": "Dup", "issuing_authority": "EPA", "license_number": "EPA-77-001",
            "issued_date": _days(-1), "expiry_date": _days(10)})
        assert resp.status_code == 400

    @pytest.mark.parametrize("override", [
        {"expiry_date": _days(-300)},
        {"issuing_authority": ""},
        {"license_type": "Fishing"},
        {"issued_date": None},
    ])
    def test_validation(self, manager_session, override):
        payload = {"title": "Bad", "issuing_authority": "EPA", "issued_date": _days(-200),
                   "expiry_date": _days(100)}
        payload.update(override)
        assert manager_session.post("/api/licenses", json=payload).status_code == 400

    def test_edit_only_in_draft_or_rejected(self, manager_session):
        lic = _license(manager_session)
        base = f"/api/licenses/{lic['id']}"
        resp = manager_session.put(base, json={"renewal_period_days": 30})
        assert resp.json()["license"]["next_renewal_date"] == _days(135)
        manager_session.post(f"{base}/submit")
        assert manager_session.put(base, json={"title": "Late edit"}).status_code == 400
        assert manager_session.post(f"{base}/reject", json={}).status_code == 400
        resp = manager_session.post(f"{base}/reject", json={"reason": "Missing stack test data"})
        assert resp.json()["license"]["status"] == "Rejected"
        assert manager_session.put(base, json={"title": "Resubmitted permit"}).status_code == 200

    def test_compliance_officer_reads_only(self, client, seeded_db):
        login_as(client, "compliance@hsse.test")
        assert client.get("/api/licenses").status_code == 200
        resp = client.post("/api/licenses", json={"title": "X", "issuing_authority": "Y",
                                                  "issued_date": _days(-1), "expiry_date": _days(1)})
        assert resp.status_code == 403


class TestLicenseWorkflow:

    def test_review_approve_activate(self, manager_session):
        lic = _license(manager_session)
        base = f"/api/licenses/{lic['id']}"
        assert manager_session.post(f"{base}/activate").status_code == 400
        assert manager_session.post(f"{base}/submit").json()["license"]["status"] == "Submitted"
        assert manager_session.post(f"{base}/submit").status_code == 400
        assert manager_session.post(f"{base}/review").json()["license"]["status"] == "UnderReview"
        resp = manager_session.post(f"{base}/approve", json={"notes": "OK"})
        assert resp.json()["license"]["approved_date"] is not None
        assert manager_session.post(f"{base}/activate").json()["license"]["status"] == "Active"

    def test_suspend_reinstate_revoke(self, manager_session):
        lic = _active(manager_session)
        base = f"/api/licenses/{lic['id']}"
        assert manager_session.post(f"{base}/suspend", json={}).status_code == 400
        resp = manager_session.post(f"{base}/suspend", json={"reason": "Stack exceedance"})
        assert resp.json()["license"]["status"] == "Suspended"
        resp = manager_session.post(f"{base}/reinstate", json={"notes": "Scrubber repaired"})
        assert resp.json()["license"]["status"] == "Active"
        assert resp.json()["license"]["suspended_date"] is None
        assert manager_session.post(f"{base}/revoke", json={"reason": "Site closed"}).status_code == 200
        assert manager_session.post(f"{base}/revoke", json={"reason": "Again"}).status_code == 400

    def test_renewal_extends_by_original_term(self, manager_session):
        lic = _active(manager_session, issued_date=_days(-100), expiry_date=_days(20))
        assert lic["requires_renewal"] is True
        assert lic["compliance_score"] == 80.0
        base = f"/api/licenses/{lic['id']}"

        resp = manager_session.post(f"{base}/renew", json={"notes": "Application sent"})
        renewing = resp.json()["license"]
        assert renewing["status"] == "PendingRenewal"
        assert renewing["compliance_score"] == 100.0
        renewal = renewing["renewals"][0]
        assert renewal["renewal_number"] == f"{lic['license_number']}-R01"
        assert renewal["new_expiry_date"] == _days(140)
        assert manager_session.post(f"{base}/renew", json={}).status_code == 400

        url = f"{base}/renewals/{renewal['id']}/complete"
        assert manager_session.post(url, json={"new_expiry_date": _days(10)}).status_code == 400
        done = manager_session.post(url, json={}).json()["license"]
        assert done["status"] == "Active"
        assert done["expiry_date"] == _days(140)
        assert done["issued_date"] == _days(20)
        assert manager_session.post(url, json={}).status_code == 400


class TestLicenseConditions:

    def test_conditions_weight_compliance(self, manager_session):
        lic = _license(manager_session)
        base = f"/api/licenses/{lic['id']}"
        assert manager_session.post(f"{base}/conditions", json={}).status_code == 400
        first = manager_session.post(f"{base}/conditions", json={
            "description": "Quarterly stack monitoring", "due_date": _days(30)}).json()["condition"]
        manager_session.post(f"{base}/conditions", json={"description": "Annual report"})
        assert manager_session.get(base).json()["license"]["compliance_score"] == 70.0

        resp = manager_session.post(f"{base}/conditions/{first['id']}/complete", json={"notes": "Q1 done"})
        assert resp.json()["condition"]["status"] == "Completed"
        assert resp.json()["license"]["compliance_score"] == 85.0
        assert manager_session.post(f"{base}/conditions/{first['id']}/complete", json={}).status_code == 400
        assert manager_session.post(f"{base}/conditions/99999/complete", json={}).status_code == 404

    def test_expiry_sweep(self, manager_session):
        lic = _active(manager_session)
        cond = manager_session.post(f"/api/licenses/{lic['id']}/conditions", json={
            "description": "Noise survey", "due_date": _days(5)}).json()["condition"]
        db_execute("UPDATE licenses SET expiry_date = ? WHERE id = ?", (_days(-1), lic["id"]))
        db_execute("UPDATE license_conditions SET due_date = ? WHERE id = ?", (_days(-1), cond["id"]))
        from hsse.licenses import expire_licenses
        assert expire_licenses() >= 1
        expired = manager_session.get(f"/api/licenses/{lic['id']}").json()["license"]
        assert expired["status"] == "Expired"
        assert expired["is_expired"] is True
        assert expired["conditions"][0]["status"] == "Overdue"
        assert expired["compliance_score"] == 0.0


class TestLicenseExtras:

    def test_attachment_upload(self, manager_session):
        lic = _license(manager_session)
        resp = manager_session.post(f"/api/licenses/{lic['id']}/attachments",
                                    files={"file": ("permit.pdf", b"%PDF-1.4 permit", "application/pdf")},
                                    data={"attachment_type": "Certificate"})
        assert resp.status_code == 200
        detail = manager_session.get(f"/api/licenses/{lic['id']}").json()["license"]
        assert detail["attachments"][0]["attachment_type"] == "Certificate"

    def test_dashboard_and_expiring(self, manager_session):
        lic = _active(manager_session, issued_date=_days(-30), expiry_date=_days(10))
        dash = manager_session.get("/api/licenses/dashboard").json()["dashboard"]
        assert dash["total"] == sum(dash["by_status"].values())
        assert lic["id"] in {e["id"] for e in dash["expiring"]}
        items = manager_session.get("/api/licenses/expiring").json()["items"]
        assert lic["id"] in {i["id"] for i in items}

    def test_export_and_trail(self, manager_session):
        lic = _license(manager_session)
        resp = manager_session.get("/api/licenses/export")
        assert resp.text.splitlines()[0].startswith("Number,Title,Type,Status")
        trail = manager_session.get(f"/api/licenses/{lic['id']}/audit-trail").json()["trail"]
        assert "Created" in {t["action"] for t in trail}
