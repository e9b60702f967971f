"""
HSSE - Waste Management API Tests
==================================
Tests: Waste reports, disposal providers, disposal workflow, comments
"""

import datetime
import itertools

import pytest
from tests.conftest import db_execute, login_as

_seq = itertools.count(1)


def _days(n):
    return (datetime.date.today() + datetime.timedelta(days=n)).isoformat()


def _report(client, **overrides):
    payload = {
        "title": "Spent solvent drums",
        "description": "Four drums of used degreaser",
        "classification": "HazardousChemical",
        "location": "Maintenance store",
        "estimated_quantity": 800,
        "quantity_unit": "L",
    }
    payload.update(overrides)
    resp = client.post("/api/waste/reports", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["report"]


def _provider(client, **overrides):
    payload = {"name": f"CleanCo {next(_seq)}", "license_number": f"WCL-{next(_seq):05d}",
               "license_expiry_date": _days(365), "contact_person": "Dee"}
    payload.update(overrides)
    resp = client.post("/api/waste/providers", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["provider"]


class TestWasteReports:

    def test_create_flags_hazardous(self, manager_session):
        report = _report(manager_session)
        assert report["disposal_status"] == "Pending"
        assert report["is_hazardous"] is True
        assert report["generated_date"] == datetime.date.today().isoformat()
        other = _report(manager_session, classification="Recyclable", title="Cardboard")
        assert other["is_hazardous"] is False

    @pytest.mark.parametrize("override", [
        {"classification": "Glitter"},
        {"location": ""},
        {"generated_date": _days(3)},
    ])
    def test_validation(self, manager_session, override):
        payload = {"title": "Bad", "description": "x", "location": "Yard"}
        payload.update(override)
        assert manager_session.post("/api/waste/reports", json=payload).status_code == 400

    def test_filters_and_delete(self, manager_session):
        report = _report(manager_session, classification="Electronic", title="Old monitors")
        data = manager_session.get("/api/waste/reports", params={"classification": "Electronic",
                                                                  "search": "monitors"}).json()
        assert report["id"] in {r["id"] for r in data["items"]}
        assert manager_session.delete(f"/api/waste/reports/{report['id']}").status_code == 200
        assert manager_session.get(f"/api/waste/reports/{report['id']}").status_code == 404

    def test_my_reports(self, manager_session):
        report = _report(manager_session)
        items = manager_session.get("/api/waste/reports/my-reports").json()["items"]
        assert report["id"] in {r["id"] for r in items}


class TestDisposalProviders:

    def test_provider_validation(self, manager_session):
        assert manager_session.post("/api/waste/providers", json={"name": "X"}).status_code == 400
        resp = manager_session.post("/api/waste/providers", json={"name": "X", "license_number": "L1",
                                                                   "license_expiry_date": "soon"})
        assert resp.status_code == 400

    def test_status_changes(self, manager_session):
        provider = _provider(manager_session)
        url = f"/api/waste/providers/{provider['id']}/status"
        assert manager_session.post(url, json={"status": "Bankrupt"}).status_code == 400
        resp = manager_session.post(url, json={"status": "Suspended"})
        assert resp.json()["provider"]["is_active"] is False
        resp = manager_session.post(url, json={"status": "Active"})
        assert resp.json()["provider"]["is_active"] is True

    def test_expiring_and_sweep(self, manager_session):
        soon = _provider(manager_session, license_expiry_date=_days(10))
        expiring = manager_session.get("/api/waste/providers/expiring").json()["providers"]
        assert soon["id"] in {p["id"] for p in expiring}
        assert soon["is_license_expiring"] is True

        db_execute("UPDATE disposal_providers SET license_expiry_date = ? WHERE id = ?", (_days(-1), soon["id"]))
        from hsse.waste import expire_provider_licenses
        assert expire_provider_licenses() >= 1
        provider = manager_session.get(f"/api/waste/providers/{soon['id']}").json()["provider"]
        assert provider["status"] == "Expired"
        assert provider["is_license_expired"] is True


class TestDisposalWorkflow:

    def test_hazardous_needs_provider(self, manager_session):
        report = _report(manager_session)
        url = f"/api/waste/reports/{report['id']}/dispose"
        resp = manager_session.post(url, json={"cost": 100})
        assert resp.status_code == 400
        assert "licensed provider" in resp.json()["error"]

    def test_non_hazardous_without_provider(self, manager_session):
        report = _report(manager_session, classification="Organic", title="Canteen scraps")
        resp = manager_session.post(f"/api/waste/reports/{report['id']}/dispose",
                                    json={"disposal_method": "Composting"})
        done = resp.json()["report"]
        assert done["disposal_status"] == "Disposed"
        assert done["disposal_method"] == "Composting"
        assert len(done["disposal_records"]) == 1

    def test_full_hazardous_disposal(self, manager_session):
        report = _report(manager_session)
        provider = _provider(manager_session)
        base = f"/api/waste/reports/{report['id']}"
        resp = manager_session.post(f"{base}/start-disposal", json={"provider_id": provider["id"]})
        assert resp.json()["report"]["disposal_status"] == "InProgress"
        assert resp.json()["report"]["provider_name"] == provider["name"]
        assert manager_session.post(f"{base}/start-disposal", json={}).status_code == 400

        resp = manager_session.post(f"{base}/dispose", json={"manifest_number": "MAN-001", "cost": 450.5,
                                                             "quantity": 780})
        done = resp.json()["report"]
        assert done["disposal_status"] == "Disposed"
        assert done["manifest_number"] == "MAN-001"
        assert done["disposal_records"][0]["quantity"] == 780
        assert done["disposal_records"][0]["provider_name"] == provider["name"]

        assert manager_session.post(f"{base}/dispose", json={}).status_code == 400
        assert manager_session.put(base, json={"notes": "late"}).status_code == 400

    def test_suspended_provider_rejected(self, manager_session):
        report = _report(manager_session)
        provider = _provider(manager_session)
        manager_session.post(f"/api/waste/providers/{provider['id']}/status", json={"status": "Suspended"})
        resp = manager_session.post(f"/api/waste/reports/{report['id']}/start-disposal",
                                    json={"provider_id": provider["id"]})
        assert resp.status_code == 400
        assert "Suspended" in resp.json()["error"]


class TestWasteComments:

    def test_author_or_moderator_deletes(self, client, seeded_db):
        admin = login_as(client, "manager@hsse.test")
        report = _report(admin)
        url = f"/api/waste/reports/{report['id']}/comments"
        admin_comment = admin.post(url, json={"comment": "Drums need relabelling"}).json()["comment"]
        assert admin.post(url, json={"comment": "  "}).status_code == 400

        reporter = login_as(client, "reporter@hsse.test")
        own = reporter.post(url, json={"comment": "Seen leaking", "comment_type": "Observation"}).json()["comment"]
        assert own["comment_type"] == "Observation"
        assert reporter.delete(f"{url}/{admin_comment['id']}").status_code == 400
        assert reporter.delete(f"{url}/{own['id']}").status_code == 200

        admin = login_as(client, "manager@hsse.test")
        assert admin.delete(f"{url}/{admin_comment['id']}").status_code == 200
        assert admin.get(url).json()["comments"] == []


class TestWasteExtras:

    def test_dashboard(self, manager_session):
        _report(manager_session)
        dash = manager_session.get("/api/waste/dashboard").json()["dashboard"]
        assert dash["total_reports"] == dash["pending"] + dash["in_progress"] + dash["disposed"]
        assert dash["hazardous"] >= 1
        assert 0 <= dash["disposal_rate"] <= 100

    def test_attachment_and_trail(self, manager_session):
        report = _report(manager_session)
        base = f"/api/waste/reports/{report['id']}"
        resp = manager_session.post(f"{base}/attachments",
                                    files={"file": ("manifest.pdf", b"%PDF-1.4 manifest", "application/pdf")})
        att_id = resp.json()["attachment_id"]
        assert manager_session.get(f"{base}/attachments/{att_id}").content == b"%PDF-1.4 manifest"
        trail = manager_session.get(f"{base}/audit-trail").json()["trail"]
        assert "Created" in {t["action"] for t in trail}

    def test_export(self, manager_session):
        resp = manager_session.get("/api/waste/export")
        assert resp.text.splitlines()[0].startswith("ID,Title,Classification")

    def test_viewer_denied(self, viewer_session):
        assert viewer_session.get("/api/waste/reports").status_code == 403
