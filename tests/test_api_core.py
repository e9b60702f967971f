"""
HSSE - Core API Tests
======================
Tests: Auth, Users & Roles, Module configuration, Settings, Activity, Dashboard
"""

import pytest
from tests.conftest import db_query, db_count, db_execute, login_as


# ============================================================================
# AUTH & SESSION
# ============================================================================

class TestAuth:
    """Login, session user, logout."""

    def test_health_check_is_public(self, anon_client):
        resp = anon_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_login_returns_permissions(self, client, seeded_db):
        resp = client.post("/api/auth/login", json={"email": "health@hsse.test", "password": "Passw0rd!"})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["roles"] == ["HealthMonitor"]
        assert "HealthMonitoring" in user["modules"]
        assert "Delete" in user["permissions"]["HealthMonitoring"]
        assert user["permissions"]["Dashboard"] == ["Export", "Read"]
        assert "password_hash" not in user

    def test_login_wrong_password(self, client, seeded_db):
        resp = client.post("/api/auth/login", json={"email": "viewer@hsse.test", "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json()["ok"] is False

    def test_me_requires_session(self, anon_client, seeded_db):
        resp = anon_client.get("/api/auth/me")
        assert resp.status_code == 401

    def test_logout_clears_session(self, client, seeded_db):
        login_as(client, "viewer@hsse.test")
        assert client.get("/api/auth/me").status_code == 200
        client.post("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401

    def test_permission_map(self, viewer_session):
        resp = viewer_session.get("/api/auth/permission-map")
        assert resp.status_code == 200
        data = resp.json()
        assert "SuperAdmin" in data["roles"]
        assert data["map"]["Viewer"] == {"Dashboard": ["Read"]}

    def test_login_is_logged(self, admin_session):
        assert db_count("activity_log", "entity_type = 'User' AND action = 'Login'") >= 1


# ============================================================================
# USERS & ROLES
# ============================================================================

class TestUsers:
    """User administration and role assignment rules."""

    def test_viewer_cannot_list_users(self, viewer_session):
        resp = viewer_session.get("/api/users")
        assert resp.status_code == 403

    def test_create_user(self, manager_session):
        resp = manager_session.post("/api/users", json={
            "email": "new.officer@hsse.test", "name": "New Officer", "password": "Secret123",
            "department": "Security", "roles": ["SecurityOfficer"],
        })
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["roles"] == ["SecurityOfficer"]
        assert db_count("users", "email = ?", ("new.officer@hsse.test",)) == 1

    def test_duplicate_email_rejected(self, manager_session):
        resp = manager_session.post("/api/users", json={
            "email": "viewer@hsse.test", "name": "Dup", "password": "Secret123"})
        assert resp.status_code == 400

    def test_short_password_rejected(self, manager_session):
        resp = manager_session.post("/api/users", json={
            "email": "short@hsse.test", "name": "Short", "password": "abc"})
        assert resp.status_code == 400

    def test_admin_cannot_grant_superadmin(self, manager_session):
        resp = manager_session.post("/api/users", json={
            "email": "escalate@hsse.test", "name": "Escalate", "password": "Secret123",
            "roles": ["SuperAdmin"]})
        assert resp.status_code == 403

    def test_superadmin_sets_roles(self, admin_session, seeded_db):
        user_id = seeded_db["reporter@hsse.test"]
        resp = admin_session.put(f"/api/users/{user_id}/roles", json={"roles": ["Reporter", "Viewer"]})
        assert resp.status_code == 200
        assert sorted(resp.json()["user"]["roles"]) == ["Reporter", "Viewer"]
        admin_session.put(f"/api/users/{user_id}/roles", json={"roles": ["Reporter"]})

    def test_cannot_deactivate_self(self, admin_session, seeded_db):
        resp = admin_session.post(f"/api/users/{seeded_db['admin@hsse.test']}/deactivate")
        assert resp.status_code == 400

    def test_deactivated_user_cannot_login(self, admin_session, client):
        created = admin_session.post("/api/users", json={
            "email": "leaver@hsse.test", "name": "Leaver", "password": "Secret123", "roles": ["Viewer"],
        }).json()["user"]
        resp = admin_session.post(f"/api/users/{created['id']}/deactivate")
        assert resp.status_code == 200
        resp = client.post("/api/auth/login", json={"email": "leaver@hsse.test", "password": "Secret123"})
        assert resp.status_code == 401

    def test_corrupt_password_hash_is_a_failed_login(self, admin_session, client):
        created = admin_session.post("/api/users", json={
            "email": "garbled@hsse.test", "name": "Garbled", "password": "Secret123", "roles": ["Viewer"],
        }).json()["user"]
        db_execute("UPDATE users SET password_hash = ? WHERE id = ?", ("pbkdf2_sha256$abc$zz$nothex", created["id"]))
        resp = client.post("/api/auth/login", json={"email": "garbled@hsse.test", "password": "Secret123"})
        assert resp.status_code == 401
        assert resp.json()["ok"] is False

    def test_user_choices_for_dashboard_readers(self, viewer_session):
        resp = viewer_session.get("/api/users/choices")
        assert resp.status_code == 200
        assert all("email" in u for u in resp.json()["users"])


# ============================================================================
# MODULE CONFIGURATION
# ============================================================================

class TestModules:
    """Enable/disable rules, dependencies and module audit log."""

    def test_all_modules_seeded(self, admin_session):
        resp = admin_session.get("/api/modules")
        assert resp.status_code == 200
        types = {m["module_type"] for m in resp.json()["modules"]}
        assert {"Dashboard", "HealthMonitoring", "SecurityIncidentManagement"} <= types

    def test_admin_role_has_no_settings_access(self, manager_session):
        resp = manager_session.get("/api/modules")
        assert resp.status_code == 403

    def test_critical_module_cannot_be_disabled(self, admin_session):
        resp = admin_session.post("/api/modules/Dashboard/disable")
        assert resp.status_code == 400
        assert "critical" in resp.json()["error"]

    def test_required_dependency_blocks_disable(self, admin_session):
        resp = admin_session.get("/api/modules/AuditManagement/can-disable")
        assert resp.json()["can_disable"] is False
        resp = admin_session.post("/api/modules/AuditManagement/disable")
        assert resp.status_code == 400
        assert "ComplianceManagement" in resp.json()["error"]

    def test_unknown_module_type(self, admin_session):
        resp = admin_session.get("/api/modules/Teleportation")
        assert resp.status_code in (400, 404)

    def test_disable_blocks_module_endpoints(self, admin_session):
        resp = admin_session.post("/api/modules/WasteManagement/disable", json={"reason": "Not licensed"})
        assert resp.status_code == 200
        assert resp.json()["module"]["is_enabled"] is False
        assert admin_session.get("/api/waste/reports").status_code == 403

        resp = admin_session.post("/api/modules/WasteManagement/enable")
        assert resp.status_code == 200
        assert admin_session.get("/api/waste/reports").status_code == 200

        logs = db_query("SELECT action FROM module_audit_logs WHERE module_type = 'WasteManagement' ORDER BY id")
        assert [l["action"] for l in logs][-2:] == ["Disabled", "Enabled"]

    def test_disabling_parent_disables_sub_module(self, admin_session):
        resp = admin_session.post("/api/modules/PhysicalSecurity/disable")
        assert resp.status_code == 200
        sub = admin_session.get("/api/modules/SecurityIncidentManagement").json()["module"]
        assert sub["is_enabled"] is False
        admin_session.post("/api/modules/PhysicalSecurity/enable")
        admin_session.post("/api/modules/SecurityIncidentManagement/enable")
        sub = admin_session.get("/api/modules/SecurityIncidentManagement").json()["module"]
        assert sub["is_enabled"] is True

    def test_blocked_sub_module_aborts_parent_disable(self, admin_session):
        resp = admin_session.post("/api/modules/Reporting/dependencies",
                                  json={"depends_on": "SecurityIncidentManagement", "is_required": True})
        assert resp.status_code == 200
        resp = admin_session.post("/api/modules/PhysicalSecurity/disable")
        assert resp.status_code == 400
        assert "SecurityIncidentManagement" in resp.json()["error"]
        for module in ("PhysicalSecurity", "SecurityIncidentManagement"):
            assert admin_session.get(f"/api/modules/{module}").json()["module"]["is_enabled"] is True
        admin_session.delete("/api/modules/Reporting/dependencies/SecurityIncidentManagement")

    def test_disable_rejects_non_object_body(self, admin_session):
        resp = admin_session.post("/api/modules/WasteManagement/disable", json=[])
        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert admin_session.get("/api/modules/WasteManagement").json()["module"]["is_enabled"] is True

    def test_optional_dependents_give_no_disable_warning(self, admin_session):
        warnings = admin_session.get("/api/modules/IncidentManagement/can-disable").json()["warnings"]
        assert not any("dependent modules" in w for w in warnings)

    def test_configuration_warnings_per_module(self, admin_session):
        assert admin_session.post("/api/modules/PersonnelSecurity/disable").status_code == 200
        resp = admin_session.post("/api/modules/Reporting/dependencies",
                                  json={"depends_on": "PersonnelSecurity", "is_required": True})
        assert resp.status_code == 200

        warnings = admin_session.get("/api/modules/warnings").json()["warnings"]
        kinds = {(w["type"], w["module_type"]) for w in warnings}
        assert ("MissingDependency", "Reporting") in kinds
        assert ("DependencyViolation", "PersonnelSecurity") in kinds
        assert ("DependencyViolation", "Reporting") not in kinds
        assert all(w["severity"] == "High" for w in warnings
                   if w["type"] in ("MissingDependency", "DependencyViolation"))

        # Re-enabled with a required enabled dependent: disable is blocked and warned about
        admin_session.post("/api/modules/PersonnelSecurity/enable")
        data = admin_session.get("/api/modules/PersonnelSecurity/can-disable").json()
        assert data["can_disable"] is False
        assert "This may affect 1 dependent modules" in data["warnings"]

        admin_session.delete("/api/modules/Reporting/dependencies/PersonnelSecurity")
        warnings = admin_session.get("/api/modules/warnings").json()["warnings"]
        assert not any(w["module_type"] == "PersonnelSecurity" for w in warnings)

    def test_enable_twice_is_an_error(self, admin_session):
        resp = admin_session.post("/api/modules/IncidentManagement/enable")
        assert resp.status_code == 400

    def test_dependency_cycle_rejected(self, admin_session):
        resp = admin_session.post("/api/modules/Dashboard/dependencies",
                                  json={"depends_on": "IncidentManagement", "is_required": False})
        assert resp.status_code == 400

    def test_module_dashboard(self, admin_session):
        data = admin_session.get("/api/modules/dashboard").json()["dashboard"]
        assert data["total_modules"] == data["enabled_modules"] + data["disabled_modules"]


# ============================================================================
# SETTINGS
# ============================================================================

class TestSettings:
    """Application settings and scheduler controls."""

    def test_read_settings(self, admin_session):
        resp = admin_session.get("/api/settings")
        assert resp.status_code == 200
        data = resp.json()
        assert data["settings"]["max_upload_mb"] == 10
        assert "company" in data["categories"]

    def test_update_company_name(self, admin_session):
        resp = admin_session.patch("/api/settings", json={"company_name": "Acme Refining"})
        assert resp.status_code == 200
        assert admin_session.get("/api/settings/company").json()["company"]["company_name"] == "Acme Refining"
        assert db_count("activity_log", "action = 'ConfigChanged'") >= 1

    def test_unknown_setting_rejected(self, admin_session):
        resp = admin_session.patch("/api/settings", json={"warp_drive": True})
        assert resp.status_code == 400

    def test_int_setting_type_checked(self, admin_session):
        resp = admin_session.patch("/api/settings", json={"max_upload_mb": "lots"})
        assert resp.status_code == 400

    def test_settings_need_configure_permission(self, manager_session):
        resp = manager_session.patch("/api/settings", json={"company_name": "Nope"})
        assert resp.status_code == 403

    def test_scheduler_not_running_in_tests(self, admin_session):
        data = admin_session.get("/api/settings/scheduler").json()["scheduler"]
        assert data["running"] is False

    def test_manual_sweep_run(self, admin_session):
        resp = admin_session.post("/api/settings/scheduler/run")
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert "expired_vaccinations" in results
        assert "overdue_audits" in results


# ============================================================================
# ACTIVITY & DASHBOARD
# ============================================================================

class TestActivityAndDashboard:

    def test_recent_activity_for_reporters(self, reporter_session):
        resp = reporter_session.get("/api/activity", params={"entity_type": "User"})
        assert resp.status_code == 200
        assert all(a["entity_type"] == "User" for a in resp.json()["activity"])

    def test_viewer_cannot_read_activity(self, viewer_session):
        assert viewer_session.get("/api/activity").status_code == 403

    def test_hsse_summary_sections(self, viewer_session):
        resp = viewer_session.get("/api/dashboard/hsse")
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        for key in ("hazards", "incidents", "ppe", "training", "work_permits", "waste",
                    "security", "health", "audits", "inspections"):
            assert key in summary
        assert summary["hazards"]["total"] == summary["hazards"]["open"] + summary["hazards"]["closed"]

    def test_disabled_module_left_out_of_summary(self, admin_session):
        admin_session.post("/api/modules/HealthMonitoring/disable")
        summary = admin_session.get("/api/dashboard/hsse").json()["summary"]
        assert "health" not in summary
        assert "HealthMonitoring" not in summary["modules"]
        admin_session.post("/api/modules/HealthMonitoring/enable")
        summary = admin_session.get("/api/dashboard/hsse").json()["summary"]
        assert "health" in summary


# ============================================================================
# REALTIME HUB
# ============================================================================

class TestRealtimeHub:

    def test_anonymous_socket_rejected(self, anon_client):
        from starlette.websockets import WebSocketDisconnect
        with pytest.raises(WebSocketDisconnect):
            with anon_client.websocket_connect("/ws/hub") as ws:
                ws.receive_json()

    def test_join_group_and_receive_location_broadcast(self, manager_session):
        with manager_session.websocket_connect("/ws/hub") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["user_id"] == "manager@hsse.test"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            ws.send_json({"type": "join", "group": "location:Tank Farm"})
            assert ws.receive_json() == {"type": "joined", "group": "location:Tank Farm"}

            status = manager_session.get("/api/hub/status").json()
            assert status["groups"]["location:Tank Farm"] == 1
            assert "manager@hsse.test" in status["online_users"]

            resp = manager_session.post("/api/incidents", json={
                "title": "Gas smell", "description": "Reported near valve 7",
                "location": "Tank Farm", "severity": "Serious"})
            assert resp.status_code == 200
            messages = [ws.receive_json() for _ in range(3)]
            assert [m["type"] for m in messages] == ["IncidentCreated", "IncidentCreated", "DashboardUpdate"]
            assert messages[1]["group"] == "location:Tank Farm"
            assert messages[1]["severity"] == "Serious"
