"""
HSSE - Unit Tests
==================
Tests: Pure scoring, risk and permission helpers (no HTTP, no database)
"""

import datetime

import pytest

from hsse.db import add_months
from hsse.errors import DomainError


D = datetime.date


# ============================================================================
# PERMISSIONS
# ============================================================================

class TestRoleMap:

    def test_viewer_is_dashboard_read_only(self):
        from hsse.auth.permissions import ModuleType, PermissionType, has_permission
        assert has_permission("Viewer", ModuleType.DASHBOARD, PermissionType.READ)
        assert not has_permission("Viewer", ModuleType.DASHBOARD, PermissionType.EXPORT)
        assert not has_permission("Viewer", ModuleType.WASTE_MANAGEMENT, PermissionType.READ)
        assert not has_permission("Bogus", ModuleType.DASHBOARD, PermissionType.READ)

    def test_admin_excludes_application_settings(self):
        from hsse.auth.permissions import ModuleType, PermissionType, has_permission
        assert not has_permission("Admin", ModuleType.APPLICATION_SETTINGS, PermissionType.READ)
        assert has_permission("Admin", ModuleType.USER_MANAGEMENT, PermissionType.DELETE)
        assert not has_permission("Admin", ModuleType.USER_MANAGEMENT, PermissionType.CONFIGURE)
        assert has_permission("SuperAdmin", ModuleType.APPLICATION_SETTINGS, PermissionType.CONFIGURE)

    def test_single_module_managers(self):
        from hsse.auth.permissions import ModuleType, PermissionType, has_permission
        assert has_permission("PPEManager", ModuleType.PPE_MANAGEMENT, PermissionType.APPROVE)
        assert not has_permission("PPEManager", ModuleType.RISK_MANAGEMENT, PermissionType.READ)
        assert has_permission("RiskManager", ModuleType.REPORTING, PermissionType.EXPORT)

    def test_read_only_roles(self):
        from hsse.auth.permissions import ModuleType, PermissionType, get_module_permissions, has_permission
        assert get_module_permissions("Reporter", ModuleType.WASTE_MANAGEMENT) == [
            PermissionType.READ, PermissionType.EXPORT]
        assert has_permission("ComplianceOfficer", ModuleType.LICENSE_MANAGEMENT, PermissionType.READ)
        assert not has_permission("ComplianceOfficer", ModuleType.LICENSE_MANAGEMENT, PermissionType.CREATE)
        assert has_permission("ComplianceOfficer", ModuleType.COMPLIANCE_MANAGEMENT, PermissionType.CONFIGURE)

    def test_effective_permissions_union(self):
        from hsse.auth.permissions import ModuleType, PermissionType, effective_permissions
        perms = effective_permissions(["RiskManager", "PPEManager", "NotARole"])
        assert PermissionType.DELETE in perms[ModuleType.RISK_MANAGEMENT]
        assert PermissionType.DELETE in perms[ModuleType.PPE_MANAGEMENT]
        assert perms[ModuleType.DASHBOARD] == {PermissionType.READ, PermissionType.EXPORT}

    def test_role_assignment_rules(self):
        from hsse.auth.permissions import RoleType, assignable_roles, can_assign_role
        assert not can_assign_role("Admin", "Admin")
        assert can_assign_role("Admin", "Reporter")
        assert can_assign_role("SecurityManager", "SecurityOfficer")
        assert not can_assign_role("SecurityManager", "RiskManager")
        assert assignable_roles(["Viewer"]) == []
        assert RoleType.SUPER_ADMIN in assignable_roles(["Developer"])


# ============================================================================
# DATES
# ============================================================================

class TestAddMonths:

    @pytest.mark.parametrize("start,months,expected", [
        (D(2030, 1, 15), 1, D(2030, 2, 15)),
        (D(2024, 1, 31), 1, D(2024, 2, 29)),
        (D(2030, 8, 31), 6, D(2031, 2, 28)),
        (D(2030, 11, 30), 3, D(2031, 2, 28)),
        (D(2030, 12, 1), 24, D(2032, 12, 1)),
    ])
    def test_clamps_to_month_end(self, start, months, expected):
        assert add_months(start, months) == expected


# ============================================================================
# HAZARD RISK
# ============================================================================

class TestHazardRisk:

    @pytest.mark.parametrize("probability,severity", [(0, 3), (6, 1), ("3", 3), (True, 2), (2.5, 2)])
    def test_scores_must_be_ints_in_range(self, probability, severity):
        from hsse.hazards.risk import validate_scores
        with pytest.raises(DomainError):
            validate_scores(probability, severity)

    @pytest.mark.parametrize("score,level", [
        (1, "VeryLow"), (4, "VeryLow"), (5, "Low"), (9, "Low"), (10, "Medium"),
        (14, "Medium"), (15, "High"), (19, "High"), (20, "Critical"), (25, "Critical"),
    ])
    def test_level_bands(self, score, level):
        from hsse.hazards.risk import determine_risk_level
        assert determine_risk_level(score).value == level

    def test_score_and_review(self):
        from hsse.hazards.risk import calculate_risk_score, is_high_risk, next_review_date
        assert calculate_risk_score(4, 5) == 20
        assert next_review_date("Critical", D(2030, 1, 15)) == D(2030, 2, 15)
        assert next_review_date("Medium", D(2030, 1, 15)) == D(2030, 7, 15)
        assert next_review_date("VeryLow", D(2030, 1, 15)) == D(2032, 1, 15)
        assert is_high_risk("High") and not is_high_risk("Medium")


# ============================================================================
# WORK PERMITS
# ============================================================================

class TestPermitRules:

    def test_risk_from_flags_and_hazards(self):
        from hsse.work_permits.models import calculate_permit_risk
        assert calculate_permit_risk({}, []).value == "Low"
        assert calculate_permit_risk({}, ["Low", "Medium"]).value == "Low"
        assert calculate_permit_risk({"requires_hot_work": True}, []).value == "Medium"
        assert calculate_permit_risk({"requires_hot_work": True}, ["High"]).value == "High"
        assert calculate_permit_risk({"requires_hot_work": True, "requires_confined_space": True},
                                     ["Critical"]).value == "Critical"
        assert calculate_permit_risk({"requires_fire_watch": True}, []).value == "Low"

    def test_approvals_by_type(self):
        from hsse.work_permits.models import required_approvals
        assert required_approvals("General") == ("SafetyOfficer", "DepartmentHead")
        assert "ElectricalSupervisor" in required_approvals("ElectricalWork")
        assert len(required_approvals("Special")) == 4

    def test_prefix_and_priority(self):
        from hsse.work_permits.models import permit_prefix, permit_priority
        assert permit_prefix("ConfinedSpace") == "CS"
        assert permit_prefix("Mystery") == "WP"
        assert permit_priority("ConfinedSpace") == "Critical"
        assert permit_priority("ColdWork") == "Medium"


# ============================================================================
# LICENSES
# ============================================================================

class TestLicenseScoring:

    ON = D(2030, 1, 1)

    def test_renewal_date(self):
        from hsse.licenses.models import next_renewal_date
        assert next_renewal_date("2030-06-30", True, 30) == "2030-05-31"
        assert next_renewal_date("2030-06-30", False, 30) is None
        assert next_renewal_date("2030-06-30", True, 0) is None

    def test_score_penalties(self):
        from hsse.licenses.models import calculate_compliance_score
        healthy = {"expiry_date": "2031-01-01", "renewal_required": 1, "status": "Active"}
        due = {"expiry_date": "2030-01-20", "renewal_required": 1, "status": "Active"}
        renewing = dict(due, status="PendingRenewal")
        expired = {"expiry_date": "2029-12-01", "renewal_required": 1, "status": "Active"}
        assert calculate_compliance_score(healthy, [], self.ON) == 100.0
        assert calculate_compliance_score(due, [], self.ON) == 80.0
        assert calculate_compliance_score(renewing, [], self.ON) == 100.0
        assert calculate_compliance_score(expired, [], self.ON) == 30.0

    def test_conditions_weight_last_thirty_points(self):
        from hsse.licenses.models import calculate_compliance_score
        lic = {"expiry_date": "2031-01-01", "renewal_required": 0, "status": "Active"}
        half = [{"status": "Completed"}, {"status": "Pending"}]
        assert calculate_compliance_score(lic, half, self.ON) == 85.0
        expired = dict(lic, expiry_date="2029-01-01", renewal_required=1)
        assert calculate_compliance_score(expired, [{"status": "Overdue"}], self.ON) == 0.0


# ============================================================================
# TRAININGS
# ============================================================================

class TestCertificateValidity:

    def test_validity_periods(self):
        from hsse.trainings.models import certificate_valid_until
        assert certificate_valid_until("OneYear", D(2030, 2, 28)) == D(2031, 2, 28)
        assert certificate_valid_until("SixMonths", D(2030, 8, 31)) == D(2031, 2, 28)
        assert certificate_valid_until("Indefinite", D(2030, 1, 1)) is None
        with pytest.raises(ValueError):
            certificate_valid_until("Forever")


# ============================================================================
# AUDITS
# ============================================================================

class TestAuditScoring:

    @pytest.mark.parametrize("pct,band", [
        (None, None), (95, "Excellent"), (90, "Excellent"), (89.99, "Good"),
        (70, "Satisfactory"), (60, "NeedsImprovement"), (59.9, "Unsatisfactory"),
    ])
    def test_score_band(self, pct, band):
        from hsse.audits.models import score_band
        assert score_band(pct) == band

    def test_only_completed_items_count(self):
        from hsse.audits.models import calculate_audit_score
        items = [
            {"status": "Completed", "max_points": 10, "actual_points": 9},
            {"status": "Completed", "max_points": None, "actual_points": 1},
            {"status": "NotStarted", "max_points": 50, "actual_points": None},
        ]
        assert calculate_audit_score(items) == (90.91, "Excellent")
        assert calculate_audit_score(items[2:]) == (None, None)

    def test_risk_from_open_findings(self):
        from hsse.audits.models import audit_risk_level

        def f(severity, status="Open"):
            return {"severity": severity, "status": status}

        assert audit_risk_level([]) == "Low"
        assert audit_risk_level([f("Critical", "Closed")]) == "Low"
        assert audit_risk_level([f("Minor")]) == "Low"
        assert audit_risk_level([f("Moderate"), f("Minor")]) == "Medium"
        assert audit_risk_level([f("Major")]) == "High"
        assert audit_risk_level([f("Major"), f("Major"), f("Major")]) == "Critical"
        assert audit_risk_level([f("Critical", "Resolved")]) == "Critical"


# ============================================================================
# INSPECTIONS
# ============================================================================

class TestInspectionRules:

    def _item(self, item_type, **kw):
        item = {"item_type": item_type, "min_value": None, "max_value": None, "options": None}
        item.update(kw)
        return item

    def test_risk_is_worst_finding(self):
        from hsse.inspections.models import inspection_risk_level
        assert inspection_risk_level([]) == "Low"
        assert inspection_risk_level([{"severity": "Minor"}, {"severity": "Major"}]) == "High"
        assert inspection_risk_level([{"severity": "Critical"}]) == "Critical"

    def test_yes_no_and_override(self):
        from hsse.inspections.models import evaluate_response
        item = self._item("YesNo")
        assert evaluate_response(item, {"response": "Yes"}) is True
        assert evaluate_response(item, {"response": "no"}) is False
        assert evaluate_response(item, {"response": "no", "passed": True}) is True

    def test_numeric_bounds(self):
        from hsse.inspections.models import evaluate_response
        item = self._item("Measurement", min_value=0, max_value=10)
        assert evaluate_response(item, {"response": "5"}) is True
        assert evaluate_response(item, {"response": 12}) is False
        assert evaluate_response(item, {"response": -1}) is False
        with pytest.raises(DomainError):
            evaluate_response(item, {"response": "abc"})

    def test_multiple_choice_and_text(self):
        from hsse.inspections.models import evaluate_response
        item = self._item("MultipleChoice", options="Good, Fair, Poor")
        assert evaluate_response(item, {"response": "Fair"}) is True
        with pytest.raises(DomainError):
            evaluate_response(item, {"response": "Bad"})
        assert evaluate_response(self._item("Text"), {"response": "  "}) is False


# ============================================================================
# HEALTH
# ============================================================================

class TestVaccinationCompliance:

    ON = D(2030, 6, 1)

    def test_summary(self):
        from hsse.health.models import summarize_compliance
        rows = [
            {"vaccine_name": "Hepatitis B", "person_type": "Staff", "is_required": 1,
             "status": "Administered", "expiry_date": "2031-01-01"},
            {"vaccine_name": "Hepatitis B", "person_type": "Staff", "is_required": 1,
             "status": "Administered", "expiry_date": "2030-05-01"},
            {"vaccine_name": "MMR", "person_type": "Student", "is_required": 1,
             "status": "Exempted", "expiry_date": None},
            {"vaccine_name": "MMR", "person_type": "Student", "is_required": 1,
             "status": "Overdue", "expiry_date": None},
            {"vaccine_name": "Influenza", "person_type": "Staff", "is_required": 0,
             "status": "Exempted", "expiry_date": None},
        ]
        summary = summarize_compliance(rows, self.ON)
        assert summary["total_required"] == 4
        assert summary["total_compliant"] == 2
        assert summary["total_overdue"] == 1
        assert summary["total_exempted"] == 2
        assert summary["expired"] == 1
        assert summary["compliance_rate"] == 50.0
        assert summary["by_person_type"]["Staff"] == {"required": 2, "compliant": 1, "compliance_rate": 50.0}
        assert {b["vaccine_name"] for b in summary["by_vaccine"]} == {"Hepatitis B", "MMR"}

    def test_nothing_required_is_fully_compliant(self):
        from hsse.health.models import summarize_compliance
        assert summarize_compliance([], self.ON)["compliance_rate"] == 100.0

    def test_expiring_window(self):
        from hsse.health.models import is_vaccination_expiring
        assert is_vaccination_expiring({"expiry_date": "2030-06-20"}, on=self.ON)
        assert not is_vaccination_expiring({"expiry_date": "2030-08-01"}, on=self.ON)
        assert not is_vaccination_expiring({"expiry_date": None}, on=self.ON)


# ============================================================================
# SECURITY INCIDENTS
# ============================================================================

class TestSecurityRules:

    def test_severity_ladder(self):
        from hsse.security_incidents.models import next_severity
        assert next_severity("Low") == "Medium"
        assert next_severity("High") == "Critical"
        assert next_severity("Critical") is None

    def test_threat_escalation(self):
        from hsse.security_incidents.models import is_threat_escalation
        assert is_threat_escalation("Low", "High")
        assert not is_threat_escalation("High", "Medium")
        assert not is_threat_escalation("Medium", "Medium")

    def test_overdue_by_severity(self):
        from hsse.security_incidents.models import is_overdue
        now = datetime.datetime(2030, 1, 2, 9, 0, 0)
        base = {"status": "Open", "created_at": "2030-01-01 08:00:00"}
        assert is_overdue(dict(base, severity="Critical"), now)
        assert not is_overdue(dict(base, severity="Low"), now)
        assert not is_overdue(dict(base, severity="Critical", status="Closed"), now)


# ============================================================================
# PASSWORDS
# ============================================================================

class TestPasswords:

    def test_hash_round_trip(self):
        from hsse.auth.models import hash_password, verify_password
        stored = hash_password("Secret123")
        assert stored.startswith("pbkdf2:sha256")
        assert verify_password("Secret123", stored)
        assert not verify_password("secret123", stored)

    @pytest.mark.parametrize("stored", [
        "pbkdf2_sha256$abc$zz$nothex",
        "pbkdf2:sha256:lots$salt$digest",
        "a$b$c$d",
        "plaintext",
        "",
        None,
    ])
    def test_malformed_hash_never_matches(self, stored):
        from hsse.auth.models import verify_password
        assert verify_password("Secret123", stored) is False
