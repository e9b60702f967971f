# ============================================================================
# HSSE - Cross-domain KPI summary
# ============================================================================
# Each functional module contributes one section through an extractor that
# queries its own tables and returns a plain dict. Sections for disabled
# modules are left out entirely.
#
#   RiskManagement             - hazard totals and completion rate
#   IncidentManagement         - incidents by severity and month
#   PPEManagement              - PPE availability and compliance
#   TrainingManagement         - participant completion
#   WorkPermitManagement       - permits by status
#   WasteManagement            - waste reports and quantities
#   SecurityIncidentManagement - open and critical security incidents
#   HealthMonitoring           - vaccination compliance
#   AuditManagement            - audit findings
#   InspectionManagement       - inspection findings
# ============================================================================

import datetime
import logging
from typing import Any, Dict

from hsse.auth.permissions import ModuleType
from hsse.db import get_conn
from hsse.health.models import summarize_compliance
from hsse.modules import is_module_enabled

logger = logging.getLogger(__name__)


def _pct(part, whole) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _counts(conn, sql: str, params=()) -> Dict[str, int]:
    return {r[0]: r[1] for r in conn.execute(sql, params).fetchall()}


def _since(date_from: str, date_to: str):
    start = date_from or (datetime.date.today() - datetime.timedelta(days=365)).isoformat()
    end = f"{date_to} 23:59:59" if date_to else "9999-12-31"
    return start, end


def _hazard_section(conn, start, end) -> Dict[str, Any]:
    by_status = _counts(conn, """
        SELECT status, COUNT(*) FROM hazards
        WHERE is_deleted = 0 AND identified_date BETWEEN ? AND ? GROUP BY status
    """, (start, end))
    total = sum(by_status.values())
    closed = by_status.get("Resolved", 0) + by_status.get("Closed", 0)
    high_risk = conn.execute("""
        SELECT COUNT(*) FROM risk_assessments ra JOIN hazards h ON h.id = ra.hazard_id
        WHERE ra.is_active = 1 AND h.is_deleted = 0 AND ra.risk_level IN ('High', 'Critical')
    """).fetchone()[0]
    overdue_actions = conn.execute(
        "SELECT COUNT(*) FROM hazard_mitigation_actions WHERE status = 'Overdue'").fetchone()[0]
    return {
        "total": total,
        "open": total - closed,
        "closed": closed,
        "completion_rate": _pct(closed, total),
        "high_risk": high_risk,
        "overdue_actions": overdue_actions,
        "by_status": by_status,
    }


def _incident_section(conn, start, end) -> Dict[str, Any]:
    by_severity = _counts(conn, """
        SELECT severity, COUNT(*) FROM incidents
        WHERE is_deleted = 0 AND incident_date BETWEEN ? AND ? GROUP BY severity
    """, (start, end))
    monthly = _counts(conn, """
        SELECT substr(incident_date, 1, 7) AS month, COUNT(*) FROM incidents
        WHERE is_deleted = 0 AND incident_date BETWEEN ? AND ? GROUP BY month ORDER BY month
    """, (start, end))
    open_count = conn.execute("""
        SELECT COUNT(*) FROM incidents WHERE is_deleted = 0 AND status NOT IN ('Resolved', 'Closed')
    """).fetchone()[0]
    return {
        "total": sum(by_severity.values()),
        "open": open_count,
        "by_severity": by_severity,
        "monthly": [{"month": m, "count": n} for m, n in monthly.items()],
    }


def _ppe_section(conn, start, end) -> Dict[str, Any]:
    by_status = _counts(conn, "SELECT status, COUNT(*) FROM ppe_items WHERE is_deleted = 0 GROUP BY status")
    total = sum(by_status.values())
    retired = by_status.get("Retired", 0) + by_status.get("Lost", 0)
    unusable = conn.execute("""
        SELECT COUNT(*) FROM ppe_items WHERE is_deleted = 0 AND status NOT IN ('Retired', 'Lost')
          AND (condition IN ('Damaged', 'Expired') OR status = 'OutOfService')
    """).fetchone()[0]
    in_service = total - retired
    return {
        "total": total,
        "assigned": by_status.get("Assigned", 0),
        "available": by_status.get("Available", 0),
        "unusable": unusable,
        "compliance_rate": _pct(in_service - unusable, in_service),
        "by_status": by_status,
    }


def _training_section(conn, start, end) -> Dict[str, Any]:
    by_status = _counts(conn, """
        SELECT p.status, COUNT(*) FROM training_participants p JOIN trainings t ON t.id = p.training_id
        WHERE t.scheduled_start_date BETWEEN ? AND ? GROUP BY p.status
    """, (start, end))
    counted = sum(n for s, n in by_status.items() if s != "Withdrawn")
    completed = by_status.get("Completed", 0)
    trainings = _counts(conn, "SELECT status, COUNT(*) FROM trainings GROUP BY status")
    return {
        "trainings": sum(trainings.values()),
        "trainings_by_status": trainings,
        "participants": counted,
        "completed": completed,
        "completion_rate": _pct(completed, counted),
    }


def _permit_section(conn, start, end) -> Dict[str, Any]:
    by_status = _counts(conn, """
        SELECT status, COUNT(*) FROM work_permits WHERE planned_start_date BETWEEN ? AND ? GROUP BY status
    """, (start, end))
    return {
        "total": sum(by_status.values()),
        "active": by_status.get("Approved", 0) + by_status.get("InProgress", 0),
        "pending_approval": by_status.get("PendingApproval", 0),
        "by_status": by_status,
    }


def _waste_section(conn, start, end) -> Dict[str, Any]:
    rows = conn.execute("""
        SELECT classification, disposal_status, COUNT(*) AS n, COALESCE(SUM(estimated_quantity), 0) AS qty
        FROM waste_reports WHERE is_deleted = 0 AND generated_date BETWEEN ? AND ?
        GROUP BY classification, disposal_status
    """, (start, end)).fetchall()
    by_classification: Dict[str, float] = {}
    pending = 0
    for r in rows:
        by_classification[r["classification"]] = by_classification.get(r["classification"], 0) + r["qty"]
        if r["disposal_status"] != "Disposed":
            pending += r["n"]
    return {
        "reports": sum(r["n"] for r in rows),
        "pending_disposal": pending,
        "total_quantity": round(sum(by_classification.values()), 2),
        "quantity_by_classification": by_classification,
    }


def _security_section(conn, start, end) -> Dict[str, Any]:
    by_severity = _counts(conn, """
        SELECT severity, COUNT(*) FROM security_incidents WHERE incident_datetime BETWEEN ? AND ?
        GROUP BY severity
    """, (start, end))
    open_count = conn.execute(
        "SELECT COUNT(*) FROM security_incidents WHERE status NOT IN ('Resolved', 'Closed')").fetchone()[0]
    critical_open = conn.execute("""
        SELECT COUNT(*) FROM security_incidents
        WHERE severity = 'Critical' AND status NOT IN ('Resolved', 'Closed')
    """).fetchone()[0]
    breaches = conn.execute(
        "SELECT COUNT(*) FROM security_incidents WHERE data_breach_occurred = 1 AND incident_datetime BETWEEN ? AND ?",
        (start, end)).fetchone()[0]
    return {
        "total": sum(by_severity.values()),
        "open": open_count,
        "critical_open": critical_open,
        "data_breaches": breaches,
        "by_severity": by_severity,
    }


def _health_section(conn, start, end) -> Dict[str, Any]:
    rows = [dict(r) for r in conn.execute("""
        SELECT v.status, v.expiry_date, v.vaccine_name, v.is_required, h.person_type
        FROM vaccinations v JOIN health_records h ON h.id = v.health_record_id WHERE h.is_active = 1
    """)]
    compliance = summarize_compliance(rows)
    records = conn.execute("SELECT COUNT(*) FROM health_records WHERE is_active = 1").fetchone()[0]
    return {
        "records": records,
        "vaccination_compliance_rate": compliance["compliance_rate"],
        "overdue_vaccinations": compliance["total_overdue"],
        "expiring_vaccinations": compliance["expiring_soon"],
    }


def _finding_section(table: str, parent: str, parent_table: str):
    def extract(conn, start, end) -> Dict[str, Any]:
        by_severity = _counts(conn, f"""
            SELECT f.severity, COUNT(*) FROM {table} f JOIN {parent_table} p ON p.id = f.{parent}
            WHERE f.status != 'Closed' GROUP BY f.severity
        """)
        total = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        open_count = sum(by_severity.values())
        return {
            "total_findings": total,
            "open_findings": open_count,
            "closed_findings": total - open_count,
            "open_by_severity": by_severity,
        }
    return extract


SECTIONS: Dict[ModuleType, tuple] = {
    ModuleType.RISK_MANAGEMENT: ("hazards", _hazard_section),
    ModuleType.INCIDENT_MANAGEMENT: ("incidents", _incident_section),
    ModuleType.PPE_MANAGEMENT: ("ppe", _ppe_section),
    ModuleType.TRAINING_MANAGEMENT: ("training", _training_section),
    ModuleType.WORK_PERMIT_MANAGEMENT: ("work_permits", _permit_section),
    ModuleType.WASTE_MANAGEMENT: ("waste", _waste_section),
    ModuleType.SECURITY_INCIDENT_MANAGEMENT: ("security", _security_section),
    ModuleType.HEALTH_MONITORING: ("health", _health_section),
    ModuleType.AUDIT_MANAGEMENT: ("audits", _finding_section("audit_findings", "audit_id", "audits")),
    ModuleType.INSPECTION_MANAGEMENT: ("inspections", _finding_section("inspection_findings", "inspection_id",
                                                                       "inspections")),
}


def get_hsse_summary(date_from: str = None, date_to: str = None) -> Dict[str, Any]:
    start, end = _since(date_from, date_to)
    summary: Dict[str, Any] = {"date_from": start, "date_to": date_to, "modules": []}
    conn = get_conn()
    try:
        for module, (key, extract) in SECTIONS.items():
            if not is_module_enabled(module):
                continue
            summary[key] = extract(conn, start, end)
            summary["modules"].append(module.value)
    finally:
        conn.close()
    return summary
