"""
HSSE Work Permits - Database Models & Schema

Permits to work carry their own hazard list and precaution checklist. A
permit is approved only after every approval level required for its type
has signed off.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Sequence

from hsse.activity import log_activity
from hsse.db import get_conn, ts, rows_to_dicts, row_to_dict, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)


class WorkPermitType(str, Enum):
    GENERAL = "General"
    HOT_WORK = "HotWork"
    COLD_WORK = "ColdWork"
    CONFINED_SPACE = "ConfinedSpace"
    ELECTRICAL_WORK = "ElectricalWork"
    SPECIAL = "Special"


class WorkPermitStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PermitRiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


REQUIRED_APPROVALS = {
    WorkPermitType.HOT_WORK: ("SafetyOfficer", "DepartmentHead", "HotWorkSpecialist"),
    WorkPermitType.CONFINED_SPACE: ("SafetyOfficer", "DepartmentHead", "ConfinedSpaceSpecialist"),
    WorkPermitType.ELECTRICAL_WORK: ("SafetyOfficer", "ElectricalSupervisor", "DepartmentHead"),
    WorkPermitType.SPECIAL: ("SafetyOfficer", "DepartmentHead", "SpecialWorkSpecialist", "HSEManager"),
}
DEFAULT_APPROVALS = ("SafetyOfficer", "DepartmentHead")

PERMIT_PREFIX = {
    WorkPermitType.HOT_WORK: "HW",
    WorkPermitType.COLD_WORK: "CW",
    WorkPermitType.CONFINED_SPACE: "CS",
    WorkPermitType.ELECTRICAL_WORK: "EW",
    WorkPermitType.SPECIAL: "SP",
    WorkPermitType.GENERAL: "GP",
}

PERMIT_PRIORITY = {
    WorkPermitType.HOT_WORK: "High",
    WorkPermitType.CONFINED_SPACE: "Critical",
    WorkPermitType.ELECTRICAL_WORK: "High",
    WorkPermitType.SPECIAL: "Critical",
}

HIGH_RISK_FLAGS = ("requires_hot_work", "requires_confined_space", "requires_electrical_isolation",
                   "requires_height_work", "requires_radiation_work", "requires_excavation")
SAFETY_FLAGS = HIGH_RISK_FLAGS + ("requires_fire_watch", "requires_gas_monitoring")

EDITABLE_FIELDS = ("title", "description", "work_location", "planned_start_date", "planned_end_date",
                   "estimated_duration", "work_scope", "equipment", "materials", "number_of_workers",
                   "contractor_company", "work_supervisor", "safety_officer", "contact_phone",
                   "emergency_procedures") + SAFETY_FLAGS


# ================================================================
# PURE HELPERS
# ================================================================

def required_approvals(permit_type) -> Sequence[str]:
    return REQUIRED_APPROVALS.get(WorkPermitType(permit_type), DEFAULT_APPROVALS)


def permit_prefix(permit_type) -> str:
    try:
        return PERMIT_PREFIX[WorkPermitType(permit_type)]
    except (KeyError, ValueError):
        return "WP"


def permit_priority(permit_type) -> str:
    return PERMIT_PRIORITY.get(WorkPermitType(permit_type), "Medium")


def calculate_permit_risk(flags: Dict, hazard_levels: Sequence[str]) -> PermitRiskLevel:
    """High-risk work flags plus High/Critical hazards; 3+ Critical, 2 High, 1 Medium."""
    factors = sum(1 for f in HIGH_RISK_FLAGS if flags.get(f))
    factors += sum(1 for level in hazard_levels if level in ("High", "Critical"))
    if factors >= 3:
        return PermitRiskLevel.CRITICAL
    if factors >= 2:
        return PermitRiskLevel.HIGH
    if factors >= 1:
        return PermitRiskLevel.MEDIUM
    return PermitRiskLevel.LOW


def init_work_permit_schema():
    conn = get_conn()
    c = conn.cursor()
    flag_cols = ",\n".join(f"            {f} INTEGER DEFAULT 0" for f in SAFETY_FLAGS)
    c.execute(f"""
        CREATE TABLE IF NOT EXISTS work_permits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            permit_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            permit_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Draft',
            priority TEXT NOT NULL,
            risk_level TEXT NOT NULL DEFAULT 'Low',
            work_location TEXT NOT NULL,
            planned_start_date TEXT NOT NULL,
            planned_end_date TEXT NOT NULL,
            actual_start_date TEXT,
            actual_end_date TEXT,
            estimated_duration INTEGER,
            requested_by_id INTEGER,
            requested_by_name TEXT,
            requested_by_department TEXT,
            contact_phone TEXT,
            work_supervisor TEXT,
            safety_officer TEXT,
            work_scope TEXT,
            equipment TEXT,
            materials TEXT,
            number_of_workers INTEGER,
            contractor_company TEXT,
            emergency_procedures TEXT,
{flag_cols},
            completion_notes TEXT,
            is_completed_safely INTEGER,
            lessons_learned TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS work_permit_approvals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            permit_id INTEGER NOT NULL REFERENCES work_permits(id),
            approval_level TEXT NOT NULL,
            approved_by_id INTEGER,
            approved_by_name TEXT,
            approved_at TEXT NOT NULL,
            is_approved INTEGER NOT NULL,
            comments TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS work_permit_hazards (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            permit_id INTEGER NOT NULL REFERENCES work_permits(id),
            hazard_description TEXT NOT NULL,
            risk_level TEXT NOT NULL,
            control_measures TEXT,
            responsible_person TEXT,
            is_control_implemented INTEGER DEFAULT 0
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS work_permit_precautions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            permit_id INTEGER NOT NULL REFERENCES work_permits(id),
            description TEXT NOT NULL,
            category TEXT,
            is_required INTEGER DEFAULT 1,
            priority INTEGER DEFAULT 1,
            responsible_person TEXT,
            is_completed INTEGER DEFAULT 0,
            completed_at TEXT,
            completed_by TEXT,
            completion_notes TEXT
        )
    """)
    conn.commit()
    conn.close()


# ================================================================
# PERMITS
# ================================================================

def _permit(row) -> Dict:
    d = dict(row)
    for f in SAFETY_FLAGS:
        d[f] = bool(d[f])
    if d.get("is_completed_safely") is not None:
        d["is_completed_safely"] = bool(d["is_completed_safely"])
    return d


def get_permit(permit_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM work_permits WHERE id = ?", (permit_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Work permit", permit_id)
    return _permit(row)


def get_permit_detail(permit_id: int) -> Dict:
    permit = get_permit(permit_id)
    conn = get_conn()
    permit["approvals"] = rows_to_dicts(conn.execute(
        "SELECT * FROM work_permit_approvals WHERE permit_id = ? ORDER BY id", (permit_id,)).fetchall())
    permit["hazards"] = rows_to_dicts(conn.execute(
        "SELECT * FROM work_permit_hazards WHERE permit_id = ? ORDER BY id", (permit_id,)).fetchall())
    permit["precautions"] = rows_to_dicts(conn.execute(
        "SELECT * FROM work_permit_precautions WHERE permit_id = ? ORDER BY priority, id", (permit_id,)).fetchall())
    conn.close()
    approved = {a["approval_level"] for a in permit["approvals"] if a["is_approved"]}
    permit["required_approvals"] = list(required_approvals(permit["permit_type"]))
    permit["pending_approvals"] = [lvl for lvl in permit["required_approvals"] if lvl not in approved]
    return permit


def list_permits(search: str = None, status: str = None, permit_type: str = None,
                 risk_level: str = None, requested_by_id: int = None,
                 page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(permit_number LIKE ? OR title LIKE ? OR work_location LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("status", status), ("permit_type", permit_type), ("risk_level", risk_level),
                     ("requested_by_id", requested_by_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM work_permits WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT * FROM work_permits WHERE {clause} ORDER BY planned_start_date DESC, id DESC LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": [_permit(r) for r in rows], "total": total, "page": page, "page_size": page_size}


def _validate_schedule(start, end):
    start_d, end_d = parse_date(start), parse_date(end)
    require(start_d and end_d, "Planned start and end dates are required")
    if end_d < start_d:
        raise DomainError("Planned end date must be after the start date")


def create_permit(data: Dict, requester: Dict) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    require((data.get("work_location") or "").strip(), "Work location is required")
    permit_type = data.get("permit_type", WorkPermitType.GENERAL.value)
    if permit_type not in WorkPermitType._value2member_map_:
        raise DomainError(f"Invalid permit type: {permit_type}")
    _validate_schedule(data.get("planned_start_date"), data.get("planned_end_date"))
    flags = {f: 1 if data.get(f) else 0 for f in SAFETY_FLAGS}

    conn = get_conn()
    prefix = f"{permit_prefix(permit_type)}-{datetime.date.today().strftime('%Y%m')}"
    seq = conn.execute("SELECT COUNT(*) FROM work_permits WHERE permit_number LIKE ?",
                       (f"{prefix}-%",)).fetchone()[0] + 1
    cols = ["permit_number", "title", "description", "permit_type", "status", "priority", "risk_level",
            "work_location", "planned_start_date", "planned_end_date", "estimated_duration",
            "requested_by_id", "requested_by_name", "requested_by_department", "contact_phone",
            "work_supervisor", "safety_officer", "work_scope", "equipment", "materials",
            "number_of_workers", "contractor_company", "emergency_procedures",
            *SAFETY_FLAGS, "created_at", "created_by"]
    values = [f"{prefix}-{seq:04d}", data["title"].strip(), data.get("description"), permit_type,
              WorkPermitStatus.DRAFT.value, permit_priority(permit_type),
              calculate_permit_risk(flags, []).value, data["work_location"].strip(),
              data["planned_start_date"], data["planned_end_date"], data.get("estimated_duration"),
              requester["id"], requester.get("name"), requester.get("department"),
              data.get("contact_phone") or requester.get("phone"), data.get("work_supervisor"),
              data.get("safety_officer"), data.get("work_scope"), data.get("equipment"),
              data.get("materials"), data.get("number_of_workers"), data.get("contractor_company"),
              data.get("emergency_procedures"), *[flags[f] for f in SAFETY_FLAGS],
              ts(), requester.get("email")]
    cur = conn.execute(f"INSERT INTO work_permits ({', '.join(cols)}) VALUES ({', '.join('?' * len(cols))})",
                       values)
    permit_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("WorkPermit", permit_id, "Created", user=requester.get("email"))
    return get_permit(permit_id)


def _set_permit(permit_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, permit_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE work_permits SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


def _refresh_risk(permit_id: int, user: str):
    permit = get_permit(permit_id)
    conn = get_conn()
    levels = [r["risk_level"] for r in conn.execute(
        "SELECT risk_level FROM work_permit_hazards WHERE permit_id = ?", (permit_id,))]
    conn.close()
    _set_permit(permit_id, {"risk_level": calculate_permit_risk(permit, levels).value}, user)


def update_permit(permit_id: int, data: Dict, user: str) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] not in (WorkPermitStatus.DRAFT.value, WorkPermitStatus.REJECTED.value):
        raise DomainError("Only draft or rejected permits can be edited")
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    _validate_schedule(fields.get("planned_start_date", permit["planned_start_date"]),
                       fields.get("planned_end_date", permit["planned_end_date"]))
    for f in SAFETY_FLAGS:
        if f in fields:
            fields[f] = 1 if fields[f] else 0
    _set_permit(permit_id, fields, user)
    _refresh_risk(permit_id, user)
    log_activity("WorkPermit", permit_id, "Updated", user=user, details=data)
    return get_permit(permit_id)


def _transition(permit_id: int, allowed, target: WorkPermitStatus, error: str, user: str,
                action: str, extra: Dict = None, details: Dict = None) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] not in [s.value for s in allowed]:
        raise DomainError(error)
    _set_permit(permit_id, {"status": target.value, **(extra or {})}, user)
    log_activity("WorkPermit", permit_id, action, user=user,
                 summary=f"{permit['status']} -> {target.value}", details=details)
    logger.info("[WorkPermits] %s %s -> %s", permit["permit_number"], permit["status"], target.value)
    return get_permit(permit_id)


def submit_permit(permit_id: int, user: str) -> Dict:
    return _transition(permit_id, (WorkPermitStatus.DRAFT,), WorkPermitStatus.PENDING_APPROVAL,
                       "Only draft permits can be submitted for approval", user, "Submitted")


def approve_permit(permit_id: int, approval_level: str, comments: str, approver: Dict) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] != WorkPermitStatus.PENDING_APPROVAL.value:
        raise DomainError("Only permits pending approval can be approved")
    levels = required_approvals(permit["permit_type"])
    if approval_level not in levels:
        raise DomainError(f"Approval level must be one of: {', '.join(levels)}")
    conn = get_conn()
    done = {r["approval_level"] for r in conn.execute(
        "SELECT approval_level FROM work_permit_approvals WHERE permit_id = ? AND is_approved = 1", (permit_id,))}
    if approval_level in done:
        conn.close()
        raise DomainError(f"{approval_level} approval has already been recorded")
    conn.execute("""
        INSERT INTO work_permit_approvals
        (permit_id, approval_level, approved_by_id, approved_by_name, approved_at, is_approved, comments)
        VALUES (?, ?, ?, ?, ?, 1, ?)
    """, (permit_id, approval_level, approver["id"], approver.get("name"), ts(), comments))
    done.add(approval_level)
    fully_approved = all(lvl in done for lvl in levels)
    if fully_approved:
        _set_permit(permit_id, {"status": WorkPermitStatus.APPROVED.value}, approver.get("email"), conn)
    conn.commit()
    conn.close()
    log_activity("WorkPermit", permit_id, "Approved" if fully_approved else "ApprovalRecorded",
                 user=approver.get("email"), details={"level": approval_level})
    return get_permit_detail(permit_id)


def reject_permit(permit_id: int, reason: str, approver: Dict) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] != WorkPermitStatus.PENDING_APPROVAL.value:
        raise DomainError("Only permits pending approval can be rejected")
    require((reason or "").strip(), "A rejection reason is required")
    conn = get_conn()
    conn.execute("""
        INSERT INTO work_permit_approvals
        (permit_id, approval_level, approved_by_id, approved_by_name, approved_at, is_approved, comments)
        VALUES (?, 'Rejection', ?, ?, ?, 0, ?)
    """, (permit_id, approver["id"], approver.get("name"), ts(), reason))
    _set_permit(permit_id, {"status": WorkPermitStatus.REJECTED.value}, approver.get("email"), conn)
    conn.commit()
    conn.close()
    log_activity("WorkPermit", permit_id, "Rejected", user=approver.get("email"), details={"reason": reason})
    return get_permit_detail(permit_id)


def start_permit(permit_id: int, user: str) -> Dict:
    return _transition(permit_id, (WorkPermitStatus.APPROVED,), WorkPermitStatus.IN_PROGRESS,
                       "Only approved permits can be started", user, "WorkStarted",
                       {"actual_start_date": ts()})


def complete_permit(permit_id: int, notes: str, completed_safely: bool, lessons_learned: str,
                    user: str) -> Dict:
    return _transition(permit_id, (WorkPermitStatus.IN_PROGRESS,), WorkPermitStatus.COMPLETED,
                       "Only in-progress permits can be completed", user, "WorkCompleted",
                       {"actual_end_date": ts(), "completion_notes": notes,
                        "is_completed_safely": 1 if completed_safely else 0,
                        "lessons_learned": lessons_learned or ""},
                       {"completed_safely": bool(completed_safely)})


def cancel_permit(permit_id: int, reason: str, user: str) -> Dict:
    allowed = [s for s in WorkPermitStatus if s not in (WorkPermitStatus.COMPLETED, WorkPermitStatus.CANCELLED)]
    return _transition(permit_id, allowed, WorkPermitStatus.CANCELLED,
                       "Completed or already cancelled permits cannot be cancelled", user, "Cancelled",
                       {"completion_notes": f"Cancelled: {reason}"}, {"reason": reason})


# ================================================================
# HAZARDS & PRECAUTIONS
# ================================================================

def add_permit_hazard(permit_id: int, data: Dict, user: str) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] in (WorkPermitStatus.COMPLETED.value, WorkPermitStatus.CANCELLED.value):
        raise DomainError(f"Cannot add hazards to a {permit['status']} permit")
    require((data.get("hazard_description") or "").strip(), "Hazard description is required")
    level = data.get("risk_level", PermitRiskLevel.MEDIUM.value)
    if level not in PermitRiskLevel._value2member_map_:
        raise DomainError(f"Invalid risk level: {level}")
    conn = get_conn()
    conn.execute("""
        INSERT INTO work_permit_hazards
        (permit_id, hazard_description, risk_level, control_measures, responsible_person)
        VALUES (?, ?, ?, ?, ?)
    """, (permit_id, data["hazard_description"].strip(), level, data.get("control_measures"),
          data.get("responsible_person")))
    conn.commit()
    conn.close()
    _refresh_risk(permit_id, user)
    log_activity("WorkPermit", permit_id, "HazardAdded", user=user, details={"risk_level": level})
    return get_permit_detail(permit_id)


def add_precaution(permit_id: int, data: Dict, user: str) -> Dict:
    permit = get_permit(permit_id)
    if permit["status"] in (WorkPermitStatus.COMPLETED.value, WorkPermitStatus.CANCELLED.value):
        raise DomainError(f"Cannot add precautions to a {permit['status']} permit")
    require((data.get("description") or "").strip(), "Precaution description is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO work_permit_precautions
        (permit_id, description, category, is_required, priority, responsible_person)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (permit_id, data["description"].strip(), data.get("category"),
          0 if data.get("is_required") is False else 1, data.get("priority", 1),
          data.get("responsible_person")))
    precaution_id = cur.lastrowid
    conn.commit()
    row = conn.execute("SELECT * FROM work_permit_precautions WHERE id = ?", (precaution_id,)).fetchone()
    conn.close()
    return row_to_dict(row)


def complete_precaution(permit_id: int, precaution_id: int, notes: str, user: str) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM work_permit_precautions WHERE id = ? AND permit_id = ?",
                       (precaution_id, permit_id)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("Precaution", precaution_id)
    if row["is_completed"]:
        conn.close()
        raise DomainError("Precaution is already completed")
    conn.execute("""
        UPDATE work_permit_precautions SET is_completed = 1, completed_at = ?, completed_by = ?,
        completion_notes = ? WHERE id = ?
    """, (ts(), user, notes, precaution_id))
    conn.commit()
    row = conn.execute("SELECT * FROM work_permit_precautions WHERE id = ?", (precaution_id,)).fetchone()
    conn.close()
    log_activity("WorkPermit", permit_id, "PrecautionCompleted", user=user,
                 details={"precaution_id": precaution_id})
    return row_to_dict(row)


def list_approvals(permit_id: int) -> List[Dict]:
    get_permit(permit_id)
    conn = get_conn()
    rows = conn.execute("SELECT * FROM work_permit_approvals WHERE permit_id = ? ORDER BY id",
                        (permit_id,)).fetchall()
    conn.close()
    return rows_to_dicts(rows)


def get_permit_dashboard() -> Dict:
    conn = get_conn()
    by_status = {s.value: 0 for s in WorkPermitStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM work_permits GROUP BY status"):
        by_status[r["status"]] = r["n"]
    by_type = {t.value: 0 for t in WorkPermitType}
    for r in conn.execute("SELECT permit_type, COUNT(*) AS n FROM work_permits GROUP BY permit_type"):
        by_type[r["permit_type"]] = r["n"]
    by_risk = {lvl.value: 0 for lvl in PermitRiskLevel}
    for r in conn.execute("SELECT risk_level, COUNT(*) AS n FROM work_permits GROUP BY risk_level"):
        by_risk[r["risk_level"]] = r["n"]
    completed = conn.execute("""
        SELECT COUNT(*) AS n, SUM(CASE WHEN is_completed_safely = 1 THEN 1 ELSE 0 END) AS safe
        FROM work_permits WHERE status = 'Completed'
    """).fetchone()
    overdue = conn.execute("""
        SELECT COUNT(*) FROM work_permits WHERE status = 'InProgress' AND planned_end_date < ?
    """, (datetime.date.today().isoformat(),)).fetchone()[0]
    conn.close()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "by_risk_level": by_risk,
        "pending_approval": by_status[WorkPermitStatus.PENDING_APPROVAL.value],
        "in_progress": by_status[WorkPermitStatus.IN_PROGRESS.value],
        "overdue": overdue,
        "safe_completion_rate": round((completed["safe"] or 0) / completed["n"] * 100, 1)
        if completed["n"] else 0.0,
    }
