"""
HSSE Hazards - Database Models & Schema

Hazards own their risk assessments (one active at a time) and mitigation
actions. A hazard cannot be closed while an Elimination action is still
outstanding.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, row_to_dict, build_update, parse_date
from hsse.errors import DomainError, NotFoundError, require
from .risk import (
    RiskAssessmentType, calculate_risk_score, determine_risk_level, next_review_date,
)

logger = logging.getLogger(__name__)


class HazardStatus(str, Enum):
    REPORTED = "Reported"
    UNDER_ASSESSMENT = "UnderAssessment"
    ACTION_REQUIRED = "ActionRequired"
    MITIGATING = "Mitigating"
    MONITORING = "Monitoring"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class HazardSeverity(str, Enum):
    NEGLIGIBLE = "Negligible"
    MINOR = "Minor"
    MODERATE = "Moderate"
    MAJOR = "Major"
    CATASTROPHIC = "Catastrophic"


class MitigationActionType(str, Enum):
    ELIMINATION = "Elimination"
    SUBSTITUTION = "Substitution"
    ENGINEERING = "Engineering"
    ADMINISTRATIVE = "Administrative"
    PPE = "PPE"


class MitigationActionStatus(str, Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


HIGH_SEVERITIES = (HazardSeverity.MAJOR.value, HazardSeverity.CATASTROPHIC.value)

HAZARD_FIELDS = ("title", "description", "category", "hazard_type", "location", "severity",
                 "expected_resolution_date", "latitude", "longitude")


def init_hazard_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS hazards (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hazard_number TEXT UNIQUE,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            category TEXT,
            hazard_type TEXT,
            location TEXT NOT NULL,
            latitude REAL,
            longitude REAL,
            status TEXT NOT NULL DEFAULT 'Reported',
            severity TEXT NOT NULL,
            identified_date TEXT NOT NULL,
            expected_resolution_date TEXT,
            reporter_id INTEGER,
            reporter_name TEXT,
            reporter_department TEXT,
            current_risk_assessment_id INTEGER,
            closure_notes TEXT,
            is_deleted INTEGER DEFAULT 0,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS risk_assessments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hazard_id INTEGER NOT NULL REFERENCES hazards(id),
            assessment_type TEXT NOT NULL,
            assessor_id INTEGER,
            assessor_name TEXT,
            assessment_date TEXT NOT NULL,
            probability_score INTEGER NOT NULL,
            severity_score INTEGER NOT NULL,
            risk_score INTEGER NOT NULL,
            risk_level TEXT NOT NULL,
            potential_consequences TEXT,
            existing_controls TEXT,
            recommended_actions TEXT,
            additional_notes TEXT,
            next_review_date TEXT,
            is_active INTEGER DEFAULT 1,
            is_approved INTEGER DEFAULT 0,
            approved_by TEXT,
            approved_at TEXT,
            approval_notes TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS hazard_mitigation_actions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hazard_id INTEGER NOT NULL REFERENCES hazards(id),
            action_description TEXT NOT NULL,
            action_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Planned',
            priority TEXT DEFAULT 'Medium',
            target_date TEXT,
            completed_date TEXT,
            assigned_to_id INTEGER,
            estimated_cost REAL,
            actual_cost REAL,
            completion_notes TEXT,
            requires_verification INTEGER DEFAULT 0,
            verified_by TEXT,
            verified_at TEXT,
            verification_notes TEXT,
            effectiveness_rating INTEGER,
            status_notes TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS hazard_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hazard_id INTEGER NOT NULL REFERENCES hazards(id),
            file_name TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER,
            content_type TEXT,
            uploaded_by TEXT,
            uploaded_at TEXT
        )
    """)
    conn.commit()
    conn.close()


# ================================================================
# HAZARDS
# ================================================================

def _validate_choice(enum_cls, value, label):
    if value not in enum_cls._value2member_map_:
        raise DomainError(f"Invalid {label}: {value}")


def create_hazard(data: Dict, reporter: Dict) -> int:
    for field in ("title", "description", "location"):
        require((data.get(field) or "").strip(), f"{field.capitalize()} is required")
    severity = data.get("severity", HazardSeverity.MODERATE.value)
    _validate_choice(HazardSeverity, severity, "severity")

    conn = get_conn()
    now = ts()
    year = datetime.date.today().year
    seq = conn.execute("SELECT COUNT(*) FROM hazards WHERE hazard_number LIKE ?",
                       (f"HAZ-{year}-%",)).fetchone()[0] + 1
    cur = conn.execute("""
        INSERT INTO hazards
        (hazard_number, title, description, category, hazard_type, location, latitude, longitude,
         status, severity, identified_date, expected_resolution_date, reporter_id, reporter_name,
         reporter_department, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'Reported', ?, ?, ?, ?, ?, ?, ?, ?)
    """, (f"HAZ-{year}-{seq:04d}", data["title"].strip(), data["description"].strip(),
          data.get("category"), data.get("hazard_type"), data["location"].strip(),
          data.get("latitude"), data.get("longitude"), severity,
          data.get("identified_date") or today(), data.get("expected_resolution_date"),
          reporter["id"], reporter.get("name"), data.get("reporter_department") or reporter.get("department"),
          now, reporter.get("email")))
    hazard_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("Hazard", hazard_id, "Created", user=reporter.get("email"),
                 details={"severity": severity})
    return hazard_id


def get_hazard(hazard_id: int) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM hazards WHERE id = ? AND is_deleted = 0", (hazard_id,)).fetchone()
    conn.close()
    return row_to_dict(row)


def get_hazard_or_404(hazard_id: int) -> Dict:
    hazard = get_hazard(hazard_id)
    if not hazard:
        raise NotFoundError("Hazard", hazard_id)
    return hazard


def get_hazard_detail(hazard_id: int) -> Dict:
    hazard = get_hazard_or_404(hazard_id)
    hazard["risk_assessments"] = list_assessments(hazard_id)
    hazard["current_risk_assessment"] = next(
        (a for a in hazard["risk_assessments"] if a["id"] == hazard["current_risk_assessment_id"]), None)
    hazard["mitigation_actions"] = list_actions(hazard_id)
    conn = get_conn()
    hazard["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, uploaded_by, uploaded_at "
        "FROM hazard_attachments WHERE hazard_id = ?", (hazard_id,)).fetchall())
    conn.close()
    return hazard


def list_hazards(search: str = None, status: str = None, severity: str = None,
                 location: str = None, risk_level: str = None, reporter_id: int = None,
                 page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["h.is_deleted = 0"], []
    if search:
        where.append("(h.title LIKE ? OR h.description LIKE ? OR h.hazard_number LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("h.status", status), ("h.severity", severity), ("ra.risk_level", risk_level),
                     ("h.reporter_id", reporter_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    if location:
        where.append("h.location LIKE ?")
        params.append(f"%{location}%")
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    base = f"""FROM hazards h LEFT JOIN risk_assessments ra ON ra.id = h.current_risk_assessment_id
               WHERE {clause}"""
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) {base}", params).fetchone()[0]
    rows = conn.execute(
        f"SELECT h.*, ra.risk_level, ra.risk_score {base} ORDER BY h.identified_date DESC, h.id DESC "
        f"LIMIT ? OFFSET ?", params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": rows_to_dicts(rows), "total": total, "page": page, "page_size": page_size}


def update_hazard(hazard_id: int, data: Dict, user: str) -> Dict:
    hazard = get_hazard_or_404(hazard_id)
    if hazard["status"] == HazardStatus.CLOSED.value:
        raise DomainError("Closed hazards cannot be edited")
    if "severity" in data:
        _validate_choice(HazardSeverity, data["severity"], "severity")
    sets, params = build_update(data, HAZARD_FIELDS)
    require(sets, "No fields to update")
    sets.extend(["updated_at = ?", "updated_by = ?"])
    params.extend([ts(), user, hazard_id])
    conn = get_conn()
    conn.execute(f"UPDATE hazards SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()
    log_activity("Hazard", hazard_id, "Updated", user=user,
                 details={k: data[k] for k in HAZARD_FIELDS if k in data})
    return get_hazard(hazard_id)


def _set_status(hazard_id: int, status: HazardStatus, user: str, extra: Dict = None):
    sets = ["status = ?", "updated_at = ?", "updated_by = ?"]
    params = [status.value, ts(), user]
    for k, v in (extra or {}).items():
        sets.append(f"{k} = ?")
        params.append(v)
    params.append(hazard_id)
    conn = get_conn()
    conn.execute(f"UPDATE hazards SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()


def _pending_elimination_actions(hazard_id: int) -> int:
    conn = get_conn()
    n = conn.execute("""
        SELECT COUNT(*) FROM hazard_mitigation_actions
        WHERE hazard_id = ? AND action_type = 'Elimination' AND status != 'Completed'
    """, (hazard_id,)).fetchone()[0]
    conn.close()
    return n


def close_hazard(hazard_id: int, notes: str, user: str) -> Dict:
    hazard = get_hazard_or_404(hazard_id)
    if hazard["status"] == HazardStatus.CLOSED.value:
        raise DomainError("Hazard is already closed")
    if _pending_elimination_actions(hazard_id):
        raise DomainError("Cannot close hazard with pending critical mitigation actions")
    _set_status(hazard_id, HazardStatus.CLOSED, user, {"closure_notes": notes})
    log_activity("Hazard", hazard_id, "Closed", user=user, details={"notes": notes})
    return get_hazard(hazard_id)


def change_hazard_status(hazard_id: int, new_status: str, notes: str, user: str) -> Dict:
    _validate_choice(HazardStatus, new_status, "status")
    target = HazardStatus(new_status)
    if target == HazardStatus.CLOSED:
        return close_hazard(hazard_id, notes, user)
    hazard = get_hazard_or_404(hazard_id)
    if hazard["status"] == target.value:
        raise DomainError(f"Hazard is already {target.value}")
    _set_status(hazard_id, target, user)
    log_activity("Hazard", hazard_id, "StatusChanged", user=user,
                 summary=f"{hazard['status']} -> {target.value}",
                 details={"from": hazard["status"], "to": target.value, "notes": notes})
    return get_hazard(hazard_id)


def delete_hazard(hazard_id: int, user: str) -> bool:
    get_hazard_or_404(hazard_id)
    conn = get_conn()
    conn.execute("UPDATE hazards SET is_deleted = 1, updated_at = ?, updated_by = ? WHERE id = ?",
                 (ts(), user, hazard_id))
    conn.commit()
    conn.close()
    log_activity("Hazard", hazard_id, "Deleted", user=user)
    return True


def add_hazard_attachment(hazard_id: int, meta: Dict, user: str) -> int:
    get_hazard_or_404(hazard_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO hazard_attachments
        (hazard_id, file_name, file_path, file_size, content_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (hazard_id, meta["file_name"], meta["file_path"], meta["file_size"],
          meta["content_type"], user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_hazard_attachment(hazard_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM hazard_attachments WHERE id = ? AND hazard_id = ?",
                       (attachment_id, hazard_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


# ================================================================
# RISK ASSESSMENTS
# ================================================================

def _assessment(row) -> Dict:
    d = dict(row)
    d["is_active"] = bool(d["is_active"])
    d["is_approved"] = bool(d["is_approved"])
    review = parse_date(d.get("next_review_date"))
    d["is_overdue"] = bool(d["is_active"] and review and review < datetime.date.today())
    return d


def list_assessments(hazard_id: int) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("SELECT * FROM risk_assessments WHERE hazard_id = ? ORDER BY id DESC",
                        (hazard_id,)).fetchall()
    conn.close()
    return [_assessment(r) for r in rows]


def get_assessment(assessment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM risk_assessments WHERE id = ?", (assessment_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Risk assessment", assessment_id)
    return _assessment(row)


def create_assessment(hazard_id: int, data: Dict, assessor: Dict) -> Dict:
    hazard = get_hazard_or_404(hazard_id)
    if hazard["status"] == HazardStatus.CLOSED.value:
        raise DomainError("Cannot assess a closed hazard")
    assessment_type = data.get("assessment_type", RiskAssessmentType.GENERAL.value)
    _validate_choice(RiskAssessmentType, assessment_type, "assessment type")
    probability, severity = data.get("probability_score"), data.get("severity_score")
    score = calculate_risk_score(probability, severity)
    level = determine_risk_level(score)
    now = ts()

    conn = get_conn()
    conn.execute("UPDATE risk_assessments SET is_active = 0, updated_at = ? WHERE hazard_id = ? AND is_active = 1",
                 (now, hazard_id))
    cur = conn.execute("""
        INSERT INTO risk_assessments
        (hazard_id, assessment_type, assessor_id, assessor_name, assessment_date, probability_score,
         severity_score, risk_score, risk_level, potential_consequences, existing_controls,
         recommended_actions, additional_notes, next_review_date, is_active, is_approved,
         created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 0, ?, ?)
    """, (hazard_id, assessment_type, assessor["id"], assessor.get("name"), now, probability,
          severity, score, level.value, data.get("potential_consequences"),
          data.get("existing_controls"), data.get("recommended_actions"),
          data.get("additional_notes"), next_review_date(level).isoformat(), now, assessor.get("email")))
    assessment_id = cur.lastrowid
    status_sql = ""
    if hazard["status"] == HazardStatus.REPORTED.value:
        status_sql = ", status = 'UnderAssessment'"
    conn.execute(f"UPDATE hazards SET current_risk_assessment_id = ?, updated_at = ?{status_sql} WHERE id = ?",
                 (assessment_id, now, hazard_id))
    conn.commit()
    conn.close()
    log_activity("Hazard", hazard_id, "RiskAssessed", user=assessor.get("email"),
                 details={"assessment_id": assessment_id, "risk_score": score, "risk_level": level.value})
    logger.info("[Hazards] Hazard %s assessed: %s (%s)", hazard_id, level.value, score)
    return get_assessment(assessment_id)


def update_assessment(assessment_id: int, data: Dict, user: str) -> Dict:
    current = get_assessment(assessment_id)
    if not current["is_active"]:
        raise DomainError("Only the active assessment can be updated")
    probability = data.get("probability_score", current["probability_score"])
    severity = data.get("severity_score", current["severity_score"])
    score = calculate_risk_score(probability, severity)
    level = determine_risk_level(score)

    sets = ["probability_score = ?", "severity_score = ?", "risk_score = ?", "risk_level = ?",
            "next_review_date = ?", "updated_at = ?", "updated_by = ?"]
    params = [probability, severity, score, level.value, next_review_date(level).isoformat(), ts(), user]
    more_sets, more_params = build_update(data, ("potential_consequences", "existing_controls",
                                                 "recommended_actions", "additional_notes"))
    sets += more_sets
    params += more_params
    approval_reset = bool(current["is_approved"]) and level.value != current["risk_level"]
    if approval_reset:
        sets += ["is_approved = 0", "approved_by = NULL", "approved_at = NULL", "approval_notes = NULL"]
    params.append(assessment_id)
    conn = get_conn()
    conn.execute(f"UPDATE risk_assessments SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()
    log_activity("Hazard", current["hazard_id"], "RiskReassessed", user=user,
                 details={"assessment_id": assessment_id, "from": current["risk_level"],
                          "to": level.value, "approval_reset": approval_reset})
    return get_assessment(assessment_id)


def approve_assessment(assessment_id: int, notes: str, user: str) -> Dict:
    current = get_assessment(assessment_id)
    if current["is_approved"]:
        raise DomainError("Risk assessment is already approved")
    conn = get_conn()
    conn.execute("""
        UPDATE risk_assessments SET is_approved = 1, approved_by = ?, approved_at = ?,
        approval_notes = ? WHERE id = ?
    """, (user, ts(), notes, assessment_id))
    conn.commit()
    conn.close()
    log_activity("Hazard", current["hazard_id"], "RiskAssessmentApproved", user=user,
                 details={"assessment_id": assessment_id})
    return get_assessment(assessment_id)


def list_overdue_assessments() -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("""
        SELECT ra.*, h.title AS hazard_title, h.hazard_number
        FROM risk_assessments ra JOIN hazards h ON h.id = ra.hazard_id
        WHERE ra.is_active = 1 AND ra.next_review_date < ? AND h.is_deleted = 0
        ORDER BY ra.next_review_date
    """, (today(),)).fetchall()
    conn.close()
    return [_assessment(r) for r in rows]


# ================================================================
# MITIGATION ACTIONS
# ================================================================

def _action(row) -> Dict:
    d = dict(row)
    d["requires_verification"] = bool(d["requires_verification"])
    return d


def list_actions(hazard_id: int) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("SELECT * FROM hazard_mitigation_actions WHERE hazard_id = ? ORDER BY id",
                        (hazard_id,)).fetchall()
    conn.close()
    return [_action(r) for r in rows]


def get_action(action_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM hazard_mitigation_actions WHERE id = ?", (action_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Mitigation action", action_id)
    return _action(row)


def add_action(hazard_id: int, data: Dict, user: str) -> Dict:
    hazard = get_hazard_or_404(hazard_id)
    if hazard["status"] == HazardStatus.CLOSED.value:
        raise DomainError("Cannot add actions to a closed hazard")
    require((data.get("action_description") or "").strip(), "Action description is required")
    action_type = data.get("action_type", MitigationActionType.ADMINISTRATIVE.value)
    _validate_choice(MitigationActionType, action_type, "action type")
    now = ts()
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO hazard_mitigation_actions
        (hazard_id, action_description, action_type, status, priority, target_date, assigned_to_id,
         estimated_cost, requires_verification, created_at, created_by)
        VALUES (?, ?, ?, 'Planned', ?, ?, ?, ?, ?, ?, ?)
    """, (hazard_id, data["action_description"].strip(), action_type, data.get("priority", "Medium"),
          data.get("target_date"), data.get("assigned_to_id"), data.get("estimated_cost"),
          1 if data.get("requires_verification") else 0, now, user))
    action_id = cur.lastrowid
    if hazard["status"] in (HazardStatus.UNDER_ASSESSMENT.value, HazardStatus.ACTION_REQUIRED.value):
        conn.execute("UPDATE hazards SET status = 'Mitigating', updated_at = ?, updated_by = ? WHERE id = ?",
                     (now, user, hazard_id))
    conn.commit()
    conn.close()
    log_activity("Hazard", hazard_id, "MitigationActionAdded", user=user,
                 details={"action_id": action_id, "action_type": action_type})
    return get_action(action_id)


def _update_action(action_id: int, fields: Dict, user: str):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, action_id]
    conn = get_conn()
    conn.execute(f"UPDATE hazard_mitigation_actions SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()


def start_action(action_id: int, user: str) -> Dict:
    action = get_action(action_id)
    if action["status"] != MitigationActionStatus.PLANNED.value:
        raise DomainError(f"Cannot start implementation. Current status: {action['status']}")
    _update_action(action_id, {"status": MitigationActionStatus.IN_PROGRESS.value}, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionStarted", user=user,
                 details={"action_id": action_id})
    return get_action(action_id)


def complete_action(action_id: int, notes: str, actual_cost, user: str) -> Dict:
    action = get_action(action_id)
    if action["status"] != MitigationActionStatus.IN_PROGRESS.value:
        raise DomainError(f"Cannot complete action. Current status: {action['status']}")
    _update_action(action_id, {"status": MitigationActionStatus.COMPLETED.value,
                               "completed_date": today(), "completion_notes": notes,
                               "actual_cost": actual_cost}, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionCompleted", user=user,
                 details={"action_id": action_id})
    return get_action(action_id)


def verify_action(action_id: int, rating, notes: str, user: str) -> Dict:
    action = get_action(action_id)
    if action["status"] != MitigationActionStatus.COMPLETED.value:
        raise DomainError("Cannot verify incomplete action")
    if not action["requires_verification"]:
        raise DomainError("This action does not require verification")
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise DomainError("Effectiveness rating must be between 1 and 5")
    _update_action(action_id, {"effectiveness_rating": rating, "verification_notes": notes,
                               "verified_by": user, "verified_at": ts()}, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionVerified", user=user,
                 details={"action_id": action_id, "rating": rating})
    return get_action(action_id)


def cancel_action(action_id: int, reason: str, user: str) -> Dict:
    action = get_action(action_id)
    if action["status"] in (MitigationActionStatus.COMPLETED.value, MitigationActionStatus.CANCELLED.value):
        raise DomainError(f"Cannot cancel a {action['status']} action")
    require((reason or "").strip(), "A cancellation reason is required")
    _update_action(action_id, {"status": MitigationActionStatus.CANCELLED.value,
                               "status_notes": reason}, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionCancelled", user=user,
                 details={"action_id": action_id, "reason": reason})
    return get_action(action_id)


def reassign_action(action_id: int, assigned_to_id: int, reason: str, user: str) -> Dict:
    action = get_action(action_id)
    require(assigned_to_id, "assigned_to_id is required")
    _update_action(action_id, {"assigned_to_id": assigned_to_id, "status_notes": reason}, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionReassigned", user=user,
                 details={"action_id": action_id, "from": action["assigned_to_id"], "to": assigned_to_id})
    return get_action(action_id)


def extend_action_deadline(action_id: int, new_target_date: str, reason: str, user: str) -> Dict:
    action = get_action(action_id)
    new_date = parse_date(new_target_date)
    require(new_date, "A new target date is required")
    old_date = parse_date(action.get("target_date"))
    if old_date and new_date <= old_date:
        raise DomainError("New target date must be after the current target date")
    fields = {"target_date": new_date.isoformat(), "status_notes": reason}
    if action["status"] == MitigationActionStatus.OVERDUE.value and new_date >= datetime.date.today():
        fields["status"] = MitigationActionStatus.IN_PROGRESS.value
    _update_action(action_id, fields, user)
    log_activity("Hazard", action["hazard_id"], "MitigationActionDeadlineExtended", user=user,
                 details={"action_id": action_id, "target_date": fields["target_date"]})
    return get_action(action_id)


def mark_overdue_actions() -> int:
    """Planned/InProgress actions past their target date become Overdue."""
    conn = get_conn()
    cur = conn.execute("""
        UPDATE hazard_mitigation_actions SET status = 'Overdue', updated_at = ?, updated_by = 'system'
        WHERE status IN ('Planned', 'InProgress') AND target_date IS NOT NULL AND target_date < ?
    """, (ts(), today()))
    conn.commit()
    conn.close()
    return cur.rowcount


# ================================================================
# DASHBOARD
# ================================================================

def get_hazard_dashboard() -> Dict:
    conn = get_conn()
    by_status = {s.value: 0 for s in HazardStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM hazards WHERE is_deleted = 0 GROUP BY status"):
        by_status[r["status"]] = r["n"]
    by_severity = {s.value: 0 for s in HazardSeverity}
    for r in conn.execute("SELECT severity, COUNT(*) AS n FROM hazards WHERE is_deleted = 0 GROUP BY severity"):
        by_severity[r["severity"]] = r["n"]
    by_risk = {}
    for r in conn.execute("""
        SELECT ra.risk_level, COUNT(*) AS n FROM hazards h
        JOIN risk_assessments ra ON ra.id = h.current_risk_assessment_id
        WHERE h.is_deleted = 0 GROUP BY ra.risk_level
    """):
        by_risk[r["risk_level"]] = r["n"]
    actions = {s.value: 0 for s in MitigationActionStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM hazard_mitigation_actions GROUP BY status"):
        actions[r["status"]] = r["n"]
    monthly = rows_to_dicts(conn.execute("""
        SELECT substr(identified_date, 1, 7) AS month, COUNT(*) AS total
        FROM hazards WHERE is_deleted = 0 AND identified_date >= date('now', '-12 months')
        GROUP BY month ORDER BY month
    """).fetchall())
    conn.close()
    total = sum(by_status.values())
    closed = by_status[HazardStatus.CLOSED.value] + by_status[HazardStatus.RESOLVED.value]
    return {
        "total": total,
        "open": total - closed,
        "closed": closed,
        "completion_rate": round(closed / total * 100, 1) if total else 0.0,
        "by_status": by_status,
        "by_severity": by_severity,
        "by_risk_level": by_risk,
        "mitigation_actions": actions,
        "overdue_assessments": len(list_overdue_assessments()),
        "monthly": monthly,
    }


def export_hazards(status: str = None, severity: str = None) -> List[Dict]:
    where, params = ["h.is_deleted = 0"], []
    if status:
        where.append("h.status = ?")
        params.append(status)
    if severity:
        where.append("h.severity = ?")
        params.append(severity)
    conn = get_conn()
    rows = conn.execute(f"""
        SELECT h.*, ra.risk_level, ra.risk_score, ra.next_review_date
        FROM hazards h LEFT JOIN risk_assessments ra ON ra.id = h.current_risk_assessment_id
        WHERE {' AND '.join(where)} ORDER BY h.id
    """, params).fetchall()
    conn.close()
    return rows_to_dicts(rows)
