"""
HSSE Audits - Database Models & Schema

An audit is a checklist of items assessed by an auditor, plus the findings
raised while doing so. Completing an audit freezes its score; the risk level
follows the findings that are still open.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)


class AuditStatus(str, Enum):
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    UNDER_REVIEW = "UnderReview"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ARCHIVED = "Archived"
    OVERDUE = "Overdue"


class AuditType(str, Enum):
    SAFETY = "Safety"
    ENVIRONMENTAL = "Environmental"
    EQUIPMENT = "Equipment"
    COMPLIANCE = "Compliance"
    FIRE = "Fire"
    CHEMICAL = "Chemical"
    ERGONOMIC = "Ergonomic"
    EMERGENCY = "Emergency"
    MANAGEMENT = "Management"
    PROCESS = "Process"


class AuditPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AuditItemStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    NON_COMPLIANT = "NonCompliant"
    NOT_APPLICABLE = "NotApplicable"
    REQUIRES_FOLLOW_UP = "RequiresFollowUp"


class FindingType(str, Enum):
    NON_CONFORMANCE = "NonConformance"
    OBSERVATION = "Observation"
    OPPORTUNITY_FOR_IMPROVEMENT = "OpportunityForImprovement"
    POSITIVE_FINDING = "PositiveFinding"
    CRITICAL_NON_CONFORMANCE = "CriticalNonConformance"


class FindingSeverity(str, Enum):
    MINOR = "Minor"
    MODERATE = "Moderate"
    MAJOR = "Major"
    CRITICAL = "Critical"


class FindingStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"
    VERIFIED = "Verified"
    CLOSED = "Closed"


AUDIT_PREFIX = {
    "Safety": "SA", "Environmental": "EA", "Equipment": "EQ", "Compliance": "CA", "Fire": "FA",
    "Chemical": "CH", "Ergonomic": "ER", "Emergency": "EM", "Management": "MA", "Process": "PA",
}

SEVERITY_RANK = {"Minor": 1, "Moderate": 2, "Major": 3, "Critical": 4}

LOCKED_STATUSES = (AuditStatus.COMPLETED.value, AuditStatus.ARCHIVED.value)
EDITABLE_FIELDS = ("title", "description", "audit_type", "category", "priority", "scheduled_date",
                   "location", "department", "facility", "standards_applied",
                   "estimated_duration_minutes")


# ================================================================
# PURE HELPERS
# ================================================================

def audit_prefix(audit_type: str) -> str:
    return AUDIT_PREFIX.get(audit_type, "AU")


def score_band(percentage: Optional[float]) -> Optional[str]:
    if percentage is None:
        return None
    if percentage >= 90:
        return "Excellent"
    if percentage >= 80:
        return "Good"
    if percentage >= 70:
        return "Satisfactory"
    if percentage >= 60:
        return "NeedsImprovement"
    return "Unsatisfactory"


def calculate_audit_score(items: List[Dict]) -> Tuple[Optional[float], Optional[str]]:
    """
    Percentage of achieved over possible points across completed items.
    An item without max_points counts as one possible point. Returns
    (None, None) while nothing has been completed.
    """
    completed = [i for i in items if i.get("status") == AuditItemStatus.COMPLETED.value]
    if not completed:
        return None, None
    possible = sum(i.get("max_points") or 1 for i in completed)
    achieved = sum(i.get("actual_points") or 0 for i in completed)
    if possible <= 0:
        return None, None
    pct = round(achieved / possible * 100, 2)
    return pct, score_band(pct)


def audit_risk_level(findings: List[Dict]) -> str:
    """Risk level derived from findings that are not yet closed."""
    open_findings = [f for f in findings if f.get("status") != FindingStatus.CLOSED.value]
    if not open_findings:
        return "Low"
    critical = sum(1 for f in open_findings if f["severity"] == FindingSeverity.CRITICAL.value)
    major = sum(1 for f in open_findings if f["severity"] == FindingSeverity.MAJOR.value)
    if critical or major >= 3:
        return "Critical"
    if major:
        return "High"
    worst = max(SEVERITY_RANK.get(f["severity"], 1) for f in open_findings)
    return "Medium" if worst == SEVERITY_RANK["Moderate"] else "Low"


def init_audit_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS audits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            audit_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            audit_type TEXT NOT NULL,
            category TEXT,
            priority TEXT DEFAULT 'Medium',
            status TEXT NOT NULL DEFAULT 'Draft',
            scheduled_date TEXT NOT NULL,
            started_date TEXT,
            completed_date TEXT,
            auditor_id INTEGER,
            auditor_name TEXT,
            location TEXT,
            department TEXT,
            facility TEXT,
            standards_applied TEXT,
            risk_level TEXT DEFAULT 'Low',
            summary TEXT,
            recommendations TEXT,
            score_percentage REAL,
            overall_score TEXT,
            total_possible_points INTEGER,
            achieved_points INTEGER,
            estimated_duration_minutes INTEGER,
            actual_duration_minutes INTEGER,
            status_notes TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS audit_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            audit_id INTEGER NOT NULL REFERENCES audits(id),
            item_number TEXT NOT NULL,
            description TEXT NOT NULL,
            item_type TEXT DEFAULT 'YesNo',
            category TEXT,
            status TEXT NOT NULL DEFAULT 'NotStarted',
            is_required INTEGER DEFAULT 1,
            sort_order INTEGER DEFAULT 0,
            expected_result TEXT,
            actual_result TEXT,
            is_compliant INTEGER,
            max_points INTEGER,
            actual_points INTEGER,
            comments TEXT,
            evidence TEXT,
            assessed_by TEXT,
            assessed_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS audit_findings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            audit_id INTEGER NOT NULL REFERENCES audits(id),
            finding_number TEXT NOT NULL,
            description TEXT NOT NULL,
            finding_type TEXT NOT NULL,
            severity TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Open',
            audit_item_id INTEGER,
            location TEXT,
            equipment TEXT,
            standard TEXT,
            regulation TEXT,
            root_cause TEXT,
            immediate_action TEXT,
            corrective_action TEXT,
            preventive_action TEXT,
            due_date TEXT,
            responsible_person_id INTEGER,
            responsible_person_name TEXT,
            verification_method TEXT,
            verified_by TEXT,
            verified_at TEXT,
            closure_notes TEXT,
            closed_by TEXT,
            closed_at TEXT,
            estimated_cost REAL,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS audit_comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            audit_id INTEGER NOT NULL REFERENCES audits(id),
            comment TEXT NOT NULL,
            comment_type TEXT DEFAULT 'General',
            author TEXT,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS audit_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            audit_id INTEGER NOT NULL REFERENCES audits(id),
            file_name TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER,
            content_type TEXT,
            attachment_type TEXT,
            uploaded_by TEXT,
            uploaded_at TEXT
        )
    """)
    conn.commit()
    conn.close()


# ================================================================
# AUDITS
# ================================================================

def get_audit(audit_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM audits WHERE id = ?", (audit_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Audit", audit_id)
    return dict(row)


def get_audit_detail(audit_id: int) -> Dict:
    audit = get_audit(audit_id)
    conn = get_conn()
    audit["items"] = rows_to_dicts(conn.execute(
        "SELECT * FROM audit_items WHERE audit_id = ? ORDER BY sort_order, id", (audit_id,)).fetchall())
    audit["findings"] = rows_to_dicts(conn.execute(
        "SELECT * FROM audit_findings WHERE audit_id = ? ORDER BY id", (audit_id,)).fetchall())
    audit["comments"] = rows_to_dicts(conn.execute(
        "SELECT * FROM audit_comments WHERE audit_id = ? ORDER BY id", (audit_id,)).fetchall())
    audit["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, attachment_type, uploaded_by, uploaded_at "
        "FROM audit_attachments WHERE audit_id = ?", (audit_id,)).fetchall())
    conn.close()
    for item in audit["items"]:
        if item["is_compliant"] is not None:
            item["is_compliant"] = bool(item["is_compliant"])
    # Live score while the audit is still running
    if audit["score_percentage"] is None:
        audit["current_score"], audit["current_band"] = calculate_audit_score(audit["items"])
    return audit


def list_audits(search: str = None, status: str = None, audit_type: str = None,
                auditor_id: int = None, risk_level: str = None,
                page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(audit_number LIKE ? OR title LIKE ? OR location LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("status", status), ("audit_type", audit_type), ("auditor_id", auditor_id),
                     ("risk_level", risk_level)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM audits WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT a.*,
               (SELECT COUNT(*) FROM audit_findings f WHERE f.audit_id = a.id) AS finding_count,
               (SELECT COUNT(*) FROM audit_findings f
                WHERE f.audit_id = a.id AND f.status != 'Closed') AS open_finding_count
        FROM audits a WHERE {clause} ORDER BY scheduled_date DESC, id DESC LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": rows_to_dicts(rows), "total": total, "page": page, "page_size": page_size}


def _check_type(audit_type: str):
    if audit_type not in AuditType._value2member_map_:
        raise DomainError(f"Invalid audit type: {audit_type}")


def create_audit(data: Dict, auditor: Dict) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    audit_type = data.get("audit_type", AuditType.SAFETY.value)
    _check_type(audit_type)
    scheduled = parse_date(data.get("scheduled_date"))
    require(scheduled, "Scheduled date is required")

    stamp = datetime.date.today().strftime("%Y%m%d")
    prefix = f"{audit_prefix(audit_type)}-{stamp}-"
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM audits WHERE audit_number LIKE ?",
                       (f"{prefix}%",)).fetchone()[0] + 1
    number = f"{prefix}{seq:04d}"
    cur = conn.execute("""
        INSERT INTO audits
        (audit_number, title, description, audit_type, category, priority, status, scheduled_date,
         auditor_id, auditor_name, location, department, facility, standards_applied,
         estimated_duration_minutes, risk_level, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, 'Draft', ?, ?, ?, ?, ?, ?, ?, ?, 'Low', ?, ?)
    """, (number, data["title"].strip(), data.get("description"), audit_type, data.get("category"),
          data.get("priority", AuditPriority.MEDIUM.value), scheduled.isoformat(),
          data.get("auditor_id") or auditor["id"], data.get("auditor_name") or auditor.get("name"),
          data.get("location"), data.get("department") or auditor.get("department"),
          data.get("facility"), data.get("standards_applied"), data.get("estimated_duration_minutes"),
          ts(), auditor.get("email")))
    audit_id = cur.lastrowid
    for i, item in enumerate(data.get("items") or [], start=1):
        _insert_item(conn, audit_id, i, item)
    conn.commit()
    conn.close()
    log_activity("Audit", audit_id, "Created", user=auditor.get("email"), summary=number)
    logger.info("[Audits] Created %s (%s)", number, audit_type)
    return get_audit_detail(audit_id)


def _set_audit(audit_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, audit_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE audits SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


def update_audit(audit_id: int, data: Dict, user: str) -> Dict:
    audit = get_audit(audit_id)
    if audit["status"] in LOCKED_STATUSES:
        raise DomainError("Cannot update completed or archived audit")
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    if "audit_type" in fields:
        _check_type(fields["audit_type"])
    if "scheduled_date" in fields:
        fields["scheduled_date"] = parse_date(fields["scheduled_date"]).isoformat()
    _set_audit(audit_id, fields, user)
    log_activity("Audit", audit_id, "Updated", user=user, details=data)
    return get_audit_detail(audit_id)


def delete_audit(audit_id: int, user: str):
    audit = get_audit(audit_id)
    if audit["status"] != AuditStatus.DRAFT.value:
        raise DomainError("Only draft audits can be deleted")
    conn = get_conn()
    for table in ("audit_items", "audit_findings", "audit_comments", "audit_attachments"):
        conn.execute(f"DELETE FROM {table} WHERE audit_id = ?", (audit_id,))
    conn.execute("DELETE FROM audits WHERE id = ?", (audit_id,))
    conn.commit()
    conn.close()
    log_activity("Audit", audit_id, "Deleted", user=user, summary=audit["audit_number"])


def _transition(audit_id: int, allowed, target: AuditStatus, error: str, user: str,
                action: str, notes: str = None, extra: Dict = None) -> Dict:
    audit = get_audit(audit_id)
    if audit["status"] not in [s.value for s in allowed]:
        raise DomainError(error)
    fields = {"status": target.value}
    if notes is not None:
        fields["status_notes"] = notes
    fields.update(extra or {})
    _set_audit(audit_id, fields, user)
    log_activity("Audit", audit_id, action, user=user,
                 summary=f"{audit['status']} -> {target.value}", details={"notes": notes})
    logger.info("[Audits] %s %s -> %s", audit["audit_number"], audit["status"], target.value)
    return get_audit_detail(audit_id)


def schedule_audit(audit_id: int, scheduled_date: str, user: str) -> Dict:
    extra = {}
    if scheduled_date:
        extra["scheduled_date"] = parse_date(scheduled_date).isoformat()
    return _transition(audit_id, (AuditStatus.DRAFT,), AuditStatus.SCHEDULED,
                       "Only draft audits can be scheduled", user, "Scheduled", extra=extra)


def start_audit(audit_id: int, user: str) -> Dict:
    return _transition(audit_id, (AuditStatus.SCHEDULED, AuditStatus.OVERDUE), AuditStatus.IN_PROGRESS,
                       "Only scheduled or overdue audits can be started", user, "Started",
                       extra={"started_date": ts()})


def submit_for_review(audit_id: int, user: str) -> Dict:
    return _transition(audit_id, (AuditStatus.IN_PROGRESS,), AuditStatus.UNDER_REVIEW,
                       "Only in-progress audits can be submitted for review", user, "SubmittedForReview")


def complete_audit(audit_id: int, summary: str, recommendations: str, user: str) -> Dict:
    audit = get_audit_detail(audit_id)
    if audit["status"] not in (AuditStatus.IN_PROGRESS.value, AuditStatus.UNDER_REVIEW.value):
        raise DomainError("Only in-progress or under review audits can be completed")
    pct, band = calculate_audit_score(audit["items"])
    completed = [i for i in audit["items"] if i["status"] == AuditItemStatus.COMPLETED.value]
    fields = {
        "status": AuditStatus.COMPLETED.value,
        "completed_date": ts(),
        "summary": summary,
        "recommendations": recommendations,
        "score_percentage": pct,
        "overall_score": band,
        "total_possible_points": sum(i["max_points"] or 1 for i in completed) if completed else None,
        "achieved_points": sum(i["actual_points"] or 0 for i in completed) if completed else None,
    }
    if audit["started_date"]:
        started = datetime.datetime.strptime(audit["started_date"], "%Y-%m-%d %H:%M:%S")
        fields["actual_duration_minutes"] = int((datetime.datetime.now() - started).total_seconds() // 60)
    _set_audit(audit_id, fields, user)
    log_activity("Audit", audit_id, "Completed", user=user,
                 summary=f"{audit['status']} -> Completed", details={"score": pct, "band": band})
    logger.info("[Audits] %s completed, score %s (%s)", audit["audit_number"], pct, band)
    return get_audit_detail(audit_id)


def cancel_audit(audit_id: int, reason: str, user: str) -> Dict:
    require((reason or "").strip(), "A cancellation reason is required")
    allowed = [s for s in AuditStatus if s.value not in LOCKED_STATUSES and s != AuditStatus.CANCELLED]
    return _transition(audit_id, allowed, AuditStatus.CANCELLED,
                       "Cannot cancel completed or archived audit", user, "Cancelled", reason)


def archive_audit(audit_id: int, user: str) -> Dict:
    return _transition(audit_id, (AuditStatus.COMPLETED, AuditStatus.CANCELLED), AuditStatus.ARCHIVED,
                       "Only completed or cancelled audits can be archived", user, "Archived")


def mark_overdue_audits() -> int:
    conn = get_conn()
    cur = conn.execute("""
        UPDATE audits SET status = 'Overdue', updated_at = ?, updated_by = 'system'
        WHERE status = 'Scheduled' AND scheduled_date < ?
    """, (ts(), today()))
    conn.commit()
    conn.close()
    if cur.rowcount:
        logger.info("[Audits] %d audits marked overdue", cur.rowcount)
    return cur.rowcount


# ================================================================
# ITEMS
# ================================================================

def _insert_item(conn, audit_id: int, seq: int, data: Dict) -> int:
    require((data.get("description") or "").strip(), "Item description is required")
    max_points = data.get("max_points")
    if max_points is not None and (not isinstance(max_points, int) or max_points < 0):
        raise DomainError("Max points must be a non-negative whole number")
    cur = conn.execute("""
        INSERT INTO audit_items
        (audit_id, item_number, description, item_type, category, is_required, sort_order,
         expected_result, max_points)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (audit_id, f"{seq:03d}", data["description"].strip(), data.get("item_type", "YesNo"),
          data.get("category"), 0 if data.get("is_required") is False else 1,
          data.get("sort_order", seq), data.get("expected_result"), max_points))
    return cur.lastrowid


def _editable_audit(audit_id: int) -> Dict:
    audit = get_audit(audit_id)
    if audit["status"] in LOCKED_STATUSES:
        raise DomainError("Cannot change items of a completed or archived audit")
    return audit


def add_item(audit_id: int, data: Dict, user: str) -> Dict:
    _editable_audit(audit_id)
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM audit_items WHERE audit_id = ?", (audit_id,)).fetchone()[0] + 1
    item_id = _insert_item(conn, audit_id, seq, data)
    conn.commit()
    conn.close()
    log_activity("Audit", audit_id, "ItemAdded", user=user, details={"item_id": item_id})
    return get_item(audit_id, item_id)


def get_item(audit_id: int, item_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM audit_items WHERE id = ? AND audit_id = ?",
                       (item_id, audit_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Audit item", item_id)
    return dict(row)


def remove_item(audit_id: int, item_id: int, user: str):
    _editable_audit(audit_id)
    get_item(audit_id, item_id)
    conn = get_conn()
    conn.execute("UPDATE audit_findings SET audit_item_id = NULL WHERE audit_item_id = ?", (item_id,))
    conn.execute("DELETE FROM audit_items WHERE id = ?", (item_id,))
    conn.commit()
    conn.close()
    log_activity("Audit", audit_id, "ItemRemoved", user=user, details={"item_id": item_id})


def assess_item(audit_id: int, item_id: int, data: Dict, user: str) -> Dict:
    """Record the outcome of one checklist item while the audit is running."""
    audit = get_audit(audit_id)
    if audit["status"] != AuditStatus.IN_PROGRESS.value:
        raise DomainError("Items can only be assessed while the audit is in progress")
    item = get_item(audit_id, item_id)
    if data.get("not_applicable"):
        fields = {"status": AuditItemStatus.NOT_APPLICABLE.value, "is_compliant": None,
                  "actual_result": f"Not Applicable: {data.get('reason') or ''}".strip()}
    else:
        require("is_compliant" in data, "is_compliant is required")
        points = data.get("actual_points")
        max_points = item["max_points"] or 1
        if points is not None and (not isinstance(points, int) or points < 0 or points > max_points):
            raise DomainError(f"Actual points must be between 0 and {max_points}")
        compliant = bool(data["is_compliant"])
        fields = {
            "status": (AuditItemStatus.COMPLETED if compliant else AuditItemStatus.NON_COMPLIANT).value,
            "is_compliant": 1 if compliant else 0,
            "actual_result": data.get("actual_result"),
            "actual_points": points,
            "comments": data.get("comments"),
            "evidence": data.get("evidence"),
        }
    fields.update({"assessed_by": user, "assessed_at": ts()})
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn = get_conn()
    conn.execute(f"UPDATE audit_items SET {sets} WHERE id = ?", list(fields.values()) + [item_id])
    conn.commit()
    conn.close()
    log_activity("Audit", audit_id, "ItemAssessed", user=user,
                 details={"item_id": item_id, "status": fields["status"]})
    return get_item(audit_id, item_id)


# ================================================================
# FINDINGS
# ================================================================

def _refresh_risk(audit_id: int, user: str):
    conn = get_conn()
    findings = rows_to_dicts(conn.execute(
        "SELECT severity, status FROM audit_findings WHERE audit_id = ?", (audit_id,)).fetchall())
    _set_audit(audit_id, {"risk_level": audit_risk_level(findings)}, user, conn)
    conn.commit()
    conn.close()


def get_finding(audit_id: int, finding_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM audit_findings WHERE id = ? AND audit_id = ?",
                       (finding_id, audit_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Audit finding", finding_id)
    return dict(row)


def add_finding(audit_id: int, data: Dict, user: str) -> Dict:
    audit = get_audit(audit_id)
    if audit["status"] in (AuditStatus.ARCHIVED.value, AuditStatus.CANCELLED.value):
        raise DomainError("Cannot add findings to a cancelled or archived audit")
    require((data.get("description") or "").strip(), "Finding description is required")
    finding_type = data.get("finding_type", FindingType.OBSERVATION.value)
    severity = data.get("severity", FindingSeverity.MINOR.value)
    if finding_type not in FindingType._value2member_map_:
        raise DomainError(f"Invalid finding type: {finding_type}")
    if severity not in FindingSeverity._value2member_map_:
        raise DomainError(f"Invalid severity: {severity}")
    if data.get("audit_item_id"):
        get_item(audit_id, data["audit_item_id"])
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM audit_findings WHERE audit_id = ?", (audit_id,)).fetchone()[0] + 1
    cur = conn.execute("""
        INSERT INTO audit_findings
        (audit_id, finding_number, description, finding_type, severity, status, audit_item_id,
         location, equipment, standard, regulation, root_cause, immediate_action, due_date,
         responsible_person_id, responsible_person_name, estimated_cost, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, 'Open', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (audit_id, f"{audit['audit_number']}-F{seq:02d}", data["description"].strip(), finding_type,
          severity, data.get("audit_item_id"), data.get("location"), data.get("equipment"),
          data.get("standard"), data.get("regulation"), data.get("root_cause"),
          data.get("immediate_action"), data.get("due_date"), data.get("responsible_person_id"),
          data.get("responsible_person_name"), data.get("estimated_cost"), ts(), user))
    finding_id = cur.lastrowid
    conn.commit()
    conn.close()
    _refresh_risk(audit_id, user)
    log_activity("Audit", audit_id, "FindingAdded", user=user,
                 details={"finding_id": finding_id, "severity": severity})
    return get_finding(audit_id, finding_id)


def _set_finding(audit_id: int, finding_id: int, fields: Dict, user: str, action: str) -> Dict:
    fields["updated_at"] = ts()
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn = get_conn()
    conn.execute(f"UPDATE audit_findings SET {sets} WHERE id = ?", list(fields.values()) + [finding_id])
    conn.commit()
    conn.close()
    _refresh_risk(audit_id, user)
    log_activity("Audit", audit_id, action, user=user,
                 details={"finding_id": finding_id, "status": fields.get("status")})
    return get_finding(audit_id, finding_id)


def set_corrective_action(audit_id: int, finding_id: int, data: Dict, user: str) -> Dict:
    finding = get_finding(audit_id, finding_id)
    if finding["status"] == FindingStatus.CLOSED.value:
        raise DomainError("Cannot update closed finding")
    action = (data.get("corrective_action") or "").strip()
    require(action, "Corrective action is required")
    fields = {"corrective_action": action}
    for k in ("preventive_action", "root_cause", "due_date", "responsible_person_id",
              "responsible_person_name"):
        if k in data:
            fields[k] = data[k]
    if finding["status"] == FindingStatus.OPEN.value:
        fields["status"] = FindingStatus.IN_PROGRESS.value
    return _set_finding(audit_id, finding_id, fields, user, "CorrectiveActionSet")


def resolve_finding(audit_id: int, finding_id: int, user: str) -> Dict:
    finding = get_finding(audit_id, finding_id)
    if finding["status"] != FindingStatus.IN_PROGRESS.value:
        raise DomainError("Only in-progress findings can be marked as resolved")
    return _set_finding(audit_id, finding_id, {"status": FindingStatus.RESOLVED.value}, user, "FindingResolved")


def verify_finding(audit_id: int, finding_id: int, method: str, user: str) -> Dict:
    finding = get_finding(audit_id, finding_id)
    if finding["status"] != FindingStatus.RESOLVED.value:
        raise DomainError("Only resolved findings can be verified")
    return _set_finding(audit_id, finding_id, {
        "status": FindingStatus.VERIFIED.value, "verified_by": user, "verified_at": ts(),
        "verification_method": method,
    }, user, "FindingVerified")


def close_finding(audit_id: int, finding_id: int, notes: str, user: str) -> Dict:
    finding = get_finding(audit_id, finding_id)
    serious = finding["severity"] in (FindingSeverity.CRITICAL.value, FindingSeverity.MAJOR.value)
    if serious and finding["status"] != FindingStatus.VERIFIED.value:
        raise DomainError("Critical and major findings must be verified before closing")
    if finding["status"] not in (FindingStatus.VERIFIED.value, FindingStatus.RESOLVED.value):
        raise DomainError("Only verified or resolved findings can be closed")
    return _set_finding(audit_id, finding_id, {
        "status": FindingStatus.CLOSED.value, "closure_notes": notes, "closed_by": user, "closed_at": ts(),
    }, user, "FindingClosed")


def reopen_finding(audit_id: int, finding_id: int, reason: str, user: str) -> Dict:
    finding = get_finding(audit_id, finding_id)
    if finding["status"] not in (FindingStatus.CLOSED.value, FindingStatus.VERIFIED.value,
                                 FindingStatus.RESOLVED.value):
        raise DomainError("Only resolved, verified or closed findings can be reopened")
    target = FindingStatus.IN_PROGRESS if finding["corrective_action"] else FindingStatus.OPEN
    return _set_finding(audit_id, finding_id, {
        "status": target.value, "closed_at": None, "closed_by": None,
        "closure_notes": f"Reopened: {reason}" if reason else None,
    }, user, "FindingReopened")


# ================================================================
# COMMENTS & ATTACHMENTS
# ================================================================

def add_comment(audit_id: int, comment: str, comment_type: str, user: str) -> Dict:
    get_audit(audit_id)
    require((comment or "").strip(), "Comment is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO audit_comments (audit_id, comment, comment_type, author, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (audit_id, comment.strip(), comment_type or "General", user, ts()))
    conn.commit()
    row = conn.execute("SELECT * FROM audit_comments WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    return dict(row)


def add_audit_attachment(audit_id: int, meta: Dict, attachment_type: str, user: str) -> int:
    get_audit(audit_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO audit_attachments
        (audit_id, file_name, file_path, file_size, content_type, attachment_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (audit_id, meta["file_name"], meta["file_path"], meta["file_size"], meta["content_type"],
          attachment_type, user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_audit_attachment(audit_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM audit_attachments WHERE id = ? AND audit_id = ?",
                       (attachment_id, audit_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


# ================================================================
# DASHBOARD
# ================================================================

def get_audit_dashboard() -> Dict:
    conn = get_conn()
    by_status = {r["status"]: r["n"] for r in conn.execute(
        "SELECT status, COUNT(*) AS n FROM audits GROUP BY status")}
    by_type = {r["audit_type"]: r["n"] for r in conn.execute(
        "SELECT audit_type, COUNT(*) AS n FROM audits GROUP BY audit_type")}
    by_band = {r["overall_score"]: r["n"] for r in conn.execute(
        "SELECT overall_score, COUNT(*) AS n FROM audits WHERE overall_score IS NOT NULL GROUP BY overall_score")}
    avg = conn.execute("SELECT AVG(score_percentage) FROM audits WHERE score_percentage IS NOT NULL").fetchone()[0]
    findings_by_severity = {r["severity"]: r["n"] for r in conn.execute(
        "SELECT severity, COUNT(*) AS n FROM audit_findings WHERE status != 'Closed' GROUP BY severity")}
    findings_by_status = {r["status"]: r["n"] for r in conn.execute(
        "SELECT status, COUNT(*) AS n FROM audit_findings GROUP BY status")}
    overdue_findings = conn.execute("""
        SELECT COUNT(*) FROM audit_findings
        WHERE status IN ('Open', 'InProgress') AND due_date IS NOT NULL AND due_date < ?
    """, (today(),)).fetchone()[0]
    month_start = datetime.date.today().replace(day=1).isoformat()
    completed_this_month = conn.execute(
        "SELECT COUNT(*) FROM audits WHERE completed_date >= ?", (month_start,)).fetchone()[0]
    upcoming = rows_to_dicts(conn.execute("""
        SELECT id, audit_number, title, scheduled_date, auditor_name FROM audits
        WHERE status = 'Scheduled' AND scheduled_date >= ? ORDER BY scheduled_date LIMIT 10
    """, (today(),)).fetchall())
    conn.close()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "by_score": by_band,
        "average_score": round(avg, 2) if avg is not None else None,
        "completed_this_month": completed_this_month,
        "overdue": by_status.get(AuditStatus.OVERDUE.value, 0),
        "open_findings": sum(findings_by_severity.values()),
        "open_findings_by_severity": findings_by_severity,
        "findings_by_status": findings_by_status,
        "overdue_findings": overdue_findings,
        "upcoming": upcoming,
    }
