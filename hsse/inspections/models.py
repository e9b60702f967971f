"""
HSSE Inspections - Database Models & Schema

Site and equipment inspections. Each inspection carries checklist items that
are answered pass/fail (or with a measured value checked against a range)
and findings that must be verified before they can be closed.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)

UPCOMING_DAYS = 14


class InspectionStatus(str, Enum):
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ARCHIVED = "Archived"
    OVERDUE = "Overdue"


class InspectionType(str, Enum):
    SAFETY = "Safety"
    ENVIRONMENTAL = "Environmental"
    QUALITY = "Quality"
    SECURITY = "Security"
    MAINTENANCE = "Maintenance"
    COMPLIANCE = "Compliance"


class InspectionCategory(str, Enum):
    ROUTINE = "Routine"
    SCHEDULED = "Scheduled"
    EMERGENCY = "Emergency"
    INCIDENT = "Incident"
    AUDIT = "Audit"


class InspectionItemType(str, Enum):
    YES_NO = "YesNo"
    TEXT = "Text"
    NUMBER = "Number"
    MULTIPLE_CHOICE = "MultipleChoice"
    MEASUREMENT = "Measurement"
    VISUAL = "Visual"


class InspectionItemStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    COMPLETED = "Completed"
    FAILED = "Failed"
    SKIPPED = "Skipped"


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


SEVERITY_RISK = {"Minor": "Low", "Moderate": "Medium", "Major": "High", "Critical": "Critical"}
SEVERITY_ORDER = ["Minor", "Moderate", "Major", "Critical"]
LOCKED_STATUSES = (InspectionStatus.COMPLETED.value, InspectionStatus.ARCHIVED.value)
EDITABLE_FIELDS = ("title", "description", "inspection_type", "category", "priority", "scheduled_date",
                   "location", "department", "facility", "estimated_duration_minutes")


def inspection_risk_level(findings: List[Dict]) -> str:
    if not findings:
        return "Low"
    worst = max(SEVERITY_ORDER.index(f["severity"]) for f in findings)
    return SEVERITY_RISK[SEVERITY_ORDER[worst]]


def evaluate_response(item: Dict, data: Dict) -> bool:
    """Decide whether an item response passes."""
    if "passed" in data:
        return bool(data["passed"])
    if item["item_type"] == InspectionItemType.YES_NO.value:
        return str(data.get("response", "")).strip().lower() in ("yes", "true", "pass", "1")
    if item["item_type"] in (InspectionItemType.NUMBER.value, InspectionItemType.MEASUREMENT.value):
        try:
            value = float(data.get("response"))
        except (TypeError, ValueError):
            raise DomainError("A numeric response is required")
        if item["min_value"] is not None and value < item["min_value"]:
            return False
        if item["max_value"] is not None and value > item["max_value"]:
            return False
        return True
    if item["item_type"] == InspectionItemType.MULTIPLE_CHOICE.value and item["options"]:
        options = [o.strip() for o in item["options"].split(",")]
        if data.get("response") not in options:
            raise DomainError(f"Response must be one of: {', '.join(options)}")
    return bool(str(data.get("response") or "").strip())


def init_inspection_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspections (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            inspection_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            inspection_type TEXT NOT NULL,
            category TEXT DEFAULT 'Routine',
            priority TEXT DEFAULT 'Medium',
            status TEXT NOT NULL DEFAULT 'Draft',
            scheduled_date TEXT NOT NULL,
            started_date TEXT,
            completed_date TEXT,
            inspector_id INTEGER,
            inspector_name TEXT,
            location TEXT,
            department TEXT,
            facility TEXT,
            risk_level TEXT DEFAULT 'Low',
            summary TEXT,
            recommendations TEXT,
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
        CREATE TABLE IF NOT EXISTS inspection_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            inspection_id INTEGER NOT NULL REFERENCES inspections(id),
            question TEXT NOT NULL,
            item_type TEXT DEFAULT 'YesNo',
            is_required INTEGER DEFAULT 1,
            sort_order INTEGER DEFAULT 0,
            options TEXT,
            min_value REAL,
            max_value REAL,
            unit TEXT,
            status TEXT NOT NULL DEFAULT 'NotStarted',
            response TEXT,
            passed INTEGER,
            notes TEXT,
            answered_by TEXT,
            answered_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspection_findings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            inspection_id INTEGER NOT NULL REFERENCES inspections(id),
            finding_number TEXT NOT NULL,
            description TEXT NOT NULL,
            finding_type TEXT DEFAULT 'NonCompliance',
            severity TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Open',
            inspection_item_id INTEGER,
            location TEXT,
            equipment TEXT,
            regulation TEXT,
            root_cause TEXT,
            immediate_action TEXT,
            corrective_action TEXT,
            due_date TEXT,
            responsible_person_id INTEGER,
            closure_notes TEXT,
            closed_at TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspection_comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            inspection_id INTEGER NOT NULL REFERENCES inspections(id),
            comment TEXT NOT NULL,
            author TEXT,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspection_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            inspection_id INTEGER NOT NULL REFERENCES inspections(id),
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
# INSPECTIONS
# ================================================================

def get_inspection(inspection_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspections WHERE id = ?", (inspection_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Inspection", inspection_id)
    d = dict(row)
    d["is_overdue"] = d["status"] == InspectionStatus.OVERDUE.value or (
        d["status"] == InspectionStatus.SCHEDULED.value and d["scheduled_date"] < today())
    return d


def get_inspection_detail(inspection_id: int) -> Dict:
    insp = get_inspection(inspection_id)
    conn = get_conn()
    insp["items"] = rows_to_dicts(conn.execute(
        "SELECT * FROM inspection_items WHERE inspection_id = ? ORDER BY sort_order, id",
        (inspection_id,)).fetchall())
    insp["findings"] = rows_to_dicts(conn.execute(
        "SELECT * FROM inspection_findings WHERE inspection_id = ? ORDER BY id", (inspection_id,)).fetchall())
    insp["comments"] = rows_to_dicts(conn.execute(
        "SELECT * FROM inspection_comments WHERE inspection_id = ? ORDER BY id", (inspection_id,)).fetchall())
    insp["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, uploaded_by, uploaded_at "
        "FROM inspection_attachments WHERE inspection_id = ?", (inspection_id,)).fetchall())
    conn.close()
    for item in insp["items"]:
        if item["passed"] is not None:
            item["passed"] = bool(item["passed"])
    answered = [i for i in insp["items"] if i["status"] != InspectionItemStatus.NOT_STARTED.value]
    insp["progress"] = round(len(answered) / len(insp["items"]) * 100, 1) if insp["items"] else 0
    return insp


def list_inspections(search: str = None, status: str = None, inspection_type: str = None,
                     inspector_id: int = None, risk_level: str = None,
                     page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(inspection_number LIKE ? OR title LIKE ? OR location LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("status", status), ("inspection_type", inspection_type),
                     ("inspector_id", inspector_id), ("risk_level", risk_level)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM inspections WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT i.*,
               (SELECT COUNT(*) FROM inspection_findings f WHERE f.inspection_id = i.id) AS finding_count
        FROM inspections i WHERE {clause} ORDER BY scheduled_date DESC, id DESC LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": rows_to_dicts(rows), "total": total, "page": page, "page_size": page_size}


def create_inspection(data: Dict, inspector: Dict) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    inspection_type = data.get("inspection_type", InspectionType.SAFETY.value)
    if inspection_type not in InspectionType._value2member_map_:
        raise DomainError(f"Invalid inspection type: {inspection_type}")
    scheduled = parse_date(data.get("scheduled_date"))
    require(scheduled, "Scheduled date is required")

    prefix = f"INS-{datetime.date.today().strftime('%Y%m%d')}-"
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM inspections WHERE inspection_number LIKE ?",
                       (f"{prefix}%",)).fetchone()[0] + 1
    number = f"{prefix}{seq:04d}"
    cur = conn.execute("""
        INSERT INTO inspections
        (inspection_number, title, description, inspection_type, category, priority, status,
         scheduled_date, inspector_id, inspector_name, location, department, facility,
         estimated_duration_minutes, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, 'Draft', ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (number, data["title"].strip(), data.get("description"), inspection_type,
          data.get("category", InspectionCategory.ROUTINE.value), data.get("priority", "Medium"),
          scheduled.isoformat(), data.get("inspector_id") or inspector["id"],
          data.get("inspector_name") or inspector.get("name"), data.get("location"),
          data.get("department") or inspector.get("department"), data.get("facility"),
          data.get("estimated_duration_minutes"), ts(), inspector.get("email")))
    inspection_id = cur.lastrowid
    for i, item in enumerate(data.get("items") or [], start=1):
        _insert_item(conn, inspection_id, i, item)
    conn.commit()
    conn.close()
    log_activity("Inspection", inspection_id, "Created", user=inspector.get("email"), summary=number)
    return get_inspection_detail(inspection_id)


def _set_inspection(inspection_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, inspection_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE inspections SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


def update_inspection(inspection_id: int, data: Dict, user: str) -> Dict:
    insp = get_inspection(inspection_id)
    if insp["status"] in LOCKED_STATUSES:
        raise DomainError("Cannot update completed or archived inspection")
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    if "inspection_type" in fields and fields["inspection_type"] not in InspectionType._value2member_map_:
        raise DomainError(f"Invalid inspection type: {fields['inspection_type']}")
    if "scheduled_date" in fields:
        fields["scheduled_date"] = parse_date(fields["scheduled_date"]).isoformat()
    _set_inspection(inspection_id, fields, user)
    log_activity("Inspection", inspection_id, "Updated", user=user, details=data)
    return get_inspection_detail(inspection_id)


def _transition(inspection_id: int, allowed, target: InspectionStatus, error: str, user: str,
                action: str, notes: str = None, extra: Dict = None) -> Dict:
    insp = get_inspection(inspection_id)
    if insp["status"] not in [s.value for s in allowed]:
        raise DomainError(error)
    fields = {"status": target.value}
    if notes is not None:
        fields["status_notes"] = notes
    fields.update(extra or {})
    _set_inspection(inspection_id, fields, user)
    log_activity("Inspection", inspection_id, action, user=user,
                 summary=f"{insp['status']} -> {target.value}", details={"notes": notes})
    logger.info("[Inspections] %s %s -> %s", insp["inspection_number"], insp["status"], target.value)
    return get_inspection_detail(inspection_id)


def schedule_inspection(inspection_id: int, scheduled_date: Optional[str], user: str) -> Dict:
    extra = {"scheduled_date": parse_date(scheduled_date).isoformat()} if scheduled_date else {}
    return _transition(inspection_id, (InspectionStatus.DRAFT,), InspectionStatus.SCHEDULED,
                       "Only draft inspections can be scheduled", user, "Scheduled", extra=extra)


def start_inspection(inspection_id: int, user: str) -> Dict:
    return _transition(inspection_id, (InspectionStatus.SCHEDULED, InspectionStatus.OVERDUE),
                       InspectionStatus.IN_PROGRESS, "Only scheduled or overdue inspections can be started",
                       user, "Started", extra={"started_date": ts()})


def complete_inspection(inspection_id: int, summary: str, recommendations: str, user: str) -> Dict:
    insp = get_inspection_detail(inspection_id)
    if insp["status"] != InspectionStatus.IN_PROGRESS.value:
        raise DomainError("Only in-progress inspections can be completed")
    missing = [i for i in insp["items"]
               if i["is_required"] and i["status"] == InspectionItemStatus.NOT_STARTED.value]
    if missing:
        raise DomainError(f"{len(missing)} required item(s) have not been answered")
    extra = {"completed_date": ts(), "summary": summary, "recommendations": recommendations}
    if insp["started_date"]:
        started = datetime.datetime.strptime(insp["started_date"], "%Y-%m-%d %H:%M:%S")
        extra["actual_duration_minutes"] = int((datetime.datetime.now() - started).total_seconds() // 60)
    return _transition(inspection_id, (InspectionStatus.IN_PROGRESS,), InspectionStatus.COMPLETED,
                       "Only in-progress inspections can be completed", user, "Completed", extra=extra)


def cancel_inspection(inspection_id: int, reason: str, user: str) -> Dict:
    require((reason or "").strip(), "A cancellation reason is required")
    allowed = [s for s in InspectionStatus
               if s.value not in LOCKED_STATUSES and s != InspectionStatus.CANCELLED]
    return _transition(inspection_id, allowed, InspectionStatus.CANCELLED,
                       "Cannot cancel completed or archived inspection", user, "Cancelled", reason)


def archive_inspection(inspection_id: int, user: str) -> Dict:
    return _transition(inspection_id, (InspectionStatus.COMPLETED, InspectionStatus.CANCELLED),
                       InspectionStatus.ARCHIVED, "Only completed or cancelled inspections can be archived",
                       user, "Archived")


def mark_overdue_inspections() -> int:
    conn = get_conn()
    cur = conn.execute("""
        UPDATE inspections SET status = 'Overdue', updated_at = ?, updated_by = 'system'
        WHERE status = 'Scheduled' AND scheduled_date < ?
    """, (ts(), today()))
    conn.commit()
    conn.close()
    if cur.rowcount:
        logger.info("[Inspections] %d inspections marked overdue", cur.rowcount)
    return cur.rowcount


# ================================================================
# ITEMS
# ================================================================

def _insert_item(conn, inspection_id: int, seq: int, data: Dict) -> int:
    require((data.get("question") or "").strip(), "Item question is required")
    item_type = data.get("item_type", InspectionItemType.YES_NO.value)
    if item_type not in InspectionItemType._value2member_map_:
        raise DomainError(f"Invalid item type: {item_type}")
    options = data.get("options")
    if isinstance(options, list):
        options = ",".join(options)
    cur = conn.execute("""
        INSERT INTO inspection_items
        (inspection_id, question, item_type, is_required, sort_order, options, min_value, max_value, unit)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (inspection_id, data["question"].strip(), item_type, 0 if data.get("is_required") is False else 1,
          data.get("sort_order", seq), options, data.get("min_value"), data.get("max_value"), data.get("unit")))
    return cur.lastrowid


def get_item(inspection_id: int, item_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspection_items WHERE id = ? AND inspection_id = ?",
                       (item_id, inspection_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Inspection item", item_id)
    return dict(row)


def add_item(inspection_id: int, data: Dict, user: str) -> Dict:
    if get_inspection(inspection_id)["status"] in LOCKED_STATUSES:
        raise DomainError("Cannot add items to completed or archived inspection")
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM inspection_items WHERE inspection_id = ?",
                       (inspection_id,)).fetchone()[0] + 1
    item_id = _insert_item(conn, inspection_id, seq, data)
    conn.commit()
    conn.close()
    log_activity("Inspection", inspection_id, "ItemAdded", user=user, details={"item_id": item_id})
    return get_item(inspection_id, item_id)


def remove_item(inspection_id: int, item_id: int, user: str):
    if get_inspection(inspection_id)["status"] in LOCKED_STATUSES:
        raise DomainError("Cannot remove items from completed or archived inspection")
    get_item(inspection_id, item_id)
    conn = get_conn()
    conn.execute("UPDATE inspection_findings SET inspection_item_id = NULL WHERE inspection_item_id = ?",
                 (item_id,))
    conn.execute("DELETE FROM inspection_items WHERE id = ?", (item_id,))
    conn.commit()
    conn.close()
    log_activity("Inspection", inspection_id, "ItemRemoved", user=user, details={"item_id": item_id})


def record_response(inspection_id: int, item_id: int, data: Dict, user: str) -> Dict:
    if get_inspection(inspection_id)["status"] != InspectionStatus.IN_PROGRESS.value:
        raise DomainError("Responses can only be recorded while the inspection is in progress")
    item = get_item(inspection_id, item_id)
    if data.get("skip"):
        if item["is_required"]:
            raise DomainError("Required items cannot be skipped")
        status, passed = InspectionItemStatus.SKIPPED, None
    else:
        passed = evaluate_response(item, data)
        status = InspectionItemStatus.COMPLETED if passed else InspectionItemStatus.FAILED
    conn = get_conn()
    conn.execute("""
        UPDATE inspection_items SET status = ?, response = ?, passed = ?, notes = ?,
        answered_by = ?, answered_at = ? WHERE id = ?
    """, (status.value, None if data.get("response") is None else str(data["response"]),
          None if passed is None else (1 if passed else 0), data.get("notes"), user, ts(), item_id))
    conn.commit()
    conn.close()
    log_activity("Inspection", inspection_id, "ItemAnswered", user=user,
                 details={"item_id": item_id, "status": status.value})
    result = get_item(inspection_id, item_id)
    if result["passed"] is not None:
        result["passed"] = bool(result["passed"])
    return result


# ================================================================
# FINDINGS
# ================================================================

def _refresh_risk(inspection_id: int, user: str):
    conn = get_conn()
    findings = rows_to_dicts(conn.execute(
        "SELECT severity FROM inspection_findings WHERE inspection_id = ?", (inspection_id,)).fetchall())
    _set_inspection(inspection_id, {"risk_level": inspection_risk_level(findings)}, user, conn)
    conn.commit()
    conn.close()


def get_finding(inspection_id: int, finding_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspection_findings WHERE id = ? AND inspection_id = ?",
                       (finding_id, inspection_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Inspection finding", finding_id)
    return dict(row)


def add_finding(inspection_id: int, data: Dict, user: str) -> Dict:
    insp = get_inspection(inspection_id)
    if insp["status"] in (InspectionStatus.CANCELLED.value, InspectionStatus.ARCHIVED.value):
        raise DomainError("Cannot add findings to a cancelled or archived inspection")
    require((data.get("description") or "").strip(), "Finding description is required")
    severity = data.get("severity", FindingSeverity.MINOR.value)
    if severity not in FindingSeverity._value2member_map_:
        raise DomainError(f"Invalid severity: {severity}")
    if data.get("inspection_item_id"):
        get_item(inspection_id, data["inspection_item_id"])
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM inspection_findings WHERE inspection_id = ?",
                       (inspection_id,)).fetchone()[0] + 1
    cur = conn.execute("""
        INSERT INTO inspection_findings
        (inspection_id, finding_number, description, finding_type, severity, status, inspection_item_id,
         location, equipment, regulation, root_cause, immediate_action, due_date, responsible_person_id,
         created_at, created_by)
        VALUES (?, ?, ?, ?, ?, 'Open', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (inspection_id, f"{insp['inspection_number']}-F{seq:02d}", data["description"].strip(),
          data.get("finding_type", "NonCompliance"), severity, data.get("inspection_item_id"),
          data.get("location"), data.get("equipment"), data.get("regulation"), data.get("root_cause"),
          data.get("immediate_action"), data.get("due_date"), data.get("responsible_person_id"), ts(), user))
    finding_id = cur.lastrowid
    conn.commit()
    conn.close()
    _refresh_risk(inspection_id, user)
    log_activity("Inspection", inspection_id, "FindingAdded", user=user,
                 details={"finding_id": finding_id, "severity": severity})
    return get_finding(inspection_id, finding_id)


def _set_finding(inspection_id: int, finding_id: int, fields: Dict, user: str, action: str) -> Dict:
    fields["updated_at"] = ts()
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn = get_conn()
    conn.execute(f"UPDATE inspection_findings SET {sets} WHERE id = ?", list(fields.values()) + [finding_id])
    conn.commit()
    conn.close()
    log_activity("Inspection", inspection_id, action, user=user,
                 details={"finding_id": finding_id, "status": fields.get("status")})
    return get_finding(inspection_id, finding_id)


def set_corrective_action(inspection_id: int, finding_id: int, data: Dict, user: str) -> Dict:
    finding = get_finding(inspection_id, finding_id)
    if finding["status"] == FindingStatus.CLOSED.value:
        raise DomainError("Cannot update closed finding")
    action = (data.get("corrective_action") or "").strip()
    require(action, "Corrective action is required")
    fields = {"corrective_action": action}
    for k in ("root_cause", "due_date", "responsible_person_id"):
        if k in data:
            fields[k] = data[k]
    if finding["status"] == FindingStatus.OPEN.value:
        fields["status"] = FindingStatus.IN_PROGRESS.value
    return _set_finding(inspection_id, finding_id, fields, user, "CorrectiveActionSet")


def resolve_finding(inspection_id: int, finding_id: int, user: str) -> Dict:
    if get_finding(inspection_id, finding_id)["status"] != FindingStatus.IN_PROGRESS.value:
        raise DomainError("Only in-progress findings can be marked as resolved")
    return _set_finding(inspection_id, finding_id, {"status": FindingStatus.RESOLVED.value}, user,
                        "FindingResolved")


def verify_finding(inspection_id: int, finding_id: int, user: str) -> Dict:
    if get_finding(inspection_id, finding_id)["status"] != FindingStatus.RESOLVED.value:
        raise DomainError("Only resolved findings can be verified")
    return _set_finding(inspection_id, finding_id, {"status": FindingStatus.VERIFIED.value}, user,
                        "FindingVerified")


def close_finding(inspection_id: int, finding_id: int, notes: str, user: str) -> Dict:
    if get_finding(inspection_id, finding_id)["status"] != FindingStatus.VERIFIED.value:
        raise DomainError("Only verified findings can be closed")
    return _set_finding(inspection_id, finding_id, {
        "status": FindingStatus.CLOSED.value, "closure_notes": notes, "closed_at": ts(),
    }, user, "FindingClosed")


def reopen_finding(inspection_id: int, finding_id: int, reason: str, user: str) -> Dict:
    if get_finding(inspection_id, finding_id)["status"] != FindingStatus.CLOSED.value:
        raise DomainError("Only closed findings can be reopened")
    return _set_finding(inspection_id, finding_id, {
        "status": FindingStatus.OPEN.value, "closed_at": None,
        "closure_notes": f"Reopened: {reason}" if reason else None,
    }, user, "FindingReopened")


# ================================================================
# COMMENTS & ATTACHMENTS
# ================================================================

def add_comment(inspection_id: int, comment: str, user: str) -> Dict:
    get_inspection(inspection_id)
    require((comment or "").strip(), "Comment is required")
    conn = get_conn()
    cur = conn.execute("INSERT INTO inspection_comments (inspection_id, comment, author, created_at) "
                       "VALUES (?, ?, ?, ?)", (inspection_id, comment.strip(), user, ts()))
    conn.commit()
    row = conn.execute("SELECT * FROM inspection_comments WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    return dict(row)


def add_inspection_attachment(inspection_id: int, meta: Dict, user: str) -> int:
    get_inspection(inspection_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO inspection_attachments
        (inspection_id, file_name, file_path, file_size, content_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (inspection_id, meta["file_name"], meta["file_path"], meta["file_size"], meta["content_type"],
          user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_inspection_attachment(inspection_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspection_attachments WHERE id = ? AND inspection_id = ?",
                       (attachment_id, inspection_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


# ================================================================
# DASHBOARD
# ================================================================

def get_inspection_dashboard() -> Dict:
    conn = get_conn()
    by_status = {r["status"]: r["n"] for r in conn.execute(
        "SELECT status, COUNT(*) AS n FROM inspections GROUP BY status")}
    by_type = {r["inspection_type"]: r["n"] for r in conn.execute(
        "SELECT inspection_type, COUNT(*) AS n FROM inspections GROUP BY inspection_type")}
    overdue = conn.execute("""
        SELECT COUNT(*) FROM inspections
        WHERE status = 'Overdue' OR (status = 'Scheduled' AND scheduled_date < ?)
    """, (today(),)).fetchone()[0]
    critical_findings = conn.execute(
        "SELECT COUNT(*) FROM inspection_findings WHERE severity = 'Critical'").fetchone()[0]
    open_findings = conn.execute(
        "SELECT COUNT(*) FROM inspection_findings WHERE status != 'Closed'").fetchone()[0]
    avg_duration = conn.execute("""
        SELECT AVG(actual_duration_minutes) FROM inspections
        WHERE status = 'Completed' AND actual_duration_minutes IS NOT NULL
    """).fetchone()[0]
    answered = conn.execute(
        "SELECT COUNT(*) FROM inspection_items WHERE status IN ('Completed', 'Failed')").fetchone()[0]
    passed = conn.execute("SELECT COUNT(*) FROM inspection_items WHERE passed = 1").fetchone()[0]
    horizon = (datetime.date.today() + datetime.timedelta(days=UPCOMING_DAYS)).isoformat()
    upcoming = rows_to_dicts(conn.execute("""
        SELECT id, inspection_number, title, scheduled_date, inspector_name FROM inspections
        WHERE status = 'Scheduled' AND scheduled_date BETWEEN ? AND ? ORDER BY scheduled_date
    """, (today(), horizon)).fetchall())
    monthly = {r["month"]: r["n"] for r in conn.execute("""
        SELECT substr(created_at, 1, 7) AS month, COUNT(*) AS n FROM inspections
        WHERE created_at >= ? GROUP BY month ORDER BY month
    """, ((datetime.date.today() - datetime.timedelta(days=183)).isoformat(),))}
    conn.close()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "scheduled": by_status.get(InspectionStatus.SCHEDULED.value, 0),
        "in_progress": by_status.get(InspectionStatus.IN_PROGRESS.value, 0),
        "completed": by_status.get(InspectionStatus.COMPLETED.value, 0),
        "overdue": overdue,
        "critical_findings": critical_findings,
        "open_findings": open_findings,
        "average_duration_minutes": round(avg_duration, 1) if avg_duration is not None else None,
        "compliance_rate": round(passed / answered * 100, 1) if answered else 0,
        "upcoming": upcoming,
        "monthly": monthly,
    }
