"""
HSSE Incidents - Database Models & Schema

Incident workflow:
    Reported -> UnderInvestigation | Resolved
    UnderInvestigation -> AwaitingAction | Resolved | Reported
    AwaitingAction -> Resolved | UnderInvestigation
    Resolved -> Closed | UnderInvestigation
    Closed -> UnderInvestigation
Every transition except Resolved -> Closed needs a comment.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, row_to_dict, build_update
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)


class IncidentSeverity(str, Enum):
    MINOR = "Minor"
    MODERATE = "Moderate"
    SERIOUS = "Serious"
    CRITICAL = "Critical"


class IncidentStatus(str, Enum):
    REPORTED = "Reported"
    UNDER_INVESTIGATION = "UnderInvestigation"
    AWAITING_ACTION = "AwaitingAction"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class CorrectiveActionStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


ALLOWED_TRANSITIONS = {
    IncidentStatus.REPORTED: {IncidentStatus.UNDER_INVESTIGATION, IncidentStatus.RESOLVED},
    IncidentStatus.UNDER_INVESTIGATION: {IncidentStatus.AWAITING_ACTION, IncidentStatus.RESOLVED,
                                         IncidentStatus.REPORTED},
    IncidentStatus.AWAITING_ACTION: {IncidentStatus.RESOLVED, IncidentStatus.UNDER_INVESTIGATION},
    IncidentStatus.RESOLVED: {IncidentStatus.CLOSED, IncidentStatus.UNDER_INVESTIGATION},
    IncidentStatus.CLOSED: {IncidentStatus.UNDER_INVESTIGATION},
}

OPEN_STATUSES = (IncidentStatus.REPORTED.value, IncidentStatus.UNDER_INVESTIGATION.value,
                 IncidentStatus.AWAITING_ACTION.value)

EDITABLE_FIELDS = (
    "title", "description", "severity", "incident_date", "location", "department",
    "injury_type", "medical_treatment_provided", "emergency_services_contacted",
    "witness_names", "immediate_actions_taken", "investigator_id", "root_cause",
)


def init_incident_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS incidents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_number TEXT UNIQUE,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            severity TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Reported',
            incident_date TEXT NOT NULL,
            location TEXT NOT NULL,
            department TEXT,
            reporter_id INTEGER,
            reporter_name TEXT,
            reporter_email TEXT,
            injury_type TEXT,
            medical_treatment_provided INTEGER DEFAULT 0,
            emergency_services_contacted INTEGER DEFAULT 0,
            witness_names TEXT,
            immediate_actions_taken TEXT,
            investigator_id INTEGER,
            root_cause TEXT,
            resolved_at TEXT,
            closed_at TEXT,
            is_deleted INTEGER DEFAULT 0,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS incident_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_id INTEGER NOT NULL REFERENCES incidents(id),
            file_name TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER,
            content_type TEXT,
            uploaded_by TEXT,
            uploaded_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS incident_involved_persons (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_id INTEGER NOT NULL REFERENCES incidents(id),
            person_id INTEGER,
            person_name TEXT NOT NULL,
            involvement_type TEXT NOT NULL,
            injury_description TEXT,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS incident_corrective_actions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_id INTEGER NOT NULL REFERENCES incidents(id),
            description TEXT NOT NULL,
            assigned_to_id INTEGER,
            assigned_department TEXT,
            due_date TEXT,
            priority TEXT DEFAULT 'Medium',
            status TEXT DEFAULT 'Pending',
            completed_at TEXT,
            completion_notes TEXT,
            created_at TEXT,
            created_by TEXT
        )
    """)
    c.execute("CREATE INDEX IF NOT EXISTS idx_incidents_status ON incidents(status)")
    conn.commit()
    conn.close()


def _next_number(conn) -> str:
    year = datetime.date.today().year
    count = conn.execute("SELECT COUNT(*) FROM incidents WHERE incident_number LIKE ?",
                         (f"INC-{year}-%",)).fetchone()[0]
    return f"INC-{year}-{count + 1:04d}"


def _validate_severity(value):
    if value not in IncidentSeverity._value2member_map_:
        raise DomainError(f"Invalid severity: {value}")


# ================================================================
# INCIDENTS CRUD
# ================================================================

def create_incident(data: Dict, reporter: Dict) -> int:
    for field in ("title", "description", "location"):
        require((data.get(field) or "").strip(), f"{field.replace('_', ' ').capitalize()} is required")
    severity = data.get("severity", IncidentSeverity.MINOR.value)
    _validate_severity(severity)
    incident_date = data.get("incident_date") or ts()
    if str(incident_date)[:10] > today():
        raise DomainError("Incident date cannot be in the future")

    conn = get_conn()
    now = ts()
    cur = conn.execute("""
        INSERT INTO incidents
        (incident_number, title, description, severity, status, incident_date, location,
         department, reporter_id, reporter_name, reporter_email, injury_type,
         medical_treatment_provided, emergency_services_contacted, witness_names,
         immediate_actions_taken, created_at, created_by)
        VALUES (?, ?, ?, ?, 'Reported', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        _next_number(conn), data["title"].strip(), data["description"].strip(), severity,
        incident_date, data["location"].strip(), data.get("department"),
        reporter["id"], reporter.get("name"), reporter.get("email"), data.get("injury_type"),
        1 if data.get("medical_treatment_provided") else 0,
        1 if data.get("emergency_services_contacted") else 0,
        data.get("witness_names"), data.get("immediate_actions_taken"), now, reporter.get("email"),
    ))
    incident_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("Incident", incident_id, "Created", user=reporter.get("email"),
                 details={"severity": severity})
    logger.info("[Incidents] Created incident %s (%s)", incident_id, severity)
    return incident_id


def get_incident(incident_id: int) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute("""
        SELECT i.*, u.name AS investigator_name
        FROM incidents i LEFT JOIN users u ON u.id = i.investigator_id
        WHERE i.id = ? AND i.is_deleted = 0
    """, (incident_id,)).fetchone()
    conn.close()
    return row_to_dict(row)


def get_incident_or_404(incident_id: int) -> Dict:
    incident = get_incident(incident_id)
    if not incident:
        raise NotFoundError("Incident", incident_id)
    return incident


def get_incident_detail(incident_id: int) -> Dict:
    incident = get_incident_or_404(incident_id)
    conn = get_conn()
    incident["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, uploaded_by, uploaded_at "
        "FROM incident_attachments WHERE incident_id = ? ORDER BY id", (incident_id,)).fetchall())
    incident["involved_persons"] = rows_to_dicts(conn.execute(
        "SELECT * FROM incident_involved_persons WHERE incident_id = ? ORDER BY id",
        (incident_id,)).fetchall())
    incident["corrective_actions"] = rows_to_dicts(conn.execute(
        "SELECT * FROM incident_corrective_actions WHERE incident_id = ? ORDER BY id",
        (incident_id,)).fetchall())
    conn.close()
    incident["allowed_transitions"] = sorted(
        s.value for s in ALLOWED_TRANSITIONS[IncidentStatus(incident["status"])])
    return incident


def list_incidents(search: str = None, status: str = None, severity: str = None,
                   reporter_id: int = None, date_from: str = None, date_to: str = None,
                   page: int = 1, page_size: int = 20) -> Dict:
    where = ["is_deleted = 0"]
    params: list = []
    if search:
        where.append("(title LIKE ? OR description LIKE ? OR location LIKE ? OR incident_number LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s, s])
    if status:
        where.append("status = ?")
        params.append(status)
    if severity:
        where.append("severity = ?")
        params.append(severity)
    if reporter_id:
        where.append("reporter_id = ?")
        params.append(reporter_id)
    if date_from:
        where.append("incident_date >= ?")
        params.append(date_from)
    if date_to:
        where.append("incident_date <= ?")
        params.append(date_to + " 23:59:59" if len(date_to) == 10 else date_to)

    page = max(1, page)
    page_size = max(1, min(page_size, 200))
    conn = get_conn()
    clause = " AND ".join(where)
    total = conn.execute(f"SELECT COUNT(*) FROM incidents WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM incidents WHERE {clause} ORDER BY incident_date DESC, id DESC LIMIT ? OFFSET ?",
        params + [page_size, (page - 1) * page_size],
    ).fetchall()
    conn.close()
    return {
        "items": rows_to_dicts(rows),
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }


def update_incident(incident_id: int, data: Dict, user: str) -> Dict:
    incident = get_incident_or_404(incident_id)
    if incident["status"] == IncidentStatus.CLOSED.value:
        raise DomainError("Closed incidents cannot be edited")
    if "severity" in data:
        _validate_severity(data["severity"])
    sets, params = build_update(data, EDITABLE_FIELDS)
    require(sets, "No fields to update")
    sets.extend(["updated_at = ?", "updated_by = ?"])
    params.extend([ts(), user, incident_id])
    conn = get_conn()
    conn.execute(f"UPDATE incidents SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()
    log_activity("Incident", incident_id, "Updated", user=user,
                 details={k: data[k] for k in EDITABLE_FIELDS if k in data})
    return get_incident(incident_id)


def change_status(incident_id: int, new_status: str, comment: Optional[str], user: str) -> Dict:
    incident = get_incident_or_404(incident_id)
    try:
        target = IncidentStatus(new_status)
    except ValueError:
        raise DomainError(f"Invalid status: {new_status}")
    current = IncidentStatus(incident["status"])
    if target not in ALLOWED_TRANSITIONS[current]:
        raise DomainError(f"Cannot change status from {current.value} to {target.value}")
    comment_optional = current == IncidentStatus.RESOLVED and target == IncidentStatus.CLOSED
    if not comment_optional and not (comment or "").strip():
        raise DomainError("A comment is required for this status change")

    now = ts()
    extra = ""
    params = [target.value, now, user]
    if target == IncidentStatus.RESOLVED:
        extra = ", resolved_at = ?"
        params.append(now)
    elif target == IncidentStatus.CLOSED:
        extra = ", closed_at = ?"
        params.append(now)
    elif current in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED):
        # Reopened
        extra = ", resolved_at = NULL, closed_at = NULL"
    params.append(incident_id)

    conn = get_conn()
    conn.execute(f"UPDATE incidents SET status = ?, updated_at = ?, updated_by = ?{extra} WHERE id = ?",
                 params)
    conn.commit()
    conn.close()
    log_activity("Incident", incident_id, "StatusChanged", user=user,
                 summary=f"{current.value} -> {target.value}",
                 details={"from": current.value, "to": target.value, "comment": comment})
    logger.info("[Incidents] %s: %s -> %s by %s", incident_id, current.value, target.value, user)
    return get_incident(incident_id)


def delete_incident(incident_id: int, user: str) -> bool:
    get_incident_or_404(incident_id)
    conn = get_conn()
    conn.execute("UPDATE incidents SET is_deleted = 1, updated_at = ?, updated_by = ? WHERE id = ?",
                 (ts(), user, incident_id))
    conn.commit()
    conn.close()
    log_activity("Incident", incident_id, "Deleted", user=user)
    return True


# ================================================================
# ATTACHMENTS / INVOLVED PERSONS / CORRECTIVE ACTIONS
# ================================================================

def add_attachment(incident_id: int, meta: Dict, user: str) -> int:
    get_incident_or_404(incident_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO incident_attachments
        (incident_id, file_name, file_path, file_size, content_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (incident_id, meta["file_name"], meta["file_path"], meta["file_size"],
          meta["content_type"], user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    log_activity("Incident", incident_id, "AttachmentAdded", user=user,
                 details={"file_name": meta["file_name"]})
    return att_id


def get_attachment(incident_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM incident_attachments WHERE id = ? AND incident_id = ?",
                       (attachment_id, incident_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


def delete_attachment(incident_id: int, attachment_id: int, user: str) -> Dict:
    att = get_attachment(incident_id, attachment_id)
    conn = get_conn()
    conn.execute("DELETE FROM incident_attachments WHERE id = ?", (attachment_id,))
    conn.commit()
    conn.close()
    log_activity("Incident", incident_id, "AttachmentRemoved", user=user,
                 details={"file_name": att["file_name"]})
    return att


def add_involved_person(incident_id: int, data: Dict, user: str) -> int:
    get_incident_or_404(incident_id)
    name = (data.get("person_name") or "").strip()
    person_id = data.get("person_id")
    if person_id and not name:
        conn = get_conn()
        row = conn.execute("SELECT name FROM users WHERE id = ?", (person_id,)).fetchone()
        conn.close()
        if not row:
            raise NotFoundError("User", person_id)
        name = row["name"]
    require(name, "Person name or person id is required")
    require(data.get("involvement_type"), "Involvement type is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO incident_involved_persons
        (incident_id, person_id, person_name, involvement_type, injury_description, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (incident_id, person_id, name, data["involvement_type"], data.get("injury_description"), ts()))
    conn.commit()
    pid = cur.lastrowid
    conn.close()
    log_activity("Incident", incident_id, "InvolvedPersonAdded", user=user,
                 details={"person_name": name, "involvement_type": data["involvement_type"]})
    return pid


def remove_involved_person(incident_id: int, person_row_id: int, user: str) -> bool:
    conn = get_conn()
    cur = conn.execute("DELETE FROM incident_involved_persons WHERE id = ? AND incident_id = ?",
                       (person_row_id, incident_id))
    conn.commit()
    conn.close()
    if not cur.rowcount:
        raise NotFoundError("Involved person", person_row_id)
    log_activity("Incident", incident_id, "InvolvedPersonRemoved", user=user)
    return True


def add_corrective_action(incident_id: int, data: Dict, user: str) -> int:
    get_incident_or_404(incident_id)
    require((data.get("description") or "").strip(), "Description is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO incident_corrective_actions
        (incident_id, description, assigned_to_id, assigned_department, due_date, priority,
         status, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, 'Pending', ?, ?)
    """, (incident_id, data["description"].strip(), data.get("assigned_to_id"),
          data.get("assigned_department"), data.get("due_date"), data.get("priority", "Medium"),
          ts(), user))
    conn.commit()
    action_id = cur.lastrowid
    conn.close()
    log_activity("Incident", incident_id, "CorrectiveActionAdded", user=user,
                 details={"action_id": action_id})
    return action_id


def complete_corrective_action(incident_id: int, action_id: int, notes: str, user: str) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM incident_corrective_actions WHERE id = ? AND incident_id = ?",
                       (action_id, incident_id)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("Corrective action", action_id)
    if row["status"] == CorrectiveActionStatus.COMPLETED.value:
        conn.close()
        raise DomainError("Corrective action is already completed")
    conn.execute("""
        UPDATE incident_corrective_actions
        SET status = 'Completed', completed_at = ?, completion_notes = ? WHERE id = ?
    """, (ts(), notes, action_id))
    conn.commit()
    updated = dict(conn.execute("SELECT * FROM incident_corrective_actions WHERE id = ?",
                                (action_id,)).fetchone())
    conn.close()
    log_activity("Incident", incident_id, "CorrectiveActionCompleted", user=user,
                 details={"action_id": action_id})
    return updated


def mark_overdue_corrective_actions() -> int:
    conn = get_conn()
    cur = conn.execute("""
        UPDATE incident_corrective_actions SET status = 'Overdue'
        WHERE status IN ('Pending', 'InProgress') AND due_date IS NOT NULL AND due_date < ?
    """, (today(),))
    conn.commit()
    conn.close()
    return cur.rowcount


# ================================================================
# STATISTICS / DASHBOARD
# ================================================================

def get_statistics(date_from: str = None, date_to: str = None) -> Dict:
    where, params = "is_deleted = 0", []
    if date_from:
        where += " AND incident_date >= ?"
        params.append(date_from)
    if date_to:
        where += " AND incident_date <= ?"
        params.append(date_to + " 23:59:59" if len(date_to) == 10 else date_to)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM incidents WHERE {where}", params).fetchone()[0]
    by_status = {s.value: 0 for s in IncidentStatus}
    for r in conn.execute(f"SELECT status, COUNT(*) AS n FROM incidents WHERE {where} GROUP BY status",
                          params).fetchall():
        by_status[r["status"]] = r["n"]
    by_severity = {s.value: 0 for s in IncidentSeverity}
    for r in conn.execute(f"SELECT severity, COUNT(*) AS n FROM incidents WHERE {where} GROUP BY severity",
                          params).fetchall():
        by_severity[r["severity"]] = r["n"]
    conn.close()
    open_count = sum(by_status[s] for s in OPEN_STATUSES)
    return {
        "total": total,
        "open": open_count,
        "resolved": by_status[IncidentStatus.RESOLVED.value],
        "closed": by_status[IncidentStatus.CLOSED.value],
        "by_status": by_status,
        "by_severity": by_severity,
    }


def get_monthly_trend(months: int = 12) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("""
        SELECT substr(incident_date, 1, 7) AS month, COUNT(*) AS total,
               SUM(CASE WHEN severity IN ('Serious', 'Critical') THEN 1 ELSE 0 END) AS serious
        FROM incidents
        WHERE is_deleted = 0 AND incident_date >= date('now', ?)
        GROUP BY month ORDER BY month
    """, (f"-{months} months",)).fetchall()
    conn.close()
    return rows_to_dicts(rows)


def get_dashboard() -> Dict:
    stats = get_statistics()
    conn = get_conn()
    last_30 = conn.execute(
        "SELECT COUNT(*) FROM incidents WHERE is_deleted = 0 AND incident_date >= date('now', '-30 days')"
    ).fetchone()[0]
    critical_open = conn.execute(
        f"SELECT COUNT(*) FROM incidents WHERE is_deleted = 0 AND severity = 'Critical' "
        f"AND status IN ({','.join('?' * len(OPEN_STATUSES))})", OPEN_STATUSES
    ).fetchone()[0]
    overdue_actions = conn.execute(
        "SELECT COUNT(*) FROM incident_corrective_actions WHERE status = 'Overdue'"
    ).fetchone()[0]
    recent = rows_to_dicts(conn.execute(
        "SELECT id, incident_number, title, severity, status, incident_date, location "
        "FROM incidents WHERE is_deleted = 0 ORDER BY id DESC LIMIT 5").fetchall())
    conn.close()
    return {
        "statistics": stats,
        "last_30_days": last_30,
        "critical_open": critical_open,
        "overdue_corrective_actions": overdue_actions,
        "monthly_trend": get_monthly_trend(),
        "recent": recent,
    }


def export_incidents(status: str = None, severity: str = None) -> List[Dict]:
    sql = "SELECT * FROM incidents WHERE is_deleted = 0"
    params = []
    if status:
        sql += " AND status = ?"
        params.append(status)
    if severity:
        sql += " AND severity = ?"
        params.append(severity)
    conn = get_conn()
    rows = conn.execute(sql + " ORDER BY incident_date DESC", params).fetchall()
    conn.close()
    return rows_to_dicts(rows)
