"""
HSSE Security Incidents - Database Models & Schema

Physical, cyber, personnel and information security incidents. The response
follows the containment / eradication / recovery sequence and an incident
cannot be closed until lessons learned have been recorded as a response.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, rows_to_dicts, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)


class SecurityIncidentType(str, Enum):
    PHYSICAL_SECURITY = "PhysicalSecurity"
    CYBERSECURITY = "Cybersecurity"
    PERSONNEL_SECURITY = "PersonnelSecurity"
    INFORMATION_SECURITY = "InformationSecurity"


class SecuritySeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class SecurityIncidentStatus(str, Enum):
    OPEN = "Open"
    ASSIGNED = "Assigned"
    INVESTIGATING = "Investigating"
    CONTAINED = "Contained"
    ERADICATING = "Eradicating"
    RECOVERING = "Recovering"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class ThreatLevel(str, Enum):
    MINIMAL = "Minimal"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    SEVERE = "Severe"


class SecurityImpact(str, Enum):
    NONE = "None"
    MINOR = "Minor"
    MODERATE = "Moderate"
    MAJOR = "Major"
    SEVERE = "Severe"


class ThreatActorType(str, Enum):
    EXTERNAL = "External"
    INTERNAL = "Internal"
    PARTNER = "Partner"
    UNKNOWN = "Unknown"


class SecurityResponseType(str, Enum):
    INITIAL = "Initial"
    CONTAINMENT = "Containment"
    ERADICATION = "Eradication"
    RECOVERY = "Recovery"
    POST_INCIDENT = "PostIncident"
    ESCALATION = "Escalation"
    INVESTIGATION = "Investigation"
    LESSONS_LEARNED = "LessonsLearned"


CATEGORIES = {
    "PhysicalSecurity": ("UnauthorizedAccess", "Theft", "Vandalism", "PerimeterBreach",
                         "SuspiciousActivity", "PhysicalThreat"),
    "Cybersecurity": ("DataBreach", "MalwareInfection", "PhishingAttempt", "SystemIntrusion",
                      "ServiceDisruption", "UnauthorizedChange"),
    "PersonnelSecurity": ("BackgroundCheckFailure", "PolicyViolation", "InsiderThreat",
                          "CredentialMisuse", "SecurityTrainingFailure"),
    "InformationSecurity": ("DataBreach", "UnauthorizedAccess", "PolicyViolation", "CredentialMisuse"),
}

SEVERITY_ORDER = [s.value for s in SecuritySeverity]
THREAT_ORDER = [t.value for t in ThreatLevel]
# Days before an unclosed incident counts as overdue
RESPONSE_SLA_DAYS = {"Critical": 1, "High": 3, "Medium": 7, "Low": 14}
HIGH_SEVERITIES = (SecuritySeverity.HIGH.value, SecuritySeverity.CRITICAL.value)
EDITABLE_FIELDS = ("title", "description", "category", "location", "incident_datetime",
                   "is_internal_threat", "threat_actor_type", "threat_actor_description")


def is_threat_escalation(previous: str, current: str) -> bool:
    return THREAT_ORDER.index(current) > THREAT_ORDER.index(previous)


def next_severity(severity: str) -> Optional[str]:
    idx = SEVERITY_ORDER.index(severity)
    return SEVERITY_ORDER[idx + 1] if idx + 1 < len(SEVERITY_ORDER) else None


def is_overdue(incident: Dict, now: datetime.datetime = None) -> bool:
    if incident["status"] == SecurityIncidentStatus.CLOSED.value:
        return False
    created = datetime.datetime.strptime(incident["created_at"], "%Y-%m-%d %H:%M:%S")
    limit = datetime.timedelta(days=RESPONSE_SLA_DAYS.get(incident["severity"], 14))
    return (now or datetime.datetime.now()) - created > limit


def init_security_incident_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS security_incidents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            incident_type TEXT NOT NULL,
            category TEXT,
            severity TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Open',
            threat_level TEXT NOT NULL DEFAULT 'Low',
            incident_datetime TEXT NOT NULL,
            detection_datetime TEXT,
            location TEXT NOT NULL,
            threat_actor_type TEXT,
            threat_actor_description TEXT,
            is_internal_threat INTEGER DEFAULT 0,
            impact TEXT DEFAULT 'None',
            affected_persons_count INTEGER,
            estimated_loss REAL,
            data_breach_occurred INTEGER DEFAULT 0,
            containment_datetime TEXT,
            containment_actions TEXT,
            resolution_datetime TEXT,
            root_cause TEXT,
            reporter_id INTEGER,
            reporter_name TEXT,
            assigned_to_id INTEGER,
            investigator_id INTEGER,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS security_incident_responses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_id INTEGER NOT NULL REFERENCES security_incidents(id),
            response_type TEXT NOT NULL,
            action_taken TEXT NOT NULL,
            action_datetime TEXT NOT NULL,
            was_successful INTEGER DEFAULT 1,
            follow_up_required INTEGER DEFAULT 0,
            follow_up_details TEXT,
            responder_id INTEGER,
            responder_name TEXT,
            cost REAL,
            effort_hours REAL,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS security_incident_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            incident_id INTEGER NOT NULL REFERENCES security_incidents(id),
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


SELECT_INCIDENT = """
    SELECT s.*, a.name AS assigned_to_name, a.email AS assigned_to_email,
           i.name AS investigator_name, i.email AS investigator_email
    FROM security_incidents s
    LEFT JOIN users a ON a.id = s.assigned_to_id
    LEFT JOIN users i ON i.id = s.investigator_id
"""


def _decorate(d: Dict) -> Dict:
    d["is_internal_threat"] = bool(d["is_internal_threat"])
    d["data_breach_occurred"] = bool(d["data_breach_occurred"])
    d["is_overdue"] = is_overdue(d)
    return d


def get_security_incident(incident_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute(f"{SELECT_INCIDENT} WHERE s.id = ?", (incident_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Security incident", incident_id)
    return _decorate(dict(row))


def get_security_incident_detail(incident_id: int) -> Dict:
    incident = get_security_incident(incident_id)
    conn = get_conn()
    incident["responses"] = rows_to_dicts(conn.execute(
        "SELECT * FROM security_incident_responses WHERE incident_id = ? ORDER BY action_datetime, id",
        (incident_id,)).fetchall())
    incident["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, attachment_type, uploaded_by, uploaded_at "
        "FROM security_incident_attachments WHERE incident_id = ?", (incident_id,)).fetchall())
    conn.close()
    return incident


def list_security_incidents(search: str = None, status: str = None, incident_type: str = None,
                            severity: str = None, reporter_id: int = None, assigned_to_id: int = None,
                            page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(s.incident_number LIKE ? OR s.title LIKE ? OR s.location LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("s.status", status), ("s.incident_type", incident_type), ("s.severity", severity),
                     ("s.reporter_id", reporter_id), ("s.assigned_to_id", assigned_to_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM security_incidents s WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"{SELECT_INCIDENT} WHERE {clause} ORDER BY s.incident_datetime DESC, s.id DESC "
                        f"LIMIT ? OFFSET ?", params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": [_decorate(dict(r)) for r in rows], "total": total, "page": page, "page_size": page_size}


def _check_enum(enum_cls, value, label: str):
    if value not in enum_cls._value2member_map_:
        raise DomainError(f"Invalid {label}: {value}")


def create_security_incident(data: Dict, reporter: Dict) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    require((data.get("description") or "").strip(), "Description is required")
    require((data.get("location") or "").strip(), "Location is required")
    incident_type = data.get("incident_type", SecurityIncidentType.PHYSICAL_SECURITY.value)
    severity = data.get("severity", SecuritySeverity.LOW.value)
    _check_enum(SecurityIncidentType, incident_type, "incident type")
    _check_enum(SecuritySeverity, severity, "severity")
    category = data.get("category")
    if category and category not in CATEGORIES[incident_type]:
        raise DomainError(f"Category {category} does not belong to {incident_type}")
    occurred = data.get("incident_datetime") or ts()
    if parse_date(occurred) > datetime.date.today():
        raise DomainError("Incident date cannot be in the future")

    year = datetime.date.today().year
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM security_incidents WHERE incident_number LIKE ?",
                       (f"SEC-{year}-%",)).fetchone()[0] + 1
    number = f"SEC-{year}-{seq:04d}"
    cur = conn.execute("""
        INSERT INTO security_incidents
        (incident_number, title, description, incident_type, category, severity, status, threat_level,
         incident_datetime, detection_datetime, location, is_internal_threat, impact, data_breach_occurred,
         reporter_id, reporter_name, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, 'Open', 'Low', ?, ?, ?, ?, 'None', 0, ?, ?, ?, ?)
    """, (number, data["title"].strip(), data["description"].strip(), incident_type, category, severity,
          occurred, ts(), data["location"].strip(), 1 if data.get("is_internal_threat") else 0,
          reporter["id"], reporter.get("name"), ts(), reporter.get("email")))
    incident_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("SecurityIncident", incident_id, "Reported", user=reporter.get("email"),
                 summary=f"{number} ({severity})")
    logger.info("[Security] Reported %s severity=%s", number, severity)
    return get_security_incident(incident_id)


def _set_incident(incident_id: int, fields: Dict, user: str):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    conn = get_conn()
    conn.execute(f"UPDATE security_incidents SET {', '.join(sets)} WHERE id = ?",
                 list(fields.values()) + [ts(), user, incident_id])
    conn.commit()
    conn.close()


def _open_incident(incident_id: int) -> Dict:
    incident = get_security_incident(incident_id)
    if incident["status"] == SecurityIncidentStatus.CLOSED.value:
        raise DomainError("Security incident is closed")
    return incident


def update_security_incident(incident_id: int, data: Dict, user: str) -> Dict:
    incident = _open_incident(incident_id)
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    if fields.get("category") and fields["category"] not in CATEGORIES[incident["incident_type"]]:
        raise DomainError(f"Category {fields['category']} does not belong to {incident['incident_type']}")
    if "threat_actor_type" in fields and fields["threat_actor_type"]:
        _check_enum(ThreatActorType, fields["threat_actor_type"], "threat actor type")
    if "is_internal_threat" in fields:
        fields["is_internal_threat"] = 1 if fields["is_internal_threat"] else 0
    _set_incident(incident_id, fields, user)
    log_activity("SecurityIncident", incident_id, "Updated", user=user, details=data)
    return get_security_incident(incident_id)


def _active_user(user_id) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT id, name, email FROM users WHERE id = ? AND is_active = 1", (user_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Active user", user_id)
    return dict(row)


def assign_incident(incident_id: int, assignee_id: int, user: str) -> Dict:
    _open_incident(incident_id)
    assignee = _active_user(assignee_id)
    _set_incident(incident_id, {"assigned_to_id": assignee["id"],
                                "status": SecurityIncidentStatus.ASSIGNED.value}, user)
    log_activity("SecurityIncident", incident_id, "Assigned", user=user, summary=assignee["email"])
    return get_security_incident(incident_id)


def assign_investigator(incident_id: int, investigator_id: int, user: str) -> Dict:
    _open_incident(incident_id)
    investigator = _active_user(investigator_id)
    _set_incident(incident_id, {"investigator_id": investigator["id"],
                                "status": SecurityIncidentStatus.INVESTIGATING.value}, user)
    log_activity("SecurityIncident", incident_id, "InvestigatorAssigned", user=user, summary=investigator["email"])
    return get_security_incident(incident_id)


def update_threat_assessment(incident_id: int, data: Dict, user: str) -> Dict:
    _open_incident(incident_id)
    level = data.get("threat_level")
    _check_enum(ThreatLevel, level, "threat level")
    fields = {"threat_level": level, "is_internal_threat": 1 if data.get("is_internal_threat") else 0,
              "threat_actor_description": data.get("threat_actor_description")}
    if data.get("threat_actor_type"):
        _check_enum(ThreatActorType, data["threat_actor_type"], "threat actor type")
        fields["threat_actor_type"] = data["threat_actor_type"]
    _set_incident(incident_id, fields, user)
    log_activity("SecurityIncident", incident_id, "ThreatAssessed", user=user, summary=level)
    return get_security_incident(incident_id)


def update_impact_assessment(incident_id: int, data: Dict, user: str) -> Dict:
    _open_incident(incident_id)
    impact = data.get("impact", SecurityImpact.NONE.value)
    _check_enum(SecurityImpact, impact, "impact")
    affected = data.get("affected_persons_count")
    if affected is not None and (not isinstance(affected, int) or affected < 0):
        raise DomainError("Affected persons count must be a non-negative whole number")
    _set_incident(incident_id, {
        "impact": impact, "affected_persons_count": affected,
        "estimated_loss": data.get("estimated_loss"),
        "data_breach_occurred": 1 if data.get("data_breach_occurred") else 0,
    }, user)
    log_activity("SecurityIncident", incident_id, "ImpactAssessed", user=user, summary=impact)
    return get_security_incident(incident_id)


def record_containment(incident_id: int, actions: str, user: str) -> Dict:
    _open_incident(incident_id)
    require((actions or "").strip(), "Containment actions are required")
    _set_incident(incident_id, {"containment_actions": actions.strip(), "containment_datetime": ts(),
                                "status": SecurityIncidentStatus.CONTAINED.value}, user)
    log_activity("SecurityIncident", incident_id, "Contained", user=user)
    return get_security_incident(incident_id)


def start_eradication(incident_id: int, user: str) -> Dict:
    if get_security_incident(incident_id)["status"] != SecurityIncidentStatus.CONTAINED.value:
        raise DomainError("Incident must be contained before eradication")
    _set_incident(incident_id, {"status": SecurityIncidentStatus.ERADICATING.value}, user)
    log_activity("SecurityIncident", incident_id, "EradicationStarted", user=user)
    return get_security_incident(incident_id)


def start_recovery(incident_id: int, user: str) -> Dict:
    if get_security_incident(incident_id)["status"] != SecurityIncidentStatus.ERADICATING.value:
        raise DomainError("Incident must be in eradication phase before recovery")
    _set_incident(incident_id, {"status": SecurityIncidentStatus.RECOVERING.value}, user)
    log_activity("SecurityIncident", incident_id, "RecoveryStarted", user=user)
    return get_security_incident(incident_id)


def resolve_incident(incident_id: int, root_cause: str, user: str) -> Dict:
    _open_incident(incident_id)
    require((root_cause or "").strip(), "Root cause is required")
    _set_incident(incident_id, {"root_cause": root_cause.strip(), "resolution_datetime": ts(),
                                "status": SecurityIncidentStatus.RESOLVED.value}, user)
    log_activity("SecurityIncident", incident_id, "Resolved", user=user)
    return get_security_incident(incident_id)


def close_incident(incident_id: int, user: str) -> Dict:
    incident = get_security_incident(incident_id)
    if incident["status"] != SecurityIncidentStatus.RESOLVED.value:
        raise DomainError("Incident must be resolved before closing")
    conn = get_conn()
    lessons = conn.execute("""
        SELECT COUNT(*) FROM security_incident_responses WHERE incident_id = ? AND response_type = ?
    """, (incident_id, SecurityResponseType.LESSONS_LEARNED.value)).fetchone()[0]
    conn.close()
    if not lessons:
        raise DomainError("Lessons learned must be documented before closing")
    _set_incident(incident_id, {"status": SecurityIncidentStatus.CLOSED.value}, user)
    log_activity("SecurityIncident", incident_id, "Closed", user=user)
    logger.info("[Security] Closed %s", incident["incident_number"])
    return get_security_incident(incident_id)


def escalate_incident(incident_id: int, reason: str, user: str) -> Dict:
    incident = _open_incident(incident_id)
    raised = next_severity(incident["severity"])
    if not raised:
        raise DomainError("Incident is already at Critical severity")
    _set_incident(incident_id, {"severity": raised}, user)
    log_activity("SecurityIncident", incident_id, "Escalated", user=user,
                 summary=f"{incident['severity']} -> {raised}", details={"reason": reason})
    logger.info("[Security] Escalated %s to %s", incident["incident_number"], raised)
    return get_security_incident(incident_id)


def add_response(incident_id: int, data: Dict, responder: Dict) -> Dict:
    get_security_incident(incident_id)
    response_type = data.get("response_type")
    _check_enum(SecurityResponseType, response_type, "response type")
    require((data.get("action_taken") or "").strip(), "Action taken is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO security_incident_responses
        (incident_id, response_type, action_taken, action_datetime, was_successful, follow_up_required,
         follow_up_details, responder_id, responder_name, cost, effort_hours, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (incident_id, response_type, data["action_taken"].strip(), data.get("action_datetime") or ts(),
          0 if data.get("was_successful") is False else 1, 1 if data.get("follow_up_required") else 0,
          data.get("follow_up_details"), responder["id"], responder.get("name"), data.get("cost"),
          data.get("effort_hours"), ts()))
    conn.commit()
    row = conn.execute("SELECT * FROM security_incident_responses WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    log_activity("SecurityIncident", incident_id, "ResponseAdded", user=responder.get("email"),
                 summary=response_type)
    return dict(row)


def list_responses(incident_id: int) -> List[Dict]:
    get_security_incident(incident_id)
    conn = get_conn()
    rows = conn.execute("SELECT * FROM security_incident_responses WHERE incident_id = ? "
                        "ORDER BY action_datetime, id", (incident_id,)).fetchall()
    conn.close()
    return rows_to_dicts(rows)


def add_security_attachment(incident_id: int, meta: Dict, attachment_type: str, user: str) -> int:
    get_security_incident(incident_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO security_incident_attachments
        (incident_id, file_name, file_path, file_size, content_type, attachment_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (incident_id, meta["file_name"], meta["file_path"], meta["file_size"], meta["content_type"],
          attachment_type, user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_security_attachment(incident_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM security_incident_attachments WHERE id = ? AND incident_id = ?",
                       (attachment_id, incident_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


def get_security_dashboard(days: int = 30) -> Dict:
    start = (datetime.date.today() - datetime.timedelta(days=days)).isoformat()
    previous_start = (datetime.date.today() - datetime.timedelta(days=days * 2)).isoformat()
    conn = get_conn()
    rows = [_decorate(dict(r)) for r in conn.execute(
        f"{SELECT_INCIDENT} WHERE s.incident_datetime >= ?", (start,)).fetchall()]
    previous = conn.execute(
        "SELECT COUNT(*) FROM security_incidents WHERE incident_datetime >= ? AND incident_datetime < ?",
        (previous_start, start)).fetchone()[0]
    open_rows = [_decorate(dict(r)) for r in conn.execute(
        f"{SELECT_INCIDENT} WHERE s.status != 'Closed' ORDER BY s.id DESC").fetchall()]
    conn.close()

    def count_by(key):
        out = {}
        for r in rows:
            out[r[key]] = out.get(r[key], 0) + 1
        return out

    resolution_hours = []
    for r in rows:
        if r["status"] == SecurityIncidentStatus.CLOSED.value and r["resolution_datetime"]:
            opened = datetime.datetime.strptime(r["created_at"], "%Y-%m-%d %H:%M:%S")
            resolved = datetime.datetime.strptime(r["resolution_datetime"], "%Y-%m-%d %H:%M:%S")
            resolution_hours.append((resolved - opened).total_seconds() / 3600)
    locations = count_by("location")
    return {
        "period_days": days,
        "total": len(rows),
        "open": sum(1 for r in rows if r["status"] != SecurityIncidentStatus.CLOSED.value),
        "closed": sum(1 for r in rows if r["status"] == SecurityIncidentStatus.CLOSED.value),
        "critical": sum(1 for r in rows if r["severity"] == SecuritySeverity.CRITICAL.value),
        "high": sum(1 for r in rows if r["severity"] == SecuritySeverity.HIGH.value),
        "data_breaches": sum(1 for r in rows if r["data_breach_occurred"]),
        "internal_threats": sum(1 for r in rows if r["is_internal_threat"]),
        "by_type": count_by("incident_type"),
        "by_severity": count_by("severity"),
        "by_status": count_by("status"),
        "trend_percent": round((len(rows) - previous) / previous * 100, 1) if previous else 0,
        "average_resolution_hours": round(sum(resolution_hours) / len(resolution_hours), 1)
        if resolution_hours else None,
        "most_common_location": max(locations, key=locations.get) if locations else None,
        "overdue": [r for r in open_rows if r["is_overdue"]][:10],
        "critical_open": [r for r in open_rows if r["severity"] == SecuritySeverity.CRITICAL.value][:10],
    }
