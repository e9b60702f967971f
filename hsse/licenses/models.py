"""
HSSE Licenses - Database Models & Schema

Operating permits and certificates held by the organisation. A license is
edited in Draft (or after rejection), goes through submission and approval,
becomes Active and is eventually renewed, suspended, revoked or expires.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 30


class LicenseStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_SUBMISSION = "PendingSubmission"
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "UnderReview"
    APPROVED = "Approved"
    ACTIVE = "Active"
    REJECTED = "Rejected"
    EXPIRED = "Expired"
    SUSPENDED = "Suspended"
    REVOKED = "Revoked"
    PENDING_RENEWAL = "PendingRenewal"


class LicenseType(str, Enum):
    ENVIRONMENTAL = "Environmental"
    SAFETY = "Safety"
    HEALTH = "Health"
    CONSTRUCTION = "Construction"
    OPERATING = "Operating"
    TRANSPORT = "Transport"
    WASTE = "Waste"
    CHEMICAL = "Chemical"
    RADIATION = "Radiation"
    FIRE = "Fire"
    ELECTRICAL = "Electrical"
    MECHANICAL = "Mechanical"
    PROFESSIONAL = "Professional"
    BUSINESS = "Business"
    IMPORT = "Import"
    EXPORT = "Export"
    OTHER = "Other"


class LicensePriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ConditionStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"
    WAIVED = "Waived"


EDITABLE_STATUSES = (LicenseStatus.DRAFT.value, LicenseStatus.REJECTED.value)
EDITABLE_FIELDS = ("title", "description", "license_type", "priority", "issuing_authority",
                   "issued_date", "expiry_date", "issued_location", "holder_name", "department",
                   "renewal_required", "renewal_period_days", "auto_renewal", "regulatory_framework",
                   "scope", "restrictions", "license_fee", "is_critical", "risk_level")


# ================================================================
# PURE HELPERS
# ================================================================

def days_until_expiry(expiry_date, on: datetime.date = None) -> int:
    return (parse_date(expiry_date) - (on or datetime.date.today())).days


def next_renewal_date(expiry_date, renewal_required: bool, renewal_period_days: int) -> Optional[str]:
    if not renewal_required or not renewal_period_days:
        return None
    return (parse_date(expiry_date) - datetime.timedelta(days=renewal_period_days)).isoformat()


def calculate_compliance_score(license: Dict, conditions: List[Dict], on: datetime.date = None) -> float:
    """
    100, minus 50 when expired, minus 20 when a renewal is due but not yet
    started. With conditions, the last 30 points are weighted by the share of
    completed conditions. Never below 0.
    """
    days = days_until_expiry(license["expiry_date"], on)
    score = 100.0
    if days < 0:
        score -= 50.0
    requires_renewal = bool(license.get("renewal_required")) and days <= EXPIRING_SOON_DAYS
    if requires_renewal and license["status"] != LicenseStatus.PENDING_RENEWAL.value:
        score -= 20.0
    if conditions:
        completed = sum(1 for c in conditions if c["status"] == ConditionStatus.COMPLETED.value)
        score = score - 30.0 + completed / len(conditions) * 30.0
    return max(0.0, score)


def init_license_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS licenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            license_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            license_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Draft',
            priority TEXT DEFAULT 'Medium',
            issuing_authority TEXT NOT NULL,
            issued_date TEXT NOT NULL,
            expiry_date TEXT NOT NULL,
            issued_location TEXT,
            holder_id INTEGER,
            holder_name TEXT,
            department TEXT,
            renewal_required INTEGER DEFAULT 0,
            renewal_period_days INTEGER DEFAULT 0,
            next_renewal_date TEXT,
            auto_renewal INTEGER DEFAULT 0,
            regulatory_framework TEXT,
            scope TEXT,
            restrictions TEXT,
            license_fee REAL,
            is_critical INTEGER DEFAULT 0,
            risk_level TEXT,
            submitted_date TEXT,
            approved_date TEXT,
            activated_date TEXT,
            suspended_date TEXT,
            revoked_date TEXT,
            status_notes TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS license_conditions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            license_id INTEGER NOT NULL REFERENCES licenses(id),
            condition_type TEXT,
            description TEXT NOT NULL,
            is_mandatory INTEGER DEFAULT 1,
            due_date TEXT,
            status TEXT NOT NULL DEFAULT 'Pending',
            responsible_person TEXT,
            completed_at TEXT,
            completed_by TEXT,
            completion_notes TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS license_renewals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            license_id INTEGER NOT NULL REFERENCES licenses(id),
            renewal_number TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Pending',
            application_date TEXT NOT NULL,
            new_expiry_date TEXT,
            initiated_by TEXT,
            completed_at TEXT,
            notes TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS license_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            license_id INTEGER NOT NULL REFERENCES licenses(id),
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
# LICENSES
# ================================================================

def _decorate(d: Dict, conditions: List[Dict]) -> Dict:
    for k in ("renewal_required", "auto_renewal", "is_critical"):
        d[k] = bool(d[k])
    days = days_until_expiry(d["expiry_date"])
    d["days_until_expiry"] = days
    d["is_expired"] = days < 0
    d["is_expiring_soon"] = days <= EXPIRING_SOON_DAYS
    d["requires_renewal"] = d["renewal_required"] and d["is_expiring_soon"]
    d["compliance_score"] = calculate_compliance_score(d, conditions)
    return d


def get_license(license_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM licenses WHERE id = ?", (license_id,)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("License", license_id)
    conditions = rows_to_dicts(conn.execute(
        "SELECT * FROM license_conditions WHERE license_id = ? ORDER BY id", (license_id,)).fetchall())
    conn.close()
    return _decorate(dict(row), conditions)


def get_license_detail(license_id: int) -> Dict:
    lic = get_license(license_id)
    conn = get_conn()
    lic["conditions"] = rows_to_dicts(conn.execute(
        "SELECT * FROM license_conditions WHERE license_id = ? ORDER BY id", (license_id,)).fetchall())
    lic["renewals"] = rows_to_dicts(conn.execute(
        "SELECT * FROM license_renewals WHERE license_id = ? ORDER BY id DESC", (license_id,)).fetchall())
    lic["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, attachment_type, uploaded_by, uploaded_at "
        "FROM license_attachments WHERE license_id = ?", (license_id,)).fetchall())
    conn.close()
    return lic


def _all_conditions(conn) -> Dict[int, List[Dict]]:
    grouped = {}
    for r in conn.execute("SELECT license_id, status FROM license_conditions"):
        grouped.setdefault(r["license_id"], []).append(dict(r))
    return grouped


def list_licenses(search: str = None, status: str = None, license_type: str = None,
                  holder_id: int = None, expiring_only: bool = False,
                  page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(license_number LIKE ? OR title LIKE ? OR issuing_authority LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("status", status), ("license_type", license_type), ("holder_id", holder_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    if expiring_only:
        where.append("expiry_date <= ? AND status IN ('Active', 'PendingRenewal', 'Approved')")
        params.append((datetime.date.today() + datetime.timedelta(days=EXPIRING_SOON_DAYS)).isoformat())
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM licenses WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"SELECT * FROM licenses WHERE {clause} ORDER BY expiry_date, id LIMIT ? OFFSET ?",
                        params + [page_size, (page - 1) * page_size]).fetchall()
    conditions = _all_conditions(conn)
    conn.close()
    items = [_decorate(dict(r), conditions.get(r["id"], [])) for r in rows]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


def _validate_dates(issued, expiry):
    issued_d, expiry_d = parse_date(issued), parse_date(expiry)
    require(issued_d and expiry_d, "Issued and expiry dates are required")
    if expiry_d <= issued_d:
        raise DomainError("Expiry date must be after the issued date")


def create_license(data: Dict, holder: Dict) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    require((data.get("issuing_authority") or "").strip(), "Issuing authority is required")
    license_type = data.get("license_type", LicenseType.OTHER.value)
    if license_type not in LicenseType._value2member_map_:
        raise DomainError(f"Invalid license type: {license_type}")
    _validate_dates(data.get("issued_date"), data.get("expiry_date"))
    renewal_required = bool(data.get("renewal_required"))
    renewal_days = data.get("renewal_period_days") or 0

    conn = get_conn()
    number = (data.get("license_number") or "").strip()
    if not number:
        year = datetime.date.today().year
        seq = conn.execute("SELECT COUNT(*) FROM licenses WHERE license_number LIKE ?",
                           (f"LIC-{year}-%",)).fetchone()[0] + 1
        number = f"LIC-{year}-{seq:04d}"
    if conn.execute("SELECT 1 FROM licenses WHERE license_number = ?", (number,)).fetchone():
        conn.close()
        raise DomainError(f"License number {number} already exists")
    cur = conn.execute("""
        INSERT INTO licenses
        (license_number, title, description, license_type, status, priority, issuing_authority,
         issued_date, expiry_date, issued_location, holder_id, holder_name, department,
         renewal_required, renewal_period_days, next_renewal_date, auto_renewal, regulatory_framework,
         scope, restrictions, license_fee, is_critical, risk_level, created_at, created_by)
        VALUES (?, ?, ?, ?, 'Draft', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (number, data["title"].strip(), data.get("description"), license_type,
          data.get("priority", LicensePriority.MEDIUM.value), data["issuing_authority"].strip(),
          data["issued_date"], data["expiry_date"], data.get("issued_location"),
          data.get("holder_id") or holder["id"], data.get("holder_name") or holder.get("name"),
          data.get("department") or holder.get("department"), 1 if renewal_required else 0, renewal_days,
          next_renewal_date(data["expiry_date"], renewal_required, renewal_days),
          1 if data.get("auto_renewal") else 0, data.get("regulatory_framework"), data.get("scope"),
          data.get("restrictions"), data.get("license_fee"), 1 if data.get("is_critical") else 0,
          data.get("risk_level"), ts(), holder.get("email")))
    license_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("License", license_id, "Created", user=holder.get("email"), summary=number)
    return get_license(license_id)


def update_license(license_id: int, data: Dict, user: str) -> Dict:
    lic = get_license(license_id)
    if lic["status"] not in EDITABLE_STATUSES:
        raise DomainError("Only draft or rejected licenses can be edited")
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    if "license_type" in fields and fields["license_type"] not in LicenseType._value2member_map_:
        raise DomainError(f"Invalid license type: {fields['license_type']}")
    merged = {**lic, **fields}
    _validate_dates(merged["issued_date"], merged["expiry_date"])
    for k in ("renewal_required", "auto_renewal", "is_critical"):
        if k in fields:
            fields[k] = 1 if fields[k] else 0
    fields["next_renewal_date"] = next_renewal_date(merged["expiry_date"], bool(merged["renewal_required"]),
                                                    merged["renewal_period_days"])
    _set_license(license_id, fields, user)
    log_activity("License", license_id, "Updated", user=user, details=data)
    return get_license(license_id)


def _set_license(license_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, license_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE licenses SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


def _transition(license_id: int, allowed, target: LicenseStatus, error: str, user: str,
                action: str, notes: str = None, extra: Dict = None) -> Dict:
    lic = get_license(license_id)
    if lic["status"] not in [s.value for s in allowed]:
        raise DomainError(error)
    fields = {"status": target.value}
    if notes is not None:
        fields["status_notes"] = notes
    fields.update(extra or {})
    _set_license(license_id, fields, user)
    log_activity("License", license_id, action, user=user,
                 summary=f"{lic['status']} -> {target.value}", details={"notes": notes})
    logger.info("[Licenses] %s %s -> %s", lic["license_number"], lic["status"], target.value)
    return get_license(license_id)


def submit_license(license_id: int, user: str) -> Dict:
    return _transition(license_id, (LicenseStatus.DRAFT,), LicenseStatus.SUBMITTED,
                       "Only draft licenses can be submitted", user, "Submitted",
                       extra={"submitted_date": ts()})


def start_review(license_id: int, user: str) -> Dict:
    return _transition(license_id, (LicenseStatus.SUBMITTED,), LicenseStatus.UNDER_REVIEW,
                       "Only submitted licenses can be put under review", user, "ReviewStarted")


def approve_license(license_id: int, notes: str, user: str) -> Dict:
    return _transition(license_id, (LicenseStatus.SUBMITTED, LicenseStatus.UNDER_REVIEW), LicenseStatus.APPROVED,
                       "Only submitted or under review licenses can be approved", user, "Approved",
                       notes, {"approved_date": ts()})


def reject_license(license_id: int, reason: str, user: str) -> Dict:
    require((reason or "").strip(), "A rejection reason is required")
    return _transition(license_id, (LicenseStatus.SUBMITTED, LicenseStatus.UNDER_REVIEW), LicenseStatus.REJECTED,
                       "Only submitted or under review licenses can be rejected", user, "Rejected", reason)


def activate_license(license_id: int, user: str) -> Dict:
    return _transition(license_id, (LicenseStatus.APPROVED,), LicenseStatus.ACTIVE,
                       "Only approved licenses can be activated", user, "Activated",
                       extra={"activated_date": ts()})


def suspend_license(license_id: int, reason: str, user: str) -> Dict:
    require((reason or "").strip(), "A suspension reason is required")
    return _transition(license_id, (LicenseStatus.ACTIVE,), LicenseStatus.SUSPENDED,
                       "Only active licenses can be suspended", user, "Suspended", reason,
                       {"suspended_date": ts()})


def reinstate_license(license_id: int, notes: str, user: str) -> Dict:
    return _transition(license_id, (LicenseStatus.SUSPENDED,), LicenseStatus.ACTIVE,
                       "Only suspended licenses can be reinstated", user, "Reinstated", notes,
                       {"suspended_date": None})


def revoke_license(license_id: int, reason: str, user: str) -> Dict:
    require((reason or "").strip(), "A revocation reason is required")
    allowed = [s for s in LicenseStatus if s != LicenseStatus.REVOKED]
    return _transition(license_id, allowed, LicenseStatus.REVOKED, "License is already revoked",
                       user, "Revoked", reason, {"revoked_date": ts()})


def initiate_renewal(license_id: int, notes: str, user: str) -> Dict:
    lic = get_license(license_id)
    if lic["status"] not in (LicenseStatus.ACTIVE.value, LicenseStatus.EXPIRED.value):
        raise DomainError("Only active or expired licenses can be renewed")
    issued, expiry = parse_date(lic["issued_date"]), parse_date(lic["expiry_date"])
    new_expiry = expiry + (expiry - issued)
    conn = get_conn()
    seq = conn.execute("SELECT COUNT(*) FROM license_renewals WHERE license_id = ?",
                       (license_id,)).fetchone()[0] + 1
    conn.execute("""
        INSERT INTO license_renewals
        (license_id, renewal_number, status, application_date, new_expiry_date, initiated_by, notes)
        VALUES (?, ?, 'Pending', ?, ?, ?, ?)
    """, (license_id, f"{lic['license_number']}-R{seq:02d}", today(), new_expiry.isoformat(), user, notes))
    _set_license(license_id, {"status": LicenseStatus.PENDING_RENEWAL.value}, user, conn)
    conn.commit()
    conn.close()
    log_activity("License", license_id, "RenewalInitiated", user=user,
                 details={"new_expiry_date": new_expiry.isoformat()})
    return get_license_detail(license_id)


def complete_renewal(license_id: int, renewal_id: int, new_expiry_date: str, user: str) -> Dict:
    lic = get_license(license_id)
    if lic["status"] != LicenseStatus.PENDING_RENEWAL.value:
        raise DomainError("License has no renewal in progress")
    conn = get_conn()
    renewal = conn.execute("SELECT * FROM license_renewals WHERE id = ? AND license_id = ?",
                           (renewal_id, license_id)).fetchone()
    if not renewal or renewal["status"] != "Pending":
        conn.close()
        raise NotFoundError("Pending renewal", renewal_id)
    expiry = new_expiry_date or renewal["new_expiry_date"]
    if parse_date(expiry) <= parse_date(lic["expiry_date"]):
        conn.close()
        raise DomainError("New expiry date must be after the current expiry date")
    conn.execute("UPDATE license_renewals SET status = 'Approved', completed_at = ?, new_expiry_date = ? WHERE id = ?",
                 (ts(), expiry, renewal_id))
    _set_license(license_id, {
        "status": LicenseStatus.ACTIVE.value,
        "issued_date": lic["expiry_date"],
        "expiry_date": expiry,
        "next_renewal_date": next_renewal_date(expiry, lic["renewal_required"], lic["renewal_period_days"]),
    }, user, conn)
    conn.commit()
    conn.close()
    log_activity("License", license_id, "Renewed", user=user, details={"expiry_date": expiry})
    return get_license_detail(license_id)


# ================================================================
# CONDITIONS & ATTACHMENTS
# ================================================================

def add_condition(license_id: int, data: Dict, user: str) -> Dict:
    get_license(license_id)
    require((data.get("description") or "").strip(), "Condition description is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO license_conditions
        (license_id, condition_type, description, is_mandatory, due_date, status, responsible_person)
        VALUES (?, ?, ?, ?, ?, 'Pending', ?)
    """, (license_id, data.get("condition_type"), data["description"].strip(),
          0 if data.get("is_mandatory") is False else 1, data.get("due_date"),
          data.get("responsible_person")))
    cond_id = cur.lastrowid
    conn.commit()
    row = conn.execute("SELECT * FROM license_conditions WHERE id = ?", (cond_id,)).fetchone()
    conn.close()
    log_activity("License", license_id, "ConditionAdded", user=user, details={"condition_id": cond_id})
    return dict(row)


def complete_condition(license_id: int, condition_id: int, notes: str, user: str) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM license_conditions WHERE id = ? AND license_id = ?",
                       (condition_id, license_id)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("License condition", condition_id)
    if row["status"] == ConditionStatus.COMPLETED.value:
        conn.close()
        raise DomainError("Condition is already completed")
    conn.execute("""
        UPDATE license_conditions SET status = 'Completed', completed_at = ?, completed_by = ?,
        completion_notes = ? WHERE id = ?
    """, (ts(), user, notes, condition_id))
    conn.commit()
    row = conn.execute("SELECT * FROM license_conditions WHERE id = ?", (condition_id,)).fetchone()
    conn.close()
    log_activity("License", license_id, "ConditionCompleted", user=user, details={"condition_id": condition_id})
    return dict(row)


def add_license_attachment(license_id: int, meta: Dict, attachment_type: str, user: str) -> int:
    get_license(license_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO license_attachments
        (license_id, file_name, file_path, file_size, content_type, attachment_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (license_id, meta["file_name"], meta["file_path"], meta["file_size"], meta["content_type"],
          attachment_type, user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_license_attachment(license_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM license_attachments WHERE id = ? AND license_id = ?",
                       (attachment_id, license_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


# ================================================================
# SWEEPS & DASHBOARD
# ================================================================

def expire_licenses() -> int:
    conn = get_conn()
    cur = conn.execute("""
        UPDATE licenses SET status = 'Expired', updated_at = ?, updated_by = 'system'
        WHERE status IN ('Active', 'Approved') AND expiry_date < ?
    """, (ts(), today()))
    conn.execute("""
        UPDATE license_conditions SET status = 'Overdue'
        WHERE status IN ('Pending', 'InProgress') AND due_date IS NOT NULL AND due_date < ?
    """, (today(),))
    conn.commit()
    conn.close()
    if cur.rowcount:
        logger.info("[Licenses] %d licenses expired", cur.rowcount)
    return cur.rowcount


def get_license_dashboard() -> Dict:
    conn = get_conn()
    rows = conn.execute("SELECT * FROM licenses").fetchall()
    conditions = _all_conditions(conn)
    conn.close()
    licenses = [_decorate(dict(r), conditions.get(r["id"], [])) for r in rows]
    by_status = {s.value: 0 for s in LicenseStatus}
    by_type = {}
    for lic in licenses:
        by_status[lic["status"]] += 1
        by_type[lic["license_type"]] = by_type.get(lic["license_type"], 0) + 1
    live = [lic for lic in licenses if lic["status"] in (LicenseStatus.ACTIVE.value,
                                                        LicenseStatus.PENDING_RENEWAL.value)]
    expiring = [lic for lic in live if 0 <= lic["days_until_expiry"] <= EXPIRING_SOON_DAYS]
    return {
        "total": len(licenses),
        "active": by_status[LicenseStatus.ACTIVE.value],
        "by_status": by_status,
        "by_type": by_type,
        "expiring_soon": len(expiring),
        "expired": by_status[LicenseStatus.EXPIRED.value],
        "pending_renewal": by_status[LicenseStatus.PENDING_RENEWAL.value],
        "critical": sum(1 for lic in licenses if lic["is_critical"]),
        "average_compliance_score": round(sum(lic["compliance_score"] for lic in live) / len(live), 1)
        if live else 100.0,
        "expiring": [{"id": lic["id"], "license_number": lic["license_number"], "title": lic["title"],
                      "expiry_date": lic["expiry_date"], "days_until_expiry": lic["days_until_expiry"]}
                     for lic in sorted(expiring, key=lambda x: x["days_until_expiry"])],
    }
