"""
HSSE Waste - Database Models & Schema
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, row_to_dict, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)

PROVIDER_EXPIRY_WARNING_DAYS = 30


class WasteClassification(str, Enum):
    NON_HAZARDOUS = "NonHazardous"
    HAZARDOUS_CHEMICAL = "HazardousChemical"
    HAZARDOUS_BIOLOGICAL = "HazardousBiological"
    HAZARDOUS_RADIOACTIVE = "HazardousRadioactive"
    RECYCLABLE = "Recyclable"
    UNIVERSAL = "Universal"
    CONSTRUCTION = "Construction"
    MEDICAL = "Medical"
    ELECTRONIC = "Electronic"
    ORGANIC = "Organic"


class DisposalStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DISPOSED = "Disposed"


class ProviderStatus(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    SUSPENDED = "Suspended"
    TERMINATED = "Terminated"
    UNDER_REVIEW = "UnderReview"


HAZARDOUS = (WasteClassification.HAZARDOUS_CHEMICAL.value, WasteClassification.HAZARDOUS_BIOLOGICAL.value,
             WasteClassification.HAZARDOUS_RADIOACTIVE.value, WasteClassification.MEDICAL.value)

REPORT_FIELDS = ("title", "description", "classification", "location", "generated_date",
                 "estimated_quantity", "quantity_unit", "disposal_method", "treatment", "notes")
PROVIDER_FIELDS = ("name", "license_number", "license_expiry_date", "contact_person",
                   "contact_email", "contact_phone", "address", "services")


def init_waste_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS disposal_providers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            license_number TEXT NOT NULL,
            license_expiry_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Active',
            contact_person TEXT,
            contact_email TEXT,
            contact_phone TEXT,
            address TEXT,
            services TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS waste_reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            classification TEXT NOT NULL,
            location TEXT NOT NULL,
            generated_date TEXT NOT NULL,
            estimated_quantity REAL,
            quantity_unit TEXT,
            disposal_status TEXT NOT NULL DEFAULT 'Pending',
            disposal_method TEXT,
            disposal_date TEXT,
            disposed_by TEXT,
            disposal_cost REAL,
            provider_id INTEGER REFERENCES disposal_providers(id),
            manifest_number TEXT,
            treatment TEXT,
            notes TEXT,
            reporter_id INTEGER,
            reporter_name TEXT,
            is_deleted INTEGER DEFAULT 0,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS waste_disposal_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            waste_report_id INTEGER NOT NULL REFERENCES waste_reports(id),
            provider_id INTEGER REFERENCES disposal_providers(id),
            disposal_date TEXT NOT NULL,
            quantity REAL,
            quantity_unit TEXT,
            disposal_method TEXT,
            manifest_number TEXT,
            cost REAL,
            disposed_by TEXT,
            notes TEXT,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS waste_comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            waste_report_id INTEGER NOT NULL REFERENCES waste_reports(id),
            comment TEXT NOT NULL,
            comment_type TEXT DEFAULT 'General',
            commented_by TEXT,
            created_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS waste_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            waste_report_id INTEGER NOT NULL REFERENCES waste_reports(id),
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


def _check_classification(value):
    if value not in WasteClassification._value2member_map_:
        raise DomainError(f"Invalid waste classification: {value}")


# ================================================================
# PROVIDERS
# ================================================================

def _provider(row) -> Dict:
    d = dict(row)
    d["is_active"] = bool(d["is_active"])
    expiry = parse_date(d["license_expiry_date"])
    now = datetime.date.today()
    d["is_license_expired"] = expiry < now
    d["is_license_expiring"] = now <= expiry <= now + datetime.timedelta(days=PROVIDER_EXPIRY_WARNING_DAYS)
    return d


def list_providers(status: str = None, expiring_only: bool = False) -> List[Dict]:
    where, params = ["1 = 1"], []
    if status:
        where.append("status = ?")
        params.append(status)
    if expiring_only:
        where.append("license_expiry_date BETWEEN ? AND ?")
        params.extend([today(), (datetime.date.today()
                                 + datetime.timedelta(days=PROVIDER_EXPIRY_WARNING_DAYS)).isoformat()])
    conn = get_conn()
    rows = conn.execute(f"SELECT * FROM disposal_providers WHERE {' AND '.join(where)} ORDER BY name",
                        params).fetchall()
    conn.close()
    return [_provider(r) for r in rows]


def get_provider(provider_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM disposal_providers WHERE id = ?", (provider_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Disposal provider", provider_id)
    return _provider(row)


def create_provider(data: Dict, user: str) -> Dict:
    require((data.get("name") or "").strip(), "Name is required")
    require((data.get("license_number") or "").strip(), "License number is required")
    require(parse_date(data.get("license_expiry_date")), "License expiry date is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO disposal_providers
        (name, license_number, license_expiry_date, status, contact_person, contact_email, contact_phone,
         address, services, is_active, created_at, created_by)
        VALUES (?, ?, ?, 'Active', ?, ?, ?, ?, ?, 1, ?, ?)
    """, (data["name"].strip(), data["license_number"].strip(), data["license_expiry_date"],
          data.get("contact_person"), data.get("contact_email"), data.get("contact_phone"),
          data.get("address"), data.get("services"), ts(), user))
    provider_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("DisposalProvider", provider_id, "Created", user=user)
    return get_provider(provider_id)


def update_provider(provider_id: int, data: Dict, user: str) -> Dict:
    get_provider(provider_id)
    fields = {k: data[k] for k in PROVIDER_FIELDS if k in data}
    require(fields, "No fields to update")
    if "license_expiry_date" in fields:
        require(parse_date(fields["license_expiry_date"]), "License expiry date is required")
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    conn = get_conn()
    conn.execute(f"UPDATE disposal_providers SET {', '.join(sets)} WHERE id = ?",
                 list(fields.values()) + [ts(), user, provider_id])
    conn.commit()
    conn.close()
    log_activity("DisposalProvider", provider_id, "Updated", user=user, details=fields)
    return get_provider(provider_id)


def change_provider_status(provider_id: int, status: str, user: str) -> Dict:
    provider = get_provider(provider_id)
    if status not in ProviderStatus._value2member_map_:
        raise DomainError(f"Invalid provider status: {status}")
    active = 1 if status == ProviderStatus.ACTIVE.value else 0
    conn = get_conn()
    conn.execute("UPDATE disposal_providers SET status = ?, is_active = ?, updated_at = ?, updated_by = ? WHERE id = ?",
                 (status, active, ts(), user, provider_id))
    conn.commit()
    conn.close()
    log_activity("DisposalProvider", provider_id, "StatusChanged", user=user,
                 summary=f"{provider['status']} -> {status}")
    return get_provider(provider_id)


def expire_provider_licenses() -> int:
    conn = get_conn()
    cur = conn.execute("""
        UPDATE disposal_providers SET status = 'Expired', is_active = 0, updated_at = ?, updated_by = 'system'
        WHERE status = 'Active' AND license_expiry_date < ?
    """, (ts(), today()))
    conn.commit()
    conn.close()
    return cur.rowcount


# ================================================================
# REPORTS
# ================================================================

def get_report(report_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("""
        SELECT w.*, p.name AS provider_name FROM waste_reports w
        LEFT JOIN disposal_providers p ON p.id = w.provider_id
        WHERE w.id = ? AND w.is_deleted = 0
    """, (report_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Waste report", report_id)
    d = dict(row)
    d["is_hazardous"] = d["classification"] in HAZARDOUS
    return d


def get_report_detail(report_id: int) -> Dict:
    report = get_report(report_id)
    conn = get_conn()
    report["disposal_records"] = rows_to_dicts(conn.execute("""
        SELECT r.*, p.name AS provider_name FROM waste_disposal_records r
        LEFT JOIN disposal_providers p ON p.id = r.provider_id
        WHERE r.waste_report_id = ? ORDER BY r.id
    """, (report_id,)).fetchall())
    report["comments"] = rows_to_dicts(conn.execute(
        "SELECT * FROM waste_comments WHERE waste_report_id = ? ORDER BY id", (report_id,)).fetchall())
    report["attachments"] = rows_to_dicts(conn.execute(
        "SELECT id, file_name, file_size, content_type, uploaded_by, uploaded_at "
        "FROM waste_attachments WHERE waste_report_id = ?", (report_id,)).fetchall())
    conn.close()
    return report


def list_reports(search: str = None, classification: str = None, status: str = None,
                 location: str = None, date_from: str = None, date_to: str = None,
                 reporter_id: int = None, page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["w.is_deleted = 0"], []
    if search:
        where.append("(w.title LIKE ? OR w.description LIKE ?)")
        params.extend([f"%{search}%", f"%{search}%"])
    for col, val in (("w.classification", classification), ("w.disposal_status", status),
                     ("w.reporter_id", reporter_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    if location:
        where.append("w.location LIKE ?")
        params.append(f"%{location}%")
    if date_from:
        where.append("w.generated_date >= ?")
        params.append(date_from)
    if date_to:
        where.append("w.generated_date <= ?")
        params.append(date_to)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM waste_reports w WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT w.*, p.name AS provider_name FROM waste_reports w
        LEFT JOIN disposal_providers p ON p.id = w.provider_id
        WHERE {clause} ORDER BY w.generated_date DESC, w.id DESC LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": rows_to_dicts(rows), "total": total, "page": page, "page_size": page_size}


def create_report(data: Dict, reporter: Dict) -> Dict:
    for field in ("title", "description", "location"):
        require((data.get(field) or "").strip(), f"{field.capitalize()} is required")
    classification = data.get("classification", WasteClassification.NON_HAZARDOUS.value)
    _check_classification(classification)
    generated = parse_date(data.get("generated_date")) or datetime.date.today()
    if generated > datetime.date.today():
        raise DomainError("Generated date cannot be in the future")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO waste_reports
        (title, description, classification, location, generated_date, estimated_quantity, quantity_unit,
         disposal_status, disposal_method, treatment, notes, reporter_id, reporter_name, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, 'Pending', ?, ?, ?, ?, ?, ?, ?)
    """, (data["title"].strip(), data["description"].strip(), classification, data["location"].strip(),
          generated.isoformat(), data.get("estimated_quantity"), data.get("quantity_unit"),
          data.get("disposal_method"), data.get("treatment"), data.get("notes"), reporter["id"],
          reporter.get("name"), ts(), reporter.get("email")))
    report_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("WasteReport", report_id, "Created", user=reporter.get("email"),
                 details={"classification": classification})
    return get_report(report_id)


def update_report(report_id: int, data: Dict, user: str) -> Dict:
    report = get_report(report_id)
    if report["disposal_status"] == DisposalStatus.DISPOSED.value:
        raise DomainError("Disposed waste reports cannot be edited")
    fields = {k: data[k] for k in REPORT_FIELDS if k in data}
    require(fields, "No fields to update")
    if "classification" in fields:
        _check_classification(fields["classification"])
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    conn = get_conn()
    conn.execute(f"UPDATE waste_reports SET {', '.join(sets)} WHERE id = ?",
                 list(fields.values()) + [ts(), user, report_id])
    conn.commit()
    conn.close()
    log_activity("WasteReport", report_id, "Updated", user=user, details=fields)
    return get_report(report_id)


def delete_report(report_id: int, user: str):
    get_report(report_id)
    conn = get_conn()
    conn.execute("UPDATE waste_reports SET is_deleted = 1, updated_at = ?, updated_by = ? WHERE id = ?",
                 (ts(), user, report_id))
    conn.commit()
    conn.close()
    log_activity("WasteReport", report_id, "Deleted", user=user)


def start_disposal(report_id: int, provider_id: int, user: str) -> Dict:
    report = get_report(report_id)
    if report["disposal_status"] != DisposalStatus.PENDING.value:
        raise DomainError("Only pending waste can be scheduled for disposal")
    fields = {"disposal_status": DisposalStatus.IN_PROGRESS.value}
    if provider_id:
        _usable_provider(provider_id)
        fields["provider_id"] = provider_id
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    conn = get_conn()
    conn.execute(f"UPDATE waste_reports SET {', '.join(sets)} WHERE id = ?",
                 list(fields.values()) + [ts(), user, report_id])
    conn.commit()
    conn.close()
    log_activity("WasteReport", report_id, "DisposalStarted", user=user, details={"provider_id": provider_id})
    return get_report(report_id)


def _usable_provider(provider_id: int) -> Dict:
    provider = get_provider(provider_id)
    if provider["status"] != ProviderStatus.ACTIVE.value:
        raise DomainError(f"Disposal provider {provider['name']} is {provider['status']}")
    if provider["is_license_expired"]:
        raise DomainError(f"Disposal provider {provider['name']} has an expired license")
    return provider


def record_disposal(report_id: int, data: Dict, user: str) -> Dict:
    report = get_report(report_id)
    if report["disposal_status"] == DisposalStatus.DISPOSED.value:
        raise DomainError("Waste has already been disposed")
    provider_id = data.get("provider_id") or report["provider_id"]
    if report["classification"] in HAZARDOUS:
        require(provider_id, "Hazardous waste must be disposed through a licensed provider")
    if provider_id:
        _usable_provider(provider_id)
    disposal_date = parse_date(data.get("disposal_date")) or datetime.date.today()
    conn = get_conn()
    conn.execute("""
        INSERT INTO waste_disposal_records
        (waste_report_id, provider_id, disposal_date, quantity, quantity_unit, disposal_method,
         manifest_number, cost, disposed_by, notes, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (report_id, provider_id, disposal_date.isoformat(),
          data.get("quantity", report["estimated_quantity"]), data.get("quantity_unit", report["quantity_unit"]),
          data.get("disposal_method", report["disposal_method"]), data.get("manifest_number"),
          data.get("cost"), data.get("disposed_by") or user, data.get("notes"), ts()))
    conn.execute("""
        UPDATE waste_reports SET disposal_status = 'Disposed', disposal_date = ?, disposed_by = ?,
        disposal_cost = ?, provider_id = ?, manifest_number = ?, disposal_method = COALESCE(?, disposal_method),
        updated_at = ?, updated_by = ? WHERE id = ?
    """, (disposal_date.isoformat(), data.get("disposed_by") or user, data.get("cost"), provider_id,
          data.get("manifest_number"), data.get("disposal_method"), ts(), user, report_id))
    conn.commit()
    conn.close()
    log_activity("WasteReport", report_id, "Disposed", user=user, details={"provider_id": provider_id})
    logger.info("[Waste] Report %s disposed", report_id)
    return get_report_detail(report_id)


# ================================================================
# COMMENTS & ATTACHMENTS
# ================================================================

def add_comment(report_id: int, comment: str, comment_type: str, user: str) -> Dict:
    get_report(report_id)
    require((comment or "").strip(), "Comment is required")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO waste_comments (waste_report_id, comment, comment_type, commented_by, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (report_id, comment.strip()[:1000], comment_type or "General", user, ts()))
    comment_id = cur.lastrowid
    conn.commit()
    row = conn.execute("SELECT * FROM waste_comments WHERE id = ?", (comment_id,)).fetchone()
    conn.close()
    return row_to_dict(row)


def list_comments(report_id: int) -> List[Dict]:
    get_report(report_id)
    conn = get_conn()
    rows = conn.execute("SELECT * FROM waste_comments WHERE waste_report_id = ? ORDER BY id",
                        (report_id,)).fetchall()
    conn.close()
    return rows_to_dicts(rows)


def delete_comment(report_id: int, comment_id: int, user: Dict, can_moderate: bool):
    conn = get_conn()
    row = conn.execute("SELECT * FROM waste_comments WHERE id = ? AND waste_report_id = ?",
                       (comment_id, report_id)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("Comment", comment_id)
    if row["commented_by"] != user.get("email") and not can_moderate:
        conn.close()
        raise DomainError("Only the author can delete this comment")
    conn.execute("DELETE FROM waste_comments WHERE id = ?", (comment_id,))
    conn.commit()
    conn.close()


def add_waste_attachment(report_id: int, meta: Dict, user: str) -> int:
    get_report(report_id)
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO waste_attachments
        (waste_report_id, file_name, file_path, file_size, content_type, uploaded_by, uploaded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (report_id, meta["file_name"], meta["file_path"], meta["file_size"], meta["content_type"], user, ts()))
    conn.commit()
    att_id = cur.lastrowid
    conn.close()
    return att_id


def get_waste_attachment(report_id: int, attachment_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM waste_attachments WHERE id = ? AND waste_report_id = ?",
                       (attachment_id, report_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Attachment", attachment_id)
    return dict(row)


# ================================================================
# DASHBOARD
# ================================================================

def get_waste_dashboard(date_from: str = None, date_to: str = None) -> Dict:
    where, params = ["is_deleted = 0"], []
    if date_from:
        where.append("generated_date >= ?")
        params.append(date_from)
    if date_to:
        where.append("generated_date <= ?")
        params.append(date_to)
    clause = " AND ".join(where)
    conn = get_conn()
    by_category = {c.value: 0 for c in WasteClassification}
    for r in conn.execute(f"SELECT classification, COUNT(*) AS n FROM waste_reports WHERE {clause} "
                          f"GROUP BY classification", params):
        by_category[r["classification"]] = r["n"]
    by_status = {s.value: 0 for s in DisposalStatus}
    for r in conn.execute(f"SELECT disposal_status, COUNT(*) AS n FROM waste_reports WHERE {clause} "
                          f"GROUP BY disposal_status", params):
        by_status[r["disposal_status"]] = r["n"]
    monthly = rows_to_dicts(conn.execute(f"""
        SELECT substr(generated_date, 1, 7) AS month, COUNT(*) AS total,
               SUM(CASE WHEN disposal_status = 'Disposed' THEN 1 ELSE 0 END) AS disposed
        FROM waste_reports WHERE {clause} GROUP BY month ORDER BY month DESC LIMIT 12
    """, params).fetchall())
    total_cost = conn.execute(f"SELECT COALESCE(SUM(disposal_cost), 0) FROM waste_reports WHERE {clause}",
                              params).fetchone()[0]
    conn.close()
    expiring = list_providers(expiring_only=True)
    total = sum(by_status.values())
    return {
        "total_reports": total,
        "pending": by_status[DisposalStatus.PENDING.value],
        "in_progress": by_status[DisposalStatus.IN_PROGRESS.value],
        "disposed": by_status[DisposalStatus.DISPOSED.value],
        "hazardous": sum(by_category[c] for c in HAZARDOUS),
        "by_category": by_category,
        "monthly": list(reversed(monthly)),
        "total_disposal_cost": total_cost,
        "disposal_rate": round(by_status[DisposalStatus.DISPOSED.value] / total * 100, 1) if total else 0.0,
        "providers_expiring": [{"id": p["id"], "name": p["name"], "license_expiry_date": p["license_expiry_date"]}
                               for p in expiring],
    }
