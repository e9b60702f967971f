"""
HSSE PPE - Database Models & Schema

Categories, items, assignments, inspections and maintenance records for
personal protective equipment. An item is assigned to one person at a time;
every assignment is kept as history.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, row_to_dict, build_update, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)

DEFAULT_INSPECTION_INTERVAL_DAYS = 365
EXPIRY_WARNING_DAYS = 30


class PPECondition(str, Enum):
    NEW = "New"
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    DAMAGED = "Damaged"
    EXPIRED = "Expired"
    RETIRED = "Retired"


class PPEStatus(str, Enum):
    AVAILABLE = "Available"
    ASSIGNED = "Assigned"
    IN_MAINTENANCE = "InMaintenance"
    IN_INSPECTION = "InInspection"
    OUT_OF_SERVICE = "OutOfService"
    REQUIRES_RETURN = "RequiresReturn"
    LOST = "Lost"
    RETIRED = "Retired"


class InspectionResult(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"
    REQUIRES_MAINTENANCE = "RequiresMaintenance"


UNASSIGNABLE_CONDITIONS = (PPECondition.DAMAGED.value, PPECondition.POOR.value)

CATEGORY_FIELDS = ("name", "description", "requires_certification", "requires_inspection",
                   "inspection_interval_days", "requires_expiry_tracking", "default_expiry_days",
                   "is_active")
ITEM_FIELDS = ("name", "description", "category_id", "manufacturer", "model", "size", "color",
               "purchase_date", "cost", "location", "expiry_date", "notes")


def init_ppe_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS ppe_categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            description TEXT,
            requires_certification INTEGER DEFAULT 0,
            requires_inspection INTEGER DEFAULT 0,
            inspection_interval_days INTEGER,
            requires_expiry_tracking INTEGER DEFAULT 0,
            default_expiry_days INTEGER,
            is_active INTEGER DEFAULT 1,
            created_at TEXT,
            created_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS ppe_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_code TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            category_id INTEGER NOT NULL REFERENCES ppe_categories(id),
            manufacturer TEXT,
            model TEXT,
            size TEXT,
            color TEXT,
            condition TEXT NOT NULL DEFAULT 'New',
            status TEXT NOT NULL DEFAULT 'Available',
            purchase_date TEXT,
            cost REAL,
            location TEXT,
            expiry_date TEXT,
            assigned_to_id INTEGER,
            assigned_date TEXT,
            last_inspection_date TEXT,
            next_inspection_date TEXT,
            notes TEXT,
            is_deleted INTEGER DEFAULT 0,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS ppe_assignments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_id INTEGER NOT NULL REFERENCES ppe_items(id),
            assigned_to_id INTEGER NOT NULL,
            assigned_date TEXT NOT NULL,
            assigned_by TEXT,
            purpose TEXT,
            returned_date TEXT,
            returned_by TEXT,
            return_notes TEXT,
            status TEXT NOT NULL DEFAULT 'Active'
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS ppe_inspections (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_id INTEGER NOT NULL REFERENCES ppe_items(id),
            inspection_date TEXT NOT NULL,
            inspector TEXT,
            result TEXT NOT NULL,
            findings TEXT,
            condition_after TEXT,
            next_inspection_date TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS ppe_maintenance (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_id INTEGER NOT NULL REFERENCES ppe_items(id),
            maintenance_date TEXT NOT NULL,
            description TEXT NOT NULL,
            performed_by TEXT,
            cost REAL
        )
    """)
    c.execute("CREATE INDEX IF NOT EXISTS idx_ppe_items_status ON ppe_items(status)")
    conn.commit()
    conn.close()


# ================================================================
# CATEGORIES
# ================================================================

def _category(row) -> Optional[Dict]:
    d = row_to_dict(row)
    if d:
        for k in ("requires_certification", "requires_inspection", "requires_expiry_tracking", "is_active"):
            d[k] = bool(d[k])
    return d


def list_categories(active_only: bool = False) -> List[Dict]:
    conn = get_conn()
    sql = """SELECT c.*, (SELECT COUNT(*) FROM ppe_items i WHERE i.category_id = c.id AND i.is_deleted = 0)
             AS item_count FROM ppe_categories c"""
    if active_only:
        sql += " WHERE c.is_active = 1"
    rows = conn.execute(sql + " ORDER BY c.name").fetchall()
    conn.close()
    return [_category(r) for r in rows]


def get_category(category_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM ppe_categories WHERE id = ?", (category_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("PPE category", category_id)
    return _category(row)


def create_category(data: Dict, user: str) -> Dict:
    name = (data.get("name") or "").strip()
    require(name, "Name is required")
    conn = get_conn()
    if conn.execute("SELECT 1 FROM ppe_categories WHERE name = ?", (name,)).fetchone():
        conn.close()
        raise DomainError(f"Category '{name}' already exists")
    cur = conn.execute("""
        INSERT INTO ppe_categories
        (name, description, requires_certification, requires_inspection, inspection_interval_days,
         requires_expiry_tracking, default_expiry_days, is_active, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
    """, (name, data.get("description"), 1 if data.get("requires_certification") else 0,
          1 if data.get("requires_inspection") else 0, data.get("inspection_interval_days"),
          1 if data.get("requires_expiry_tracking") else 0, data.get("default_expiry_days"),
          ts(), user))
    category_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("PPECategory", category_id, "Created", user=user, summary=name)
    return get_category(category_id)


def update_category(category_id: int, data: Dict, user: str) -> Dict:
    get_category(category_id)
    sets, params = build_update(data, CATEGORY_FIELDS)
    require(sets, "No fields to update")
    conn = get_conn()
    conn.execute(f"UPDATE ppe_categories SET {', '.join(sets)} WHERE id = ?", params + [category_id])
    conn.commit()
    conn.close()
    log_activity("PPECategory", category_id, "Updated", user=user)
    return get_category(category_id)


def delete_category(category_id: int, user: str):
    category = get_category(category_id)
    conn = get_conn()
    in_use = conn.execute("SELECT COUNT(*) FROM ppe_items WHERE category_id = ? AND is_deleted = 0",
                          (category_id,)).fetchone()[0]
    if in_use:
        conn.close()
        raise DomainError(f"Category '{category['name']}' still has {in_use} items")
    conn.execute("DELETE FROM ppe_categories WHERE id = ?", (category_id,))
    conn.commit()
    conn.close()
    log_activity("PPECategory", category_id, "Deleted", user=user)


# ================================================================
# ITEMS
# ================================================================

def _item(row) -> Optional[Dict]:
    d = row_to_dict(row)
    if not d:
        return None
    expiry = parse_date(d.get("expiry_date"))
    now = datetime.date.today()
    d["is_expired"] = bool(expiry and expiry < now)
    d["is_expiring_soon"] = bool(expiry and now <= expiry <= now + datetime.timedelta(days=EXPIRY_WARNING_DAYS))
    nxt = parse_date(d.get("next_inspection_date"))
    d["is_inspection_due"] = bool(nxt and nxt <= now)
    return d


ITEM_SELECT = """
    SELECT i.*, c.name AS category_name, u.name AS assigned_to_name, u.email AS assigned_to_email
    FROM ppe_items i
    JOIN ppe_categories c ON c.id = i.category_id
    LEFT JOIN users u ON u.id = i.assigned_to_id
"""


def get_item(item_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute(ITEM_SELECT + " WHERE i.id = ? AND i.is_deleted = 0", (item_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("PPE item", item_id)
    return _item(row)


def get_item_by_code(item_code: str) -> Dict:
    conn = get_conn()
    row = conn.execute(ITEM_SELECT + " WHERE i.item_code = ? AND i.is_deleted = 0", (item_code,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("PPE item", item_code)
    return _item(row)


def list_items(search: str = None, category_id: int = None, status: str = None,
               condition: str = None, assigned_to_id: int = None, expiring_only: bool = False,
               page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["i.is_deleted = 0"], []
    if search:
        where.append("(i.item_code LIKE ? OR i.name LIKE ? OR i.manufacturer LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    for col, val in (("i.category_id", category_id), ("i.status", status),
                     ("i.condition", condition), ("i.assigned_to_id", assigned_to_id)):
        if val:
            where.append(f"{col} = ?")
            params.append(val)
    if expiring_only:
        where.append("i.expiry_date IS NOT NULL AND i.expiry_date BETWEEN ? AND ?")
        params.extend([today(), (datetime.date.today() + datetime.timedelta(days=EXPIRY_WARNING_DAYS)).isoformat()])
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM ppe_items i WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"{ITEM_SELECT} WHERE {clause} ORDER BY i.item_code LIMIT ? OFFSET ?",
                        params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": [_item(r) for r in rows], "total": total, "page": page, "page_size": page_size}


def create_item(data: Dict, user: str) -> Dict:
    code = (data.get("item_code") or "").strip()
    require(code, "Item code is required")
    require((data.get("name") or "").strip(), "Name is required")
    category = get_category(data.get("category_id"))
    condition = data.get("condition", PPECondition.NEW.value)
    if condition not in PPECondition._value2member_map_:
        raise DomainError(f"Invalid condition: {condition}")
    expiry = data.get("expiry_date")
    if not expiry and category["default_expiry_days"]:
        base = parse_date(data.get("purchase_date")) or datetime.date.today()
        expiry = (base + datetime.timedelta(days=category["default_expiry_days"])).isoformat()

    conn = get_conn()
    if conn.execute("SELECT 1 FROM ppe_items WHERE item_code = ?", (code,)).fetchone():
        conn.close()
        raise DomainError(f"Item code {code} already exists")
    cur = conn.execute("""
        INSERT INTO ppe_items
        (item_code, name, description, category_id, manufacturer, model, size, color, condition,
         status, purchase_date, cost, location, expiry_date, notes, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'Available', ?, ?, ?, ?, ?, ?, ?)
    """, (code, data["name"].strip(), data.get("description"), category["id"], data.get("manufacturer"),
          data.get("model"), data.get("size"), data.get("color"), condition, data.get("purchase_date"),
          data.get("cost"), data.get("location"), expiry, data.get("notes"), ts(), user))
    item_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "Created", user=user, summary=code)
    return get_item(item_id)


def update_item(item_id: int, data: Dict, user: str) -> Dict:
    get_item(item_id)
    if "category_id" in data:
        get_category(data["category_id"])
    fields = {k: data[k] for k in ITEM_FIELDS if k in data}
    require(fields, "No fields to update")
    _set_item(item_id, fields, user)
    log_activity("PPEItem", item_id, "Updated", user=user,
                 details={k: data[k] for k in ITEM_FIELDS if k in data})
    return get_item(item_id)


def delete_item(item_id: int, user: str):
    item = get_item(item_id)
    if item["status"] == PPEStatus.ASSIGNED.value:
        raise DomainError("Cannot delete an assigned item")
    _set_item(item_id, {"is_deleted": 1}, user)
    log_activity("PPEItem", item_id, "Deleted", user=user)


def _set_item(item_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, item_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE ppe_items SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


# ================================================================
# LIFECYCLE
# ================================================================

def assign_item(item_id: int, assigned_to_id: int, purpose: str, user: str) -> Dict:
    item = get_item(item_id)
    require(assigned_to_id, "assigned_to_id is required")
    if item["status"] != PPEStatus.AVAILABLE.value:
        raise DomainError(f"Item is not available for assignment (status: {item['status']})")
    if item["is_expired"]:
        raise DomainError("Cannot assign expired PPE")
    if item["condition"] in UNASSIGNABLE_CONDITIONS:
        raise DomainError(f"Cannot assign PPE in {item['condition']} condition")

    conn = get_conn()
    if not conn.execute("SELECT 1 FROM users WHERE id = ? AND is_active = 1", (assigned_to_id,)).fetchone():
        conn.close()
        raise NotFoundError("User", assigned_to_id)
    now = ts()
    conn.execute("""
        INSERT INTO ppe_assignments (item_id, assigned_to_id, assigned_date, assigned_by, purpose, status)
        VALUES (?, ?, ?, ?, ?, 'Active')
    """, (item_id, assigned_to_id, now, user, purpose))
    _set_item(item_id, {"status": PPEStatus.ASSIGNED.value, "assigned_to_id": assigned_to_id,
                        "assigned_date": now}, user, conn)
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "Assigned", user=user, details={"assigned_to_id": assigned_to_id})
    logger.info("[PPE] %s assigned to user %s", item["item_code"], assigned_to_id)
    return get_item(item_id)


def return_item(item_id: int, condition: str, notes: str, user: str) -> Dict:
    item = get_item(item_id)
    if item["status"] not in (PPEStatus.ASSIGNED.value, PPEStatus.REQUIRES_RETURN.value):
        raise DomainError(f"Item is not assigned (status: {item['status']})")
    if condition:
        _check_condition(condition)
    now = ts()
    conn = get_conn()
    conn.execute("""
        UPDATE ppe_assignments SET status = 'Returned', returned_date = ?, returned_by = ?, return_notes = ?
        WHERE item_id = ? AND status = 'Active'
    """, (now, user, notes, item_id))
    fields = {"status": PPEStatus.AVAILABLE.value, "assigned_to_id": None, "assigned_date": None}
    if condition:
        fields.update(_condition_fields(condition, PPEStatus.AVAILABLE.value))
    _set_item(item_id, fields, user, conn)
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "Returned", user=user, details={"condition": condition})
    return get_item(item_id)


def _check_condition(condition: str):
    if condition not in PPECondition._value2member_map_:
        raise DomainError(f"Invalid condition: {condition}")


def _condition_fields(condition: str, status: str) -> Dict:
    """Column updates for a new condition on an item currently in `status`."""
    fields = {"condition": condition}
    if condition in (PPECondition.DAMAGED.value, PPECondition.EXPIRED.value):
        if status == PPEStatus.ASSIGNED.value:
            fields["status"] = PPEStatus.REQUIRES_RETURN.value
        else:
            fields["status"] = PPEStatus.OUT_OF_SERVICE.value
    elif condition == PPECondition.RETIRED.value:
        fields["status"] = PPEStatus.RETIRED.value
    return fields


def update_condition(item_id: int, condition: str, notes: str, user: str) -> Dict:
    item = get_item(item_id)
    _check_condition(condition)
    _set_item(item_id, _condition_fields(condition, item["status"]), user)
    log_activity("PPEItem", item_id, "ConditionUpdated", user=user,
                 details={"from": item["condition"], "to": condition, "notes": notes})
    return get_item(item_id)


def retire_item(item_id: int, reason: str, user: str) -> Dict:
    item = get_item(item_id)
    if item["status"] == PPEStatus.ASSIGNED.value:
        raise DomainError("Cannot retire an assigned item. Return it first")
    _set_item(item_id, {"status": PPEStatus.RETIRED.value, "condition": PPECondition.RETIRED.value}, user)
    log_activity("PPEItem", item_id, "Retired", user=user, details={"reason": reason})
    return get_item(item_id)


def mark_lost(item_id: int, notes: str, user: str) -> Dict:
    item = get_item(item_id)
    if item["status"] == PPEStatus.LOST.value:
        raise DomainError("Item is already marked as lost")
    conn = get_conn()
    conn.execute("""
        UPDATE ppe_assignments SET status = 'Lost', returned_date = ?, return_notes = ?
        WHERE item_id = ? AND status = 'Active'
    """, (ts(), notes, item_id))
    _set_item(item_id, {"status": PPEStatus.LOST.value}, user, conn)
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "MarkedLost", user=user, details={"notes": notes})
    return get_item(item_id)


def record_maintenance(item_id: int, data: Dict, user: str) -> Dict:
    item = get_item(item_id)
    require((data.get("description") or "").strip(), "Maintenance description is required")
    if item["status"] in (PPEStatus.RETIRED.value, PPEStatus.LOST.value):
        raise DomainError(f"Cannot maintain a {item['status']} item")
    if item["status"] in (PPEStatus.ASSIGNED.value, PPEStatus.REQUIRES_RETURN.value):
        raise DomainError("Return the item before recording maintenance")
    if data.get("condition"):
        _check_condition(data["condition"])
    conn = get_conn()
    conn.execute("""
        INSERT INTO ppe_maintenance (item_id, maintenance_date, description, performed_by, cost)
        VALUES (?, ?, ?, ?, ?)
    """, (item_id, data.get("maintenance_date") or today(), data["description"].strip(),
          data.get("performed_by") or user, data.get("cost")))
    fields = {"status": PPEStatus.AVAILABLE.value, "assigned_to_id": None, "assigned_date": None}
    if data.get("condition"):
        fields["condition"] = data["condition"]
    _set_item(item_id, fields, user, conn)
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "Maintained", user=user)
    return get_item(item_id)


def record_inspection(item_id: int, data: Dict, user: str) -> Dict:
    item = get_item(item_id)
    result = data.get("result")
    if result not in InspectionResult._value2member_map_:
        raise DomainError(f"Invalid inspection result: {result}")
    if data.get("condition"):
        _check_condition(data["condition"])
    inspected = parse_date(data.get("inspection_date")) or datetime.date.today()
    category = get_category(item["category_id"])
    interval = category["inspection_interval_days"] or DEFAULT_INSPECTION_INTERVAL_DAYS
    next_date = (inspected + datetime.timedelta(days=interval)).isoformat()

    conn = get_conn()
    conn.execute("""
        INSERT INTO ppe_inspections
        (item_id, inspection_date, inspector, result, findings, condition_after, next_inspection_date)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (item_id, inspected.isoformat(), data.get("inspector") or user, result,
          data.get("findings"), data.get("condition"), next_date))
    fields = {"last_inspection_date": inspected.isoformat(), "next_inspection_date": next_date}
    if data.get("condition"):
        fields["condition"] = data["condition"]
    if result == InspectionResult.FAILED.value and item["status"] != PPEStatus.ASSIGNED.value:
        fields["status"] = PPEStatus.OUT_OF_SERVICE.value
    elif result == InspectionResult.REQUIRES_MAINTENANCE.value and item["status"] != PPEStatus.ASSIGNED.value:
        fields["status"] = PPEStatus.IN_MAINTENANCE.value
    _set_item(item_id, fields, user, conn)
    conn.commit()
    conn.close()
    log_activity("PPEItem", item_id, "Inspected", user=user, details={"result": result})
    return get_item(item_id)


def get_item_history(item_id: int) -> Dict:
    get_item(item_id)
    conn = get_conn()
    history = {
        "assignments": rows_to_dicts(conn.execute("""
            SELECT a.*, u.name AS assigned_to_name FROM ppe_assignments a
            LEFT JOIN users u ON u.id = a.assigned_to_id
            WHERE a.item_id = ? ORDER BY a.id DESC
        """, (item_id,)).fetchall()),
        "inspections": rows_to_dicts(conn.execute(
            "SELECT * FROM ppe_inspections WHERE item_id = ? ORDER BY inspection_date DESC, id DESC",
            (item_id,)).fetchall()),
        "maintenance": rows_to_dicts(conn.execute(
            "SELECT * FROM ppe_maintenance WHERE item_id = ? ORDER BY maintenance_date DESC, id DESC",
            (item_id,)).fetchall()),
    }
    conn.close()
    return history


def expire_overdue_items() -> int:
    """Flag items past their expiry date; returns how many changed."""
    conn = get_conn()
    rows = conn.execute("""
        SELECT id, status FROM ppe_items
        WHERE is_deleted = 0 AND expiry_date IS NOT NULL AND expiry_date < ?
          AND condition NOT IN ('Expired', 'Retired') AND status NOT IN ('Retired', 'Lost')
    """, (today(),)).fetchall()
    for r in rows:
        status = (PPEStatus.REQUIRES_RETURN.value if r["status"] == PPEStatus.ASSIGNED.value
                  else PPEStatus.OUT_OF_SERVICE.value)
        _set_item(r["id"], {"condition": PPECondition.EXPIRED.value, "status": status}, "system", conn)
    conn.commit()
    conn.close()
    if rows:
        logger.info("[PPE] %d items marked expired", len(rows))
    return len(rows)


# ================================================================
# DASHBOARD
# ================================================================

def get_ppe_dashboard() -> Dict:
    conn = get_conn()
    by_status = {s.value: 0 for s in PPEStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM ppe_items WHERE is_deleted = 0 GROUP BY status"):
        by_status[r["status"]] = r["n"]
    by_condition = {c.value: 0 for c in PPECondition}
    for r in conn.execute("SELECT condition, COUNT(*) AS n FROM ppe_items WHERE is_deleted = 0 GROUP BY condition"):
        by_condition[r["condition"]] = r["n"]
    by_category = rows_to_dicts(conn.execute("""
        SELECT c.name AS category, COUNT(i.id) AS total,
               SUM(CASE WHEN i.status = 'Assigned' THEN 1 ELSE 0 END) AS assigned
        FROM ppe_categories c LEFT JOIN ppe_items i ON i.category_id = c.id AND i.is_deleted = 0
        GROUP BY c.id ORDER BY c.name
    """).fetchall())
    horizon = (datetime.date.today() + datetime.timedelta(days=EXPIRY_WARNING_DAYS)).isoformat()
    expiring = conn.execute("""
        SELECT COUNT(*) FROM ppe_items WHERE is_deleted = 0 AND expiry_date BETWEEN ? AND ?
    """, (today(), horizon)).fetchone()[0]
    expired = conn.execute("""
        SELECT COUNT(*) FROM ppe_items WHERE is_deleted = 0 AND expiry_date < ?
          AND status NOT IN ('Retired', 'Lost')
    """, (today(),)).fetchone()[0]
    inspection_due = conn.execute("""
        SELECT COUNT(*) FROM ppe_items WHERE is_deleted = 0 AND next_inspection_date <= ?
          AND status NOT IN ('Retired', 'Lost')
    """, (today(),)).fetchone()[0]
    conn.close()
    total = sum(by_status.values())
    in_service = total - by_status[PPEStatus.RETIRED.value] - by_status[PPEStatus.LOST.value]
    compliant = in_service - expired - by_condition[PPECondition.DAMAGED.value]
    return {
        "total": total,
        "by_status": by_status,
        "by_condition": by_condition,
        "by_category": by_category,
        "expiring_soon": expiring,
        "expired": expired,
        "inspection_due": inspection_due,
        "compliance_rate": round(max(compliant, 0) / in_service * 100, 1) if in_service else 100.0,
    }


def export_items() -> List[Dict]:
    conn = get_conn()
    rows = conn.execute(ITEM_SELECT + " WHERE i.is_deleted = 0 ORDER BY i.item_code").fetchall()
    conn.close()
    return rows_to_dicts(rows)
