"""
HSSE Auth - users, roles and password storage.
"""
import logging
import sqlite3
from typing import Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from hsse.db import get_conn, ts, build_update
from hsse.errors import DomainError, NotFoundError
from .permissions import RoleType

logger = logging.getLogger(__name__)

_HASH_METHOD = "pbkdf2:sha256"


def init_auth_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            employee_id TEXT,
            department TEXT,
            position TEXT,
            phone TEXT,
            password_hash TEXT NOT NULL,
            is_active INTEGER DEFAULT 1,
            last_login_at TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS user_roles (
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role TEXT NOT NULL,
            assigned_at TEXT,
            assigned_by TEXT,
            PRIMARY KEY (user_id, role)
        )
    """)
    conn.commit()
    conn.close()


# ================================================================
# PASSWORDS
# ================================================================

def hash_password(password: str) -> str:
    return generate_password_hash(password, method=_HASH_METHOD)


def verify_password(password: str, stored: str) -> bool:
    """False for a wrong password or a stored hash that cannot be parsed."""
    if not stored or not isinstance(stored, str):
        return False
    try:
        return check_password_hash(stored, password)
    except (ValueError, TypeError):
        logger.warning("[Auth] Unreadable password hash rejected")
        return False


# ================================================================
# USERS
# ================================================================

_PUBLIC_COLUMNS = ("id, email, name, employee_id, department, position, phone, is_active, "
                   "last_login_at, created_at, created_by, updated_at, updated_by")


def _attach_roles(conn, user: Dict) -> Dict:
    rows = conn.execute("SELECT role FROM user_roles WHERE user_id = ? ORDER BY role",
                        (user["id"],)).fetchall()
    user["roles"] = [r["role"] for r in rows]
    user["is_active"] = bool(user.get("is_active"))
    return user


def get_user(user_id: int) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute(f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    if not row:
        conn.close()
        return None
    user = _attach_roles(conn, dict(row))
    conn.close()
    return user


def get_user_or_404(user_id: int) -> Dict:
    user = get_user(user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def get_user_by_email(email: str) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM users WHERE lower(email) = lower(?)", (email,)).fetchone()
    if not row:
        conn.close()
        return None
    user = _attach_roles(conn, dict(row))
    conn.close()
    return user


def list_users(search: str = None, role: str = None, active: Optional[bool] = None,
               limit: int = 200, offset: int = 0) -> List[Dict]:
    conn = get_conn()
    sql = f"SELECT {_PUBLIC_COLUMNS} FROM users u WHERE 1=1"
    params: list = []
    if search:
        sql += " AND (u.name LIKE ? OR u.email LIKE ? OR u.employee_id LIKE ?)"
        s = f"%{search}%"
        params.extend([s, s, s])
    if role:
        sql += " AND u.id IN (SELECT user_id FROM user_roles WHERE role = ?)"
        params.append(role)
    if active is not None:
        sql += " AND u.is_active = ?"
        params.append(1 if active else 0)
    sql += " ORDER BY u.name LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    rows = conn.execute(sql, params).fetchall()
    users = [_attach_roles(conn, dict(r)) for r in rows]
    conn.close()
    return users


def create_user(data: Dict, roles: List[str] = None, created_by: str = None) -> int:
    email = (data.get("email") or "").strip()
    name = (data.get("name") or "").strip()
    password = data.get("password") or ""
    if not email or "@" not in email:
        raise DomainError("A valid email is required")
    if not name:
        raise DomainError("Name is required")
    if len(password) < 8:
        raise DomainError("Password must be at least 8 characters")
    for role in roles or []:
        if role not in RoleType._value2member_map_:
            raise DomainError(f"Unknown role: {role}")

    now = ts()
    conn = get_conn()
    try:
        cur = conn.execute("""
            INSERT INTO users (email, name, employee_id, department, position, phone,
                               password_hash, is_active, created_at, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
        """, (email, name, data.get("employee_id"), data.get("department"),
              data.get("position"), data.get("phone"), hash_password(password), now, created_by))
    except sqlite3.IntegrityError:
        conn.close()
        raise DomainError(f"A user with email {email} already exists")
    user_id = cur.lastrowid
    for role in roles or []:
        conn.execute("INSERT OR IGNORE INTO user_roles (user_id, role, assigned_at, assigned_by) "
                     "VALUES (?, ?, ?, ?)", (user_id, role, now, created_by))
    conn.commit()
    conn.close()
    logger.info("[Auth] Created user %s (%s)", user_id, email)
    return user_id


def update_user(user_id: int, data: Dict, updated_by: str = None) -> Dict:
    get_user_or_404(user_id)
    sets, params = build_update(data, ("name", "employee_id", "department", "position", "phone"))
    if data.get("password"):
        if len(data["password"]) < 8:
            raise DomainError("Password must be at least 8 characters")
        sets.append("password_hash = ?")
        params.append(hash_password(data["password"]))
    if not sets:
        raise DomainError("No fields to update")
    sets.extend(["updated_at = ?", "updated_by = ?"])
    params.extend([ts(), updated_by, user_id])
    conn = get_conn()
    conn.execute(f"UPDATE users SET {', '.join(sets)} WHERE id = ?", params)
    conn.commit()
    conn.close()
    return get_user(user_id)


def set_user_active(user_id: int, active: bool, updated_by: str = None) -> Dict:
    get_user_or_404(user_id)
    conn = get_conn()
    conn.execute("UPDATE users SET is_active = ?, updated_at = ?, updated_by = ? WHERE id = ?",
                 (1 if active else 0, ts(), updated_by, user_id))
    conn.commit()
    conn.close()
    return get_user(user_id)


def set_user_roles(user_id: int, roles: List[str], assigned_by: str = None) -> Dict:
    get_user_or_404(user_id)
    now = ts()
    conn = get_conn()
    conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user_id,))
    for role in roles:
        conn.execute("INSERT OR IGNORE INTO user_roles (user_id, role, assigned_at, assigned_by) "
                     "VALUES (?, ?, ?, ?)", (user_id, role, now, assigned_by))
    conn.commit()
    conn.close()
    return get_user(user_id)


def authenticate(email: str, password: str) -> Optional[Dict]:
    user = get_user_by_email(email or "")
    if not user or not user["is_active"]:
        return None
    if not verify_password(password or "", user["password_hash"]):
        return None
    conn = get_conn()
    conn.execute("UPDATE users SET last_login_at = ? WHERE id = ?", (ts(), user["id"]))
    conn.commit()
    conn.close()
    user.pop("password_hash", None)
    return user


def get_user_roles(user_id: int) -> List[str]:
    conn = get_conn()
    rows = conn.execute("SELECT role FROM user_roles WHERE user_id = ?", (user_id,)).fetchall()
    conn.close()
    return [r["role"] for r in rows]


def list_active_user_choices() -> List[Dict]:
    """Minimal id/name list for assignee pickers."""
    conn = get_conn()
    rows = conn.execute(
        "SELECT id, name, email, department FROM users WHERE is_active = 1 ORDER BY name"
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]
