"""
HSSE Activity - audit trail storage.
"""
import json
from typing import Dict, List, Optional

from hsse.db import get_conn, rows_to_dicts


def init_activity_schema():
    conn = get_conn()
    conn.execute("""
        CREATE TABLE IF NOT EXISTS activity_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id INTEGER,
            action TEXT NOT NULL,
            user TEXT,
            summary TEXT,
            details TEXT
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_activity_entity ON activity_log(entity_type, entity_id)"
    )
    conn.commit()
    conn.close()


def insert_activity(timestamp: str, entity_type: str, entity_id: Optional[int], action: str,
                    user: Optional[str], summary: Optional[str], details: Optional[Dict]) -> int:
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO activity_log (timestamp, entity_type, entity_id, action, user, summary, details)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (timestamp, entity_type, entity_id, action, user, summary,
          json.dumps(details, default=str) if details else None))
    conn.commit()
    new_id = cur.lastrowid
    conn.close()
    return new_id


def get_entity_trail(entity_type: str, entity_id: int, limit: int = 200) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("""
        SELECT * FROM activity_log
        WHERE entity_type = ? AND entity_id = ?
        ORDER BY id DESC LIMIT ?
    """, (entity_type, entity_id, limit)).fetchall()
    conn.close()
    return rows_to_dicts(rows, ["details"])


def get_recent_activity(entity_type: str = None, user: str = None, limit: int = 100) -> List[Dict]:
    conn = get_conn()
    sql = "SELECT * FROM activity_log WHERE 1=1"
    params = []
    if entity_type:
        sql += " AND entity_type = ?"
        params.append(entity_type)
    if user:
        sql += " AND user = ?"
        params.append(user)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return rows_to_dicts(rows, ["details"])
