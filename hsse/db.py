"""
HSSE - Shared SQLite access helpers.

Every domain keeps its own schema function and query helpers in its models.py;
this module only owns the database location and the connection factory so the
path can be swapped in one place (tests point HSSE_DB_PATH at a scratch file).
"""
import datetime
import json
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from hsse.errors import DomainError

BASE_DIR = Path(__file__).resolve().parent.parent
DB_PATH = os.environ.get("HSSE_DB_PATH") or str(BASE_DIR / "hsse.db")


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def ts() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def today() -> str:
    return datetime.date.today().strftime("%Y-%m-%d")


def parse_date(value: Optional[str]) -> Optional[datetime.date]:
    """Accept 'YYYY-MM-DD' or a full timestamp and return the date part."""
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise DomainError(f"Invalid date: {value}")


def add_months(d: datetime.date, months: int) -> datetime.date:
    month = d.month - 1 + months
    year = d.year + month // 12
    month = month % 12 + 1
    # Clamp to the last day of the target month
    for day in (d.day, 30, 29, 28):
        try:
            return datetime.date(year, month, day)
        except ValueError:
            continue
    return datetime.date(year, month, 28)


def row_to_dict(row: Optional[sqlite3.Row], json_fields: Iterable[str] = ()) -> Optional[Dict]:
    if row is None:
        return None
    d = dict(row)
    for f in json_fields:
        if d.get(f):
            try:
                d[f] = json.loads(d[f])
            except (TypeError, ValueError):
                pass
    return d


def rows_to_dicts(rows: Iterable[sqlite3.Row], json_fields: Iterable[str] = ()) -> List[Dict]:
    fields = list(json_fields)
    return [row_to_dict(r, fields) for r in rows]


def dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


def build_update(data: Dict, allowed: Iterable[str]) -> Tuple[List[str], List[Any]]:
    """Collect 'col = ?' fragments for keys present in data."""
    sets, params = [], []
    for key in allowed:
        if key in data:
            sets.append(f"{key} = ?")
            value = data[key]
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            elif isinstance(value, bool):
                value = 1 if value else 0
            params.append(value)
    return sets, params
