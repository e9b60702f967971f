# ============================================================================
# HSSE - Configuration
# ============================================================================
# Process settings come from the environment; application settings (company
# profile, thresholds) live in the app_settings table with typed defaults.
# ============================================================================

import json
import logging
import os
from typing import Any, Dict, Optional

from .db import get_conn, ts

logger = logging.getLogger(__name__)

SECRET_KEY = os.environ.get("HSSE_SECRET_KEY", "hsse-dev-secret-key")
UPLOAD_DIR = os.environ.get("HSSE_UPLOAD_DIR", "uploads")
LOG_LEVEL = os.environ.get("HSSE_LOG_LEVEL", "INFO")
ADMIN_EMAIL = os.environ.get("HSSE_ADMIN_EMAIL", "admin@hsse.local")
ADMIN_PASSWORD = os.environ.get("HSSE_ADMIN_PASSWORD", "Admin123!")


def is_test_mode() -> bool:
    return os.environ.get("HSSE_TEST_MODE") == "1"


def configure_logging(level: str = None):
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# key: (default, value_type, category)
DEFAULT_CONFIG = {
    # Company profile
    "company_name": ("HSSE Company", "string", "company"),
    "company_code": ("HSSE", "string", "company"),
    "company_email": ("", "string", "company"),
    "company_phone": ("", "string", "company"),
    "company_address": ("", "string", "company"),
    "timezone": ("UTC", "string", "company"),

    # Thresholds
    "expiry_warning_days": (30, "int", "general"),
    "max_upload_mb": (10, "int", "general"),
    "default_page_size": (20, "int", "general"),

    # Scheduler
    "scheduler_enabled": (True, "bool", "scheduler"),
    "sweep_interval_minutes": (60, "int", "scheduler"),

    # Notifications
    "notify_on_critical_incident": (True, "bool", "notifications"),
    "notify_on_security_escalation": (True, "bool", "notifications"),
}


def init_config_schema():
    conn = get_conn()
    conn.execute("""
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            value_type TEXT NOT NULL DEFAULT 'string',
            category TEXT NOT NULL DEFAULT 'general',
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    conn.commit()
    conn.close()


class AppConfig:
    """
    Database-backed application settings.

    Values are cached in-process after the first read; set() writes through
    and records the change in the activity log.
    """

    _cache: Dict[str, Any] = {}
    _cache_loaded: bool = False

    @classmethod
    def _load_cache(cls):
        if cls._cache_loaded:
            return
        for key, (default, _vtype, _category) in DEFAULT_CONFIG.items():
            cls._cache[key] = default

        conn = get_conn()
        rows = conn.execute("SELECT key, value, value_type FROM app_settings").fetchall()
        conn.close()
        for row in rows:
            cls._cache[row["key"]] = cls._cast_value(row["value"], row["value_type"])
        cls._cache_loaded = True

    @classmethod
    def invalidate(cls):
        cls._cache = {}
        cls._cache_loaded = False

    @staticmethod
    def _cast_value(value: Optional[str], value_type: str) -> Any:
        if value is None:
            return None
        if value_type == "bool":
            return value.lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                return 0
        if value_type == "json":
            try:
                return json.loads(value)
            except ValueError:
                return {}
        return value

    @staticmethod
    def _serialize_value(value: Any, value_type: str) -> str:
        if value is None:
            return ""
        if value_type == "bool":
            return "true" if value in (True, "true", "1", 1, "yes", "on") else "false"
        if value_type == "json":
            return json.dumps(value)
        return str(value)

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        cls._load_cache()
        return cls._cache.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, user: str = None) -> Any:
        cls._load_cache()
        if key in DEFAULT_CONFIG:
            _, value_type, category = DEFAULT_CONFIG[key]
        elif isinstance(value, bool):
            value_type, category = "bool", "custom"
        elif isinstance(value, int):
            value_type, category = "int", "custom"
        elif isinstance(value, (dict, list)):
            value_type, category = "json", "custom"
        else:
            value_type, category = "string", "custom"

        old_value = cls._cache.get(key)
        serialized = cls._serialize_value(value, value_type)

        conn = get_conn()
        conn.execute(
            """INSERT INTO app_settings (key, value, value_type, category, updated_at, updated_by)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
               value = excluded.value,
               value_type = excluded.value_type,
               category = excluded.category,
               updated_at = excluded.updated_at,
               updated_by = excluded.updated_by""",
            (key, serialized, value_type, category, ts(), user),
        )
        conn.commit()
        conn.close()

        new_value = cls._cast_value(serialized, value_type)
        cls._cache[key] = new_value

        if old_value != new_value:
            from .activity.emitter import log_activity
            log_activity("AppSetting", None, "ConfigChanged", user=user,
                         details={"key": key, "old": old_value, "new": new_value})
            logger.info("[Config] %s changed by %s", key, user)
        return new_value

    @classmethod
    def get_all(cls, category: str = None) -> Dict[str, Any]:
        cls._load_cache()
        if category is None:
            return dict(cls._cache)
        keys = {k for k, (_, _, cat) in DEFAULT_CONFIG.items() if cat == category}
        return {k: v for k, v in cls._cache.items() if k in keys}

    @classmethod
    def categories(cls) -> Dict[str, list]:
        result: Dict[str, list] = {}
        for key, (_, _, cat) in DEFAULT_CONFIG.items():
            result.setdefault(cat, []).append(key)
        return result
