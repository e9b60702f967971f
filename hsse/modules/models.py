"""
HSSE Modules - module configuration, dependency graph and audit log.

Each ModuleType has one configuration row. Dependencies are directed edges
(module -> depends_on); a required edge means the module cannot run without
its target, so enabling a module enables its required targets and a target
cannot be disabled while a module requiring it is enabled. Sub-modules hang
off parent_module_type and follow their parent when it is disabled.
"""
import json
import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from hsse.auth.permissions import ModuleType
from hsse.db import get_conn, ts, rows_to_dicts, row_to_dict
from hsse.errors import DomainError, NotFoundError

logger = logging.getLogger(__name__)

CRITICAL_MODULES = (
    ModuleType.DASHBOARD,
    ModuleType.USER_MANAGEMENT,
    ModuleType.APPLICATION_SETTINGS,
)

HIGH_COMPLEXITY_THRESHOLD = 5

MODULE_IMPACT_WARNINGS = {
    ModuleType.REPORTING: "Reports from all modules will be unavailable",
    ModuleType.COMPLIANCE_MANAGEMENT: "Compliance monitoring and audit tracking will be disabled",
    ModuleType.SECURITY_INCIDENT_MANAGEMENT: "Security incident reporting and response will be unavailable",
}

# module: (display_name, description, icon_class, display_order, parent)
MODULE_DEFAULTS = {
    ModuleType.DASHBOARD: ("Dashboard", "HSSE overview and KPIs", "fa-tachometer-alt", 0, None),
    ModuleType.USER_MANAGEMENT: ("User Management", "Users and role assignment", "fa-users", 1, None),
    ModuleType.APPLICATION_SETTINGS: ("Application Settings", "System configuration", "fa-cogs", 2, None),
    ModuleType.INCIDENT_MANAGEMENT: ("Incident Management", "Incident reporting and investigation", "fa-exclamation-triangle", 10, None),
    ModuleType.RISK_MANAGEMENT: ("Risk Management", "Hazards, risk assessments and mitigation", "fa-shield-alt", 11, None),
    ModuleType.PPE_MANAGEMENT: ("PPE Management", "Personal protective equipment inventory", "fa-hard-hat", 12, None),
    ModuleType.TRAINING_MANAGEMENT: ("Training Management", "Safety training and certification", "fa-graduation-cap", 13, None),
    ModuleType.LICENSE_MANAGEMENT: ("License Management", "Permits, licenses and renewals", "fa-id-card", 14, None),
    ModuleType.WORK_PERMIT_MANAGEMENT: ("Work Permit Management", "Work permits and approvals", "fa-clipboard-check", 15, None),
    ModuleType.WASTE_MANAGEMENT: ("Waste Management", "Waste reporting and disposal", "fa-recycle", 16, None),
    ModuleType.INSPECTION_MANAGEMENT: ("Inspection Management", "Safety inspections and findings", "fa-search", 17, None),
    ModuleType.AUDIT_MANAGEMENT: ("Audit Management", "HSSE audits and findings", "fa-clipboard-list", 18, None),
    ModuleType.HEALTH_MONITORING: ("Health Monitoring", "Health records and vaccinations", "fa-heartbeat", 19, None),
    ModuleType.PHYSICAL_SECURITY: ("Physical Security", "Access control and physical assets", "fa-lock", 20, None),
    ModuleType.INFORMATION_SECURITY: ("Information Security", "Information security policies", "fa-user-secret", 21, None),
    ModuleType.PERSONNEL_SECURITY: ("Personnel Security", "Background checks and clearances", "fa-id-badge", 22, None),
    ModuleType.SECURITY_INCIDENT_MANAGEMENT: ("Security Incident Management", "Security incident response", "fa-bug", 23, ModuleType.PHYSICAL_SECURITY),
    ModuleType.COMPLIANCE_MANAGEMENT: ("Compliance Management", "Regulatory compliance tracking", "fa-balance-scale", 24, None),
    ModuleType.REPORTING: ("Reporting", "Cross-module reports and exports", "fa-chart-bar", 25, None),
}

# (module, depends_on, is_required)
DEFAULT_DEPENDENCIES = [
    (ModuleType.INCIDENT_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.RISK_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.RISK_MANAGEMENT, ModuleType.INCIDENT_MANAGEMENT, False),
    (ModuleType.PPE_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.TRAINING_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.LICENSE_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.WORK_PERMIT_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.WORK_PERMIT_MANAGEMENT, ModuleType.RISK_MANAGEMENT, False),
    (ModuleType.WASTE_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.INSPECTION_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.AUDIT_MANAGEMENT, ModuleType.DASHBOARD, True),
    (ModuleType.HEALTH_MONITORING, ModuleType.DASHBOARD, True),
    (ModuleType.PHYSICAL_SECURITY, ModuleType.DASHBOARD, True),
    (ModuleType.INFORMATION_SECURITY, ModuleType.DASHBOARD, True),
    (ModuleType.PERSONNEL_SECURITY, ModuleType.DASHBOARD, True),
    (ModuleType.SECURITY_INCIDENT_MANAGEMENT, ModuleType.PHYSICAL_SECURITY, False),
    (ModuleType.SECURITY_INCIDENT_MANAGEMENT, ModuleType.INFORMATION_SECURITY, False),
    (ModuleType.COMPLIANCE_MANAGEMENT, ModuleType.AUDIT_MANAGEMENT, True),
    (ModuleType.COMPLIANCE_MANAGEMENT, ModuleType.INSPECTION_MANAGEMENT, False),
    (ModuleType.REPORTING, ModuleType.DASHBOARD, True),
    (ModuleType.REPORTING, ModuleType.INCIDENT_MANAGEMENT, False),
    (ModuleType.REPORTING, ModuleType.RISK_MANAGEMENT, False),
]


class WarningSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


def parse_module_type(value: str) -> ModuleType:
    """Accept the enum value ('IncidentManagement') or member name ('INCIDENT_MANAGEMENT')."""
    if isinstance(value, ModuleType):
        return value
    try:
        return ModuleType(value)
    except ValueError:
        pass
    try:
        return ModuleType[str(value).upper()]
    except KeyError:
        raise NotFoundError("Module", value)


def init_module_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS module_configurations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            module_type TEXT NOT NULL UNIQUE,
            is_enabled INTEGER DEFAULT 1,
            display_name TEXT NOT NULL,
            description TEXT,
            icon_class TEXT,
            display_order INTEGER DEFAULT 0,
            parent_module_type TEXT,
            settings TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS module_dependencies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            module_type TEXT NOT NULL,
            depends_on_module_type TEXT NOT NULL,
            is_required INTEGER DEFAULT 1,
            description TEXT,
            created_at TEXT,
            UNIQUE (module_type, depends_on_module_type)
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS module_audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            module_type TEXT NOT NULL,
            action TEXT NOT NULL,
            old_value TEXT,
            new_value TEXT,
            user TEXT,
            ip_address TEXT,
            user_agent TEXT,
            context TEXT,
            timestamp TEXT NOT NULL
        )
    """)
    conn.commit()
    conn.close()


def seed_modules(created_by: str = "system") -> int:
    """Insert any missing module configuration and the default dependency edges."""
    conn = get_conn()
    now = ts()
    inserted = 0
    for module, (name, desc, icon, order, parent) in MODULE_DEFAULTS.items():
        cur = conn.execute("""
            INSERT OR IGNORE INTO module_configurations
            (module_type, is_enabled, display_name, description, icon_class, display_order,
             parent_module_type, settings, created_at, created_by)
            VALUES (?, 1, ?, ?, ?, ?, ?, '{}', ?, ?)
        """, (module.value, name, desc, icon, order, parent.value if parent else None, now, created_by))
        inserted += cur.rowcount
    for module, dep, required in DEFAULT_DEPENDENCIES:
        kind = "Required" if required else "Optional"
        conn.execute("""
            INSERT OR IGNORE INTO module_dependencies
            (module_type, depends_on_module_type, is_required, description, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (module.value, dep.value, 1 if required else 0,
              f"{kind} dependency: {MODULE_DEFAULTS[module][0]} on {MODULE_DEFAULTS[dep][0]}", now))
    conn.commit()
    conn.close()
    if inserted:
        logger.info("[Modules] Seeded %s module configurations", inserted)
    return inserted


# ================================================================
# READS
# ================================================================

def _to_config(row) -> Dict:
    d = row_to_dict(row, ["settings"])
    d["is_enabled"] = bool(d["is_enabled"])
    d["settings"] = d.get("settings") or {}
    d["is_critical"] = d["module_type"] in {m.value for m in CRITICAL_MODULES}
    d["can_be_disabled"] = not d["is_critical"]
    return d


def get_modules(enabled_only: bool = False) -> List[Dict]:
    conn = get_conn()
    sql = "SELECT * FROM module_configurations"
    if enabled_only:
        sql += " WHERE is_enabled = 1"
    sql += " ORDER BY display_order, display_name"
    rows = conn.execute(sql).fetchall()
    conn.close()
    return [_to_config(r) for r in rows]


def get_module(module: ModuleType) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM module_configurations WHERE module_type = ?",
                       (module.value,)).fetchone()
    conn.close()
    return _to_config(row) if row else None


def get_module_or_404(module: ModuleType) -> Dict:
    config = get_module(module)
    if not config:
        raise NotFoundError("Module configuration", module.value)
    return config


def get_module_detail(module: ModuleType) -> Dict:
    config = get_module_or_404(module)
    config["dependencies"] = get_dependencies(module)
    config["dependents"] = get_dependents(module)
    config["sub_modules"] = get_sub_modules(module)
    return config


def is_module_enabled(module: ModuleType) -> bool:
    if module in CRITICAL_MODULES:
        return True
    conn = get_conn()
    row = conn.execute("SELECT is_enabled FROM module_configurations WHERE module_type = ?",
                       (module.value,)).fetchone()
    conn.close()
    # An unconfigured module is treated as available
    return bool(row["is_enabled"]) if row else True


def get_dependencies(module: ModuleType) -> List[Dict]:
    """Edges leaving this module, with the target's enabled state."""
    conn = get_conn()
    rows = conn.execute("""
        SELECT d.*, m.is_enabled AS depends_on_enabled, m.display_name AS depends_on_name
        FROM module_dependencies d
        LEFT JOIN module_configurations m ON m.module_type = d.depends_on_module_type
        WHERE d.module_type = ?
        ORDER BY d.depends_on_module_type
    """, (module.value,)).fetchall()
    conn.close()
    return [_edge(r) for r in rows]


def get_dependents(module: ModuleType) -> List[Dict]:
    """Edges pointing at this module, with the dependent's enabled state."""
    conn = get_conn()
    rows = conn.execute("""
        SELECT d.*, m.is_enabled AS module_enabled, m.display_name AS module_name
        FROM module_dependencies d
        LEFT JOIN module_configurations m ON m.module_type = d.module_type
        WHERE d.depends_on_module_type = ?
        ORDER BY d.module_type
    """, (module.value,)).fetchall()
    conn.close()
    return [_edge(r) for r in rows]


def _edge(row) -> Dict:
    d = dict(row)
    d["is_required"] = bool(d["is_required"])
    for key in ("depends_on_enabled", "module_enabled"):
        if key in d and d[key] is not None:
            d[key] = bool(d[key])
    return d


def get_sub_modules(module: ModuleType) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("""
        SELECT * FROM module_configurations WHERE parent_module_type = ?
        ORDER BY display_order, display_name
    """, (module.value,)).fetchall()
    conn.close()
    return [_to_config(r) for r in rows]


def get_hierarchy() -> List[Dict]:
    modules = get_modules()
    by_parent: Dict[Optional[str], List[Dict]] = {}
    for m in modules:
        by_parent.setdefault(m["parent_module_type"], []).append(m)

    def attach(node):
        node["sub_modules"] = [attach(child) for child in by_parent.get(node["module_type"], [])]
        return node

    return [attach(m) for m in by_parent.get(None, [])]


# ================================================================
# VALIDATION
# ================================================================

def can_be_disabled(module: ModuleType) -> bool:
    return module not in CRITICAL_MODULES


def validate_disable(module: ModuleType) -> Tuple[bool, Optional[str]]:
    if not can_be_disabled(module):
        return False, f"{module.value} is a critical module and cannot be disabled"
    blocking = [d["module_type"] for d in get_dependents(module)
                if d["is_required"] and d.get("module_enabled")]
    if blocking:
        return False, ("Cannot disable because the following enabled modules require it: "
                       + ", ".join(blocking))
    return True, None


def get_disable_warnings(module: ModuleType) -> List[str]:
    warnings = []
    active_subs = [s for s in get_sub_modules(module) if s["is_enabled"]]
    if active_subs:
        warnings.append(f"This will disable {len(active_subs)} active sub-modules")
    dependents = [d for d in get_dependents(module) if d["is_required"] and d.get("module_enabled")]
    if dependents:
        warnings.append(f"This may affect {len(dependents)} dependent modules")
    if module in MODULE_IMPACT_WARNINGS:
        warnings.append(MODULE_IMPACT_WARNINGS[module])
    return warnings


def get_configuration_warnings() -> List[Dict]:
    """
    One warning per module and kind:
      DependencyViolation - disabled, but an enabled module requires it
      MissingDependency   - enabled, but a required dependency is disabled or unconfigured
      HighComplexity      - more than HIGH_COMPLEXITY_THRESHOLD dependencies
    """
    configs = {m["module_type"]: m for m in get_modules()}
    conn = get_conn()
    edges = conn.execute("SELECT * FROM module_dependencies").fetchall()
    conn.close()

    def enabled(module_type):
        return bool(configs.get(module_type, {}).get("is_enabled"))

    outgoing: Dict[str, List] = {}
    incoming: Dict[str, List] = {}
    for e in edges:
        outgoing.setdefault(e["module_type"], []).append(e)
        incoming.setdefault(e["depends_on_module_type"], []).append(e)

    warnings = []
    for module_type, config in configs.items():
        name = config["display_name"]
        if not config["is_enabled"] and any(e["is_required"] and enabled(e["module_type"])
                                            for e in incoming.get(module_type, [])):
            warnings.append({
                "type": "DependencyViolation",
                "severity": WarningSeverity.HIGH.value,
                "module_type": module_type,
                "module_name": name,
                "message": f"Disabled module {name} has active dependent modules",
            })
        if config["is_enabled"] and any(e["is_required"] and not enabled(e["depends_on_module_type"])
                                        for e in outgoing.get(module_type, [])):
            warnings.append({
                "type": "MissingDependency",
                "severity": WarningSeverity.HIGH.value,
                "module_type": module_type,
                "module_name": name,
                "message": f"Enabled module {name} has disabled required dependencies",
            })
        count = len(outgoing.get(module_type, []))
        if count > HIGH_COMPLEXITY_THRESHOLD:
            warnings.append({
                "type": "HighComplexity",
                "severity": WarningSeverity.MEDIUM.value,
                "module_type": module_type,
                "module_name": name,
                "message": f"Module {name} has many dependencies ({count})",
            })
    return warnings


def validate_dependencies(module: ModuleType) -> Dict:
    """Report whether every required dependency of the module is enabled."""
    get_module_or_404(module)
    missing = [d["depends_on_module_type"] for d in get_dependencies(module)
               if d["is_required"] and not d.get("depends_on_enabled")]
    return {"module_type": module.value, "is_valid": not missing, "missing_required": missing}


def _creates_cycle(module: ModuleType, depends_on: ModuleType) -> bool:
    """True if depends_on already (transitively) depends on module."""
    conn = get_conn()
    edges = conn.execute("SELECT module_type, depends_on_module_type FROM module_dependencies").fetchall()
    conn.close()
    graph: Dict[str, List[str]] = {}
    for e in edges:
        graph.setdefault(e["module_type"], []).append(e["depends_on_module_type"])
    stack, seen = [depends_on.value], set()
    while stack:
        node = stack.pop()
        if node == module.value:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(graph.get(node, []))
    return False


def add_dependency(module: ModuleType, depends_on: ModuleType, is_required: bool = True,
                   description: str = None, user: str = None) -> Dict:
    get_module_or_404(module)
    get_module_or_404(depends_on)
    if module == depends_on:
        raise DomainError("A module cannot depend on itself")
    if _creates_cycle(module, depends_on):
        raise DomainError(f"Adding {module.value} -> {depends_on.value} would create a cycle")
    conn = get_conn()
    conn.execute("""
        INSERT INTO module_dependencies
        (module_type, depends_on_module_type, is_required, description, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(module_type, depends_on_module_type) DO UPDATE SET
        is_required = excluded.is_required, description = excluded.description
    """, (module.value, depends_on.value, 1 if is_required else 0, description, ts()))
    conn.commit()
    conn.close()
    return {"module_type": module.value, "depends_on_module_type": depends_on.value,
            "is_required": is_required}


def remove_dependency(module: ModuleType, depends_on: ModuleType) -> bool:
    conn = get_conn()
    cur = conn.execute("DELETE FROM module_dependencies WHERE module_type = ? AND depends_on_module_type = ?",
                       (module.value, depends_on.value))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


# ================================================================
# ENABLE / DISABLE
# ================================================================

def _set_enabled(conn, module_type: str, enabled: bool, user: str):
    conn.execute("""
        UPDATE module_configurations SET is_enabled = ?, updated_at = ?, updated_by = ?
        WHERE module_type = ?
    """, (1 if enabled else 0, ts(), user, module_type))
    conn.commit()


def enable_module(module: ModuleType, user: str = None, ip: str = None,
                  user_agent: str = None, _visited: set = None) -> bool:
    """Enable the module and, first, every required dependency. False if missing or already on."""
    visited = _visited if _visited is not None else set()
    if module.value in visited:
        return False
    visited.add(module.value)

    config = get_module(module)
    if not config or config["is_enabled"]:
        return False

    for dep in get_dependencies(module):
        if dep["is_required"] and dep.get("depends_on_enabled") is False:
            enable_module(ModuleType(dep["depends_on_module_type"]), user, ip, user_agent, visited)

    conn = get_conn()
    _set_enabled(conn, module.value, True, user)
    conn.close()
    write_audit_log(module, "Enabled", "false", "true", user, ip, user_agent)
    logger.info("[Modules] %s enabled by %s", module.value, user)
    return True


def _check_subtree_disable(module: ModuleType):
    """Raise DomainError if the module or any enabled sub-module cannot be disabled."""
    ok, reason = validate_disable(module)
    if not ok:
        raise DomainError(f"Sub-module {module.value} blocks the disable: {reason}")
    for sub in get_sub_modules(module):
        if sub["is_enabled"]:
            _check_subtree_disable(ModuleType(sub["module_type"]))


def disable_module(module: ModuleType, user: str = None, ip: str = None,
                   user_agent: str = None, context: str = None) -> bool:
    """Disable the module and its enabled sub-modules. False if missing, already off, or blocked.

    Raises DomainError, changing nothing, when an enabled sub-module cannot be disabled.
    """
    config = get_module(module)
    if not config or not config["is_enabled"]:
        return False
    ok, _reason = validate_disable(module)
    if not ok:
        return False

    subs = [ModuleType(s["module_type"]) for s in get_sub_modules(module) if s["is_enabled"]]
    for sub in subs:
        _check_subtree_disable(sub)
    for sub in subs:
        disable_module(sub, user, ip, user_agent, context=f"Parent {module.value} disabled")

    conn = get_conn()
    _set_enabled(conn, module.value, False, user)
    conn.close()
    write_audit_log(module, "Disabled", "true", "false", user, ip, user_agent, context)
    logger.info("[Modules] %s disabled by %s", module.value, user)
    return True


# ================================================================
# SETTINGS
# ================================================================

def get_module_settings(module: ModuleType) -> Dict:
    return get_module_or_404(module)["settings"]


def update_module_settings(module: ModuleType, settings: Dict, user: str = None,
                           ip: str = None, user_agent: str = None) -> Dict:
    if not isinstance(settings, dict):
        raise DomainError("Settings must be a JSON object")
    old = get_module_settings(module)
    conn = get_conn()
    conn.execute("""
        UPDATE module_configurations SET settings = ?, updated_at = ?, updated_by = ?
        WHERE module_type = ?
    """, (json.dumps(settings), ts(), user, module.value))
    conn.commit()
    conn.close()
    write_audit_log(module, "SettingsUpdated", json.dumps(old), json.dumps(settings),
                    user, ip, user_agent)
    return settings


# ================================================================
# AUDIT LOG / DASHBOARD
# ================================================================

def write_audit_log(module: ModuleType, action: str, old_value: str = None, new_value: str = None,
                    user: str = None, ip: str = None, user_agent: str = None,
                    context: str = None) -> int:
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO module_audit_logs
        (module_type, action, old_value, new_value, user, ip_address, user_agent, context, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (module.value, action, old_value, new_value, user, ip, user_agent, context, ts()))
    conn.commit()
    log_id = cur.lastrowid
    conn.close()
    return log_id


def get_audit_logs(module: ModuleType = None, limit: int = 50) -> List[Dict]:
    conn = get_conn()
    if module:
        rows = conn.execute("SELECT * FROM module_audit_logs WHERE module_type = ? "
                            "ORDER BY id DESC LIMIT ?", (module.value, limit)).fetchall()
    else:
        rows = conn.execute("SELECT * FROM module_audit_logs ORDER BY id DESC LIMIT ?",
                            (limit,)).fetchall()
    conn.close()
    return rows_to_dicts(rows)


def get_module_dashboard() -> Dict:
    modules = get_modules()
    conn = get_conn()
    with_deps = conn.execute(
        "SELECT COUNT(DISTINCT module_type) FROM module_dependencies"
    ).fetchone()[0]
    conn.close()
    enabled = sum(1 for m in modules if m["is_enabled"])
    return {
        "total_modules": len(modules),
        "enabled_modules": enabled,
        "disabled_modules": len(modules) - enabled,
        "critical_modules": sum(1 for m in modules if m["is_critical"]),
        "modules_with_dependencies": with_deps,
        "status_summary": [
            {"module_type": m["module_type"], "display_name": m["display_name"],
             "is_enabled": m["is_enabled"], "is_critical": m["is_critical"]}
            for m in modules
        ],
        "recent_activity": get_audit_logs(limit=10),
        "warnings": get_configuration_warnings(),
    }
