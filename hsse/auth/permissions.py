"""
HSSE Auth - role to module permission map.

The map is static: a role grants a fixed permission set per module, and a
user's effective permissions are the union over all of their roles.
"""
from enum import Enum
from typing import Dict, Iterable, List, Set


class ModuleType(str, Enum):
    DASHBOARD = "Dashboard"
    WORK_PERMIT_MANAGEMENT = "WorkPermitManagement"
    INCIDENT_MANAGEMENT = "IncidentManagement"
    RISK_MANAGEMENT = "RiskManagement"
    INSPECTION_MANAGEMENT = "InspectionManagement"
    AUDIT_MANAGEMENT = "AuditManagement"
    PPE_MANAGEMENT = "PPEManagement"
    TRAINING_MANAGEMENT = "TrainingManagement"
    LICENSE_MANAGEMENT = "LicenseManagement"
    WASTE_MANAGEMENT = "WasteManagement"
    HEALTH_MONITORING = "HealthMonitoring"
    PHYSICAL_SECURITY = "PhysicalSecurity"
    INFORMATION_SECURITY = "InformationSecurity"
    PERSONNEL_SECURITY = "PersonnelSecurity"
    SECURITY_INCIDENT_MANAGEMENT = "SecurityIncidentManagement"
    COMPLIANCE_MANAGEMENT = "ComplianceManagement"
    REPORTING = "Reporting"
    USER_MANAGEMENT = "UserManagement"
    APPLICATION_SETTINGS = "ApplicationSettings"


class PermissionType(str, Enum):
    READ = "Read"
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    EXPORT = "Export"
    CONFIGURE = "Configure"
    APPROVE = "Approve"
    ASSIGN = "Assign"


class RoleType(str, Enum):
    SUPER_ADMIN = "SuperAdmin"
    DEVELOPER = "Developer"
    ADMIN = "Admin"
    INCIDENT_MANAGER = "IncidentManager"
    RISK_MANAGER = "RiskManager"
    PPE_MANAGER = "PPEManager"
    HEALTH_MONITOR = "HealthMonitor"
    INSPECTION_MANAGER = "InspectionManager"
    SECURITY_MANAGER = "SecurityManager"
    SECURITY_OFFICER = "SecurityOfficer"
    COMPLIANCE_OFFICER = "ComplianceOfficer"
    REPORTER = "Reporter"
    VIEWER = "Viewer"


ROLE_DESCRIPTIONS = {
    RoleType.SUPER_ADMIN: "Complete system access including application settings",
    RoleType.DEVELOPER: "Complete system access for development and support",
    RoleType.ADMIN: "All functional modules, user management, no application settings",
    RoleType.INCIDENT_MANAGER: "Incident management",
    RoleType.RISK_MANAGER: "Hazard and risk management",
    RoleType.PPE_MANAGER: "PPE inventory management",
    RoleType.HEALTH_MONITOR: "Health monitoring",
    RoleType.INSPECTION_MANAGER: "Inspection management",
    RoleType.SECURITY_MANAGER: "All security modules and security compliance",
    RoleType.SECURITY_OFFICER: "Day-to-day security operations",
    RoleType.COMPLIANCE_OFFICER: "HSSE compliance across all domains",
    RoleType.REPORTER: "Read-only reporting across functional modules",
    RoleType.VIEWER: "Dashboard only",
}

ALL = frozenset(PermissionType)
CRUD = frozenset({PermissionType.READ, PermissionType.CREATE, PermissionType.UPDATE,
                  PermissionType.DELETE, PermissionType.EXPORT})
READ_ONLY = frozenset({PermissionType.READ, PermissionType.EXPORT})

SECURITY_MODULES = (
    ModuleType.PHYSICAL_SECURITY,
    ModuleType.INFORMATION_SECURITY,
    ModuleType.PERSONNEL_SECURITY,
    ModuleType.SECURITY_INCIDENT_MANAGEMENT,
)

HSE_MODULES = (
    ModuleType.WORK_PERMIT_MANAGEMENT,
    ModuleType.INCIDENT_MANAGEMENT,
    ModuleType.RISK_MANAGEMENT,
    ModuleType.INSPECTION_MANAGEMENT,
    ModuleType.AUDIT_MANAGEMENT,
    ModuleType.PPE_MANAGEMENT,
    ModuleType.TRAINING_MANAGEMENT,
    ModuleType.LICENSE_MANAGEMENT,
    ModuleType.WASTE_MANAGEMENT,
    ModuleType.HEALTH_MONITORING,
)

# Modules that hold business data, as opposed to administration
FUNCTIONAL_MODULES = HSE_MODULES + SECURITY_MODULES + (
    ModuleType.COMPLIANCE_MANAGEMENT,
    ModuleType.REPORTING,
)


def _single_module_manager(module: ModuleType) -> Dict[ModuleType, frozenset]:
    return {
        ModuleType.DASHBOARD: READ_ONLY,
        module: ALL,
        ModuleType.REPORTING: READ_ONLY,
    }


def _build_role_map() -> Dict[RoleType, Dict[ModuleType, frozenset]]:
    full = {m: ALL for m in ModuleType}

    admin = {m: ALL for m in ModuleType if m != ModuleType.APPLICATION_SETTINGS}
    admin[ModuleType.USER_MANAGEMENT] = CRUD

    security_manager = {m: ALL for m in SECURITY_MODULES}
    security_manager.update({
        ModuleType.DASHBOARD: ALL,
        ModuleType.COMPLIANCE_MANAGEMENT: ALL,
        ModuleType.REPORTING: ALL,
    })

    security_officer = {
        ModuleType.DASHBOARD: READ_ONLY,
        ModuleType.PHYSICAL_SECURITY: CRUD,
        ModuleType.INFORMATION_SECURITY: CRUD,
        ModuleType.PERSONNEL_SECURITY: CRUD,
        ModuleType.SECURITY_INCIDENT_MANAGEMENT: ALL,
        ModuleType.COMPLIANCE_MANAGEMENT: READ_ONLY,
        ModuleType.REPORTING: READ_ONLY,
    }

    compliance_officer = {m: READ_ONLY for m in HSE_MODULES + SECURITY_MODULES}
    compliance_officer.update({
        ModuleType.DASHBOARD: ALL,
        ModuleType.COMPLIANCE_MANAGEMENT: ALL,
        ModuleType.REPORTING: ALL,
    })

    reporter = {m: READ_ONLY for m in FUNCTIONAL_MODULES}
    reporter[ModuleType.DASHBOARD] = READ_ONLY

    return {
        RoleType.SUPER_ADMIN: full,
        RoleType.DEVELOPER: dict(full),
        RoleType.ADMIN: admin,
        RoleType.INCIDENT_MANAGER: _single_module_manager(ModuleType.INCIDENT_MANAGEMENT),
        RoleType.RISK_MANAGER: _single_module_manager(ModuleType.RISK_MANAGEMENT),
        RoleType.PPE_MANAGER: _single_module_manager(ModuleType.PPE_MANAGEMENT),
        RoleType.HEALTH_MONITOR: _single_module_manager(ModuleType.HEALTH_MONITORING),
        RoleType.INSPECTION_MANAGER: _single_module_manager(ModuleType.INSPECTION_MANAGEMENT),
        RoleType.SECURITY_MANAGER: security_manager,
        RoleType.SECURITY_OFFICER: security_officer,
        RoleType.COMPLIANCE_OFFICER: compliance_officer,
        RoleType.REPORTER: reporter,
        RoleType.VIEWER: {ModuleType.DASHBOARD: frozenset({PermissionType.READ})},
    }


ROLE_MODULE_PERMISSIONS = _build_role_map()


def _as_role(role) -> RoleType:
    return role if isinstance(role, RoleType) else RoleType(role)


def has_permission(role, module: ModuleType, permission: PermissionType) -> bool:
    try:
        role = _as_role(role)
    except ValueError:
        return False
    return permission in ROLE_MODULE_PERMISSIONS.get(role, {}).get(module, frozenset())


def get_module_permissions(role, module: ModuleType) -> List[PermissionType]:
    perms = ROLE_MODULE_PERMISSIONS.get(_as_role(role), {}).get(module, frozenset())
    return [p for p in PermissionType if p in perms]


def get_accessible_modules(role) -> List[ModuleType]:
    return list(ROLE_MODULE_PERMISSIONS.get(_as_role(role), {}).keys())


def get_roles_with_module_access(module: ModuleType) -> List[RoleType]:
    return [r for r, modules in ROLE_MODULE_PERMISSIONS.items() if module in modules]


def effective_permissions(roles: Iterable) -> Dict[ModuleType, Set[PermissionType]]:
    """Union of the permission sets of every role, keyed by module."""
    result: Dict[ModuleType, Set[PermissionType]] = {}
    for role in roles:
        try:
            role = _as_role(role)
        except ValueError:
            continue
        for module, perms in ROLE_MODULE_PERMISSIONS.get(role, {}).items():
            result.setdefault(module, set()).update(perms)
    return result


def can_assign_role(assigner, target) -> bool:
    assigner, target = _as_role(assigner), _as_role(target)
    if assigner in (RoleType.SUPER_ADMIN, RoleType.DEVELOPER):
        return True
    if assigner == RoleType.ADMIN:
        return target not in (RoleType.SUPER_ADMIN, RoleType.DEVELOPER, RoleType.ADMIN)
    if assigner == RoleType.SECURITY_MANAGER:
        return target in (RoleType.SECURITY_OFFICER, RoleType.COMPLIANCE_OFFICER)
    return False


def can_assign_any(assigners: Iterable, target) -> bool:
    return any(can_assign_role(a, target) for a in assigners)


def assignable_roles(assigners: Iterable) -> List[RoleType]:
    valid = []
    for a in assigners:
        try:
            valid.append(_as_role(a))
        except ValueError:
            continue
    assigners = valid
    return [r for r in RoleType if can_assign_any(assigners, r)]


def serialize_permission_map() -> Dict[str, Dict[str, List[str]]]:
    return {
        role.value: {
            module.value: [p.value for p in PermissionType if p in perms]
            for module, perms in modules.items()
        }
        for role, modules in ROLE_MODULE_PERMISSIONS.items()
    }
