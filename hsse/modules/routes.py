"""
HSSE Modules - module configuration API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.auth.deps import current_user, require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.errors import DomainError
from hsse.realtime import announce
from .models import (
    init_module_schema, seed_modules, parse_module_type, get_modules, get_module_detail,
    get_module_dashboard, get_hierarchy, get_configuration_warnings, enable_module,
    disable_module, validate_disable, get_disable_warnings, get_module_settings,
    update_module_settings, get_dependencies, get_dependents, get_audit_logs,
    validate_dependencies, add_dependency, remove_dependency, get_module_or_404,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/modules", tags=["modules"])

SETTINGS = ModuleType.APPLICATION_SETTINGS


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def _request_meta(request: Request):
    return client_ip(request), request.headers.get("user-agent", "")


@router.get("")
async def api_list_modules(request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "modules": get_modules()}


@router.get("/enabled")
async def api_enabled_modules(request: Request):
    current_user(request)
    return {"ok": True, "modules": get_modules(enabled_only=True)}


@router.get("/dashboard")
async def api_module_dashboard(request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "dashboard": get_module_dashboard()}


@router.get("/hierarchy")
async def api_module_hierarchy(request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "hierarchy": get_hierarchy()}


@router.get("/warnings")
async def api_module_warnings(request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "warnings": get_configuration_warnings()}


@router.get("/recent-activity")
async def api_module_activity(request: Request, limit: int = 50):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "logs": get_audit_logs(limit=min(limit, 500))}


@router.get("/{module_type}")
async def api_get_module(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "module": get_module_detail(parse_module_type(module_type))}


@router.post("/{module_type}/enable")
async def api_enable_module(module_type: str, request: Request):
    user = require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    module = parse_module_type(module_type)
    get_module_or_404(module)
    ip, agent = _request_meta(request)
    if not enable_module(module, actor(user), ip, agent):
        raise DomainError(f"{module.value} is already enabled")
    announce("ModuleStatusChanged", {"module_type": module.value, "is_enabled": True})
    return {"ok": True, "module": get_module_detail(module)}


@router.post("/{module_type}/disable")
async def api_disable_module(module_type: str, request: Request):
    user = require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    module = parse_module_type(module_type)
    config = get_module_or_404(module)
    if not config["is_enabled"]:
        raise DomainError(f"{module.value} is already disabled")
    ok, reason = validate_disable(module)
    if not ok:
        raise DomainError(reason)
    data = {}
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
    if not isinstance(data, dict):
        raise DomainError("Request body must be a JSON object")
    ip, agent = _request_meta(request)
    warnings = get_disable_warnings(module)
    if not disable_module(module, actor(user), ip, agent, context=data.get("reason")):
        raise DomainError(f"{module.value} could not be disabled")
    announce("ModuleStatusChanged", {"module_type": module.value, "is_enabled": False})
    return {"ok": True, "module": get_module_detail(module), "warnings": warnings}


@router.get("/{module_type}/can-disable")
async def api_can_disable(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    module = parse_module_type(module_type)
    get_module_or_404(module)
    ok, reason = validate_disable(module)
    return {"ok": True, "can_disable": ok, "reason": reason, "warnings": get_disable_warnings(module)}


@router.get("/{module_type}/settings")
async def api_get_module_settings(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "settings": get_module_settings(parse_module_type(module_type))}


@router.put("/{module_type}/settings")
async def api_update_module_settings(module_type: str, request: Request):
    user = require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    data = await request.json()
    ip, agent = _request_meta(request)
    settings = update_module_settings(parse_module_type(module_type), data.get("settings", data),
                                      actor(user), ip, agent)
    return {"ok": True, "settings": settings}


@router.get("/{module_type}/dependencies")
async def api_module_dependencies(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "dependencies": get_dependencies(parse_module_type(module_type))}


@router.post("/{module_type}/dependencies")
async def api_add_dependency(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    data = await request.json()
    edge = add_dependency(parse_module_type(module_type),
                          parse_module_type(data.get("depends_on", "")),
                          bool(data.get("is_required", True)), data.get("description"))
    return {"ok": True, "dependency": edge}


@router.delete("/{module_type}/dependencies/{depends_on}")
async def api_remove_dependency(module_type: str, depends_on: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    removed = remove_dependency(parse_module_type(module_type), parse_module_type(depends_on))
    return {"ok": True, "removed": removed}


@router.get("/{module_type}/dependents")
async def api_module_dependents(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "dependents": get_dependents(parse_module_type(module_type))}


@router.get("/{module_type}/audit-trail")
async def api_module_audit_trail(module_type: str, request: Request, limit: int = 50):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "logs": get_audit_logs(parse_module_type(module_type), min(limit, 500))}


@router.get("/{module_type}/validate-dependencies")
async def api_validate_dependencies(module_type: str, request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "result": validate_dependencies(parse_module_type(module_type))}


def register_module_routes(app: FastAPI):
    init_module_schema()
    seed_modules()
    app.include_router(router)
