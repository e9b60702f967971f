"""
HSSE Users - administration API Routes

Role assignment is restricted by the assigning user's own roles: every role
being granted or removed must be assignable by at least one of them.
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.activity import log_activity, get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.models import (
    list_users, get_user_or_404, create_user, update_user, set_user_active,
    set_user_roles, list_active_user_choices,
)
from hsse.auth.permissions import (
    ModuleType, PermissionType, RoleType, can_assign_any, assignable_roles, ROLE_DESCRIPTIONS,
)
from hsse.errors import DomainError, PermissionDenied

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

UM = ModuleType.USER_MANAGEMENT


def _check_assignable(acting_user, roles):
    for role in roles:
        if role not in RoleType._value2member_map_:
            raise DomainError(f"Unknown role: {role}")
        if not can_assign_any(acting_user["roles"], role):
            raise PermissionDenied(f"You are not allowed to assign the {role} role")


@router.get("")
async def api_list_users(request: Request, search: str = None, role: str = None,
                         active: bool = None, limit: int = 200, offset: int = 0):
    require_permission(request, UM, PermissionType.READ)
    return {"ok": True, "users": list_users(search, role, active, min(limit, 500), offset)}


@router.get("/choices")
async def api_user_choices(request: Request):
    require_permission(request, ModuleType.DASHBOARD, PermissionType.READ)
    return {"ok": True, "users": list_active_user_choices()}


@router.get("/assignable-roles")
async def api_assignable_roles(request: Request):
    user = require_permission(request, UM, PermissionType.READ)
    roles = assignable_roles(user["roles"])
    return {"ok": True, "roles": [{"name": r.value, "description": ROLE_DESCRIPTIONS[r]} for r in roles]}


@router.get("/{user_id}")
async def api_get_user(user_id: int, request: Request):
    require_permission(request, UM, PermissionType.READ)
    return {"ok": True, "user": get_user_or_404(user_id)}


@router.post("")
async def api_create_user(request: Request):
    user = require_permission(request, UM, PermissionType.CREATE)
    data = await request.json()
    roles = data.get("roles") or []
    _check_assignable(user, roles)
    new_id = create_user(data, roles, created_by=actor(user))
    log_activity("User", new_id, "Created", user=actor(user), details={"roles": roles})
    return {"ok": True, "user": get_user_or_404(new_id)}


@router.put("/{user_id}")
async def api_update_user(user_id: int, request: Request):
    user = require_permission(request, UM, PermissionType.UPDATE)
    data = await request.json()
    updated = update_user(user_id, data, updated_by=actor(user))
    log_activity("User", user_id, "Updated", user=actor(user),
                 details={k: v for k, v in data.items() if k != "password"})
    return {"ok": True, "user": updated}


@router.post("/{user_id}/deactivate")
async def api_deactivate_user(user_id: int, request: Request):
    user = require_permission(request, UM, PermissionType.DELETE)
    if user["id"] == user_id:
        raise DomainError("You cannot deactivate your own account")
    updated = set_user_active(user_id, False, updated_by=actor(user))
    log_activity("User", user_id, "Deactivated", user=actor(user))
    return {"ok": True, "user": updated}


@router.post("/{user_id}/activate")
async def api_activate_user(user_id: int, request: Request):
    user = require_permission(request, UM, PermissionType.UPDATE)
    updated = set_user_active(user_id, True, updated_by=actor(user))
    log_activity("User", user_id, "Activated", user=actor(user))
    return {"ok": True, "user": updated}


@router.put("/{user_id}/roles")
async def api_set_roles(user_id: int, request: Request):
    user = require_permission(request, UM, PermissionType.UPDATE)
    data = await request.json()
    new_roles = list(dict.fromkeys(data.get("roles") or []))
    target = get_user_or_404(user_id)
    # Both granted and revoked roles must be within the acting user's authority
    changed = set(new_roles) ^ set(target["roles"])
    _check_assignable(user, sorted(changed))
    updated = set_user_roles(user_id, new_roles, assigned_by=actor(user))
    log_activity("User", user_id, "RolesChanged", user=actor(user),
                 details={"old": target["roles"], "new": new_roles})
    logger.info("[Users] Roles for %s set to %s by %s", user_id, new_roles, actor(user))
    return {"ok": True, "user": updated}


@router.get("/{user_id}/audit-trail")
async def api_user_trail(user_id: int, request: Request):
    require_permission(request, UM, PermissionType.READ)
    get_user_or_404(user_id)
    return {"ok": True, "trail": get_entity_trail("User", user_id)}


def register_user_routes(app: FastAPI):
    app.include_router(router)
