"""
HSSE Auth - current-user accessor and permission guard used by every route.
"""
from typing import Dict

from fastapi import Request

from hsse.errors import AuthRequired, PermissionDenied
from .models import get_user
from .permissions import ModuleType, PermissionType, effective_permissions


def current_user(request: Request) -> Dict:
    """Return the logged-in user with roles and effective permissions, or raise 401."""
    user_id = request.session.get("user_id")
    if not user_id:
        raise AuthRequired()
    user = get_user(int(user_id))
    if not user or not user["is_active"]:
        request.session.clear()
        raise AuthRequired("Session is no longer valid")
    user["permissions"] = effective_permissions(user["roles"])
    return user


def has_permission(user: Dict, module: ModuleType, permission: PermissionType) -> bool:
    return permission in user["permissions"].get(module, ())


def require_permission(request: Request, module: ModuleType, permission: PermissionType) -> Dict:
    """Check role permission and module availability; return the current user."""
    user = current_user(request)
    if not has_permission(user, module, permission):
        raise PermissionDenied(f"{permission.value} permission required on {module.value}")

    from hsse.modules.models import is_module_enabled
    if not is_module_enabled(module):
        raise PermissionDenied(f"Module {module.value} is disabled")
    return user


def actor(user: Dict) -> str:
    """Name recorded in created_by / updated_by columns."""
    return user.get("email") or str(user.get("id"))
