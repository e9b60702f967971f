"""
HSSE Activity - API Routes
"""
from fastapi import APIRouter, FastAPI, Request

from hsse.auth.deps import require_permission
from hsse.auth.permissions import ModuleType, PermissionType
from .models import init_activity_schema, get_recent_activity

router = APIRouter(prefix="/api/activity", tags=["activity"])


@router.get("")
async def api_recent_activity(request: Request, entity_type: str = None,
                              user: str = None, limit: int = 100):
    require_permission(request, ModuleType.REPORTING, PermissionType.READ)
    return {"ok": True, "activity": get_recent_activity(entity_type, user, min(limit, 500))}


def register_activity_routes(app: FastAPI):
    init_activity_schema()
    app.include_router(router)
