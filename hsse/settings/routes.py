"""
HSSE Settings - application settings API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.config import AppConfig, DEFAULT_CONFIG
from hsse.errors import DomainError
from hsse.scheduler import get_status, run_all_sweeps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])

SETTINGS = ModuleType.APPLICATION_SETTINGS


@router.get("")
async def api_get_settings(request: Request, category: str = None):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "settings": AppConfig.get_all(category), "categories": AppConfig.categories()}


@router.get("/company")
async def api_company_profile(request: Request):
    require_permission(request, ModuleType.DASHBOARD, PermissionType.READ)
    return {"ok": True, "company": AppConfig.get_all("company")}


@router.patch("")
async def api_update_settings(request: Request):
    user = require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    data = await request.json()
    if not isinstance(data, dict) or not data:
        raise DomainError("Expected an object of setting values")
    unknown = [k for k in data if k not in DEFAULT_CONFIG]
    if unknown:
        raise DomainError(f"Unknown settings: {', '.join(sorted(unknown))}")
    for key, value in data.items():
        if DEFAULT_CONFIG[key][1] == "int" and (isinstance(value, bool) or not isinstance(value, int)):
            raise DomainError(f"{key} must be a whole number")
    updated = {key: AppConfig.set(key, value, user=actor(user)) for key, value in data.items()}
    return {"ok": True, "settings": updated}


@router.get("/scheduler")
async def api_scheduler_status(request: Request):
    require_permission(request, SETTINGS, PermissionType.READ)
    return {"ok": True, "scheduler": get_status()}


@router.post("/scheduler/run")
async def api_run_sweeps(request: Request):
    """Run every background sweep now."""
    user = require_permission(request, SETTINGS, PermissionType.CONFIGURE)
    logger.info("[Settings] Manual sweep run by %s", actor(user))
    return {"ok": True, "results": run_all_sweeps()}


def register_settings_routes(app: FastAPI):
    app.include_router(router)
