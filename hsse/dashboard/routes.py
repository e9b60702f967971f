"""
HSSE Dashboard - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.auth.deps import require_permission
from hsse.auth.permissions import ModuleType, PermissionType
from .models import get_hsse_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/hsse")
async def api_hsse_summary(request: Request, date_from: str = None, date_to: str = None):
    """KPI summary over every enabled module."""
    require_permission(request, ModuleType.DASHBOARD, PermissionType.READ)
    return {"ok": True, "summary": get_hsse_summary(date_from, date_to)}


def register_dashboard_routes(app: FastAPI):
    app.include_router(router)
