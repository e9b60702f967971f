"""
HSSE Work Permits - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_work_permit_schema, get_permit, get_permit_detail, list_permits, create_permit,
    update_permit, submit_permit, approve_permit, reject_permit, start_permit, complete_permit,
    cancel_permit, add_permit_hazard, add_precaution, complete_precaution, list_approvals,
    get_permit_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/work-permits", tags=["work-permits"])

WP = ModuleType.WORK_PERMIT_MANAGEMENT

EXPORT_COLUMNS = [
    ("permit_number", "Number"), ("title", "Title"), ("permit_type", "Type"),
    ("status", "Status"), ("priority", "Priority"), ("risk_level", "Risk Level"),
    ("work_location", "Location"), ("planned_start_date", "Planned Start"),
    ("planned_end_date", "Planned End"), ("requested_by_name", "Requested By"),
    ("contractor_company", "Contractor"),
]


def _changed(permit):
    announce("WorkPermitStatusChanged", {"permit_id": permit["id"], "permit_number": permit["permit_number"],
                                         "status": permit["status"]})
    announce("DashboardUpdate", {"module": WP.value})
    return {"ok": True, "permit": permit}


@router.get("")
async def api_list_permits(request: Request, search: str = None, status: str = None,
                           permit_type: str = None, risk_level: str = None,
                           page: int = 1, page_size: int = 20):
    require_permission(request, WP, PermissionType.READ)
    return {"ok": True, **list_permits(search, status, permit_type, risk_level, None, page, page_size)}


@router.get("/my-permits")
async def api_my_permits(request: Request):
    user = require_permission(request, WP, PermissionType.READ)
    return {"ok": True, **list_permits(requested_by_id=user["id"], page_size=200)}


@router.get("/pending-approval")
async def api_pending_permits(request: Request):
    require_permission(request, WP, PermissionType.APPROVE)
    return {"ok": True, **list_permits(status="PendingApproval", page_size=200)}


@router.get("/dashboard")
async def api_permit_dashboard(request: Request):
    require_permission(request, WP, PermissionType.READ)
    return {"ok": True, "dashboard": get_permit_dashboard()}


@router.get("/export")
async def api_export_permits(request: Request, format: str = "csv", status: str = None):
    require_permission(request, WP, PermissionType.EXPORT)
    rows = list_permits(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "work_permits", format)


@router.post("")
async def api_create_permit(request: Request):
    user = require_permission(request, WP, PermissionType.CREATE)
    data = await request.json()
    permit = create_permit(data, user)
    announce("DashboardUpdate", {"module": WP.value})
    return {"ok": True, "permit": permit}


@router.get("/{permit_id}")
async def api_get_permit(permit_id: int, request: Request):
    require_permission(request, WP, PermissionType.READ)
    return {"ok": True, "permit": get_permit_detail(permit_id)}


@router.put("/{permit_id}")
async def api_update_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "permit": update_permit(permit_id, data, actor(user))}


@router.post("/{permit_id}/submit")
async def api_submit_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    return _changed(submit_permit(permit_id, actor(user)))


@router.post("/{permit_id}/approve")
async def api_approve_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.APPROVE)
    data = await request.json()
    return _changed(approve_permit(permit_id, data.get("approval_level"), data.get("comments"), user))


@router.post("/{permit_id}/reject")
async def api_reject_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.APPROVE)
    data = await request.json()
    return _changed(reject_permit(permit_id, data.get("reason"), user))


@router.post("/{permit_id}/start")
async def api_start_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    return _changed(start_permit(permit_id, actor(user)))


@router.post("/{permit_id}/complete")
async def api_complete_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    permit = complete_permit(permit_id, data.get("completion_notes"), data.get("is_completed_safely", True),
                             data.get("lessons_learned"), actor(user))
    return _changed(permit)


@router.post("/{permit_id}/cancel")
async def api_cancel_permit(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    return _changed(cancel_permit(permit_id, data.get("reason"), actor(user)))


@router.get("/{permit_id}/approvals")
async def api_permit_approvals(permit_id: int, request: Request):
    require_permission(request, WP, PermissionType.READ)
    return {"ok": True, "approvals": list_approvals(permit_id)}


@router.post("/{permit_id}/hazards")
async def api_add_permit_hazard(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "permit": add_permit_hazard(permit_id, data, actor(user))}


@router.post("/{permit_id}/precautions")
async def api_add_precaution(permit_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "precaution": add_precaution(permit_id, data, actor(user))}


@router.post("/{permit_id}/precautions/{precaution_id}/complete")
async def api_complete_precaution(permit_id: int, precaution_id: int, request: Request):
    user = require_permission(request, WP, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "precaution": complete_precaution(permit_id, precaution_id, data.get("notes"), actor(user))}


@router.get("/{permit_id}/audit-trail")
async def api_permit_trail(permit_id: int, request: Request):
    require_permission(request, WP, PermissionType.READ)
    get_permit(permit_id)
    return {"ok": True, "trail": get_entity_trail("WorkPermit", permit_id)}


def register_work_permit_routes(app: FastAPI):
    init_work_permit_schema()
    app.include_router(router)
