"""
HSSE Hazards - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.responses import FileResponse

from hsse import storage
from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    HIGH_SEVERITIES, init_hazard_schema, create_hazard, get_hazard_or_404, get_hazard_detail,
    list_hazards, update_hazard, change_hazard_status, close_hazard, delete_hazard,
    add_hazard_attachment, get_hazard_attachment, list_assessments, create_assessment,
    update_assessment, approve_assessment, get_assessment, list_overdue_assessments,
    list_actions, add_action, start_action, complete_action, verify_action, cancel_action,
    reassign_action, extend_action_deadline, get_hazard_dashboard, export_hazards,
)
from .risk import is_high_risk

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hazards", tags=["hazards"])

RM = ModuleType.RISK_MANAGEMENT

EXPORT_COLUMNS = [
    ("hazard_number", "Number"), ("title", "Title"), ("category", "Category"),
    ("location", "Location"), ("severity", "Severity"), ("status", "Status"),
    ("risk_level", "Risk Level"), ("risk_score", "Risk Score"),
    ("identified_date", "Identified"), ("next_review_date", "Next Review"),
    ("reporter_name", "Reporter"),
]


def _dashboard_changed():
    announce("DashboardUpdate", {"module": RM.value})


@router.get("")
async def api_list_hazards(request: Request, search: str = None, status: str = None,
                           severity: str = None, location: str = None, risk_level: str = None,
                           page: int = 1, page_size: int = 20):
    require_permission(request, RM, PermissionType.READ)
    return {"ok": True, **list_hazards(search, status, severity, location, risk_level,
                                       None, page, page_size)}


@router.get("/my-hazards")
async def api_my_hazards(request: Request, page: int = 1, page_size: int = 20):
    user = require_permission(request, RM, PermissionType.READ)
    return {"ok": True, **list_hazards(reporter_id=user["id"], page=page, page_size=page_size)}


@router.get("/dashboard")
async def api_hazard_dashboard(request: Request):
    require_permission(request, RM, PermissionType.READ)
    return {"ok": True, "dashboard": get_hazard_dashboard()}


@router.get("/overdue-assessments")
async def api_overdue_assessments(request: Request):
    require_permission(request, RM, PermissionType.READ)
    return {"ok": True, "assessments": list_overdue_assessments()}


@router.get("/export")
async def api_export_hazards(request: Request, format: str = "csv", status: str = None,
                             severity: str = None):
    require_permission(request, RM, PermissionType.EXPORT)
    return export_response(export_hazards(status, severity), EXPORT_COLUMNS, "hazards", format)


@router.post("")
async def api_create_hazard(request: Request):
    user = require_permission(request, RM, PermissionType.CREATE)
    data = await request.json()
    hazard = get_hazard_or_404(create_hazard(data, user))
    payload = {"hazard_id": hazard["id"], "hazard_number": hazard["hazard_number"],
               "title": hazard["title"], "severity": hazard["severity"],
               "location": hazard["location"]}
    announce("HazardCreated", payload)
    if hazard["severity"] in HIGH_SEVERITIES:
        logger.warning("[Hazards] High severity hazard %s reported at %s",
                       hazard["hazard_number"], hazard["location"])
        announce("HighSeverityHazardReported", payload)
    _dashboard_changed()
    return {"ok": True, "hazard": hazard}


@router.get("/{hazard_id}")
async def api_get_hazard(hazard_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    return {"ok": True, "hazard": get_hazard_detail(hazard_id)}


@router.put("/{hazard_id}")
async def api_update_hazard(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "hazard": update_hazard(hazard_id, data, actor(user))}


@router.post("/{hazard_id}/status")
async def api_hazard_status(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    hazard = change_hazard_status(hazard_id, data.get("status"), data.get("notes"), actor(user))
    announce("HazardStatusChanged", {"hazard_id": hazard_id, "status": hazard["status"]})
    _dashboard_changed()
    return {"ok": True, "hazard": hazard}


@router.post("/{hazard_id}/close")
async def api_close_hazard(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    hazard = close_hazard(hazard_id, data.get("notes"), actor(user))
    announce("HazardStatusChanged", {"hazard_id": hazard_id, "status": hazard["status"]})
    _dashboard_changed()
    return {"ok": True, "hazard": hazard}


@router.delete("/{hazard_id}")
async def api_delete_hazard(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.DELETE)
    delete_hazard(hazard_id, actor(user))
    _dashboard_changed()
    return {"ok": True}


@router.post("/{hazard_id}/attachments")
async def api_hazard_upload(hazard_id: int, request: Request, file: UploadFile = File(...)):
    user = require_permission(request, RM, PermissionType.UPDATE)
    get_hazard_or_404(hazard_id)
    meta = await storage.save_upload(file, "hazards", hazard_id)
    att_id = add_hazard_attachment(hazard_id, meta, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/{hazard_id}/attachments/{attachment_id}")
async def api_hazard_download(hazard_id: int, attachment_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    att = get_hazard_attachment(hazard_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


# ---------------- Risk assessments ----------------

@router.get("/{hazard_id}/assessments")
async def api_list_assessments(hazard_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    get_hazard_or_404(hazard_id)
    return {"ok": True, "assessments": list_assessments(hazard_id)}


@router.post("/{hazard_id}/assessments")
async def api_create_assessment(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.CREATE)
    data = await request.json()
    assessment = create_assessment(hazard_id, data, user)
    if is_high_risk(assessment["risk_level"]):
        logger.warning("[Hazards] High risk identified on hazard %s: %s", hazard_id,
                       assessment["risk_level"])
        announce("HighRiskHazardIdentified", {"hazard_id": hazard_id,
                                              "risk_level": assessment["risk_level"],
                                              "risk_score": assessment["risk_score"]})
    _dashboard_changed()
    return {"ok": True, "assessment": assessment}


@router.put("/assessments/{assessment_id}")
async def api_update_assessment(assessment_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "assessment": update_assessment(assessment_id, data, actor(user))}


@router.get("/assessments/{assessment_id}")
async def api_get_assessment(assessment_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    return {"ok": True, "assessment": get_assessment(assessment_id)}


@router.post("/assessments/{assessment_id}/approve")
async def api_approve_assessment(assessment_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.APPROVE)
    data = await request.json()
    return {"ok": True, "assessment": approve_assessment(assessment_id, data.get("notes"), actor(user))}


# ---------------- Mitigation actions ----------------

@router.get("/{hazard_id}/actions")
async def api_list_actions(hazard_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    get_hazard_or_404(hazard_id)
    return {"ok": True, "actions": list_actions(hazard_id)}


@router.post("/{hazard_id}/actions")
async def api_add_action(hazard_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.CREATE)
    data = await request.json()
    return {"ok": True, "action": add_action(hazard_id, data, actor(user))}


@router.post("/actions/{action_id}/start")
async def api_start_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    return {"ok": True, "action": start_action(action_id, actor(user))}


@router.post("/actions/{action_id}/complete")
async def api_complete_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    action = complete_action(action_id, data.get("notes"), data.get("actual_cost"), actor(user))
    return {"ok": True, "action": action}


@router.post("/actions/{action_id}/verify")
async def api_verify_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.APPROVE)
    data = await request.json()
    action = verify_action(action_id, data.get("effectiveness_rating"), data.get("notes"), actor(user))
    return {"ok": True, "action": action}


@router.post("/actions/{action_id}/cancel")
async def api_cancel_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "action": cancel_action(action_id, data.get("reason"), actor(user))}


@router.post("/actions/{action_id}/reassign")
async def api_reassign_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.ASSIGN)
    data = await request.json()
    action = reassign_action(action_id, data.get("assigned_to_id"), data.get("reason"), actor(user))
    return {"ok": True, "action": action}


@router.post("/actions/{action_id}/extend")
async def api_extend_action(action_id: int, request: Request):
    user = require_permission(request, RM, PermissionType.UPDATE)
    data = await request.json()
    action = extend_action_deadline(action_id, data.get("target_date"), data.get("reason"), actor(user))
    return {"ok": True, "action": action}


@router.get("/{hazard_id}/audit-trail")
async def api_hazard_trail(hazard_id: int, request: Request):
    require_permission(request, RM, PermissionType.READ)
    get_hazard_or_404(hazard_id)
    return {"ok": True, "trail": get_entity_trail("Hazard", hazard_id)}


def register_hazard_routes(app: FastAPI):
    init_hazard_schema()
    app.include_router(router)
