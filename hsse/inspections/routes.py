"""
HSSE Inspections - API Routes
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
    init_inspection_schema, get_inspection, get_inspection_detail, list_inspections,
    create_inspection, update_inspection, schedule_inspection, start_inspection, complete_inspection,
    cancel_inspection, archive_inspection, add_item, remove_item, record_response, add_finding,
    set_corrective_action, resolve_finding, verify_finding, close_finding, reopen_finding,
    add_comment, add_inspection_attachment, get_inspection_attachment, get_inspection_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inspections", tags=["inspections"])

IM = ModuleType.INSPECTION_MANAGEMENT

EXPORT_COLUMNS = [
    ("inspection_number", "Number"), ("title", "Title"), ("inspection_type", "Type"),
    ("category", "Category"), ("status", "Status"), ("priority", "Priority"),
    ("scheduled_date", "Scheduled"), ("completed_date", "Completed"), ("inspector_name", "Inspector"),
    ("location", "Location"), ("risk_level", "Risk Level"), ("finding_count", "Findings"),
]


def _changed(insp):
    announce("InspectionStatusChanged", {"inspection_id": insp["id"],
                                         "inspection_number": insp["inspection_number"],
                                         "status": insp["status"]})
    announce("DashboardUpdate", {"module": IM.value})
    return {"ok": True, "inspection": insp}


@router.get("")
async def api_list_inspections(request: Request, search: str = None, status: str = None,
                               inspection_type: str = None, risk_level: str = None,
                               page: int = 1, page_size: int = 20):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, **list_inspections(search, status, inspection_type, None, risk_level,
                                           page, page_size)}


@router.get("/my-inspections")
async def api_my_inspections(request: Request, status: str = None):
    user = require_permission(request, IM, PermissionType.READ)
    return {"ok": True, **list_inspections(status=status, inspector_id=user["id"], page_size=200)}


@router.get("/dashboard")
async def api_inspection_dashboard(request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "dashboard": get_inspection_dashboard()}


@router.get("/export")
async def api_export_inspections(request: Request, format: str = "csv", status: str = None):
    require_permission(request, IM, PermissionType.EXPORT)
    rows = list_inspections(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "inspections", format)


@router.post("")
async def api_create_inspection(request: Request):
    user = require_permission(request, IM, PermissionType.CREATE)
    data = await request.json()
    insp = create_inspection(data, user)
    announce("InspectionCreated", {"inspection_id": insp["id"], "inspection_number": insp["inspection_number"]})
    return {"ok": True, "inspection": insp}


@router.get("/{inspection_id}")
async def api_get_inspection(inspection_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "inspection": get_inspection_detail(inspection_id)}


@router.put("/{inspection_id}")
async def api_update_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "inspection": update_inspection(inspection_id, data, actor(user))}


@router.post("/{inspection_id}/schedule")
async def api_schedule_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(schedule_inspection(inspection_id, data.get("scheduled_date"), actor(user)))


@router.post("/{inspection_id}/start")
async def api_start_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    return _changed(start_inspection(inspection_id, actor(user)))


@router.post("/{inspection_id}/complete")
async def api_complete_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(complete_inspection(inspection_id, data.get("summary"), data.get("recommendations"),
                                        actor(user)))


@router.post("/{inspection_id}/cancel")
async def api_cancel_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(cancel_inspection(inspection_id, data.get("reason"), actor(user)))


@router.post("/{inspection_id}/archive")
async def api_archive_inspection(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    return _changed(archive_inspection(inspection_id, actor(user)))


@router.post("/{inspection_id}/items")
async def api_add_inspection_item(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "item": add_item(inspection_id, data, actor(user))}


@router.delete("/{inspection_id}/items/{item_id}")
async def api_remove_inspection_item(inspection_id: int, item_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    remove_item(inspection_id, item_id, actor(user))
    return {"ok": True}


@router.post("/{inspection_id}/items/{item_id}/response")
async def api_item_response(inspection_id: int, item_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "item": record_response(inspection_id, item_id, data, actor(user))}


@router.post("/{inspection_id}/findings")
async def api_add_inspection_finding(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    finding = add_finding(inspection_id, data, actor(user))
    if finding["severity"] == "Critical":
        announce("CriticalInspectionFinding", {"inspection_id": inspection_id, "finding_id": finding["id"],
                                               "description": finding["description"]})
    return {"ok": True, "finding": finding, "inspection": get_inspection(inspection_id)}


@router.post("/{inspection_id}/findings/{finding_id}/corrective-action")
async def api_inspection_corrective_action(inspection_id: int, finding_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "finding": set_corrective_action(inspection_id, finding_id, data, actor(user))}


@router.post("/{inspection_id}/findings/{finding_id}/resolve")
async def api_resolve_inspection_finding(inspection_id: int, finding_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    return {"ok": True, "finding": resolve_finding(inspection_id, finding_id, actor(user))}


@router.post("/{inspection_id}/findings/{finding_id}/verify")
async def api_verify_inspection_finding(inspection_id: int, finding_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.APPROVE)
    return {"ok": True, "finding": verify_finding(inspection_id, finding_id, actor(user))}


@router.post("/{inspection_id}/findings/{finding_id}/close")
async def api_close_inspection_finding(inspection_id: int, finding_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.APPROVE)
    data = await request.json()
    return {"ok": True, "finding": close_finding(inspection_id, finding_id, data.get("notes"), actor(user))}


@router.post("/{inspection_id}/findings/{finding_id}/reopen")
async def api_reopen_inspection_finding(inspection_id: int, finding_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "finding": reopen_finding(inspection_id, finding_id, data.get("reason"), actor(user))}


@router.post("/{inspection_id}/comments")
async def api_add_inspection_comment(inspection_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.READ)
    data = await request.json()
    return {"ok": True, "comment": add_comment(inspection_id, data.get("comment"), actor(user))}


@router.post("/{inspection_id}/attachments")
async def api_inspection_upload(inspection_id: int, request: Request, file: UploadFile = File(...)):
    user = require_permission(request, IM, PermissionType.UPDATE)
    get_inspection(inspection_id)
    meta = await storage.save_upload(file, "inspections", inspection_id)
    att_id = add_inspection_attachment(inspection_id, meta, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/{inspection_id}/attachments/{attachment_id}")
async def api_inspection_download(inspection_id: int, attachment_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    att = get_inspection_attachment(inspection_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.get("/{inspection_id}/audit-trail")
async def api_inspection_trail(inspection_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    get_inspection(inspection_id)
    return {"ok": True, "trail": get_entity_trail("Inspection", inspection_id)}


def register_inspection_routes(app: FastAPI):
    init_inspection_schema()
    app.include_router(router)
