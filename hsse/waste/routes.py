"""
HSSE Waste - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.responses import FileResponse

from hsse import storage
from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, has_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_waste_schema, list_providers, get_provider, create_provider, update_provider,
    change_provider_status, get_report, get_report_detail, list_reports, create_report,
    update_report, delete_report, start_disposal, record_disposal, add_comment, list_comments,
    delete_comment, add_waste_attachment, get_waste_attachment, get_waste_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/waste", tags=["waste"])

WM = ModuleType.WASTE_MANAGEMENT

EXPORT_COLUMNS = [
    ("id", "ID"), ("title", "Title"), ("classification", "Classification"),
    ("location", "Location"), ("generated_date", "Generated"),
    ("estimated_quantity", "Quantity"), ("quantity_unit", "Unit"),
    ("disposal_status", "Status"), ("disposal_date", "Disposed"),
    ("provider_name", "Provider"), ("disposal_cost", "Cost"), ("reporter_name", "Reporter"),
]


def _dashboard_changed():
    announce("DashboardUpdate", {"module": WM.value})


# ---------------- Providers ----------------

@router.get("/providers")
async def api_list_providers(request: Request, status: str = None):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "providers": list_providers(status)}


@router.get("/providers/expiring")
async def api_expiring_providers(request: Request):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "providers": list_providers(expiring_only=True)}


@router.post("/providers")
async def api_create_provider(request: Request):
    user = require_permission(request, WM, PermissionType.CREATE)
    data = await request.json()
    return {"ok": True, "provider": create_provider(data, actor(user))}


@router.get("/providers/{provider_id}")
async def api_get_provider(provider_id: int, request: Request):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "provider": get_provider(provider_id)}


@router.put("/providers/{provider_id}")
async def api_update_provider(provider_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "provider": update_provider(provider_id, data, actor(user))}


@router.post("/providers/{provider_id}/status")
async def api_provider_status(provider_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "provider": change_provider_status(provider_id, data.get("status"), actor(user))}


# ---------------- Reports ----------------

@router.get("/reports")
async def api_list_reports(request: Request, search: str = None, classification: str = None,
                           status: str = None, location: str = None, date_from: str = None,
                           date_to: str = None, page: int = 1, page_size: int = 20):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, **list_reports(search, classification, status, location, date_from, date_to,
                                       None, page, page_size)}


@router.get("/reports/my-reports")
async def api_my_waste_reports(request: Request, page: int = 1, page_size: int = 20):
    user = require_permission(request, WM, PermissionType.READ)
    return {"ok": True, **list_reports(reporter_id=user["id"], page=page, page_size=page_size)}


@router.get("/dashboard")
async def api_waste_dashboard(request: Request, date_from: str = None, date_to: str = None):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "dashboard": get_waste_dashboard(date_from, date_to)}


@router.get("/export")
async def api_export_waste(request: Request, format: str = "csv", classification: str = None,
                           status: str = None):
    require_permission(request, WM, PermissionType.EXPORT)
    rows = list_reports(classification=classification, status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "waste_reports", format)


@router.post("/reports")
async def api_create_report(request: Request):
    user = require_permission(request, WM, PermissionType.CREATE)
    data = await request.json()
    report = create_report(data, user)
    _dashboard_changed()
    return {"ok": True, "report": report}


@router.get("/reports/{report_id}")
async def api_get_report(report_id: int, request: Request):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "report": get_report_detail(report_id)}


@router.put("/reports/{report_id}")
async def api_update_report(report_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "report": update_report(report_id, data, actor(user))}


@router.delete("/reports/{report_id}")
async def api_delete_report(report_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.DELETE)
    delete_report(report_id, actor(user))
    _dashboard_changed()
    return {"ok": True}


@router.post("/reports/{report_id}/start-disposal")
async def api_start_disposal(report_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.UPDATE)
    data = await request.json()
    report = start_disposal(report_id, data.get("provider_id"), actor(user))
    _dashboard_changed()
    return {"ok": True, "report": report}


@router.post("/reports/{report_id}/dispose")
async def api_record_disposal(report_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.UPDATE)
    data = await request.json()
    report = record_disposal(report_id, data, actor(user))
    announce("WasteDisposed", {"report_id": report_id, "classification": report["classification"]})
    _dashboard_changed()
    return {"ok": True, "report": report}


@router.get("/reports/{report_id}/comments")
async def api_list_comments(report_id: int, request: Request):
    require_permission(request, WM, PermissionType.READ)
    return {"ok": True, "comments": list_comments(report_id)}


@router.post("/reports/{report_id}/comments")
async def api_add_comment(report_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.READ)
    data = await request.json()
    comment = add_comment(report_id, data.get("comment"), data.get("comment_type"), actor(user))
    announce("WasteCommentAdded", {"report_id": report_id, "comment_id": comment["id"]})
    return {"ok": True, "comment": comment}


@router.delete("/reports/{report_id}/comments/{comment_id}")
async def api_delete_comment(report_id: int, comment_id: int, request: Request):
    user = require_permission(request, WM, PermissionType.READ)
    delete_comment(report_id, comment_id, user, has_permission(user, WM, PermissionType.DELETE))
    return {"ok": True}


@router.post("/reports/{report_id}/attachments")
async def api_waste_upload(report_id: int, request: Request, file: UploadFile = File(...)):
    user = require_permission(request, WM, PermissionType.UPDATE)
    get_report(report_id)
    meta = await storage.save_upload(file, "waste", report_id)
    att_id = add_waste_attachment(report_id, meta, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/reports/{report_id}/attachments/{attachment_id}")
async def api_waste_download(report_id: int, attachment_id: int, request: Request):
    require_permission(request, WM, PermissionType.READ)
    att = get_waste_attachment(report_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.get("/reports/{report_id}/audit-trail")
async def api_waste_trail(report_id: int, request: Request):
    require_permission(request, WM, PermissionType.READ)
    get_report(report_id)
    return {"ok": True, "trail": get_entity_trail("WasteReport", report_id)}


def register_waste_routes(app: FastAPI):
    init_waste_schema()
    app.include_router(router)
