"""
HSSE Licenses - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import FileResponse

from hsse import storage
from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_license_schema, get_license, get_license_detail, list_licenses, create_license,
    update_license, submit_license, start_review, approve_license, reject_license,
    activate_license, suspend_license, reinstate_license, revoke_license, initiate_renewal,
    complete_renewal, add_condition, complete_condition, add_license_attachment,
    get_license_attachment, get_license_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/licenses", tags=["licenses"])

LM = ModuleType.LICENSE_MANAGEMENT

EXPORT_COLUMNS = [
    ("license_number", "Number"), ("title", "Title"), ("license_type", "Type"),
    ("status", "Status"), ("issuing_authority", "Issuing Authority"), ("issued_date", "Issued"),
    ("expiry_date", "Expiry"), ("days_until_expiry", "Days Left"), ("holder_name", "Holder"),
    ("compliance_score", "Compliance Score"),
]


def _changed(lic):
    announce("LicenseStatusChanged", {"license_id": lic["id"], "license_number": lic["license_number"],
                                      "status": lic["status"]})
    announce("DashboardUpdate", {"module": LM.value})
    return {"ok": True, "license": lic}


@router.get("")
async def api_list_licenses(request: Request, search: str = None, status: str = None,
                            license_type: str = None, page: int = 1, page_size: int = 20):
    require_permission(request, LM, PermissionType.READ)
    return {"ok": True, **list_licenses(search, status, license_type, None, False, page, page_size)}


@router.get("/my-licenses")
async def api_my_licenses(request: Request):
    user = require_permission(request, LM, PermissionType.READ)
    return {"ok": True, **list_licenses(holder_id=user["id"], page_size=200)}


@router.get("/expiring")
async def api_expiring_licenses(request: Request):
    require_permission(request, LM, PermissionType.READ)
    return {"ok": True, **list_licenses(expiring_only=True, page_size=200)}


@router.get("/dashboard")
async def api_license_dashboard(request: Request):
    require_permission(request, LM, PermissionType.READ)
    return {"ok": True, "dashboard": get_license_dashboard()}


@router.get("/export")
async def api_export_licenses(request: Request, format: str = "csv", status: str = None):
    require_permission(request, LM, PermissionType.EXPORT)
    rows = list_licenses(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "licenses", format)


@router.post("")
async def api_create_license(request: Request):
    user = require_permission(request, LM, PermissionType.CREATE)
    data = await request.json()
    return {"ok": True, "license": create_license(data, user)}


@router.get("/{license_id}")
async def api_get_license(license_id: int, request: Request):
    require_permission(request, LM, PermissionType.READ)
    return {"ok": True, "license": get_license_detail(license_id)}


@router.put("/{license_id}")
async def api_update_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "license": update_license(license_id, data, actor(user))}


@router.post("/{license_id}/submit")
async def api_submit_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.UPDATE)
    return _changed(submit_license(license_id, actor(user)))


@router.post("/{license_id}/review")
async def api_review_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    return _changed(start_review(license_id, actor(user)))


@router.post("/{license_id}/approve")
async def api_approve_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(approve_license(license_id, data.get("notes"), actor(user)))


@router.post("/{license_id}/reject")
async def api_reject_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(reject_license(license_id, data.get("reason"), actor(user)))


@router.post("/{license_id}/activate")
async def api_activate_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    return _changed(activate_license(license_id, actor(user)))


@router.post("/{license_id}/suspend")
async def api_suspend_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(suspend_license(license_id, data.get("reason"), actor(user)))


@router.post("/{license_id}/reinstate")
async def api_reinstate_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(reinstate_license(license_id, data.get("notes"), actor(user)))


@router.post("/{license_id}/revoke")
async def api_revoke_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(revoke_license(license_id, data.get("reason"), actor(user)))


@router.post("/{license_id}/renew")
async def api_renew_license(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.UPDATE)
    data = await request.json()
    lic = initiate_renewal(license_id, data.get("notes"), actor(user))
    return _changed(lic)


@router.post("/{license_id}/renewals/{renewal_id}/complete")
async def api_complete_renewal(license_id: int, renewal_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.APPROVE)
    data = await request.json()
    return _changed(complete_renewal(license_id, renewal_id, data.get("new_expiry_date"), actor(user)))


@router.post("/{license_id}/conditions")
async def api_add_condition(license_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "condition": add_condition(license_id, data, actor(user))}


@router.post("/{license_id}/conditions/{condition_id}/complete")
async def api_complete_condition(license_id: int, condition_id: int, request: Request):
    user = require_permission(request, LM, PermissionType.UPDATE)
    data = await request.json()
    condition = complete_condition(license_id, condition_id, data.get("notes"), actor(user))
    return {"ok": True, "condition": condition, "license": get_license(license_id)}


@router.post("/{license_id}/attachments")
async def api_license_upload(license_id: int, request: Request, file: UploadFile = File(...),
                             attachment_type: str = Form("Document")):
    user = require_permission(request, LM, PermissionType.UPDATE)
    get_license(license_id)
    meta = await storage.save_upload(file, "licenses", license_id)
    att_id = add_license_attachment(license_id, meta, attachment_type, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/{license_id}/attachments/{attachment_id}")
async def api_license_download(license_id: int, attachment_id: int, request: Request):
    require_permission(request, LM, PermissionType.READ)
    att = get_license_attachment(license_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.get("/{license_id}/audit-trail")
async def api_license_trail(license_id: int, request: Request):
    require_permission(request, LM, PermissionType.READ)
    get_license(license_id)
    return {"ok": True, "trail": get_entity_trail("License", license_id)}


def register_license_routes(app: FastAPI):
    init_license_schema()
    app.include_router(router)
