"""
HSSE Audits - API Routes
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
    init_audit_schema, get_audit, get_audit_detail, list_audits, create_audit, update_audit,
    delete_audit, schedule_audit, start_audit, submit_for_review, complete_audit, cancel_audit,
    archive_audit, add_item, remove_item, assess_item, add_finding, set_corrective_action,
    resolve_finding, verify_finding, close_finding, reopen_finding, add_comment,
    add_audit_attachment, get_audit_attachment, get_audit_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audits", tags=["audits"])

AM = ModuleType.AUDIT_MANAGEMENT

EXPORT_COLUMNS = [
    ("audit_number", "Number"), ("title", "Title"), ("audit_type", "Type"), ("status", "Status"),
    ("priority", "Priority"), ("scheduled_date", "Scheduled"), ("completed_date", "Completed"),
    ("auditor_name", "Auditor"), ("risk_level", "Risk Level"), ("score_percentage", "Score %"),
    ("overall_score", "Rating"), ("open_finding_count", "Open Findings"),
]


def _changed(audit):
    announce("AuditStatusChanged", {"audit_id": audit["id"], "audit_number": audit["audit_number"],
                                    "status": audit["status"]})
    announce("DashboardUpdate", {"module": AM.value})
    return {"ok": True, "audit": audit}


def _finding_changed(audit_id, finding):
    announce("AuditFindingUpdated", {"audit_id": audit_id, "finding_id": finding["id"],
                                     "severity": finding["severity"], "status": finding["status"]})
    return {"ok": True, "finding": finding, "audit": get_audit(audit_id)}


@router.get("")
async def api_list_audits(request: Request, search: str = None, status: str = None,
                          audit_type: str = None, risk_level: str = None,
                          page: int = 1, page_size: int = 20):
    require_permission(request, AM, PermissionType.READ)
    return {"ok": True, **list_audits(search, status, audit_type, None, risk_level, page, page_size)}


@router.get("/my-audits")
async def api_my_audits(request: Request):
    user = require_permission(request, AM, PermissionType.READ)
    return {"ok": True, **list_audits(auditor_id=user["id"], page_size=200)}


@router.get("/dashboard")
async def api_audit_dashboard(request: Request):
    require_permission(request, AM, PermissionType.READ)
    return {"ok": True, "dashboard": get_audit_dashboard()}


@router.get("/export")
async def api_export_audits(request: Request, format: str = "csv", status: str = None):
    require_permission(request, AM, PermissionType.EXPORT)
    rows = list_audits(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "audits", format)


@router.post("")
async def api_create_audit(request: Request):
    user = require_permission(request, AM, PermissionType.CREATE)
    data = await request.json()
    audit = create_audit(data, user)
    announce("AuditCreated", {"audit_id": audit["id"], "audit_number": audit["audit_number"],
                              "title": audit["title"]})
    return {"ok": True, "audit": audit}


@router.get("/{audit_id}")
async def api_get_audit(audit_id: int, request: Request):
    require_permission(request, AM, PermissionType.READ)
    return {"ok": True, "audit": get_audit_detail(audit_id)}


@router.put("/{audit_id}")
async def api_update_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "audit": update_audit(audit_id, data, actor(user))}


@router.delete("/{audit_id}")
async def api_delete_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.DELETE)
    delete_audit(audit_id, actor(user))
    return {"ok": True}


@router.post("/{audit_id}/schedule")
async def api_schedule_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(schedule_audit(audit_id, data.get("scheduled_date"), actor(user)))


@router.post("/{audit_id}/start")
async def api_start_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    return _changed(start_audit(audit_id, actor(user)))


@router.post("/{audit_id}/submit-review")
async def api_submit_audit_review(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    return _changed(submit_for_review(audit_id, actor(user)))


@router.post("/{audit_id}/complete")
async def api_complete_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.APPROVE)
    data = await request.json()
    audit = complete_audit(audit_id, data.get("summary"), data.get("recommendations"), actor(user))
    announce("AuditCompleted", {"audit_id": audit_id, "score": audit["score_percentage"],
                                "rating": audit["overall_score"]})
    return _changed(audit)


@router.post("/{audit_id}/cancel")
async def api_cancel_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(cancel_audit(audit_id, data.get("reason"), actor(user)))


@router.post("/{audit_id}/archive")
async def api_archive_audit(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    return _changed(archive_audit(audit_id, actor(user)))


# Items

@router.post("/{audit_id}/items")
async def api_add_audit_item(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "item": add_item(audit_id, data, actor(user))}


@router.delete("/{audit_id}/items/{item_id}")
async def api_remove_audit_item(audit_id: int, item_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    remove_item(audit_id, item_id, actor(user))
    return {"ok": True}


@router.post("/{audit_id}/items/{item_id}/assess")
async def api_assess_audit_item(audit_id: int, item_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "item": assess_item(audit_id, item_id, data, actor(user))}


# Findings

@router.post("/{audit_id}/findings")
async def api_add_audit_finding(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    finding = add_finding(audit_id, data, actor(user))
    if finding["severity"] in ("Major", "Critical"):
        announce("CriticalAuditFinding", {"audit_id": audit_id, "finding_id": finding["id"],
                                          "severity": finding["severity"]}, group="AuditManagers")
    return _finding_changed(audit_id, finding)


@router.post("/{audit_id}/findings/{finding_id}/corrective-action")
async def api_finding_corrective_action(audit_id: int, finding_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return _finding_changed(audit_id, set_corrective_action(audit_id, finding_id, data, actor(user)))


@router.post("/{audit_id}/findings/{finding_id}/resolve")
async def api_resolve_finding(audit_id: int, finding_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    return _finding_changed(audit_id, resolve_finding(audit_id, finding_id, actor(user)))


@router.post("/{audit_id}/findings/{finding_id}/verify")
async def api_verify_finding(audit_id: int, finding_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.APPROVE)
    data = await request.json()
    finding = verify_finding(audit_id, finding_id, data.get("verification_method"), actor(user))
    return _finding_changed(audit_id, finding)


@router.post("/{audit_id}/findings/{finding_id}/close")
async def api_close_finding(audit_id: int, finding_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.APPROVE)
    data = await request.json()
    return _finding_changed(audit_id, close_finding(audit_id, finding_id, data.get("notes"), actor(user)))


@router.post("/{audit_id}/findings/{finding_id}/reopen")
async def api_reopen_finding(audit_id: int, finding_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.UPDATE)
    data = await request.json()
    return _finding_changed(audit_id, reopen_finding(audit_id, finding_id, data.get("reason"), actor(user)))


# Comments, attachments, trail

@router.post("/{audit_id}/comments")
async def api_add_audit_comment(audit_id: int, request: Request):
    user = require_permission(request, AM, PermissionType.READ)
    data = await request.json()
    comment = add_comment(audit_id, data.get("comment"), data.get("comment_type"), actor(user))
    return {"ok": True, "comment": comment}


@router.post("/{audit_id}/attachments")
async def api_audit_upload(audit_id: int, request: Request, file: UploadFile = File(...),
                           attachment_type: str = Form("Evidence")):
    user = require_permission(request, AM, PermissionType.UPDATE)
    get_audit(audit_id)
    meta = await storage.save_upload(file, "audits", audit_id)
    att_id = add_audit_attachment(audit_id, meta, attachment_type, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/{audit_id}/attachments/{attachment_id}")
async def api_audit_download(audit_id: int, attachment_id: int, request: Request):
    require_permission(request, AM, PermissionType.READ)
    att = get_audit_attachment(audit_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.get("/{audit_id}/audit-trail")
async def api_audit_trail(audit_id: int, request: Request):
    require_permission(request, AM, PermissionType.READ)
    get_audit(audit_id)
    return {"ok": True, "trail": get_entity_trail("Audit", audit_id)}


def register_audit_routes(app: FastAPI):
    init_audit_schema()
    app.include_router(router)
