"""
HSSE Incidents - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.responses import FileResponse

from hsse import storage
from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.models import list_active_user_choices
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_incident_schema, create_incident, get_incident_or_404, get_incident_detail,
    list_incidents, update_incident, change_status, delete_incident, add_attachment,
    get_attachment, delete_attachment, add_involved_person, remove_involved_person,
    add_corrective_action, complete_corrective_action, get_statistics, get_dashboard,
    export_incidents,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/incidents", tags=["incidents"])

IM = ModuleType.INCIDENT_MANAGEMENT

EXPORT_COLUMNS = [
    ("incident_number", "Number"), ("title", "Title"), ("severity", "Severity"),
    ("status", "Status"), ("incident_date", "Date"), ("location", "Location"),
    ("department", "Department"), ("reporter_name", "Reporter"), ("root_cause", "Root Cause"),
    ("created_at", "Created"),
]


def _announce_change(event: str, incident):
    announce(event, {"incident_id": incident["id"], "status": incident["status"]})
    announce("DashboardUpdate", {"module": IM.value})


@router.get("")
async def api_list_incidents(request: Request, search: str = None, status: str = None,
                             severity: str = None, date_from: str = None, date_to: str = None,
                             page: int = 1, page_size: int = 20):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, **list_incidents(search, status, severity, None, date_from, date_to,
                                         page, page_size)}


@router.get("/my-reports")
async def api_my_reports(request: Request, page: int = 1, page_size: int = 20):
    user = require_permission(request, IM, PermissionType.READ)
    return {"ok": True, **list_incidents(reporter_id=user["id"], page=page, page_size=page_size)}


@router.get("/statistics")
async def api_incident_statistics(request: Request, date_from: str = None, date_to: str = None):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "statistics": get_statistics(date_from, date_to)}


@router.get("/dashboard")
async def api_incident_dashboard(request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "dashboard": get_dashboard()}


@router.get("/available-users")
async def api_available_users(request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "users": list_active_user_choices()}


@router.get("/export")
async def api_export_incidents(request: Request, format: str = "csv", status: str = None,
                               severity: str = None):
    require_permission(request, IM, PermissionType.EXPORT)
    rows = export_incidents(status, severity)
    return export_response(rows, EXPORT_COLUMNS, "incidents", format)


@router.post("")
async def api_create_incident(request: Request):
    user = require_permission(request, IM, PermissionType.CREATE)
    data = await request.json()
    incident_id = create_incident(data, user)
    incident = get_incident_or_404(incident_id)
    payload = {"incident_id": incident_id, "incident_number": incident["incident_number"],
               "title": incident["title"], "severity": incident["severity"],
               "location": incident["location"]}
    announce("IncidentCreated", payload)
    announce("IncidentCreated", payload, group=f"location:{incident['location']}")
    announce("DashboardUpdate", {"module": IM.value})
    return {"ok": True, "incident": incident}


@router.get("/{incident_id}")
async def api_get_incident(incident_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "incident": get_incident_or_404(incident_id)}


@router.get("/{incident_id}/detail")
async def api_incident_detail(incident_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    return {"ok": True, "incident": get_incident_detail(incident_id)}


@router.put("/{incident_id}")
async def api_update_incident(incident_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    incident = update_incident(incident_id, data, actor(user))
    _announce_change("IncidentUpdated", incident)
    return {"ok": True, "incident": incident}


@router.post("/{incident_id}/status")
async def api_change_status(incident_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    incident = change_status(incident_id, data.get("status"), data.get("comment"), actor(user))
    _announce_change("IncidentStatusChanged", incident)
    return {"ok": True, "incident": incident}


@router.delete("/{incident_id}")
async def api_delete_incident(incident_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.DELETE)
    delete_incident(incident_id, actor(user))
    announce("IncidentDeleted", {"incident_id": incident_id})
    return {"ok": True}


@router.post("/{incident_id}/attachments")
async def api_upload_attachment(incident_id: int, request: Request, file: UploadFile = File(...)):
    user = require_permission(request, IM, PermissionType.UPDATE)
    get_incident_or_404(incident_id)
    meta = await storage.save_upload(file, "incidents", incident_id)
    att_id = add_attachment(incident_id, meta, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"],
            "file_size": meta["file_size"]}


@router.get("/{incident_id}/attachments/{attachment_id}")
async def api_download_attachment(incident_id: int, attachment_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    att = get_attachment(incident_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.delete("/{incident_id}/attachments/{attachment_id}")
async def api_delete_attachment(incident_id: int, attachment_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    att = delete_attachment(incident_id, attachment_id, actor(user))
    storage.delete_file(att["file_path"])
    return {"ok": True}


@router.post("/{incident_id}/involved-persons")
async def api_add_involved_person(incident_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "id": add_involved_person(incident_id, data, actor(user))}


@router.delete("/{incident_id}/involved-persons/{person_row_id}")
async def api_remove_involved_person(incident_id: int, person_row_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    remove_involved_person(incident_id, person_row_id, actor(user))
    return {"ok": True}


@router.post("/{incident_id}/corrective-actions")
async def api_add_corrective_action(incident_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "id": add_corrective_action(incident_id, data, actor(user))}


@router.post("/{incident_id}/corrective-actions/{action_id}/complete")
async def api_complete_corrective_action(incident_id: int, action_id: int, request: Request):
    user = require_permission(request, IM, PermissionType.UPDATE)
    data = await request.json()
    action = complete_corrective_action(incident_id, action_id, data.get("notes"), actor(user))
    return {"ok": True, "action": action}


@router.get("/{incident_id}/audit-trail")
async def api_incident_trail(incident_id: int, request: Request):
    require_permission(request, IM, PermissionType.READ)
    get_incident_or_404(incident_id)
    return {"ok": True, "trail": get_entity_trail("Incident", incident_id)}


def register_incident_routes(app: FastAPI):
    init_incident_schema()
    app.include_router(router)
