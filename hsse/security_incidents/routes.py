"""
HSSE Security Incidents - API Routes
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
    HIGH_SEVERITIES, is_threat_escalation, init_security_incident_schema, get_security_incident,
    get_security_incident_detail, list_security_incidents, create_security_incident,
    update_security_incident, assign_incident, assign_investigator, update_threat_assessment,
    update_impact_assessment, record_containment, start_eradication, start_recovery, resolve_incident,
    close_incident, escalate_incident, add_response, list_responses, add_security_attachment,
    get_security_attachment, get_security_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security-incidents", tags=["security-incidents"])

SM = ModuleType.SECURITY_INCIDENT_MANAGEMENT

EXPORT_COLUMNS = [
    ("incident_number", "Number"), ("title", "Title"), ("incident_type", "Type"),
    ("category", "Category"), ("severity", "Severity"), ("status", "Status"),
    ("threat_level", "Threat Level"), ("incident_datetime", "Occurred"), ("location", "Location"),
    ("impact", "Impact"), ("data_breach_occurred", "Data Breach"), ("assigned_to_name", "Assigned To"),
]


def _summary(incident):
    return {"incident_id": incident["id"], "incident_number": incident["incident_number"],
            "title": incident["title"], "severity": incident["severity"], "location": incident["location"]}


def _notify_high_severity(incident):
    if incident["severity"] in HIGH_SEVERITIES:
        announce("HighSeveritySecurityIncident", _summary(incident))


def _changed(incident):
    announce("SecurityIncidentStatusChanged", {**_summary(incident), "status": incident["status"]})
    announce("DashboardUpdate", {"module": SM.value})
    return {"ok": True, "incident": incident}


@router.get("")
async def api_list_security_incidents(request: Request, search: str = None, status: str = None,
                                      incident_type: str = None, severity: str = None,
                                      page: int = 1, page_size: int = 20):
    require_permission(request, SM, PermissionType.READ)
    return {"ok": True, **list_security_incidents(search, status, incident_type, severity,
                                                  page=page, page_size=page_size)}


@router.get("/my-incidents")
async def api_my_security_incidents(request: Request):
    user = require_permission(request, SM, PermissionType.READ)
    return {"ok": True, **list_security_incidents(reporter_id=user["id"], page_size=200)}


@router.get("/dashboard")
async def api_security_dashboard(request: Request, days: int = 30):
    require_permission(request, SM, PermissionType.READ)
    return {"ok": True, "dashboard": get_security_dashboard(max(1, days))}


@router.get("/export")
async def api_export_security_incidents(request: Request, format: str = "csv", status: str = None):
    require_permission(request, SM, PermissionType.EXPORT)
    rows = list_security_incidents(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "security_incidents", format)


@router.post("")
async def api_create_security_incident(request: Request):
    user = require_permission(request, SM, PermissionType.CREATE)
    data = await request.json()
    incident = create_security_incident(data, user)
    announce("SecurityIncidentCreated", _summary(incident))
    _notify_high_severity(incident)
    announce("DashboardUpdate", {"module": SM.value})
    return {"ok": True, "incident": incident}


@router.get("/{incident_id}")
async def api_get_security_incident(incident_id: int, request: Request):
    require_permission(request, SM, PermissionType.READ)
    return {"ok": True, "incident": get_security_incident_detail(incident_id)}


@router.put("/{incident_id}")
async def api_update_security_incident(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "incident": update_security_incident(incident_id, data, actor(user))}


@router.post("/{incident_id}/assign")
async def api_assign_security_incident(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.ASSIGN)
    data = await request.json()
    incident = assign_incident(incident_id, data.get("assigned_to_id"), actor(user))
    announce("SecurityIncidentAssigned", _summary(incident), user_id=incident["assigned_to_email"])
    return _changed(incident)


@router.post("/{incident_id}/investigator")
async def api_assign_investigator(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.ASSIGN)
    data = await request.json()
    incident = assign_investigator(incident_id, data.get("investigator_id"), actor(user))
    announce("SecurityIncidentAssigned", _summary(incident), user_id=incident["investigator_email"])
    return _changed(incident)


@router.post("/{incident_id}/threat-assessment")
async def api_threat_assessment(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    previous = get_security_incident(incident_id)["threat_level"]
    incident = update_threat_assessment(incident_id, data, actor(user))
    if is_threat_escalation(previous, incident["threat_level"]):
        announce("SecurityIncidentEscalated", {**_summary(incident), "previous_threat_level": previous,
                                               "threat_level": incident["threat_level"]})
    return {"ok": True, "incident": incident}


@router.post("/{incident_id}/impact-assessment")
async def api_impact_assessment(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    incident = update_impact_assessment(incident_id, data, actor(user))
    if incident["data_breach_occurred"]:
        announce("DataBreachReported", {**_summary(incident), "impact": incident["impact"],
                                        "affected_persons_count": incident["affected_persons_count"]})
    return {"ok": True, "incident": incident}


@router.post("/{incident_id}/containment")
async def api_record_containment(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(record_containment(incident_id, data.get("containment_actions"), actor(user)))


@router.post("/{incident_id}/eradication")
async def api_start_eradication(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    return _changed(start_eradication(incident_id, actor(user)))


@router.post("/{incident_id}/recovery")
async def api_start_recovery(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    return _changed(start_recovery(incident_id, actor(user)))


@router.post("/{incident_id}/resolve")
async def api_resolve_security_incident(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    return _changed(resolve_incident(incident_id, data.get("root_cause"), actor(user)))


@router.post("/{incident_id}/close")
async def api_close_security_incident(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.APPROVE)
    return _changed(close_incident(incident_id, actor(user)))


@router.post("/{incident_id}/escalate")
async def api_escalate_security_incident(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    incident = escalate_incident(incident_id, data.get("reason"), actor(user))
    announce("SecurityIncidentEscalated", {**_summary(incident), "reason": data.get("reason")})
    _notify_high_severity(incident)
    return {"ok": True, "incident": incident}


@router.get("/{incident_id}/responses")
async def api_list_responses(incident_id: int, request: Request):
    require_permission(request, SM, PermissionType.READ)
    return {"ok": True, "responses": list_responses(incident_id)}


@router.post("/{incident_id}/responses")
async def api_add_response(incident_id: int, request: Request):
    user = require_permission(request, SM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "response": add_response(incident_id, data, user)}


@router.post("/{incident_id}/attachments")
async def api_security_upload(incident_id: int, request: Request, file: UploadFile = File(...),
                              attachment_type: str = Form("Evidence")):
    user = require_permission(request, SM, PermissionType.UPDATE)
    get_security_incident(incident_id)
    meta = await storage.save_upload(file, "security", incident_id)
    att_id = add_security_attachment(incident_id, meta, attachment_type, actor(user))
    return {"ok": True, "attachment_id": att_id, "file_name": meta["file_name"]}


@router.get("/{incident_id}/attachments/{attachment_id}")
async def api_security_download(incident_id: int, attachment_id: int, request: Request):
    require_permission(request, SM, PermissionType.READ)
    att = get_security_attachment(incident_id, attachment_id)
    return FileResponse(storage.resolve(att["file_path"]), media_type=att["content_type"],
                        filename=att["file_name"])


@router.get("/{incident_id}/audit-trail")
async def api_security_trail(incident_id: int, request: Request):
    require_permission(request, SM, PermissionType.READ)
    get_security_incident(incident_id)
    return {"ok": True, "trail": get_entity_trail("SecurityIncident", incident_id)}


def register_security_incident_routes(app: FastAPI):
    init_security_incident_schema()
    app.include_router(router)
