"""
HSSE Health - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    HealthIncidentSeverity, init_health_schema, get_health_record, get_health_record_detail,
    list_health_records, get_record_for_person, create_health_record, update_health_record,
    deactivate_health_record, add_medical_condition, update_medical_condition, remove_medical_condition,
    add_vaccination, update_vaccination, record_exemption, get_vaccination_compliance,
    add_health_incident, resolve_health_incident, list_health_incidents, list_emergency_contacts,
    add_emergency_contact, update_emergency_contact, remove_emergency_contact, get_health_dashboard,
    get_health_alerts,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])

HM = ModuleType.HEALTH_MONITORING

EXPORT_COLUMNS = [
    ("person_name", "Name"), ("person_email", "Email"), ("person_type", "Type"),
    ("department", "Department"), ("blood_type", "Blood Type"), ("condition_count", "Conditions"),
    ("critical_count", "Critical"), ("contact_count", "Emergency Contacts"),
    ("next_health_check_date", "Next Check"),
]

SERIOUS = (HealthIncidentSeverity.SEVERE.value, HealthIncidentSeverity.CRITICAL.value)


def _dashboard_changed():
    announce("DashboardUpdate", {"module": HM.value})


# Records

@router.get("/records")
async def api_list_health_records(request: Request, search: str = None, person_type: str = None,
                                  active: bool = True, page: int = 1, page_size: int = 20):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, **list_health_records(search, person_type, active, page, page_size)}


@router.get("/records/export")
async def api_export_health_records(request: Request, format: str = "csv", person_type: str = None):
    require_permission(request, HM, PermissionType.EXPORT)
    rows = list_health_records(person_type=person_type, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "health_records", format)


@router.get("/my-record")
async def api_my_health_record(request: Request):
    user = require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "record": get_record_for_person(user["id"])}


@router.post("/records")
async def api_create_health_record(request: Request):
    user = require_permission(request, HM, PermissionType.CREATE)
    data = await request.json()
    record = create_health_record(data, actor(user))
    _dashboard_changed()
    return {"ok": True, "record": record}


@router.get("/records/{record_id}")
async def api_get_health_record(record_id: int, request: Request):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "record": get_health_record_detail(record_id)}


@router.put("/records/{record_id}")
async def api_update_health_record(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "record": update_health_record(record_id, data, actor(user))}


@router.delete("/records/{record_id}")
async def api_deactivate_health_record(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.DELETE)
    deactivate_health_record(record_id, actor(user))
    _dashboard_changed()
    return {"ok": True}


@router.get("/records/{record_id}/audit-trail")
async def api_health_record_trail(record_id: int, request: Request):
    require_permission(request, HM, PermissionType.READ)
    get_health_record(record_id)
    return {"ok": True, "trail": get_entity_trail("HealthRecord", record_id)}


# Medical conditions

@router.post("/records/{record_id}/conditions")
async def api_add_condition(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    condition = add_medical_condition(record_id, data, actor(user))
    if condition["severity"] == "Critical" or condition["requires_emergency_action"]:
        announce("CriticalMedicalCondition", {"health_record_id": record_id, "condition_id": condition["id"],
                                              "name": condition["name"]})
    return {"ok": True, "condition": condition}


@router.put("/conditions/{condition_id}")
async def api_update_condition(condition_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "condition": update_medical_condition(condition_id, data, actor(user))}


@router.delete("/conditions/{condition_id}")
async def api_remove_condition(condition_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    remove_medical_condition(condition_id, actor(user))
    return {"ok": True}


# Vaccinations

@router.post("/records/{record_id}/vaccinations")
async def api_add_vaccination(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    vaccination = add_vaccination(record_id, data, actor(user))
    _dashboard_changed()
    return {"ok": True, "vaccination": vaccination}


@router.put("/vaccinations/{vaccination_id}")
async def api_update_vaccination(vaccination_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "vaccination": update_vaccination(vaccination_id, data, actor(user))}


@router.post("/vaccinations/{vaccination_id}/exemption")
async def api_vaccination_exemption(vaccination_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.APPROVE)
    data = await request.json()
    vaccination = record_exemption(vaccination_id, data.get("reason"), actor(user))
    _dashboard_changed()
    return {"ok": True, "vaccination": vaccination}


@router.get("/analytics/vaccination-compliance")
async def api_vaccination_compliance(request: Request, person_type: str = None):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "compliance": get_vaccination_compliance(person_type)}


# Health incidents

@router.get("/incidents")
async def api_list_health_incidents(request: Request, severity: str = None, incident_type: str = None):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "incidents": list_health_incidents(severity, incident_type)}


@router.post("/records/{record_id}/incidents")
async def api_add_health_incident(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.CREATE)
    data = await request.json()
    incident = add_health_incident(record_id, data, actor(user))
    if incident["severity"] in SERIOUS:
        announce("SeriousHealthIncident", {"health_record_id": record_id, "incident_id": incident["id"],
                                           "person_name": incident["person_name"],
                                           "severity": incident["severity"]})
    _dashboard_changed()
    return {"ok": True, "incident": incident}


@router.post("/incidents/{incident_id}/resolve")
async def api_resolve_health_incident(incident_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "incident": resolve_health_incident(incident_id, data.get("notes"), actor(user))}


# Emergency contacts

@router.get("/records/{record_id}/emergency-contacts")
async def api_list_emergency_contacts(record_id: int, request: Request):
    require_permission(request, HM, PermissionType.READ)
    get_health_record(record_id)
    return {"ok": True, "contacts": list_emergency_contacts(record_id)}


@router.post("/records/{record_id}/emergency-contacts")
async def api_add_emergency_contact(record_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "contact": add_emergency_contact(record_id, data, actor(user))}


@router.put("/emergency-contacts/{contact_id}")
async def api_update_emergency_contact(contact_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "contact": update_emergency_contact(contact_id, data, actor(user))}


@router.delete("/emergency-contacts/{contact_id}")
async def api_remove_emergency_contact(contact_id: int, request: Request):
    user = require_permission(request, HM, PermissionType.UPDATE)
    remove_emergency_contact(contact_id, actor(user))
    return {"ok": True}


# Dashboard

@router.get("/dashboard")
async def api_health_dashboard(request: Request):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "dashboard": get_health_dashboard()}


@router.get("/alerts")
async def api_health_alerts(request: Request):
    require_permission(request, HM, PermissionType.READ)
    return {"ok": True, "alerts": get_health_alerts()}


def register_health_routes(app: FastAPI):
    init_health_schema()
    app.include_router(router)
