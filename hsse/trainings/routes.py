"""
HSSE Trainings - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_training_schema, get_training, get_training_detail, list_trainings, create_training,
    update_training, schedule_training, start_training, complete_training, cancel_training,
    list_participants, enroll_participant, remove_participant, record_attendance, mark_no_show,
    record_assessment, retake_assessment, submit_feedback, list_certifications,
    get_training_dashboard,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trainings", tags=["trainings"])

TM = ModuleType.TRAINING_MANAGEMENT

EXPORT_COLUMNS = [
    ("training_code", "Code"), ("title", "Title"), ("training_type", "Type"),
    ("status", "Status"), ("scheduled_start_date", "Start"), ("scheduled_end_date", "End"),
    ("enrolled_count", "Enrolled"), ("max_participants", "Capacity"),
    ("instructor_name", "Instructor"), ("average_rating", "Rating"),
]


def _status_changed(training):
    announce("TrainingStatusChanged", {"training_id": training["id"], "status": training["status"]})
    announce("DashboardUpdate", {"module": TM.value})


@router.get("")
async def api_list_trainings(request: Request, search: str = None, status: str = None,
                             training_type: str = None, page: int = 1, page_size: int = 20):
    require_permission(request, TM, PermissionType.READ)
    return {"ok": True, **list_trainings(search, status, training_type, None, page, page_size)}


@router.get("/my-trainings")
async def api_my_trainings(request: Request):
    user = require_permission(request, TM, PermissionType.READ)
    return {"ok": True, **list_trainings(user_id=user["id"], page_size=200)}


@router.get("/my-certifications")
async def api_my_certifications(request: Request):
    user = require_permission(request, TM, PermissionType.READ)
    return {"ok": True, "certifications": list_certifications(user_id=user["id"])}


@router.get("/certifications")
async def api_certifications(request: Request, user_id: int = None, expiring_within_days: int = None):
    require_permission(request, TM, PermissionType.READ)
    return {"ok": True, "certifications": list_certifications(user_id, expiring_within_days)}


@router.get("/dashboard")
async def api_training_dashboard(request: Request):
    require_permission(request, TM, PermissionType.READ)
    return {"ok": True, "dashboard": get_training_dashboard()}


@router.get("/export")
async def api_export_trainings(request: Request, format: str = "csv", status: str = None):
    require_permission(request, TM, PermissionType.EXPORT)
    rows = list_trainings(status=status, page_size=200)["items"]
    return export_response(rows, EXPORT_COLUMNS, "trainings", format)


@router.post("")
async def api_create_training(request: Request):
    user = require_permission(request, TM, PermissionType.CREATE)
    data = await request.json()
    training = create_training(data, actor(user))
    announce("DashboardUpdate", {"module": TM.value})
    return {"ok": True, "training": training}


@router.get("/{training_id}")
async def api_get_training(training_id: int, request: Request):
    require_permission(request, TM, PermissionType.READ)
    return {"ok": True, "training": get_training_detail(training_id)}


@router.put("/{training_id}")
async def api_update_training(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "training": update_training(training_id, data, actor(user))}


@router.post("/{training_id}/schedule")
async def api_schedule_training(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    training = schedule_training(training_id, actor(user))
    _status_changed(training)
    return {"ok": True, "training": training}


@router.post("/{training_id}/start")
async def api_start_training(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    training = start_training(training_id, actor(user))
    _status_changed(training)
    return {"ok": True, "training": training}


@router.post("/{training_id}/complete")
async def api_complete_training(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    data = await request.json()
    training = complete_training(training_id, data.get("evaluation_summary"), actor(user))
    _status_changed(training)
    return {"ok": True, "training": training}


@router.post("/{training_id}/cancel")
async def api_cancel_training(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    data = await request.json()
    training = cancel_training(training_id, data.get("reason"), actor(user))
    _status_changed(training)
    return {"ok": True, "training": training}


@router.get("/{training_id}/participants")
async def api_list_participants(training_id: int, request: Request):
    require_permission(request, TM, PermissionType.READ)
    get_training(training_id)
    return {"ok": True, "participants": list_participants(training_id)}


@router.post("/{training_id}/participants")
async def api_enroll(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.ASSIGN)
    data = await request.json()
    return {"ok": True, "participant": enroll_participant(training_id, data.get("user_id"), actor(user))}


@router.delete("/{training_id}/participants/{user_id}")
async def api_remove_participant(training_id: int, user_id: int, request: Request, reason: str = None):
    user = require_permission(request, TM, PermissionType.ASSIGN)
    remove_participant(training_id, user_id, reason, actor(user))
    return {"ok": True}


@router.post("/{training_id}/participants/{user_id}/attendance")
async def api_record_attendance(training_id: int, user_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    data = await request.json()
    participant = record_attendance(training_id, user_id, data.get("attendance_percentage"), actor(user))
    return {"ok": True, "participant": participant}


@router.post("/{training_id}/participants/{user_id}/no-show")
async def api_no_show(training_id: int, user_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    return {"ok": True, "participant": mark_no_show(training_id, user_id, actor(user))}


@router.post("/{training_id}/participants/{user_id}/assessment")
async def api_record_assessment(training_id: int, user_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    data = await request.json()
    participant = record_assessment(training_id, user_id, data.get("score"), actor(user))
    return {"ok": True, "participant": participant}


@router.post("/{training_id}/participants/{user_id}/retake")
async def api_retake(training_id: int, user_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.UPDATE)
    return {"ok": True, "participant": retake_assessment(training_id, user_id, actor(user))}


@router.post("/{training_id}/feedback")
async def api_feedback(training_id: int, request: Request):
    user = require_permission(request, TM, PermissionType.READ)
    data = await request.json()
    participant = submit_feedback(training_id, user["id"], data.get("rating"), data.get("feedback"))
    return {"ok": True, "participant": participant}


@router.get("/{training_id}/audit-trail")
async def api_training_trail(training_id: int, request: Request):
    require_permission(request, TM, PermissionType.READ)
    get_training(training_id)
    return {"ok": True, "trail": get_entity_trail("Training", training_id)}


def register_training_routes(app: FastAPI):
    init_training_schema()
    app.include_router(router)
