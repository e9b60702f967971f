"""
HSSE PPE - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import Response

from hsse.activity import get_entity_trail
from hsse.auth.deps import require_permission, actor
from hsse.auth.permissions import ModuleType, PermissionType
from hsse.exports import export_response
from hsse.realtime import announce
from .models import (
    init_ppe_schema, list_categories, get_category, create_category, update_category,
    delete_category, list_items, get_item, get_item_by_code, create_item, update_item,
    delete_item, assign_item, return_item, update_condition, retire_item, mark_lost,
    record_maintenance, record_inspection, get_item_history, get_ppe_dashboard, export_items,
)
from .qr import generate_qr_png, qr_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ppe", tags=["ppe"])

PPE = ModuleType.PPE_MANAGEMENT

EXPORT_COLUMNS = [
    ("item_code", "Item Code"), ("name", "Name"), ("category_name", "Category"),
    ("manufacturer", "Manufacturer"), ("size", "Size"), ("condition", "Condition"),
    ("status", "Status"), ("assigned_to_name", "Assigned To"), ("expiry_date", "Expiry"),
    ("next_inspection_date", "Next Inspection"), ("location", "Location"),
]


def _item_changed(item):
    announce("PPEItemUpdated", {"item_id": item["id"], "item_code": item["item_code"],
                                "status": item["status"], "condition": item["condition"]})
    announce("DashboardUpdate", {"module": PPE.value})


# ---------------- Categories ----------------

@router.get("/categories")
async def api_list_categories(request: Request, active_only: bool = False):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, "categories": list_categories(active_only)}


@router.post("/categories")
async def api_create_category(request: Request):
    user = require_permission(request, PPE, PermissionType.CREATE)
    data = await request.json()
    return {"ok": True, "category": create_category(data, actor(user))}


@router.get("/categories/{category_id}")
async def api_get_category(category_id: int, request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, "category": get_category(category_id)}


@router.put("/categories/{category_id}")
async def api_update_category(category_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "category": update_category(category_id, data, actor(user))}


@router.delete("/categories/{category_id}")
async def api_delete_category(category_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.DELETE)
    delete_category(category_id, actor(user))
    return {"ok": True}


# ---------------- Items ----------------

@router.get("/items")
async def api_list_items(request: Request, search: str = None, category_id: int = None,
                         status: str = None, condition: str = None, assigned_to_id: int = None,
                         page: int = 1, page_size: int = 20):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, **list_items(search, category_id, status, condition, assigned_to_id,
                                     False, page, page_size)}


@router.get("/items/expiring")
async def api_expiring_items(request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, **list_items(expiring_only=True, page_size=200)}


@router.get("/my-items")
async def api_my_items(request: Request):
    user = require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, **list_items(assigned_to_id=user["id"], page_size=200)}


@router.get("/items/by-code/{item_code}")
async def api_item_by_code(item_code: str, request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, "item": get_item_by_code(item_code)}


@router.get("/dashboard")
async def api_ppe_dashboard(request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, "dashboard": get_ppe_dashboard()}


@router.get("/export")
async def api_export_ppe(request: Request, format: str = "csv"):
    require_permission(request, PPE, PermissionType.EXPORT)
    return export_response(export_items(), EXPORT_COLUMNS, "ppe_items", format)


@router.post("/items")
async def api_create_item(request: Request):
    user = require_permission(request, PPE, PermissionType.CREATE)
    data = await request.json()
    item = create_item(data, actor(user))
    announce("DashboardUpdate", {"module": PPE.value})
    return {"ok": True, "item": item}


@router.get("/items/{item_id}")
async def api_get_item(item_id: int, request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, "item": get_item(item_id)}


@router.put("/items/{item_id}")
async def api_update_item(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    return {"ok": True, "item": update_item(item_id, data, actor(user))}


@router.delete("/items/{item_id}")
async def api_delete_item(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.DELETE)
    delete_item(item_id, actor(user))
    return {"ok": True}


@router.post("/items/{item_id}/assign")
async def api_assign_item(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.ASSIGN)
    data = await request.json()
    item = assign_item(item_id, data.get("assigned_to_id"), data.get("purpose"), actor(user))
    _item_changed(item)
    announce("PPEAssigned", {"item_id": item_id, "item_code": item["item_code"]},
             user_id=item["assigned_to_email"])
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/return")
async def api_return_item(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = return_item(item_id, data.get("condition"), data.get("notes"), actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/condition")
async def api_update_condition(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = update_condition(item_id, data.get("condition"), data.get("notes"), actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/retire")
async def api_retire_item(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = retire_item(item_id, data.get("reason"), actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/lost")
async def api_mark_lost(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = mark_lost(item_id, data.get("notes"), actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/maintenance")
async def api_record_maintenance(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = record_maintenance(item_id, data, actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.post("/items/{item_id}/inspections")
async def api_record_inspection(item_id: int, request: Request):
    user = require_permission(request, PPE, PermissionType.UPDATE)
    data = await request.json()
    item = record_inspection(item_id, data, actor(user))
    _item_changed(item)
    return {"ok": True, "item": item}


@router.get("/items/{item_id}/history")
async def api_item_history(item_id: int, request: Request):
    require_permission(request, PPE, PermissionType.READ)
    return {"ok": True, **get_item_history(item_id)}


@router.get("/items/{item_id}/qr")
async def api_item_qr(item_id: int, request: Request, size: int = 300):
    require_permission(request, PPE, PermissionType.READ)
    item = get_item(item_id)
    png = generate_qr_png(qr_payload(item), max(100, min(size, 1000)))
    return Response(content=png, media_type="image/png",
                    headers={"Content-Disposition": f'inline; filename="{item["item_code"]}.png"'})


@router.get("/items/{item_id}/audit-trail")
async def api_item_trail(item_id: int, request: Request):
    require_permission(request, PPE, PermissionType.READ)
    get_item(item_id)
    return {"ok": True, "trail": get_entity_trail("PPEItem", item_id)}


def register_ppe_routes(app: FastAPI):
    init_ppe_schema()
    app.include_router(router)
