"""
HSSE Auth - API Routes
"""
import logging

from fastapi import APIRouter, FastAPI, Request

from hsse.activity import log_activity
from hsse.errors import AuthRequired
from .deps import current_user
from .models import init_auth_schema, authenticate
from .permissions import serialize_permission_map, ROLE_DESCRIPTIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _serialize_user(user):
    out = {k: v for k, v in user.items() if k not in ("permissions", "password_hash")}
    if "permissions" in user:
        out["permissions"] = {
            module.value: sorted(p.value for p in perms)
            for module, perms in user["permissions"].items()
        }
        out["modules"] = sorted(m.value for m in user["permissions"])
    return out


@router.post("/login")
async def api_login(request: Request):
    data = await request.json()
    user = authenticate(data.get("email", ""), data.get("password", ""))
    if not user:
        logger.info("[Auth] Failed login for %s", data.get("email"))
        raise AuthRequired("Invalid email or password")
    request.session["user_id"] = user["id"]
    request.session["user"] = user["email"]
    log_activity("User", user["id"], "Login", user=user["email"])
    return {"ok": True, "user": _serialize_user(current_user(request))}


@router.post("/logout")
async def api_logout(request: Request):
    user = request.session.get("user")
    request.session.clear()
    if user:
        logger.info("[Auth] %s logged out", user)
    return {"ok": True}


@router.get("/me")
async def api_me(request: Request):
    return {"ok": True, "user": _serialize_user(current_user(request))}


@router.get("/permission-map")
async def api_permission_map(request: Request):
    current_user(request)
    return {
        "ok": True,
        "roles": {r.value: d for r, d in ROLE_DESCRIPTIONS.items()},
        "map": serialize_permission_map(),
    }


def register_auth_routes(app: FastAPI):
    init_auth_schema()
    app.include_router(router)
