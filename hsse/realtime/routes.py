"""
HSSE Realtime - hub WebSocket endpoint
"""
import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect

from hsse.auth.deps import current_user
from .hub import get_hub

logger = logging.getLogger(__name__)


def register_realtime_routes(app: FastAPI):

    @app.websocket("/ws/hub")
    async def hub_websocket(websocket: WebSocket):
        user_id = websocket.session.get("user") if "session" in websocket.scope else None
        if not user_id:
            await websocket.close(code=4001)
            return

        hub = get_hub()
        await hub.connect(websocket, user_id)
        try:
            while True:
                data = await websocket.receive_json()
                await hub.handle_client_message(websocket, user_id, data)
        except WebSocketDisconnect:
            await hub.disconnect(websocket)
        except Exception as e:
            logger.warning(f"[Hub] Error for {user_id}: {e}")
            await hub.disconnect(websocket)

    @app.get("/api/hub/status")
    async def api_hub_status(request: Request):
        current_user(request)
        hub = get_hub()
        return {
            "ok": True,
            "connections": hub.count_connections(),
            "online_users": hub.get_online_users(),
            "groups": hub.get_groups(),
        }
