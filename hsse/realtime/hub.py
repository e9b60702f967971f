# ============================================================================
# HSSE Realtime - WebSocket Hub
# ============================================================================
# Fire-and-forget "X changed" notifications for client cache invalidation.
# Connections are tracked per user; clients may also join named groups
# (e.g. "location:Plant A") to receive scoped announcements.
# ============================================================================

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class HubBroadcaster:
    """
    Manages WebSocket connections for real-time notifications.

    - Per-user connection tracking
    - Broadcast to all users
    - Send to a specific user
    - Send to a named group
    """

    def __init__(self):
        # user_id -> set of WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        # WebSocket -> user_id
        self._ws_to_user: Dict[WebSocket, str] = {}
        # group name -> set of WebSocket connections
        self._groups: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
            self._ws_to_user[websocket] = user_id
        logger.info(f"[Hub] {user_id} connected. Total connections: {self.count_connections()}")
        await self._send_to_websocket(websocket, {
            "type": "connected",
            "user_id": user_id,
            "timestamp": datetime.now().isoformat(),
        })

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            user_id = self._ws_to_user.pop(websocket, None)
            if user_id and user_id in self._connections:
                self._connections[user_id].discard(websocket)
                if not self._connections[user_id]:
                    del self._connections[user_id]
            for members in self._groups.values():
                members.discard(websocket)
            self._groups = {g: m for g, m in self._groups.items() if m}
        logger.info(f"[Hub] {user_id} disconnected. Total connections: {self.count_connections()}")

    def count_connections(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    def get_online_users(self) -> List[str]:
        return list(self._connections.keys())

    def get_groups(self) -> Dict[str, int]:
        return {g: len(m) for g, m in self._groups.items()}

    # ---- Groups ----

    async def join_group(self, websocket: WebSocket, group: str):
        async with self._lock:
            self._groups.setdefault(group, set()).add(websocket)

    async def leave_group(self, websocket: WebSocket, group: str):
        async with self._lock:
            members = self._groups.get(group)
            if members:
                members.discard(websocket)
                if not members:
                    del self._groups[group]

    # ---- Core Send/Broadcast ----

    async def _send_to_websocket(self, ws: WebSocket, data: Dict) -> bool:
        try:
            await ws.send_json(data)
            return True
        except Exception as e:
            logger.warning(f"[Hub] Send failed: {e}")
            return False

    async def _send_many(self, sockets: List[WebSocket], message: Dict) -> int:
        sent, failed = 0, []
        for ws in sockets:
            if await self._send_to_websocket(ws, message):
                sent += 1
            else:
                failed.append(ws)
        for ws in failed:
            await self.disconnect(ws)
        return sent

    @staticmethod
    def _message(event_type: str, data: Dict) -> Dict:
        return {"type": event_type, "timestamp": datetime.now().isoformat(), **data}

    async def send_to_user(self, user_id: str, event_type: str, data: Dict) -> int:
        async with self._lock:
            sockets = list(self._connections.get(user_id, set()))
        return await self._send_many(sockets, self._message(event_type, data))

    async def send_to_group(self, group: str, event_type: str, data: Dict) -> int:
        async with self._lock:
            sockets = list(self._groups.get(group, set()))
        return await self._send_many(sockets, self._message(event_type, {"group": group, **data}))

    async def broadcast(self, event_type: str, data: Dict, exclude_users: List[str] = None) -> int:
        exclude_users = exclude_users or []
        async with self._lock:
            sockets = [ws for uid, conns in self._connections.items()
                       if uid not in exclude_users for ws in conns]
        return await self._send_many(sockets, self._message(event_type, data))

    # ---- Client messages ----

    async def handle_client_message(self, websocket: WebSocket, user_id: str, data: Dict):
        msg_type = data.get("type")
        if msg_type == "ping":
            await self._send_to_websocket(websocket, {"type": "pong"})
        elif msg_type == "join" and data.get("group"):
            await self.join_group(websocket, str(data["group"]))
            await self._send_to_websocket(websocket, {"type": "joined", "group": data["group"]})
        elif msg_type == "leave" and data.get("group"):
            await self.leave_group(websocket, str(data["group"]))
            await self._send_to_websocket(websocket, {"type": "left", "group": data["group"]})


# Singleton instance
_hub = None


def get_hub() -> HubBroadcaster:
    """Get or create the singleton hub instance."""
    global _hub
    if _hub is None:
        _hub = HubBroadcaster()
    return _hub


def announce(event_type: str, data: Dict, group: Optional[str] = None,
             user_id: Optional[str] = None):
    """
    Schedule a notification from synchronous code.

    Goes to everyone, or to one group / one user when given. Outside a running
    event loop (scheduler thread, scripts) the notification is skipped.
    """
    hub = get_hub()
    if user_id:
        coro = hub.send_to_user(user_id, event_type, data)
    elif group:
        coro = hub.send_to_group(group, event_type, data)
    else:
        coro = hub.broadcast(event_type, data)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.debug(f"[Hub] No running loop, skipped {event_type}")
        return
    loop.create_task(coro)
