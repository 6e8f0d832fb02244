# routers/websocket_router.py - Real-time board updates over WebSocket
import json
import logging
from typing import Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from starlette.websockets import WebSocketState

from access import AccessResolver
from auth import read_access_claims
from database import get_db_context

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("workboard.ws")


def board_channel(board_id: str) -> str:
    return f"board:{board_id}"


class ConnectionManager:
    """Tracks sockets per user and the board channels each socket follows"""

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}  # user_id -> sockets
        self._channels: Dict[str, Set[WebSocket]] = {}  # channel -> subscribed sockets
        self._owners: Dict[WebSocket, str] = {}  # socket -> user_id

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.register(websocket, user_id)
        logger.info(f"WS connected: user={user_id[:8]}")

    def register(self, websocket: WebSocket, user_id: str):
        self._connections.setdefault(user_id, set()).add(websocket)
        self._owners[websocket] = user_id

    def disconnect(self, websocket: WebSocket):
        user_id = self._owners.pop(websocket, None)
        if user_id is None:
            return
        sockets = self._connections.get(user_id, set())
        sockets.discard(websocket)
        if not sockets:
            self._connections.pop(user_id, None)
        for channel in list(self._channels):
            self._drop(channel, websocket)
        logger.info(f"WS disconnected: user={user_id[:8]}")

    def subscribe(self, websocket: WebSocket, channel: str):
        self._channels.setdefault(channel, set()).add(websocket)

    def unsubscribe(self, websocket: WebSocket, channel: str):
        self._drop(channel, websocket)

    def _drop(self, channel: str, websocket: WebSocket):
        sockets = self._channels.get(channel)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._channels[channel]

    def revoke(self, user_id: str, channel: str) -> int:
        """Unsubscribe every socket of `user_id` from `channel`"""
        dropped = [ws for ws in self._channels.get(channel, ()) if self._owners.get(ws) == user_id]
        for ws in dropped:
            self._drop(channel, ws)
        if dropped:
            logger.info(f"WS access revoked: user={user_id[:8]} {channel}")
        return len(dropped)

    def close_channel(self, channel: str):
        self._channels.pop(channel, None)

    def subscribers(self, channel: str) -> Set[str]:
        return {self._owners[ws] for ws in self._channels.get(channel, ()) if ws in self._owners}

    async def _send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            user_id = self._owners.get(websocket, "?")
            logger.warning(f"WS send failed for user={user_id[:8]}: {e}")
            self.disconnect(websocket)
            return False

    async def broadcast_to_channel(self, channel: str, message: dict, exclude_user: Optional[str] = None) -> int:
        delivered = 0
        for ws in list(self._channels.get(channel, ())):
            if self._owners.get(ws) == exclude_user:
                continue
            delivered += await self._send(ws, message)
        return delivered

    def get_stats(self) -> dict:
        return {
            "users": len(self._connections),
            "total_connections": sum(len(s) for s in self._connections.values()),
            "channels": len(self._channels),
        }


# Global connection manager
manager = ConnectionManager()


async def _can_subscribe(user_id: str, board_id: str) -> bool:
    async with get_db_context() as db:
        return await AccessResolver.for_session(db).can_read(user_id, board_id)


async def _handle_message(websocket: WebSocket, user_id: str, data: dict):
    msg_type = data.get("type")

    if msg_type == "ping":
        await websocket.send_json({"type": "pong"})

    elif msg_type == "subscribe":
        board_id = str(data.get("board_id", ""))
        if board_id and await _can_subscribe(user_id, board_id):
            manager.subscribe(websocket, board_channel(board_id))
            await websocket.send_json({"type": "subscribed", "board_id": board_id})
        else:
            await websocket.send_json({"type": "error", "detail": "Access denied", "board_id": board_id})

    elif msg_type == "unsubscribe":
        board_id = str(data.get("board_id", ""))
        manager.unsubscribe(websocket, board_channel(board_id))
        await websocket.send_json({"type": "unsubscribed", "board_id": board_id})

    else:
        await websocket.send_json({"type": "error", "detail": f"Unknown message type: {msg_type}"})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
    """Clients subscribe to boards they can read and receive every board event"""
    payload = read_access_claims(token)
    if not payload:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    user_id = payload["sub"]
    await manager.connect(websocket, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                data = None
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "detail": "Messages must be JSON objects"})
                continue
            await _handle_message(websocket, user_id, data)

    except WebSocketDisconnect:
        logger.debug(f"WS closed by client: user={user_id[:8]}")
    except Exception as e:
        logger.error(f"WS error for user={user_id[:8]}: {e}")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=1011)
    finally:
        manager.disconnect(websocket)
