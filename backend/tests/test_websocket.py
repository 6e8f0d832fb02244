# tests/test_websocket.py - WebSocket, health, and security tests
import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient
from starlette.websockets import WebSocketDisconnect

from auth import AuthService, read_access_claims
from main import app
from routers import websocket_router
from routers.websocket_router import (
    ConnectionManager, _can_subscribe, board_channel,
)
from tests.conftest import get_auth_headers, grant_board


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Health endpoint returns OK"""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert set(data["websocket"]) == {"users", "total_connections", "channels"}


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.json()["name"] == "Workboard"


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    """Responses include security headers"""
    resp = await client.get("/health")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "x-request-id" in {k.lower() for k in resp.headers}
    assert "x-response-time" in {k.lower() for k in resp.headers}


@pytest.mark.asyncio
async def test_request_id_is_echoed_on_errors(client: AsyncClient, workspace, employee):
    resp = await client.get(
        "/api/v1/boards/missing",
        headers={**get_auth_headers(employee), "X-Request-ID": "req-123"},
    )
    assert resp.status_code == 404
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.json()["request_id"] == "req-123"


# ============================================================
# CONNECTION MANAGER
# ============================================================

def _attach(mgr, user_id, *sockets):
    for ws in sockets:
        mgr.register(ws, user_id)


@pytest.mark.asyncio
async def test_manager_subscribe_broadcast_and_disconnect():
    mgr = ConnectionManager()
    first, second, other = FakeSocket(), FakeSocket(), FakeSocket()
    _attach(mgr, "u1", first, second)
    _attach(mgr, "u2", other)
    mgr.subscribe(first, board_channel("b1"))
    mgr.subscribe(second, board_channel("b1"))
    mgr.subscribe(other, board_channel("b1"))

    delivered = await mgr.broadcast_to_channel(board_channel("b1"), {"type": "board_event"}, exclude_user="u2")
    assert delivered == 2
    assert other.sent == []
    assert mgr.get_stats() == {"users": 2, "total_connections": 3, "channels": 1}

    mgr.disconnect(first)
    assert mgr.subscribers(board_channel("b1")) == {"u1", "u2"}
    mgr.disconnect(second)
    assert mgr.subscribers(board_channel("b1")) == {"u2"}

    mgr.unsubscribe(other, board_channel("b1"))
    assert mgr.get_stats()["channels"] == 0


@pytest.mark.asyncio
async def test_subscriptions_belong_to_the_socket_not_the_user():
    mgr = ConnectionManager()
    watching_tab, idle_tab = FakeSocket(), FakeSocket()
    _attach(mgr, "u1", watching_tab, idle_tab)
    mgr.subscribe(watching_tab, board_channel("b1"))

    assert await mgr.broadcast_to_channel(board_channel("b1"), {"type": "board_event"}) == 1
    assert len(watching_tab.sent) == 1
    assert idle_tab.sent == []


@pytest.mark.asyncio
async def test_manager_revoke_and_close_channel():
    mgr = ConnectionManager()
    tab_a, tab_b, other = FakeSocket(), FakeSocket(), FakeSocket()
    _attach(mgr, "u1", tab_a, tab_b)
    _attach(mgr, "u2", other)
    for ws in (tab_a, tab_b, other):
        mgr.subscribe(ws, board_channel("b1"))

    assert mgr.revoke("u1", board_channel("b1")) == 2
    assert mgr.subscribers(board_channel("b1")) == {"u2"}
    assert mgr.get_stats()["total_connections"] == 3

    mgr.close_channel(board_channel("b1"))
    assert mgr.subscribers(board_channel("b1")) == set()


@pytest.mark.asyncio
async def test_manager_drops_failing_socket():
    mgr = ConnectionManager()
    broken = FakeSocket(fail=True)
    _attach(mgr, "u1", broken)
    mgr.subscribe(broken, board_channel("b1"))

    assert await mgr.broadcast_to_channel(board_channel("b1"), {"type": "ping"}) == 0
    assert mgr.get_stats() == {"users": 0, "total_connections": 0, "channels": 0}



# ============================================================
# TOKENS AND SUBSCRIPTION CHECKS
# ============================================================

def test_socket_tokens_must_be_access_tokens():
    access = AuthService.create_access_token({"sub": "u1"})
    refresh = AuthService.create_refresh_token({"sub": "u1"})
    assert read_access_claims(access)["sub"] == "u1"
    assert read_access_claims(refresh) is None
    assert read_access_claims("garbage") is None


@pytest.mark.asyncio
async def test_can_subscribe_follows_board_access(db_session, workspace, board, employee, customer, outsider):
    assert await _can_subscribe(employee.id, board.id) is True
    assert await _can_subscribe(customer.id, board.id) is False
    assert await _can_subscribe(outsider.id, board.id) is False
    assert await _can_subscribe(employee.id, "no-such-board") is False

    await grant_board(db_session, board, customer, can_edit=False)
    assert await _can_subscribe(customer.id, board.id) is True


def test_websocket_rejects_bad_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=bogus") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_websocket_ping_and_unknown_message():
    client = TestClient(app)
    token = AuthService.create_access_token({"sub": "ws-user"})
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "unsubscribe", "board_id": "b1"})
        assert ws.receive_json() == {"type": "unsubscribed", "board_id": "b1"}


def test_websocket_rejects_malformed_frames_and_cleans_up():
    client = TestClient(app)
    token = AuthService.create_access_token({"sub": "ws-malformed"})
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "detail": "Messages must be JSON objects"}
        ws.send_json(["subscribe"])
        assert ws.receive_json()["type"] == "error"
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    assert "ws-malformed" not in websocket_router.manager._connections


def test_websocket_handler_error_closes_and_unregisters(monkeypatch):
    async def broken_check(user_id, board_id):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(websocket_router, "_can_subscribe", broken_check)
    client = TestClient(app)
    token = AuthService.create_access_token({"sub": "ws-crash"})
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.send_json({"type": "subscribe", "board_id": "b1"})
            ws.receive_json()
    assert exc.value.code == 1011
    assert "ws-crash" not in websocket_router.manager._connections
