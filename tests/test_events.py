"""Tests for project event broadcasting and the events WebSocket.

Covers:
- rooms are joined explicitly; events reach only subscribers of that room
- full queues drop events instead of blocking the emitter
- unsubscribe leaves every room and ends the stream
- the WebSocket refuses missing/invalid tokens with close code 4001
- join:project requires an active membership; ping answers pong
"""
from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from designhub.api.routes import events as events_route
from designhub.auth.tokens import create_access_token, create_refresh_token
from designhub.db.database import get_session_factory
from designhub.errors import ForbiddenError
from designhub.main import app
from designhub.services.events import (
    CapturingEventSink,
    EventKind,
    ProjectEventBroadcaster,
    emit_project_event,
    get_broadcaster,
    project_room,
)

EVENTS_URL = "/api/v1/designhub/events"


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_events_reach_only_joined_rooms() -> None:
    broadcaster = ProjectEventBroadcaster(queue_size=8)
    p1 = broadcaster.subscribe()
    p2 = broadcaster.subscribe()
    broadcaster.join(p1, project_room("P1"))
    broadcaster.join(p2, project_room("P2"))

    emit_project_event(broadcaster, "P1", EventKind.BRANCH_CREATED, {"branch": {"name": "feature/a"}})

    event = p1.queue.get_nowait()
    assert event is not None
    assert event.to_message() == {
        "event": "branch:created",
        "room": "project:P1",
        "data": {"branch": {"name": "feature/a"}},
    }
    assert p2.queue.empty()


@pytest.mark.asyncio
async def test_unjoined_subscriber_receives_nothing() -> None:
    broadcaster = ProjectEventBroadcaster()
    lurker = broadcaster.subscribe()
    broadcaster.emit_to(project_room("P1"), EventKind.MERGE_CREATED, {})
    assert lurker.queue.empty()


@pytest.mark.asyncio
async def test_full_queue_drops_without_blocking() -> None:
    broadcaster = ProjectEventBroadcaster(queue_size=1)
    sub = broadcaster.subscribe()
    broadcaster.join(sub, "project:P1")
    broadcaster.emit_to("project:P1", EventKind.BRANCH_UPDATED, {"n": 1})
    broadcaster.emit_to("project:P1", EventKind.BRANCH_UPDATED, {"n": 2})
    assert sub.queue.qsize() == 1
    event = sub.queue.get_nowait()
    assert event is not None and event.payload == {"n": 1}


@pytest.mark.asyncio
async def test_leave_and_unsubscribe() -> None:
    broadcaster = ProjectEventBroadcaster()
    sub = broadcaster.subscribe()
    broadcaster.join(sub, "project:P1")
    broadcaster.join(sub, "project:P2")
    broadcaster.leave(sub, "project:P1")
    assert broadcaster.room_size("project:P1") == 0
    assert broadcaster.room_size("project:P2") == 1

    broadcaster.unsubscribe(sub)
    assert broadcaster.room_size("project:P2") == 0
    assert sub.rooms == set()
    assert sub.queue.get_nowait() is None


def test_capturing_sink_records_kinds() -> None:
    sink = CapturingEventSink()
    emit_project_event(sink, "P1", EventKind.TEAM_MEMBER_ADDED, {"teamMember": {}})
    emit_project_event(sink, "P2", EventKind.BRANCH_DELETED, {"branchName": "feature/x"})
    assert sink.kinds() == ["team:member_added", "branch:deleted"]
    assert sink.kinds("project:P2") == ["branch:deleted"]
    sink.clear()
    assert sink.events == []


def test_event_kind_vocabulary() -> None:
    assert {k.value for k in EventKind} == {
        "branch:created",
        "branch:updated",
        "branch:deleted",
        "merge:created",
        "merge:approved",
        "merge:merged",
        "merge:closed",
        "team:member_added",
        "team:member_updated",
    }


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


class _NoSession:
    """Session stand-in; membership checks are patched in these tests."""

    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, *exc: Any) -> None:
        return None


@pytest.fixture
def ws_client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    async def fake_resolve_member(session: Any, project_id: str, user_id: str) -> object:
        if project_id != "P1":
            raise ForbiddenError("You do not have access to this project")
        return object()

    monkeypatch.setattr(events_route.authz, "resolve_member", fake_resolve_member)
    app.dependency_overrides[get_session_factory] = lambda: _NoSession
    return TestClient(app)


def test_websocket_requires_token(ws_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect(EVENTS_URL):
            pass
    assert exc_info.value.code == events_route.WS_UNAUTHORIZED


def test_websocket_rejects_refresh_token(ws_client: TestClient) -> None:
    token = create_refresh_token("U1")
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect(f"{EVENTS_URL}?token={token}"):
            pass
    assert exc_info.value.code == 4001


def test_websocket_rejects_garbage_token(ws_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect(f"{EVENTS_URL}?token=not-a-jwt"):
            pass
    assert exc_info.value.code == 4001


def test_websocket_join_leave_and_ping(ws_client: TestClient) -> None:
    token = create_access_token("U1")
    with ws_client.websocket_connect(f"{EVENTS_URL}?token={token}") as ws:
        assert ws.receive_json() == {"type": "connected", "userId": "U1"}

        ws.send_json({"type": "join:project", "projectId": "P1"})
        assert ws.receive_json() == {"type": "joined", "projectId": "P1"}
        assert get_broadcaster().room_size("project:P1") == 1

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"type": "leave:project", "projectId": "P1"})
        assert ws.receive_json() == {"type": "left", "projectId": "P1"}
        assert get_broadcaster().room_size("project:P1") == 0


def test_websocket_join_refused_for_non_member(ws_client: TestClient) -> None:
    token = create_access_token("U1")
    with ws_client.websocket_connect(f"{EVENTS_URL}?token={token}") as ws:
        ws.receive_json()
        ws.send_json({"type": "join:project", "projectId": "P2"})
        message = ws.receive_json()
        assert message["type"] == "error"
        assert message["projectId"] == "P2"
        assert message["code"] == "FORBIDDEN"
        assert get_broadcaster().room_size("project:P2") == 0


def test_websocket_ignores_malformed_frames(ws_client: TestClient) -> None:
    token = create_access_token("U1")
    with ws_client.websocket_connect(f"{EVENTS_URL}?token={token}") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json(["a", "list"])
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
