"""Realtime project events over WebSocket.

Endpoint:
  WS /designhub/events?token=<access token>

Auth is the ``token`` query parameter only.  It is validated before the
upgrade; a missing or invalid token closes with code 4001 and the socket is
never accepted.

Client → server frames::

    {"type": "join:project",  "projectId": "..."}
    {"type": "leave:project", "projectId": "..."}
    {"type": "ping"}

Server → client frames are ``{"event", "room", "data"}`` objects for project
events, plus ``connected``, ``joined``, ``left``, ``pong`` and ``error``
control frames.  Joining requires an active membership in the project.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from designhub.auth.tokens import TokenError, validate_token
from designhub.db.database import get_session_factory
from designhub.errors import DesignHubError
from designhub.services import authz
from designhub.services.events import (
    ProjectEventBroadcaster,
    Subscription,
    get_broadcaster,
    project_room,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# WebSocket close code for a missing or invalid token.
WS_UNAUTHORIZED = 4001


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    """Forward queued events to the socket until end-of-stream."""
    while True:
        event = await subscription.queue.get()
        if event is None:
            return
        await websocket.send_json(event.to_message())


async def _join(
    websocket: WebSocket,
    broadcaster: ProjectEventBroadcaster,
    subscription: Subscription,
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    project_id: str,
) -> None:
    try:
        async with session_factory() as session:
            await authz.resolve_member(session, project_id, user_id)
    except DesignHubError as e:
        await websocket.send_json(
            {"type": "error", "projectId": project_id, "code": e.kind.value, "message": e.message}
        )
        return
    broadcaster.join(subscription, project_room(project_id))
    await websocket.send_json({"type": "joined", "projectId": project_id})
    logger.info(f"User {user_id} subscribed to project {project_id}")


@router.websocket("/designhub/events")
async def project_events(
    websocket: WebSocket,
    token: str | None = Query(None),
    broadcaster: ProjectEventBroadcaster = Depends(get_broadcaster),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> None:
    """Stream events of the projects the client joins."""
    if not token:
        logger.warning("Events WebSocket connection attempt without token")
        await websocket.close(code=WS_UNAUTHORIZED)
        return
    try:
        user_id = validate_token(token, "access")["sub"]
    except TokenError as e:
        logger.warning(f"Events WebSocket auth failed: {e}")
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    subscription = broadcaster.subscribe()
    pump = asyncio.create_task(_pump(websocket, subscription))
    await websocket.send_json({"type": "connected", "userId": user_id})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data: Any = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.debug(f"Ignoring non-JSON message: {e}")
                continue
            if not isinstance(data, dict):
                continue
            message_type = data.get("type")
            project_id = data.get("projectId")

            if message_type == "join:project" and isinstance(project_id, str):
                await _join(websocket, broadcaster, subscription, session_factory, user_id, project_id)
            elif message_type == "leave:project" and isinstance(project_id, str):
                broadcaster.leave(subscription, project_room(project_id))
                await websocket.send_json({"type": "left", "projectId": project_id})
            elif message_type == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.warning(f"Unknown events message type: {message_type}")
    except WebSocketDisconnect:
        logger.info(f"Events WebSocket closed for user {user_id}")
    except Exception as e:
        logger.exception(f"Events WebSocket error: {e}")
    finally:
        broadcaster.unsubscribe(subscription)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
