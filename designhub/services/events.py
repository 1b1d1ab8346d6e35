"""
Project event broadcasting.

Every state-changing command publishes one or more events to the room
``project:{projectId}`` after its metadata changes are committed.  Clients
subscribe over the WebSocket endpoint and explicitly join the rooms of the
projects they are looking at.

Architecture:
    services → EventSink.emit_to(room, kind, payload) → ProjectEventBroadcaster → WebSocket clients

Delivery is best-effort: emit never blocks, each subscriber has a bounded
queue, and a full queue drops the event with a warning.  There is no replay.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from designhub.config import settings

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    BRANCH_CREATED = "branch:created"
    BRANCH_UPDATED = "branch:updated"
    BRANCH_DELETED = "branch:deleted"
    MERGE_CREATED = "merge:created"
    MERGE_APPROVED = "merge:approved"
    MERGE_MERGED = "merge:merged"
    MERGE_CLOSED = "merge:closed"
    TEAM_MEMBER_ADDED = "team:member_added"
    TEAM_MEMBER_UPDATED = "team:member_updated"


def project_room(project_id: str) -> str:
    return f"project:{project_id}"


@dataclass(frozen=True)
class ProjectEvent:
    """One event as delivered to subscribers."""

    room: str
    kind: EventKind
    payload: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        return {"event": self.kind.value, "room": self.room, "data": self.payload}


class EventSink(Protocol):
    """Anything services can publish events to."""

    def emit_to(self, room: str, kind: EventKind, payload: dict[str, Any]) -> None: ...


def emit_project_event(
    sink: EventSink, project_id: str, kind: EventKind, payload: dict[str, Any]
) -> None:
    """Publish ``kind`` to the project's room."""
    sink.emit_to(project_room(project_id), kind, payload)


@dataclass(eq=False)
class Subscription:
    """One connected client: a bounded queue plus the rooms it has joined.

    A ``None`` in the queue signals end-of-stream.
    """

    queue: asyncio.Queue[ProjectEvent | None]
    rooms: set[str] = field(default_factory=set)


class ProjectEventBroadcaster:
    """In-process pub/sub keyed by room name."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        # room -> subscriptions that joined it
        self._rooms: dict[str, set[Subscription]] = {}

    def subscribe(self) -> Subscription:
        """Open a subscription that has not joined any room yet."""
        return Subscription(queue=asyncio.Queue(maxsize=self._queue_size))

    def join(self, subscription: Subscription, room: str) -> None:
        self._rooms.setdefault(room, set()).add(subscription)
        subscription.rooms.add(room)
        logger.debug(f"Subscriber joined {room} ({len(self._rooms[room])} in room)")

    def leave(self, subscription: Subscription, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(subscription)
            if not members:
                del self._rooms[room]
        subscription.rooms.discard(room)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Leave every room and signal end-of-stream."""
        for room in list(subscription.rooms):
            self.leave(subscription, room)
        try:
            subscription.queue.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Subscriber queue full at unsubscribe; end-of-stream not queued")

    def emit_to(self, room: str, kind: EventKind, payload: dict[str, Any]) -> None:
        event = ProjectEvent(room=room, kind=kind, payload=payload)
        members = self._rooms.get(room, set())
        delivered = 0
        for subscription in members:
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"⚠️ Event queue full for a subscriber in {room}, dropping {kind.value}")
        logger.debug(f"Emitted {kind.value} to {delivered}/{len(members)} subscribers in {room}")

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def clear(self) -> None:
        """Clear all state (for testing)."""
        self._rooms.clear()


class CapturingEventSink:
    """EventSink that records events instead of delivering them (tests)."""

    def __init__(self) -> None:
        self.events: list[ProjectEvent] = []

    def emit_to(self, room: str, kind: EventKind, payload: dict[str, Any]) -> None:
        self.events.append(ProjectEvent(room=room, kind=kind, payload=payload))

    def kinds(self, room: str | None = None) -> list[str]:
        return [e.kind.value for e in self.events if room is None or e.room == room]

    def clear(self) -> None:
        self.events.clear()


# Singleton instance
_broadcaster: ProjectEventBroadcaster | None = None


def get_broadcaster() -> ProjectEventBroadcaster:
    """Get the singleton ProjectEventBroadcaster instance."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = ProjectEventBroadcaster(queue_size=settings.event_queue_size)
    return _broadcaster


def get_event_sink() -> EventSink:
    """FastAPI dependency: the sink services publish to."""
    return get_broadcaster()


def reset_broadcaster() -> None:
    """Reset the singleton (for testing)."""
    global _broadcaster
    if _broadcaster is not None:
        _broadcaster.clear()
    _broadcaster = None
