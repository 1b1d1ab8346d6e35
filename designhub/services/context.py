"""Per-command execution context.

A :class:`CommandContext` bundles what every repository command needs: the
metadata session, the object store, the event sink, the notifier, and the
authenticated actor.  Route handlers build one per request; tests build them
directly with a capturing sink and a log notifier.

``is_cancelled`` is polled by :meth:`CommandContext.checkpoint` between store
calls.  Cancellation stops the command before its next store call; anything
already written stays written.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from designhub.services.events import EventKind, EventSink, emit_project_event
from designhub.services.notifier import Notifier
from designhub.services.object_store import ObjectStoreBackend

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    session: AsyncSession
    store: ObjectStoreBackend
    events: EventSink
    notifier: Notifier
    actor_id: str
    is_cancelled: Callable[[], Awaitable[bool]] | None = None

    async def checkpoint(self) -> None:
        """Abort with ``asyncio.CancelledError`` if the caller went away."""
        if self.is_cancelled is not None and await self.is_cancelled():
            logger.info(f"Command for user {self.actor_id} cancelled by client")
            raise asyncio.CancelledError("command cancelled by client")

    def emit(self, project_id: str, kind: EventKind, payload: dict[str, Any]) -> None:
        emit_project_event(self.events, project_id, kind, payload)

    def as_actor(self, actor_id: str) -> CommandContext:
        """Same collaborators, different actor (tests acting as several users)."""
        return replace(self, actor_id=actor_id)
