"""
Request-scoped dependencies shared by the DesignHub routes.

``get_command_context`` assembles the :class:`CommandContext` every service
command takes.  Tests replace the collaborators by overriding
``get_object_store``, ``get_event_sink`` and ``get_notifier`` in
``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.auth.dependencies import get_current_user_id
from designhub.db import get_db
from designhub.services.context import CommandContext
from designhub.services.events import EventSink, get_event_sink
from designhub.services.notifier import Notifier, get_notifier
from designhub.services.object_store import ObjectStoreBackend, get_object_store


async def get_command_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: ObjectStoreBackend = Depends(get_object_store),
    events: EventSink = Depends(get_event_sink),
    notifier: Notifier = Depends(get_notifier),
    actor_id: str = Depends(get_current_user_id),
) -> CommandContext:
    """Build the command context for the authenticated actor.

    Commands poll ``request.is_disconnected`` between store calls and stop
    early once the client has gone away.
    """
    return CommandContext(
        session=db,
        store=store,
        events=events,
        notifier=notifier,
        actor_id=actor_id,
        is_cancelled=request.is_disconnected,
    )
