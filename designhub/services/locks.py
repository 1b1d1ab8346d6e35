"""Per-project serialization of mutating commands.

Every command that changes a project's branches, commits, merge requests, or
team runs inside ``get_project_locks().acquire(project_id)``.  Commands on
different projects proceed in parallel; reads never take the lock.

The registry is in-process.  Running several workers against one database
needs a distributed lock keyed the same way (e.g. a PostgreSQL advisory lock).
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class ProjectLocks:
    """Registry of one ``asyncio.Lock`` per project id.

    Entries are reference-counted and dropped when the last holder or waiter
    leaves, so the registry only holds projects with in-flight commands.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, project_id: str) -> AsyncIterator[None]:
        """Hold the project's critical section for the duration of the block."""
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        self._users[project_id] = self._users.get(project_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[project_id] - 1
            if remaining:
                self._users[project_id] = remaining
            else:
                del self._users[project_id]
                del self._locks[project_id]

    def is_locked(self, project_id: str) -> bool:
        lock = self._locks.get(project_id)
        return lock is not None and lock.locked()

    def snapshot(self) -> dict[str, int]:
        """Holders plus waiters per project (for health/debug endpoints)."""
        return dict(self._users)


_locks: ProjectLocks | None = None


def get_project_locks() -> ProjectLocks:
    """Return the process-wide singleton ``ProjectLocks``, creating it if needed."""
    global _locks
    if _locks is None:
        _locks = ProjectLocks()
    return _locks
