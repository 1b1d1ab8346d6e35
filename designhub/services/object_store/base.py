"""Object store interface shared by every blob backend.

Paths follow one layout::

    projects/{projectId}/branches/{branchId}/current.json
    projects/{projectId}/branches/{branchId}/commits/{hash}.json

``current.json`` is the mutable working snapshot of a branch; each commit blob
is written once and never modified.  Backends implement five private
primitives; the public methods here add the behaviour every backend must
share:

- path validation (relative, no ``..`` segments)
- the size limit, checked before any I/O
- per-path write serialization (last writer wins)
- a per-operation timeout, reported as :class:`~designhub.errors.StoreIOError`
- one log line per failure with kind, path, and reason

No backend offers atomicity across paths; callers order their writes so that a
failure part-way leaves only unreferenced blobs behind.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from typing import Awaitable, TypeVar

from designhub.errors import DesignHubError, InvalidInputError, NotFoundError, StoreIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CURRENT_SNAPSHOT_NAME = "current.json"


class ObjectNotFoundError(NotFoundError):
    """The requested path holds no blob."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Object not found: {path}")


def branch_prefix(project_id: str, branch_id: str) -> str:
    """Prefix of every blob owned by a branch (ends with ``/``)."""
    return f"projects/{project_id}/branches/{branch_id}/"


def current_path(project_id: str, branch_id: str) -> str:
    return branch_prefix(project_id, branch_id) + CURRENT_SNAPSHOT_NAME


def commit_path(project_id: str, branch_id: str, commit_hash: str) -> str:
    return branch_prefix(project_id, branch_id) + f"commits/{commit_hash}.json"


def parse_path(path: str) -> tuple[str | None, str | None, str | None]:
    """Split a store path into ``(project_id, branch_id, commit_hash)``.

    Components that the path does not carry come back as ``None``.
    """
    parts = path.split("/")
    project_id = parts[1] if len(parts) > 1 and parts[0] == "projects" else None
    branch_id = parts[3] if len(parts) > 3 and parts[2] == "branches" else None
    commit_hash: str | None = None
    if len(parts) == 6 and parts[4] == "commits" and parts[5].endswith(".json"):
        commit_hash = parts[5][: -len(".json")]
    return project_id, branch_id, commit_hash


def validate_path(path: str) -> str:
    """Reject paths that could escape the store root."""
    if not path or path.startswith("/") or "\\" in path:
        raise InvalidInputError(f"Invalid object path: {path!r}")
    if any(segment in ("", ".", "..") for segment in path.split("/")):
        raise InvalidInputError(f"Invalid object path: {path!r}")
    return path


class ObjectStoreBackend(ABC):
    """Blob storage keyed by path.

    Subclasses implement ``_put``, ``_get``, ``_delete`` and
    ``_delete_prefix``; they may raise :class:`ObjectNotFoundError` from
    ``_get`` and any ``OSError`` or database error on I/O failure.
    """

    name: str = "abstract"

    def __init__(self, *, max_bytes: int, timeout_seconds: float) -> None:
        self.max_bytes = max_bytes
        self.timeout_seconds = timeout_seconds
        # Entries disappear once no writer holds the lock.
        self._write_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ── public API ────────────────────────────────────────────────────────

    def ensure_within_limit(self, data: bytes, path: str = "-") -> None:
        """Raise VALIDATION_ERROR if ``data`` is larger than one blob may be."""
        if len(data) > self.max_bytes:
            logger.warning(
                "⚠️ Object store [%s] put rejected: path=%s reason=%d bytes exceeds limit of %d",
                self.name, path, len(data), self.max_bytes,
            )
            raise InvalidInputError(
                f"Snapshot is {len(data)} bytes; the limit is {self.max_bytes} bytes"
            )

    async def put(self, path: str, data: bytes) -> str:
        """Store ``data`` at ``path``, atomically replacing any previous blob."""
        validate_path(path)
        self.ensure_within_limit(data, path)
        async with self._lock_for(path):
            await self._run("put", path, self._put(path, data))
        logger.debug("Object store [%s] put %s (%d bytes)", self.name, path, len(data))
        return path

    async def get(self, path: str) -> bytes:
        """Return the blob at ``path``; raises :class:`ObjectNotFoundError`."""
        validate_path(path)
        return await self._run("get", path, self._get(path))

    async def delete(self, path: str) -> None:
        """Remove the blob at ``path``; an absent path is not an error."""
        validate_path(path)
        async with self._lock_for(path):
            await self._run("delete", path, self._delete(path))

    async def copy(self, src: str, dst: str) -> str:
        """``put(dst, get(src))``; a missing ``src`` leaves ``dst`` untouched."""
        data = await self.get(src)
        return await self.put(dst, data)

    async def delete_prefix(self, prefix: str) -> int:
        """Remove every blob whose path starts with ``prefix``; returns the count."""
        validate_path(prefix.rstrip("/"))
        count = await self._run("delete_prefix", prefix, self._delete_prefix(prefix))
        if count:
            logger.info("Object store [%s] removed %d object(s) under %s", self.name, count, prefix)
        return count

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""

    # ── helpers ───────────────────────────────────────────────────────────

    def _lock_for(self, path: str) -> asyncio.Lock:
        lock = self._write_locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[path] = lock
        return lock

    async def _run(self, op: str, path: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except ObjectNotFoundError:
            logger.info("Object store [%s] %s: kind=NOT_FOUND path=%s", self.name, op, path)
            raise
        except asyncio.TimeoutError:
            logger.error(
                "❌ Object store [%s] %s: kind=IO path=%s reason=timed out after %.1fs",
                self.name, op, path, self.timeout_seconds,
            )
            raise StoreIOError(f"Object store {op} timed out for {path}")
        except DesignHubError:
            raise
        except Exception as e:
            logger.error(
                "❌ Object store [%s] %s: kind=IO path=%s reason=%s",
                self.name, op, path, e,
            )
            raise StoreIOError(f"Object store {op} failed for {path}") from e

    # ── backend primitives ────────────────────────────────────────────────

    @abstractmethod
    async def _put(self, path: str, data: bytes) -> None: ...

    @abstractmethod
    async def _get(self, path: str) -> bytes: ...

    @abstractmethod
    async def _delete(self, path: str) -> None: ...

    @abstractmethod
    async def _delete_prefix(self, prefix: str) -> int: ...
