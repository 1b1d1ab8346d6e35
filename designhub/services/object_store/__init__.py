"""Object store backends and the process-wide store instance.

The backend is chosen once at startup from ``settings.object_store_backend``.
Route handlers receive the store through :func:`get_object_store`, which tests
replace via ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging

from designhub.config import settings
from designhub.services.object_store.base import (
    ObjectNotFoundError,
    ObjectStoreBackend,
    branch_prefix,
    commit_path,
    current_path,
    parse_path,
)
from designhub.services.object_store.database import DatabaseObjectStore
from designhub.services.object_store.filesystem import FilesystemObjectStore

logger = logging.getLogger(__name__)

_store: ObjectStoreBackend | None = None


def create_object_store() -> ObjectStoreBackend:
    """Build the backend named by ``settings.object_store_backend``."""
    if settings.object_store_backend == "database":
        from designhub.db.database import get_session_factory

        return DatabaseObjectStore(
            get_session_factory(),
            chunk_size=settings.blob_chunk_size_bytes,
            max_bytes=settings.max_snapshot_bytes,
            timeout_seconds=settings.object_store_timeout_seconds,
        )
    return FilesystemObjectStore(
        settings.storage_path,
        max_bytes=settings.max_snapshot_bytes,
        timeout_seconds=settings.object_store_timeout_seconds,
    )


def get_object_store() -> ObjectStoreBackend:
    """Return the shared object store, creating it on first use."""
    global _store
    if _store is None:
        _store = create_object_store()
        logger.info("✅ Object store ready: %s", _store.name)
    return _store


async def close_object_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None


__all__ = [
    "DatabaseObjectStore",
    "FilesystemObjectStore",
    "ObjectNotFoundError",
    "ObjectStoreBackend",
    "branch_prefix",
    "close_object_store",
    "commit_path",
    "create_object_store",
    "current_path",
    "get_object_store",
    "parse_path",
]
