"""Chunked object store inside the metadata database.

Each blob is one ``designhub_blobs`` row keyed by its path plus ordered
``designhub_blob_chunks`` rows of at most ``chunk_size`` bytes.  A ``put``
deletes the previous file and inserts the new one in a single transaction, so
concurrent readers never observe a half-written blob.

The store opens its own sessions: blob writes commit independently of the
request's metadata transaction.
"""
from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from designhub.db import designhub_models as db
from designhub.services.object_store.base import (
    ObjectNotFoundError,
    ObjectStoreBackend,
    parse_path,
)

logger = logging.getLogger(__name__)


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DatabaseObjectStore(ObjectStoreBackend):
    """Object store backed by the blob/chunk tables."""

    name = "database"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        chunk_size: int,
        max_bytes: int,
        timeout_seconds: float,
    ) -> None:
        super().__init__(max_bytes=max_bytes, timeout_seconds=timeout_seconds)
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._session_factory = session_factory
        self.chunk_size = chunk_size

    async def _put(self, path: str, data: bytes) -> None:
        project_id, branch_id, commit_hash = parse_path(path)
        async with self._session_factory() as session, session.begin():
            await _remove_file(session, path)
            session.add(
                db.DesignBlob(
                    filename=path,
                    project_id=project_id,
                    branch_id=branch_id,
                    commit_hash=commit_hash,
                    length=len(data),
                    chunk_size=self.chunk_size,
                )
            )
            await session.flush()
            session.add_all(
                db.DesignBlobChunk(filename=path, n=n, data=data[offset : offset + self.chunk_size])
                for n, offset in enumerate(range(0, len(data), self.chunk_size))
            )

    async def _get(self, path: str) -> bytes:
        async with self._session_factory() as session:
            blob = await session.get(db.DesignBlob, path)
            if blob is None:
                raise ObjectNotFoundError(path)
            stmt = (
                select(db.DesignBlobChunk.data)
                .where(db.DesignBlobChunk.filename == path)
                .order_by(db.DesignBlobChunk.n)
            )
            chunks = (await session.execute(stmt)).scalars().all()
        data = b"".join(chunks)
        if len(data) != blob.length:
            raise OSError(f"blob {path} is truncated: {len(data)} of {blob.length} bytes")
        return data

    async def _delete(self, path: str) -> None:
        async with self._session_factory() as session, session.begin():
            await _remove_file(session, path)

    async def _delete_prefix(self, prefix: str) -> int:
        pattern = _like_escape(prefix) + "%"
        async with self._session_factory() as session, session.begin():
            stmt = select(db.DesignBlob.filename).where(
                db.DesignBlob.filename.like(pattern, escape="\\")
            )
            filenames = list((await session.execute(stmt)).scalars().all())
            if not filenames:
                return 0
            await session.execute(
                delete(db.DesignBlobChunk).where(db.DesignBlobChunk.filename.in_(filenames))
            )
            await session.execute(
                delete(db.DesignBlob).where(db.DesignBlob.filename.in_(filenames))
            )
        return len(filenames)


async def _remove_file(session: AsyncSession, path: str) -> None:
    """Delete a blob and its chunks inside the caller's transaction."""
    await session.execute(delete(db.DesignBlobChunk).where(db.DesignBlobChunk.filename == path))
    await session.execute(delete(db.DesignBlob).where(db.DesignBlob.filename == path))
