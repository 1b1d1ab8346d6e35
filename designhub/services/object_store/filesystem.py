"""Local filesystem object store.

Mirrors the store path layout under a root directory.  Blocking file I/O runs
in worker threads via ``asyncio.to_thread``.  Writes go to a temporary file in
the destination directory and are moved into place with ``os.replace``, so a
reader sees either the old blob or the new one, never a partial file.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from designhub.errors import InvalidInputError
from designhub.services.object_store.base import ObjectNotFoundError, ObjectStoreBackend

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp-"


class FilesystemObjectStore(ObjectStoreBackend):
    """Object store rooted at a local directory."""

    name = "filesystem"

    def __init__(self, root: str | Path, *, max_bytes: int, timeout_seconds: float) -> None:
        super().__init__(max_bytes=max_bytes, timeout_seconds=timeout_seconds)
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise InvalidInputError(f"Invalid object path: {path!r}")
        return target

    async def _put(self, path: str, data: bytes) -> None:
        await asyncio.to_thread(_write_atomic, self._resolve(path), data)

    async def _get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise ObjectNotFoundError(path)

    async def _delete(self, path: str) -> None:
        await asyncio.to_thread(self._resolve(path).unlink, missing_ok=True)

    async def _delete_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._delete_prefix_sync, prefix)

    def _delete_prefix_sync(self, prefix: str) -> int:
        # The prefix may end mid-name ("projects/P1/bra"); scan from the
        # deepest directory it fully names.
        directory, _, _ = prefix.rpartition("/")
        scan_root = self._resolve(directory) if directory else self.root
        if not scan_root.is_dir():
            return 0
        removed = 0
        for file_path in sorted(scan_root.rglob("*")):
            if not file_path.is_file() or file_path.name.startswith(_TMP_PREFIX):
                continue
            relative = file_path.relative_to(self.root).as_posix()
            if relative.startswith(prefix):
                file_path.unlink(missing_ok=True)
                removed += 1
        return removed


def _write_atomic(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
