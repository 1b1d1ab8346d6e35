"""Change statistics derived from snapshot blobs.

Snapshots are opaque to the repository.  The one thing it reads is the element
count of the first artboard of the first page, reported as
``componentsUpdated`` on merge commits and merge requests.
"""
from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)


def count_components(snapshot: bytes) -> int:
    """Return ``len(pages[0].artboards[0].elements)``, or 0 when absent or malformed."""
    try:
        document = json.loads(snapshot)
    except (UnicodeDecodeError, ValueError):
        logger.debug("Snapshot is not valid JSON; counting 0 components")
        return 0
    try:
        elements = document["pages"][0]["artboards"][0]["elements"]
    except (KeyError, IndexError, TypeError):
        return 0
    return len(elements) if isinstance(elements, list) else 0


def encode_snapshot(document: dict[str, object]) -> bytes:
    """Serialize a client snapshot document for storage."""
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_snapshot(data: bytes) -> dict[str, object]:
    """Parse a stored snapshot back into a document."""
    document = json.loads(data)
    if not isinstance(document, dict):
        raise ValueError("stored snapshot is not a JSON object")
    return document
