"""Shared Pydantic base with camelCase wire-format serialization."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


def to_camel(name: str) -> str:
    """Convert snake_case to camelCase (``last_commit`` → ``lastCommit``)."""
    head, *rest = name.split("_")
    return head + "".join(w.capitalize() for w in rest)


class CamelModel(BaseModel):
    """Base model for every DesignHub request and response body.

    Python attributes stay snake_case; JSON on the wire is camelCase.
    Requests are accepted in either spelling, and FastAPI serializes responses
    by alias, so clients only ever see camelCase.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
