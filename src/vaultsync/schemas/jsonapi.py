"""JSON:API envelopes for API responses.

Sync runs, orphan cleanups, health and status are single resources; secret
states and sync logs are cursor-paginated lists with ``first``/``next``
links. Errors keep FastAPI's default ``{"detail": ...}`` body.
"""

from typing import Any

from pydantic import BaseModel


class JSONAPIResource(BaseModel):
    type: str
    id: str
    attributes: dict[str, Any]


class JSONAPISingleResponse(BaseModel):
    data: JSONAPIResource


class JSONAPIListResponse(BaseModel):
    """A page of resources; ``meta`` carries ``has_next``/``has_prev``."""

    data: list[JSONAPIResource]
    meta: dict[str, Any] | None = None
    links: dict[str, str] | None = None
