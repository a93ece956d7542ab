"""Keyset pagination for the audit listings.

A cursor is the URL-safe base64 of ``{"t": <sort timestamp>, "i": <row id>}``
taken from the last row of a page. Listings order by that pair, so a cursor
stays valid while new runs and secret states are being written.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from datetime import datetime
from urllib.parse import quote

from pydantic import BaseModel

PAGE_AFTER = "page[after]"
PAGE_SIZE = "page[size]"


class PaginationMeta(BaseModel):
    has_next: bool
    has_prev: bool


def encode_cursor(sort_key: datetime, row_id: str) -> str:
    payload = json.dumps({"t": sort_key.isoformat(), "i": row_id})
    return base64.urlsafe_b64encode(payload.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """Decode a cursor back into ``(sort_key, row_id)``.

    Raises:
        ValueError: If the cursor is malformed.
    """
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        return datetime.fromisoformat(payload["t"]), payload["i"]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid pagination cursor: {cursor}") from exc


def page_links(
    base_url: str,
    query: Mapping[str, str],
    page_size: int,
    next_cursor: str | None = None,
) -> dict[str, str]:
    """``first`` and ``next`` links that keep the request's filter parameters."""
    filters = "".join(
        f"&{quote(key)}={quote(value)}"
        for key, value in query.items()
        if key not in (PAGE_AFTER, PAGE_SIZE)
    )
    links = {"first": f"{base_url}?{PAGE_SIZE}={page_size}{filters}"}
    if next_cursor is not None:
        links["next"] = f"{base_url}?{PAGE_AFTER}={next_cursor}&{PAGE_SIZE}={page_size}{filters}"
    return links
