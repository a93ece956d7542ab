"""Read-only listing of per-secret sync state from the audit store.

Only metadata is exposed (namespace, name, source item, status, key count);
secret values never leave the cluster.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from vaultsync.api.deps import get_audit_queries
from vaultsync.models.secret_state import SecretState
from vaultsync.schemas.jsonapi import JSONAPIListResponse, JSONAPIResource
from vaultsync.schemas.pagination import encode_cursor, page_links
from vaultsync.services.audit_queries import AuditQueryService

router = APIRouter()


def _state_to_attrs(state: SecretState) -> dict:
    return {
        "namespace": state.namespace,
        "secret_name": state.secret_name,
        "vault_item_id": state.vault_item_id,
        "vault_item_name": state.vault_item_name,
        "status": state.status,
        "data_keys_count": state.data_keys_count,
        "last_error": state.last_error,
        "last_synced": state.last_synced.isoformat(),
        "created_at": state.created_at.isoformat(),
        "updated_at": state.updated_at.isoformat(),
    }


@router.get("")
async def list_secret_states(
    request: Request,
    namespace: str | None = Query(default=None),
    status: str | None = Query(default=None),
    page_after: str | None = Query(default=None, alias="page[after]"),
    page_size: int = Query(default=20, ge=1, le=100, alias="page[size]"),
    queries: AuditQueryService = Depends(get_audit_queries),
) -> JSONAPIListResponse:
    """List secret states with cursor-based pagination, optionally filtered."""
    try:
        states, pagination_meta = await queries.list_secret_states(
            page_size=page_size,
            after=page_after,
            namespace=namespace,
            status=status,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    next_cursor = None
    if pagination_meta.has_next and states:
        next_cursor = encode_cursor(states[-1].created_at, str(states[-1].id))
    links = page_links(
        str(request.url).split("?")[0], request.query_params, page_size, next_cursor
    )

    return JSONAPIListResponse(
        data=[
            JSONAPIResource(type="secret-states", id=str(s.id), attributes=_state_to_attrs(s))
            for s in states
        ],
        meta=pagination_meta.model_dump(),
        links=links,
    )
