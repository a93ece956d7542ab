"""Sync run history from the audit store, newest first."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from vaultsync.api.deps import get_audit_queries
from vaultsync.models.sync_log import SyncLog
from vaultsync.schemas.jsonapi import JSONAPIListResponse, JSONAPIResource
from vaultsync.schemas.pagination import encode_cursor, page_links
from vaultsync.services.audit_queries import AuditQueryService

router = APIRouter()


def _log_to_attrs(log: SyncLog) -> dict:
    return {
        "start_time": log.start_time.isoformat(),
        "end_time": log.end_time.isoformat() if log.end_time else None,
        "status": log.status,
        "phase": log.phase,
        "total_items": log.total_items,
        "processed_items": log.processed_items,
        "created_secrets": log.created_secrets,
        "updated_secrets": log.updated_secrets,
        "skipped_secrets": log.skipped_secrets,
        "failed_secrets": log.failed_secrets,
        "deleted_secrets": log.deleted_secrets,
        "duration_seconds": log.duration_seconds,
        "error_message": log.error_message,
        "sync_interval_seconds": log.sync_interval_seconds,
        "continuous_sync": log.continuous_sync,
    }


@router.get("")
async def list_sync_logs(
    request: Request,
    page_after: str | None = Query(default=None, alias="page[after]"),
    page_size: int = Query(default=20, ge=1, le=100, alias="page[size]"),
    queries: AuditQueryService = Depends(get_audit_queries),
) -> JSONAPIListResponse:
    """List sync runs with cursor-based pagination."""
    try:
        logs, pagination_meta = await queries.list_sync_logs(page_size=page_size, after=page_after)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    next_cursor = None
    if pagination_meta.has_next and logs:
        next_cursor = encode_cursor(logs[-1].start_time, str(logs[-1].id))
    links = page_links(
        str(request.url).split("?")[0], request.query_params, page_size, next_cursor
    )

    return JSONAPIListResponse(
        data=[
            JSONAPIResource(type="sync-logs", id=str(log.id), attributes=_log_to_attrs(log))
            for log in logs
        ],
        meta=pagination_meta.model_dump(),
        links=links,
    )
