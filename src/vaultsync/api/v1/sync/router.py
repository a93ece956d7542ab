"""Manual sync triggers and sync status, returning JSON:API responses.

A sync started here runs inline and its summary is returned once the run
ends. When another sync holds the host lock the request fails with 409.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from vaultsync.api.deps import get_engine, get_sync_loop
from vaultsync.errors import AuthenticationFailure, LockTimeout
from vaultsync.schemas.jsonapi import JSONAPIResource, JSONAPISingleResponse
from vaultsync.schemas.summary import OrphanCleanupSummary, SyncSummary
from vaultsync.services.reconciliation import SyncEngine, SyncLoop

router = APIRouter()


# ---------------------------------------------------------------------------
# Attribute mapping helpers
# ---------------------------------------------------------------------------


def _summary_to_attrs(summary: SyncSummary) -> dict:
    """Map a SyncSummary to JSON:API attributes, including derived counts."""
    attrs = summary.model_dump(mode="json")
    attrs.update(summary.counts())
    attrs["status"] = summary.status_text
    attrs["duration_seconds"] = summary.duration_seconds
    return attrs


def _summary_resource(summary: SyncSummary) -> JSONAPIResource:
    return JSONAPIResource(
        type="sync-runs",
        id=str(summary.sync_number),
        attributes=_summary_to_attrs(summary),
    )


def _orphan_resource(summary: OrphanCleanupSummary) -> JSONAPIResource:
    return JSONAPIResource(
        type="orphan-cleanups",
        id="latest",
        attributes=summary.model_dump(mode="json"),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("")
async def trigger_sync(
    namespace: str | None = Query(default=None),
    dry_run: bool | None = Query(default=None),
    engine: SyncEngine = Depends(get_engine),
) -> JSONAPISingleResponse:
    """Run a full sync, or a sync of one namespace."""
    try:
        summary = await engine.sync(namespace=namespace, dry_run=dry_run)
    except LockTimeout as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AuthenticationFailure as exc:
        raise HTTPException(status_code=502, detail=f"Vault authentication failed: {exc}") from exc

    return JSONAPISingleResponse(data=_summary_resource(summary))


@router.post("/orphans")
async def trigger_orphan_cleanup(
    dry_run: bool | None = Query(default=None),
    engine: SyncEngine = Depends(get_engine),
) -> JSONAPISingleResponse:
    """Delete managed secrets no vault item produces any more."""
    try:
        summary = await engine.cleanup_orphans(dry_run=dry_run)
    except LockTimeout as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AuthenticationFailure as exc:
        raise HTTPException(status_code=502, detail=f"Vault authentication failed: {exc}") from exc

    return JSONAPISingleResponse(data=_orphan_resource(summary))


@router.post("/reset-hash")
async def reset_items_hash(engine: SyncEngine = Depends(get_engine)) -> JSONAPISingleResponse:
    """Forget the last vault hash so the next run rebuilds every secret."""
    engine.reset_items_hash()
    return JSONAPISingleResponse(
        data=JSONAPIResource(
            type="sync-status",
            id="current",
            attributes={"has_vault_hash": False, "cached_secrets": len(engine.cache)},
        )
    )


@router.get("/status")
async def sync_status(
    engine: SyncEngine = Depends(get_engine),
    sync_loop: SyncLoop | None = Depends(get_sync_loop),
) -> JSONAPISingleResponse:
    """Report engine state and the outcome of the last scheduled sync."""
    attributes: dict = {
        "sync_count": engine.sync_number,
        "dry_run": engine.options.dry_run,
        "has_vault_hash": engine.last_items_hash is not None,
        "lock_owner": engine.lock.owner_info(),
        "cached_secrets": len(engine.cache),
        "continuous_sync": sync_loop is not None and sync_loop.running,
        "interval_seconds": sync_loop.interval if sync_loop is not None else None,
        "last_run_at": None,
        "last_status": None,
        "consecutive_failures": 0,
    }
    if sync_loop is not None:
        if sync_loop.last_run_at is not None:
            attributes["last_run_at"] = sync_loop.last_run_at.isoformat()
        if sync_loop.last_summary is not None:
            attributes["last_status"] = sync_loop.last_summary.status_text
        attributes["consecutive_failures"] = sync_loop.consecutive_failures

    return JSONAPISingleResponse(
        data=JSONAPIResource(type="sync-status", id="current", attributes=attributes)
    )


@router.get("/output")
async def sync_output(engine: SyncEngine = Depends(get_engine)) -> JSONAPISingleResponse:
    """Progress lines of the latest run, as kept in the Redis history list."""
    lines = await engine.publisher.history()
    return JSONAPISingleResponse(
        data=JSONAPIResource(
            type="sync-output",
            id="latest",
            attributes={"enabled": engine.publisher.enabled, "lines": lines},
        )
    )
