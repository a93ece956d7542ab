"""System router providing the health check endpoint."""

from fastapi import APIRouter, Request

from vaultsync.database import ping_db
from vaultsync.redis import ping_redis
from vaultsync.schemas.jsonapi import JSONAPIResource, JSONAPISingleResponse

router = APIRouter()


@router.get("/health", response_model=JSONAPISingleResponse)
async def health_check(request: Request) -> JSONAPISingleResponse:
    """Return system health including database, Redis and sync loop state.

    The overall status is ``healthy`` unless an enabled backing service is
    unreachable, in which case it is ``degraded``.
    """
    database = redis = "disabled"
    if request.app.state.session_factory is not None:
        reachable = await ping_db(request.app.state.session_factory)
        database = "connected" if reachable else "disconnected"
    if request.app.state.redis is not None:
        reachable = await ping_redis(request.app.state.redis)
        redis = "connected" if reachable else "disconnected"
    sync_loop = request.app.state.sync_loop

    status = "degraded" if "disconnected" in (database, redis) else "healthy"

    return JSONAPISingleResponse(
        data=JSONAPIResource(
            type="system-health",
            id="current",
            attributes={
                "status": status,
                "database": database,
                "redis": redis,
                "sync_loop": "running" if sync_loop is not None and sync_loop.running else "stopped",
            },
        )
    )
