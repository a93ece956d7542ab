"""V1 API router aggregating all sub-routers."""

from fastapi import APIRouter, Depends

from vaultsync.api.deps import require_api_token
from vaultsync.api.v1.secrets.router import router as secrets_router
from vaultsync.api.v1.sync.router import router as sync_router
from vaultsync.api.v1.sync_logs.router import router as sync_logs_router
from vaultsync.api.v1.system.router import router as system_router
from vaultsync.api.v1.webhooks.router import router as webhooks_router

protected = [Depends(require_api_token)]

v1_router = APIRouter()
v1_router.include_router(system_router, prefix="/system", tags=["system"])
v1_router.include_router(sync_router, prefix="/sync", tags=["sync"], dependencies=protected)
# Webhooks authenticate with their HMAC signature instead of the API token
v1_router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
v1_router.include_router(secrets_router, prefix="/secrets", tags=["secrets"], dependencies=protected)
v1_router.include_router(
    sync_logs_router, prefix="/sync-logs", tags=["sync-logs"], dependencies=protected
)
