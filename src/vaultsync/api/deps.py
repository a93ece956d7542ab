"""Shared FastAPI dependencies for database sessions, the sync engine and API auth."""

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from vaultsync.config import Settings, get_settings
from vaultsync.services.audit_queries import AuditQueryService
from vaultsync.services.reconciliation import SyncEngine, SyncLoop
from vaultsync.services.webhook_service import WebhookService


def _extract_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    value = header_value.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


async def require_api_token(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests without the configured bearer token.

    Does nothing when no ``api_token`` is configured.
    """
    if not settings.api_token:
        return
    token = _extract_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token, settings.api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization token",
        )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session from the app-level session factory.

    The session factory is stored on ``request.app.state.session_factory``
    by the application lifespan. The session auto-closes when the request ends.
    """
    session_factory = request.app.state.session_factory
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Audit database is disabled")
    async with session_factory() as session:
        yield session


async def get_engine(request: Request) -> SyncEngine:
    """Return the SyncEngine stored on app state by the lifespan."""
    return request.app.state.engine


async def get_sync_loop(request: Request) -> SyncLoop | None:
    return request.app.state.sync_loop


async def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhook_service


async def get_audit_queries(db: AsyncSession = Depends(get_db)) -> AuditQueryService:
    """Provide an AuditQueryService with the current DB session."""
    return AuditQueryService(db)
