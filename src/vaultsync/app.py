"""FastAPI application factory with async lifespan for the audit DB, Redis, the stores and the sync loop."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vaultsync.api.metrics import router as metrics_router
from vaultsync.api.v1.router import v1_router
from vaultsync.config import configure_logging, get_settings
from vaultsync.database import close_db, get_session_factory, init_db
from vaultsync.redis import close_redis, init_redis
from vaultsync.services.audit import DatabaseAuditSink
from vaultsync.services.metrics import SyncMetrics
from vaultsync.services.output_publisher import SyncOutputPublisher
from vaultsync.services.reconciliation import SyncEngine, SyncLoop
from vaultsync.services.secret_store import KubernetesSecretStore
from vaultsync.services.vault_store import BitwardenCliVaultStore
from vaultsync.services.webhook_service import WebhookService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    On startup: initialize the audit database (when enabled), the Redis
    client (when configured), the Kubernetes secret store, the vault store,
    the sync engine, the webhook service and, with continuous sync on, the
    periodic sync loop.
    On shutdown: stop the sync loop, then close the secret store, Redis and
    the database (in that order to avoid using closed connections).
    """
    settings = get_settings()
    options = settings.sync_options()

    # Startup -- Database (audit store)
    engine = None
    app.state.session_factory = None
    audit = None
    if settings.audit_enabled:
        engine = await init_db(settings.database_url, settings.database_pool_size)
        app.state.session_factory = get_session_factory(engine)
        audit = DatabaseAuditSink(
            app.state.session_factory,
            sync_interval_seconds=options.sync_interval_seconds,
            continuous_sync=options.continuous_sync,
        )

    # Startup -- Redis (live sync output)
    app.state.redis = await init_redis(settings.redis_url) if settings.redis_url else None

    # Startup -- Stores
    metrics = SyncMetrics()
    secret_store = KubernetesSecretStore(
        in_cluster=settings.kube_in_cluster,
        config_file=settings.kube_config_path or None,
        context=settings.kube_context or None,
        request_timeout=settings.kube_request_timeout_seconds,
        metrics=metrics,
    )
    await secret_store.initialize()
    app.state.secret_store = secret_store
    vault_store = BitwardenCliVaultStore.from_settings(settings, metrics=metrics)

    # Startup -- Engine and triggers
    sync_engine = SyncEngine(
        vault_store,
        secret_store,
        options,
        audit=audit,
        publisher=SyncOutputPublisher(app.state.redis),
        metrics=metrics,
    )
    app.state.engine = sync_engine
    app.state.webhook_service = WebhookService(sync_engine, settings.webhook_secret)

    app.state.sync_loop = None
    if options.continuous_sync:
        sync_loop = SyncLoop(sync_engine, interval=options.sync_interval_seconds)
        await sync_loop.start()
        app.state.sync_loop = sync_loop

    yield

    # Shutdown (reverse order: sync loop -> secret store -> redis -> db)
    if app.state.sync_loop is not None:
        await app.state.sync_loop.stop()
    await secret_store.close()
    if app.state.redis is not None:
        await close_redis(app.state.redis)
    if engine is not None:
        await close_db(engine)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    This is the app factory. Uvicorn calls it with the --factory flag:
        uvicorn vaultsync.app:create_app --factory
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Vaultwarden Kubernetes Secret Sync",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
    )

    app.include_router(v1_router, prefix=settings.api_prefix)
    if settings.metrics_enabled:
        app.include_router(metrics_router)

    return app
