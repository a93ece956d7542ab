"""
vaultsync CLI: one-shot syncs and the API server.

Usage:
    vaultsync sync                      # Full sync of every tagged namespace
    vaultsync sync --namespace prod     # Sync one namespace
    vaultsync sync --dry-run            # Report intended changes only
    vaultsync cleanup-orphans           # Delete orphaned managed secrets
    vaultsync serve                     # Start the API server (+ sync loop)

Exit codes: 0 success, 1 failure, 2 another sync is in progress.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable

from vaultsync.config import Settings, configure_logging, get_settings
from vaultsync.errors import AuthenticationFailure, LockTimeout
from vaultsync.services.reconciliation import SyncEngine
from vaultsync.services.summary_formatter import format_orphans, format_summary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Sync Vaultwarden items into Kubernetes secrets.",
    )
    parser.add_argument("--log-level", default=None, help="Override VAULTSYNC_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command")

    # sync
    sync_parser = subparsers.add_parser("sync", help="Run one sync")
    sync_parser.add_argument("--namespace", "-n", default=None, help="Only sync this namespace")
    sync_parser.add_argument(
        "--dry-run", action="store_true", help="Report intended changes without writing"
    )

    # cleanup-orphans
    orphan_parser = subparsers.add_parser(
        "cleanup-orphans", help="Delete managed secrets no vault item produces"
    )
    orphan_parser.add_argument(
        "--dry-run", action="store_true", help="List orphans without deleting them"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port")

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    if args.command == "sync":
        return _cmd_sync(args, settings)
    elif args.command == "cleanup-orphans":
        return _cmd_cleanup_orphans(args, settings)
    elif args.command == "serve":
        return _cmd_serve(args)
    else:
        parser.print_help()
        return EXIT_OK


async def _with_engine(settings: Settings, action: Callable[[SyncEngine], Awaitable[int]]) -> int:
    """Build the engine and its collaborators, run ``action``, then close everything."""
    from vaultsync.database import close_db, get_session_factory, init_db
    from vaultsync.redis import close_redis, init_redis
    from vaultsync.services.audit import DatabaseAuditSink
    from vaultsync.services.metrics import SyncMetrics
    from vaultsync.services.output_publisher import SyncOutputPublisher
    from vaultsync.services.secret_store import KubernetesSecretStore
    from vaultsync.services.vault_store import BitwardenCliVaultStore

    options = settings.sync_options()
    db_engine = (
        await init_db(settings.database_url, settings.database_pool_size)
        if settings.audit_enabled
        else None
    )
    redis = await init_redis(settings.redis_url) if settings.redis_url else None
    metrics = SyncMetrics()
    secret_store = KubernetesSecretStore(
        in_cluster=settings.kube_in_cluster,
        config_file=settings.kube_config_path or None,
        context=settings.kube_context or None,
        request_timeout=settings.kube_request_timeout_seconds,
        metrics=metrics,
    )
    try:
        await secret_store.initialize()
        audit = (
            DatabaseAuditSink(
                get_session_factory(db_engine),
                sync_interval_seconds=options.sync_interval_seconds,
                continuous_sync=options.continuous_sync,
            )
            if db_engine is not None
            else None
        )
        engine = SyncEngine(
            BitwardenCliVaultStore.from_settings(settings, metrics=metrics),
            secret_store,
            options,
            audit=audit,
            publisher=SyncOutputPublisher(redis),
            metrics=metrics,
        )
        return await action(engine)
    finally:
        await secret_store.close()
        if redis is not None:
            await close_redis(redis)
        if db_engine is not None:
            await close_db(db_engine)


def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    async def run(engine: SyncEngine) -> int:
        dry_run = args.dry_run or None
        if args.namespace:
            summary = await engine.sync_namespace(args.namespace, dry_run=dry_run)
        else:
            summary = await engine.sync(dry_run=dry_run)
        print(format_summary(summary, settings.max_errors_per_namespace))
        return EXIT_OK if summary.overall_success else EXIT_FAILED

    return _run_guarded(settings, run)


def _cmd_cleanup_orphans(args: argparse.Namespace, settings: Settings) -> int:
    async def run(engine: SyncEngine) -> int:
        summary = await engine.cleanup_orphans(dry_run=args.dry_run or None)
        print("\n".join(format_orphans(summary)))
        return EXIT_OK if summary.success else EXIT_FAILED

    return _run_guarded(settings, run)


def _run_guarded(settings: Settings, action: Callable[[SyncEngine], Awaitable[int]]) -> int:
    try:
        return asyncio.run(_with_engine(settings, action))
    except LockTimeout as exc:
        print(f"Skipped: {exc}", file=sys.stderr)
        return EXIT_LOCKED
    except AuthenticationFailure as exc:
        logger.error("Vault authentication failed: %s", exc)
        return EXIT_FAILED


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "vaultsync.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_config=None,
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
