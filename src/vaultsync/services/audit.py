"""Audit trail of sync runs and per-secret state.

The engine reports into an :class:`AuditSink`. The database-backed sink
writes to the ``sync_logs`` and ``secret_states`` tables; the null sink is
used when auditing is disabled. Audit failures never change reconciliation
behaviour: they are logged and swallowed here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultsync.models.secret_state import SecretState
from vaultsync.models.sync_log import SyncLog

logger = logging.getLogger(__name__)

STALE_SECRET_MESSAGE = "Secret removed - no longer configured in the vault"


class SecretStatus(str, Enum):
    ACTIVE = "Active"
    FAILED = "Failed"
    DELETED = "Deleted"
    DRY_RUN = "DryRun"


class RunStatus(str, Enum):
    RUNNING = "Running"
    SUCCESS = "Success"
    UP_TO_DATE = "UP-TO-DATE"
    FAILED = "Failed"


class AuditSink(Protocol):
    async def start_run(self, phase: str, total_items: int) -> str | None: ...

    async def update_progress(
        self,
        run_id: str | None,
        *,
        processed: int,
        created: int,
        updated: int,
        skipped: int,
        failed: int,
        deleted: int,
    ) -> None: ...

    async def complete_run(self, run_id: str | None, status: RunStatus, error: str | None = None) -> None: ...

    async def upsert_secret_state(
        self,
        namespace: str,
        secret_name: str,
        item_id: str,
        item_name: str,
        status: SecretStatus,
        key_count: int,
        error: str | None = None,
    ) -> None: ...

    async def cleanup_stale_secret_states(self, expected: Iterable[tuple[str, str]]) -> int: ...


class NullAuditSink:
    """Audit sink that records nothing."""

    async def start_run(self, phase: str, total_items: int) -> str | None:
        return None

    async def update_progress(self, run_id: str | None, **counts: int) -> None:
        return None

    async def complete_run(self, run_id: str | None, status: RunStatus, error: str | None = None) -> None:
        return None

    async def upsert_secret_state(self, *args, **kwargs) -> None:
        return None

    async def cleanup_stale_secret_states(self, expected: Iterable[tuple[str, str]]) -> int:
        return 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseAuditSink:
    """Audit sink writing to PostgreSQL through SQLAlchemy.

    Args:
        session_factory: Async SQLAlchemy session factory.
        sync_interval_seconds: Recorded on each run for the dashboard.
        continuous_sync: Recorded on each run for the dashboard.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sync_interval_seconds: int = 0,
        continuous_sync: bool = False,
    ) -> None:
        self.session_factory = session_factory
        self.sync_interval_seconds = sync_interval_seconds
        self.continuous_sync = continuous_sync

    async def start_run(self, phase: str, total_items: int) -> str | None:
        run_id = str(uuid4())
        try:
            async with self.session_factory() as session:
                session.add(
                    SyncLog(
                        id=run_id,
                        start_time=_utcnow(),
                        status=RunStatus.RUNNING.value,
                        phase=phase,
                        total_items=total_items,
                        sync_interval_seconds=self.sync_interval_seconds,
                        continuous_sync=self.continuous_sync,
                    )
                )
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to record start of sync run")
            return None
        return run_id

    async def update_progress(
        self,
        run_id: str | None,
        *,
        processed: int,
        created: int,
        updated: int,
        skipped: int,
        failed: int,
        deleted: int,
    ) -> None:
        """Store absolute totals for a run."""
        if run_id is None:
            return
        try:
            async with self.session_factory() as session:
                log = await session.get(SyncLog, run_id)
                if log is None:
                    return
                log.processed_items = processed
                log.created_secrets = created
                log.updated_secrets = updated
                log.skipped_secrets = skipped
                log.failed_secrets = failed
                log.deleted_secrets = deleted
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to update progress of sync run %s", run_id)

    async def complete_run(self, run_id: str | None, status: RunStatus, error: str | None = None) -> None:
        if run_id is None:
            return
        try:
            async with self.session_factory() as session:
                log = await session.get(SyncLog, run_id)
                if log is None:
                    return
                end = _utcnow()
                log.end_time = end
                log.status = status.value
                log.error_message = error
                log.duration_seconds = (end - log.start_time).total_seconds()
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to complete sync run %s", run_id)

    async def upsert_secret_state(
        self,
        namespace: str,
        secret_name: str,
        item_id: str,
        item_name: str,
        status: SecretStatus,
        key_count: int,
        error: str | None = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SecretState).where(
                        SecretState.namespace == namespace,
                        SecretState.secret_name == secret_name,
                    )
                )
                state = result.scalar_one_or_none()
                if state is None:
                    state = SecretState(namespace=namespace, secret_name=secret_name)
                    session.add(state)
                state.vault_item_id = item_id
                state.vault_item_name = item_name
                state.status = status.value
                state.data_keys_count = key_count
                state.last_error = error
                state.last_synced = _utcnow()
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to record state of secret %s/%s", namespace, secret_name)

    async def cleanup_stale_secret_states(self, expected: Iterable[tuple[str, str]]) -> int:
        """Mark states of secrets no longer configured in the vault as Deleted.

        Args:
            expected: ``(namespace, secret_name)`` pairs the current vault state produces.

        Returns:
            Number of states marked Deleted.
        """
        wanted = set(expected)
        marked = 0
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SecretState).where(SecretState.status != SecretStatus.DELETED.value)
                )
                for state in result.scalars().all():
                    if (state.namespace, state.secret_name) in wanted:
                        continue
                    state.status = SecretStatus.DELETED.value
                    state.last_error = STALE_SECRET_MESSAGE
                    state.last_synced = _utcnow()
                    marked += 1
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to clean up stale secret states")
            return 0
        return marked
