"""Read-side queries over the audit tables for the API."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultsync.models.secret_state import SecretState
from vaultsync.models.sync_log import SyncLog
from vaultsync.schemas.pagination import PaginationMeta, decode_cursor


class AuditQueryService:
    """Paginated listings of secret states and sync runs.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_secret_states(
        self,
        page_size: int = 20,
        after: str | None = None,
        namespace: str | None = None,
        status: str | None = None,
    ) -> tuple[list[SecretState], PaginationMeta]:
        """List secret states oldest first with cursor-based pagination.

        Args:
            page_size: Maximum number of states to return.
            after: Opaque cursor for pagination.
            namespace: Only return states in this namespace.
            status: Only return states with this status.

        Returns:
            Tuple of (states list, pagination metadata).

        Raises:
            ValueError: If ``after`` is not a valid cursor.
        """
        query = select(SecretState)
        if namespace:
            query = query.where(SecretState.namespace == namespace)
        if status:
            query = query.where(SecretState.status == status)

        if after:
            cursor_created_at, cursor_id = decode_cursor(after)
            query = query.where(
                (SecretState.created_at > cursor_created_at)
                | (
                    (SecretState.created_at == cursor_created_at)
                    & (SecretState.id > cursor_id)
                )
            )

        query = query.order_by(SecretState.created_at.asc(), SecretState.id.asc())
        query = query.limit(page_size + 1)

        result = await self.db.execute(query)
        states = list(result.scalars().all())

        has_next = len(states) > page_size
        if has_next:
            states = states[:page_size]

        return states, PaginationMeta(has_next=has_next, has_prev=after is not None)

    async def list_sync_logs(
        self,
        page_size: int = 20,
        after: str | None = None,
    ) -> tuple[list[SyncLog], PaginationMeta]:
        """List sync runs newest first with cursor-based pagination.

        Raises:
            ValueError: If ``after`` is not a valid cursor.
        """
        query = select(SyncLog)

        if after:
            cursor_start, cursor_id = decode_cursor(after)
            query = query.where(
                (SyncLog.start_time < cursor_start)
                | ((SyncLog.start_time == cursor_start) & (SyncLog.id < cursor_id))
            )

        query = query.order_by(SyncLog.start_time.desc(), SyncLog.id.desc())
        query = query.limit(page_size + 1)

        result = await self.db.execute(query)
        logs = list(result.scalars().all())

        has_next = len(logs) > page_size
        if has_next:
            logs = logs[:page_size]

        return logs, PaginationMeta(has_next=has_next, has_prev=after is not None)
