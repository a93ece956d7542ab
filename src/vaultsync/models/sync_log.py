from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vaultsync.models.base import Base, RowIdMixin, TimestampMixin


class SyncLog(Base, RowIdMixin, TimestampMixin):
    """One reconciliation run and its final counts."""

    __tablename__ = "sync_logs"

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), server_default="Running", nullable=False)
    phase: Mapped[str] = mapped_column(String(50), server_default="Full Sync", nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    processed_items: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    created_secrets: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    updated_secrets: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    skipped_secrets: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    failed_secrets: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    deleted_secrets: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, server_default="0", nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_interval_seconds: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    continuous_sync: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
