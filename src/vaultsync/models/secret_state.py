from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from vaultsync.models.base import Base, RowIdMixin, TimestampMixin


class SecretState(Base, RowIdMixin, TimestampMixin):
    """Last known sync state of one managed secret."""

    __tablename__ = "secret_states"
    __table_args__ = (
        UniqueConstraint("namespace", "secret_name", name="uq_secret_state_namespace_name"),
    )

    namespace: Mapped[str] = mapped_column(String(253), nullable=False)
    secret_name: Mapped[str] = mapped_column(String(253), nullable=False)
    vault_item_id: Mapped[str] = mapped_column(String(100), server_default="", nullable=False)
    vault_item_name: Mapped[str] = mapped_column(String(255), server_default="", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), server_default="Active", nullable=False, index=True
    )
    data_keys_count: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
