"""Webhook event payloads and processing results."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

SELECTIVE_SYNC_EVENTS = frozenset({"item.created", "item.updated", "item.restored"})
FULL_SYNC_EVENTS = frozenset({"item.deleted", "item.moved", "item.shared"})


class WebhookEvent(BaseModel):
    """An item change notification posted by the vault server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: str = Field(alias="eventType")
    item_id: str | None = Field(default=None, alias="itemId")
    organization_id: str | None = Field(default=None, alias="organizationId")
    collection_id: str | None = Field(default=None, alias="collectionId")
    user_id: str | None = Field(default=None, alias="userId")
    timestamp: datetime | None = None


class WebhookResult(BaseModel):
    success: bool
    error: str | None = None
    items_processed: int = 0
    secrets_affected: int = 0
    duration_ms: float = 0.0
