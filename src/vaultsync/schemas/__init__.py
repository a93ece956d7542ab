"""Pydantic schemas for vault payloads, sync results and API envelopes."""

from vaultsync.schemas.jsonapi import (
    JSONAPIListResponse,
    JSONAPIResource,
    JSONAPISingleResponse,
)
from vaultsync.schemas.summary import (
    ChangeReason,
    NamespaceSummary,
    OrphanCleanupSummary,
    OrphanNamespaceSummary,
    ReconcileOutcome,
    SecretSummary,
    SyncSummary,
)
from vaultsync.schemas.vault_item import ItemType, VaultItem

__all__ = [
    "ChangeReason",
    "ItemType",
    "JSONAPIListResponse",
    "JSONAPIResource",
    "JSONAPISingleResponse",
    "NamespaceSummary",
    "OrphanCleanupSummary",
    "OrphanNamespaceSummary",
    "ReconcileOutcome",
    "SecretSummary",
    "SyncSummary",
    "VaultItem",
]
