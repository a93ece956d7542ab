"""Vault webhook handling: signature checks and event dispatch.

Item creations, updates and restores trigger a sync of the namespaces the
item is tagged with. Deletions, moves and shares can affect secrets the item
no longer points at, so they trigger a full sync.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

from vaultsync.errors import LockTimeout, VaultSyncError
from vaultsync.schemas.summary import SyncSummary
from vaultsync.schemas.webhook import (
    FULL_SYNC_EVENTS,
    SELECTIVE_SYNC_EVENTS,
    WebhookEvent,
    WebhookResult,
)
from vaultsync.services.reconciliation import SyncEngine

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class WebhookService:
    """Validates and processes vault webhook events.

    Args:
        engine: Engine that runs the triggered syncs.
        secret: Shared HMAC secret. Empty disables signature checks.
    """

    def __init__(self, engine: SyncEngine, secret: str = "") -> None:
        self.engine = engine
        self.secret = secret

    def validate_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check an HMAC-SHA256 hex signature, with or without a ``sha256=`` prefix."""
        if not self.secret:
            logger.warning("Webhook secret not configured, skipping signature validation")
            return True
        if not signature:
            logger.warning("No signature provided in webhook request")
            return False
        value = signature.strip()
        if value.startswith(SIGNATURE_PREFIX):
            value = value[len(SIGNATURE_PREFIX):]
        expected = compute_signature(self.secret, payload)
        if not hmac.compare_digest(expected, value.lower()):
            logger.warning("Webhook signature validation failed")
            return False
        return True

    async def _dispatch(self, event: WebhookEvent) -> SyncSummary:
        if event.event_type in SELECTIVE_SYNC_EVENTS and event.item_id:
            summary = await self.engine.sync_item(event.item_id)
            if summary is not None:
                return summary
            logger.info("Item %s not found, triggering full sync", event.item_id)
        else:
            logger.info("Event %s triggers a full sync", event.event_type)
        return await self.engine.sync()

    async def process(self, event: WebhookEvent) -> WebhookResult:
        started = time.monotonic()
        logger.info("Processing webhook event %s for item %s", event.event_type, event.item_id)
        if event.event_type not in SELECTIVE_SYNC_EVENTS | FULL_SYNC_EVENTS:
            logger.warning("Unknown webhook event type: %s", event.event_type)
            return WebhookResult(success=False, error=f"Unknown event type: {event.event_type}")

        try:
            summary = await self._dispatch(event)
        except LockTimeout as exc:
            logger.info("Webhook sync skipped: %s", exc)
            return WebhookResult(
                success=False,
                error=str(exc),
                duration_ms=(time.monotonic() - started) * 1000,
            )
        except (VaultSyncError, ValueError) as exc:
            logger.exception("Error processing webhook event")
            return WebhookResult(
                success=False,
                error=str(exc),
                duration_ms=(time.monotonic() - started) * 1000,
            )

        error = None
        if not summary.overall_success:
            error = "; ".join(summary.errors) or "Sync completed with failures"
        result = WebhookResult(
            success=summary.overall_success,
            error=error,
            items_processed=summary.total_items,
            secrets_affected=summary.processed,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(
            "Webhook processing completed: success=%s, duration=%.0fms",
            result.success,
            result.duration_ms,
        )
        return result
