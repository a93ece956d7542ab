"""Tests for vaultsync.services.webhook_service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultsync.errors import AuthenticationFailure, LockTimeout
from vaultsync.schemas.summary import NamespaceSummary, SecretSummary, SyncSummary
from vaultsync.schemas.webhook import WebhookEvent
from vaultsync.services.webhook_service import WebhookService, compute_signature

PAYLOAD = b'{"eventType":"item.updated","itemId":"item-1"}'


def _summary(success: bool = True) -> SyncSummary:
    summary = SyncSummary(total_items=3)
    ns = NamespaceSummary(name="prod")
    ns.add_secret(SecretSummary(name="db"))
    summary.add_namespace(ns)
    if not success:
        summary.add_error("Sync failed: boom")
    return summary.finish()


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.sync = AsyncMock(return_value=_summary())
    engine.sync_item = AsyncMock(return_value=_summary())
    return engine


class TestSignature:
    def test_valid_signature_with_prefix(self, engine):
        service = WebhookService(engine, "s3cret")
        signature = "sha256=" + compute_signature("s3cret", PAYLOAD)
        assert service.validate_signature(PAYLOAD, signature)

    def test_valid_signature_uppercase_without_prefix(self, engine):
        service = WebhookService(engine, "s3cret")
        assert service.validate_signature(PAYLOAD, compute_signature("s3cret", PAYLOAD).upper())

    def test_wrong_signature(self, engine):
        service = WebhookService(engine, "s3cret")
        assert not service.validate_signature(PAYLOAD, compute_signature("other", PAYLOAD))

    def test_tampered_payload(self, engine):
        service = WebhookService(engine, "s3cret")
        signature = compute_signature("s3cret", PAYLOAD)
        assert not service.validate_signature(PAYLOAD + b" ", signature)

    def test_missing_signature(self, engine):
        assert not WebhookService(engine, "s3cret").validate_signature(PAYLOAD, None)

    def test_no_secret_accepts_everything(self, engine):
        assert WebhookService(engine, "").validate_signature(PAYLOAD, None)


class TestProcess:
    async def test_item_update_syncs_item(self, engine):
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="item.updated", item_id="item-1"))

        engine.sync_item.assert_awaited_once_with("item-1")
        engine.sync.assert_not_awaited()
        assert result.success
        assert result.items_processed == 3
        assert result.secrets_affected == 1

    async def test_unknown_item_falls_back_to_full_sync(self, engine):
        engine.sync_item.return_value = None
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="item.created", item_id="gone"))

        engine.sync.assert_awaited_once_with()
        assert result.success

    async def test_created_without_item_id_runs_full_sync(self, engine):
        service = WebhookService(engine)

        await service.process(WebhookEvent(event_type="item.created"))

        engine.sync_item.assert_not_awaited()
        engine.sync.assert_awaited_once_with()

    @pytest.mark.parametrize("event_type", ["item.deleted", "item.moved", "item.shared"])
    async def test_structural_events_run_full_sync(self, engine, event_type):
        service = WebhookService(engine)

        await service.process(WebhookEvent(event_type=event_type, item_id="item-1"))

        engine.sync.assert_awaited_once_with()
        engine.sync_item.assert_not_awaited()

    async def test_unknown_event_type(self, engine):
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="folder.created"))

        assert not result.success
        assert result.error == "Unknown event type: folder.created"
        engine.sync.assert_not_awaited()

    async def test_failed_sync_reports_errors(self, engine):
        engine.sync.return_value = _summary(success=False)
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="item.deleted"))

        assert not result.success
        assert result.error == "Sync failed: boom"

    async def test_lock_timeout(self, engine):
        engine.sync.side_effect = LockTimeout("Sync already in progress")
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="item.deleted"))

        assert not result.success
        assert result.error == "Sync already in progress"

    async def test_authentication_failure(self, engine):
        engine.sync_item.side_effect = AuthenticationFailure("expired")
        service = WebhookService(engine)

        result = await service.process(WebhookEvent(event_type="item.updated", item_id="item-1"))

        assert not result.success
        assert result.error == "expired"


def test_event_parses_camel_case():
    event = WebhookEvent.model_validate_json(PAYLOAD)
    assert event.event_type == "item.updated"
    assert event.item_id == "item-1"
