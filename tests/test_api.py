"""API tests through httpx's ASGITransport.

The lifespan does not run under ASGITransport, so each test app gets its
state (engine, webhook service, audit session factory) assigned directly.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import make_item
from vaultsync.app import create_app
from vaultsync.config import Settings, get_settings
from vaultsync.models.secret_state import SecretState
from vaultsync.models.sync_log import SyncLog
from vaultsync.schemas.pagination import encode_cursor
from vaultsync.services.sync_lock import GlobalSyncLock
from vaultsync.services.webhook_service import WebhookService, compute_signature

API = "/api/v1"


def _session_factory(rows):
    session = MagicMock()
    session.execute = AsyncMock(return_value=MagicMock())
    session.execute.return_value.scalars.return_value.all.return_value = rows
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, audit_enabled=False)


@pytest.fixture
def app(settings, engine):
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.engine = engine
    app.state.sync_loop = None
    app.state.webhook_service = WebhookService(engine, settings.webhook_secret)
    app.state.session_factory = None
    app.state.redis = None
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


async def test_health(client):
    response = await client.get(f"{API}/system/health")

    assert response.status_code == 200
    attrs = response.json()["data"]["attributes"]
    assert attrs == {
        "status": "healthy",
        "database": "disabled",
        "redis": "disabled",
        "sync_loop": "stopped",
    }


async def test_health_degraded_when_redis_unreachable(app, client):
    from redis.exceptions import ConnectionError as RedisConnectionError

    app.state.redis = AsyncMock()
    app.state.redis.ping.side_effect = RedisConnectionError("refused")

    response = await client.get(f"{API}/system/health")

    assert response.json()["data"]["attributes"]["status"] == "degraded"


async def test_metrics_exposed_at_root(client, vault):
    vault.items = [make_item(password="p")]
    await client.post(f"{API}/sync")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "vaultwarden_sync_total" in response.text
    assert "vaultwarden_items_watched 1.0" in response.text


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


async def test_trigger_sync(client, vault, secret_store):
    vault.items = [make_item(username="u", password="p")]

    response = await client.post(f"{API}/sync")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["type"] == "sync-runs"
    assert data["id"] == "1"
    assert data["attributes"]["created"] == 1
    assert data["attributes"]["status"] == "SUCCESS"
    assert ("prod", "db") in secret_store.secrets


async def test_trigger_dry_run_for_namespace(client, vault, secret_store):
    vault.items = [make_item(password="p")]

    response = await client.post(f"{API}/sync", params={"namespace": "prod", "dry_run": "true"})

    attrs = response.json()["data"]["attributes"]
    assert attrs["dry_run"] is True
    assert attrs["orphan_cleanup"]["enabled"] is False
    assert secret_store.writes == []


async def test_trigger_sync_while_locked(client, vault, options):
    vault.items = [make_item(password="p")]
    blocker = GlobalSyncLock(options.lock_path)
    assert await blocker.try_acquire()
    try:
        response = await client.post(f"{API}/sync")
    finally:
        blocker.release()

    assert response.status_code == 409


async def test_trigger_sync_authentication_failure(client, vault):
    vault.auth_error = "expired"

    response = await client.post(f"{API}/sync")

    assert response.status_code == 502


async def test_orphan_cleanup(client, vault, secret_store):
    vault.items = [make_item(password="p")]
    secret_store.put("prod", "old", {"k": "v"})

    response = await client.post(f"{API}/sync/orphans")

    data = response.json()["data"]
    assert data["type"] == "orphan-cleanups"
    assert data["attributes"]["total_orphans_deleted"] == 1
    assert ("prod", "old") not in secret_store.secrets


async def test_sync_status(client, vault):
    vault.items = [make_item(password="p")]
    await client.post(f"{API}/sync")

    response = await client.get(f"{API}/sync/status")

    attrs = response.json()["data"]["attributes"]
    assert attrs["sync_count"] == 1
    assert attrs["has_vault_hash"] is True
    assert attrs["continuous_sync"] is False
    assert attrs["lock_owner"] is None


async def test_reset_hash_forces_full_rebuild(app, client, vault):
    vault.items = [make_item(password="p")]
    await client.post(f"{API}/sync")
    engine = app.state.engine
    assert engine.last_items_hash is not None

    response = await client.post(f"{API}/sync/reset-hash")

    assert response.status_code == 200
    assert response.json()["data"]["attributes"]["has_vault_hash"] is False
    assert engine.last_items_hash is None
    assert len(engine.cache) == 0


async def test_sync_output_without_redis(client):
    response = await client.get(f"{API}/sync/output")

    assert response.json()["data"]["attributes"] == {"enabled": False, "lines": []}


# ---------------------------------------------------------------------------
# API token
# ---------------------------------------------------------------------------


class TestApiToken:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(_env_file=None, audit_enabled=False, api_token="tok")

    async def test_missing_token_rejected(self, client):
        response = await client.get(f"{API}/sync/status")
        assert response.status_code == 401

    async def test_wrong_token_rejected(self, client):
        response = await client.get(
            f"{API}/sync/status", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    async def test_valid_token(self, client):
        response = await client.get(f"{API}/sync/status", headers={"Authorization": "Bearer tok"})
        assert response.status_code == 200

    async def test_health_is_public(self, client):
        response = await client.get(f"{API}/system/health")
        assert response.status_code == 200


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWebhooks:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(_env_file=None, audit_enabled=False, webhook_secret="s3cret", api_token="tok")

    async def test_valid_event(self, client, vault, secret_store):
        vault.items = [make_item(password="p")]
        body = json.dumps({"eventType": "item.updated", "itemId": "item-1"}).encode()

        response = await client.post(
            f"{API}/webhooks/vaultwarden",
            content=body,
            headers={"X-Webhook-Signature": "sha256=" + compute_signature("s3cret", body)},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["type"] == "webhook-results"
        assert data["id"] == "item-1"
        assert data["attributes"]["success"] is True
        assert ("prod", "db") in secret_store.secrets

    async def test_hub_signature_header(self, client, vault):
        body = json.dumps({"eventType": "item.deleted"}).encode()

        response = await client.post(
            f"{API}/webhooks/vaultwarden",
            content=body,
            headers={"X-Hub-Signature-256": compute_signature("s3cret", body)},
        )

        assert response.status_code == 200
        assert response.json()["data"]["id"] == "item.deleted"

    async def test_bad_signature(self, client, secret_store):
        body = b'{"eventType": "item.updated", "itemId": "item-1"}'

        response = await client.post(
            f"{API}/webhooks/vaultwarden",
            content=body,
            headers={"X-Webhook-Signature": "sha256=deadbeef"},
        )

        assert response.status_code == 401
        assert secret_store.writes == []

    async def test_invalid_payload(self, client):
        body = b"not json"

        response = await client.post(
            f"{API}/webhooks/vaultwarden",
            content=body,
            headers={"X-Webhook-Signature": compute_signature("s3cret", body)},
        )

        assert response.status_code == 400

    async def test_disabled(self, app, client):
        app.dependency_overrides[get_settings] = lambda: Settings(
            _env_file=None, audit_enabled=False, webhook_enabled=False
        )

        response = await client.post(f"{API}/webhooks/vaultwarden", content=b"{}")

        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Audit listings
# ---------------------------------------------------------------------------


async def test_secret_states_need_audit_database(client):
    response = await client.get(f"{API}/secrets")
    assert response.status_code == 503


async def test_list_secret_states_paginates(app, client):
    now = datetime.now(timezone.utc)
    states = [
        SecretState(
            id=f"00000000-0000-0000-0000-00000000000{i}",
            namespace="prod",
            secret_name=name,
            vault_item_id=f"item-{i}",
            vault_item_name=name,
            status="Active",
            data_keys_count=2,
            last_error=None,
            last_synced=now,
            created_at=now + timedelta(seconds=i),
            updated_at=now,
        )
        for i, name in enumerate(["db", "api"], start=1)
    ]
    app.state.session_factory = _session_factory(states)

    response = await client.get(f"{API}/secrets", params={"page[size]": 1})

    body = response.json()
    assert response.status_code == 200
    assert [r["attributes"]["secret_name"] for r in body["data"]] == ["db"]
    assert body["data"][0]["type"] == "secret-states"
    assert body["meta"]["has_next"] is True
    assert "page[after]=" in body["links"]["next"]


async def test_next_link_keeps_filters(app, client):
    now = datetime.now(timezone.utc)
    states = [
        SecretState(
            id=f"00000000-0000-0000-0000-00000000001{i}",
            namespace="prod",
            secret_name=f"s{i}",
            vault_item_id=f"item-{i}",
            vault_item_name=f"s{i}",
            status="Active",
            data_keys_count=1,
            last_error=None,
            last_synced=now,
            created_at=now,
            updated_at=now,
        )
        for i in range(2)
    ]
    app.state.session_factory = _session_factory(states)

    response = await client.get(f"{API}/secrets", params={"namespace": "prod", "page[size]": 1})

    links = response.json()["links"]
    assert links["first"].endswith("?page[size]=1&namespace=prod")
    assert links["next"].endswith("&page[size]=1&namespace=prod")


async def test_list_secret_states_bad_cursor(app, client):
    app.state.session_factory = _session_factory([])

    response = await client.get(f"{API}/secrets", params={"page[after]": "garbage"})

    assert response.status_code == 400


async def test_list_sync_logs(app, client):
    now = datetime.now(timezone.utc)
    log = SyncLog(
        id="00000000-0000-0000-0000-000000000001",
        start_time=now,
        end_time=now,
        status="Success",
        phase="Full Sync",
        total_items=3,
        processed_items=3,
        created_secrets=1,
        updated_secrets=0,
        skipped_secrets=2,
        failed_secrets=0,
        deleted_secrets=0,
        duration_seconds=0.5,
        error_message=None,
        sync_interval_seconds=3600,
        continuous_sync=True,
    )
    app.state.session_factory = _session_factory([log])

    response = await client.get(
        f"{API}/sync-logs", params={"page[after]": encode_cursor(now, "x")}
    )

    body = response.json()
    assert body["data"][0]["type"] == "sync-logs"
    assert body["data"][0]["attributes"]["skipped_secrets"] == 2
    assert body["meta"] == {"has_next": False, "has_prev": True}
