"""
Shared fixtures for the vaultsync test suite.

Provides in-memory fakes for the vault and the cluster secret store, an item
factory, and an engine wired to both with a lock file under tmp_path.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from vaultsync.config import SyncOptions
from vaultsync.errors import AuthenticationFailure, NotFoundDuringUpdate, StoreUnavailable
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.reconciliation import SyncEngine
from vaultsync.services.secret_store import HASH_ANNOTATION, MANAGED_LABELS, has_managed_labels


def make_item(
    item_id: str = "item-1",
    name: str = "db",
    *,
    namespaces: str | None = "prod",
    username: str | None = None,
    password: str | None = None,
    notes: str = "",
    fields: Mapping[str, str] | None = None,
    revision: str = "2024-01-01T00:00:00Z",
    **extra: Any,
) -> VaultItem:
    """Build a VaultItem from the CLI's JSON shape."""
    custom = [{"name": key, "value": value, "type": 0} for key, value in (fields or {}).items()]
    if namespaces is not None:
        custom.insert(0, {"name": "namespaces", "value": namespaces, "type": 0})
    payload: dict[str, Any] = {
        "id": item_id,
        "name": name,
        "type": 1,
        "notes": notes,
        "fields": custom,
        "revisionDate": revision,
    }
    if username is not None or password is not None:
        payload["login"] = {"username": username or "", "password": password or "", "uris": []}
    payload.update(extra)
    return VaultItem.model_validate(payload)


class FakeSecretStore:
    """In-memory stand-in for the Kubernetes secret store.

    ``writes`` records every mutating call as ``(op, namespace, name)``.
    """

    def __init__(self, namespaces: set[str] | None = None) -> None:
        self.namespaces = set(namespaces if namespaces is not None else {"prod"})
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.reads = 0
        self.vanish_on_update: set[tuple[str, str]] = set()
        self.fail_create: set[tuple[str, str]] = set()
        self.fail_delete: set[tuple[str, str]] = set()

    def put(
        self,
        namespace: str,
        name: str,
        data: Mapping[str, str],
        *,
        managed: bool = True,
        hash_value: str | None = None,
    ) -> None:
        """Seed a secret directly, bypassing ``writes``."""
        annotations = {HASH_ANNOTATION: hash_value} if hash_value else {}
        self.secrets[(namespace, name)] = {
            "data": dict(data),
            "annotations": annotations,
            "labels": dict(MANAGED_LABELS) if managed else {"app": "other"},
        }

    async def namespace_exists(self, namespace: str) -> bool:
        return namespace in self.namespaces

    async def list_namespaces(self) -> list[str]:
        return sorted(self.namespaces)

    async def list_managed_secret_names(self, namespace: str) -> list[str]:
        return sorted(
            name
            for (ns, name), secret in self.secrets.items()
            if ns == namespace and has_managed_labels(secret["labels"])
        )

    async def secret_exists(self, namespace: str, name: str) -> bool:
        self.reads += 1
        return (namespace, name) in self.secrets

    async def get_secret_data(self, namespace: str, name: str) -> dict[str, str] | None:
        self.reads += 1
        secret = self.secrets.get((namespace, name))
        return dict(secret["data"]) if secret else None

    async def get_secret_annotations(self, namespace: str, name: str) -> dict[str, str] | None:
        secret = self.secrets.get((namespace, name))
        return dict(secret["annotations"]) if secret else None

    async def create_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None:
        if (namespace, name) in self.fail_create:
            raise StoreUnavailable(f"create {namespace}/{name} refused")
        self.writes.append(("create", namespace, name))
        self.secrets[(namespace, name)] = {
            "data": dict(data),
            "annotations": dict(annotations),
            "labels": dict(MANAGED_LABELS),
        }

    async def update_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None:
        key = (namespace, name)
        if key in self.vanish_on_update:
            self.vanish_on_update.discard(key)
            self.secrets.pop(key, None)
        if key not in self.secrets:
            raise NotFoundDuringUpdate(namespace, name)
        self.writes.append(("update", namespace, name))
        secret = self.secrets[key]
        secret["data"] = dict(data)
        secret["annotations"].update(annotations)

    async def delete_secret(self, namespace: str, name: str) -> bool:
        if (namespace, name) in self.fail_delete:
            raise StoreUnavailable(f"delete {namespace}/{name} refused")
        self.writes.append(("delete", namespace, name))
        return self.secrets.pop((namespace, name), None) is not None


class FakeVaultStore:
    """In-memory vault with an optional authentication failure."""

    def __init__(self, items: list[VaultItem] | None = None) -> None:
        self.items = list(items or [])
        self.auth_error: str | None = None
        self.fetch_calls = 0

    async def fetch_all_items(self) -> list[VaultItem]:
        self.fetch_calls += 1
        if self.auth_error:
            raise AuthenticationFailure(self.auth_error)
        return list(self.items)

    async def fetch_item(self, item_id: str) -> VaultItem | None:
        if self.auth_error:
            raise AuthenticationFailure(self.auth_error)
        return next((item for item in self.items if item.id == item_id), None)


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def vault() -> FakeVaultStore:
    return FakeVaultStore()


@pytest.fixture
def options(tmp_path) -> SyncOptions:
    return SyncOptions(lock_path=tmp_path / "sync.lock")


@pytest.fixture
def engine(vault, secret_store, options) -> SyncEngine:
    return SyncEngine(vault, secret_store, options)
