"""Kubernetes Secret access for the reconciliation engine.

Defines the :class:`SecretStore` protocol the engine depends on and its
kubernetes-asyncio implementation. Every managed secret carries the
managed-by and created-by labels, a content hash annotation and an annotation
listing the data keys that the sync owns. Keys outside that list belong to
someone else and survive updates untouched.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any, Protocol, TypeVar

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiException, CoreV1Api

from vaultsync.errors import NotFoundDuringUpdate, StoreUnavailable
from vaultsync.services.metrics import SyncMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
CREATED_BY_LABEL = "app.kubernetes.io/created-by"
LABEL_VALUE = "vaultwarden-k8s-sync"
HASH_ANNOTATION = "vaultwarden-sync-hash"
MANAGED_KEYS_ANNOTATION = "vaultwarden-sync/managed-keys"
SECRET_TYPE = "Opaque"
# Auth token secret the deployment ships alongside synced secrets
RESERVED_SECRET_NAMES = frozenset({"vaultwarden-kubernetes-secrets-token"})

MANAGED_LABELS = {MANAGED_BY_LABEL: LABEL_VALUE, CREATED_BY_LABEL: LABEL_VALUE}
MANAGED_LABEL_SELECTOR = ",".join(f"{k}={v}" for k, v in MANAGED_LABELS.items())


class SecretStore(Protocol):
    """Cluster-side operations the engine needs."""

    async def namespace_exists(self, namespace: str) -> bool: ...

    async def list_namespaces(self) -> list[str]: ...

    async def list_managed_secret_names(self, namespace: str) -> list[str]: ...

    async def secret_exists(self, namespace: str, name: str) -> bool: ...

    async def get_secret_data(self, namespace: str, name: str) -> dict[str, str] | None: ...

    async def get_secret_annotations(self, namespace: str, name: str) -> dict[str, str] | None: ...

    async def create_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None: ...

    async def update_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None: ...

    async def delete_secret(self, namespace: str, name: str) -> bool: ...


def has_managed_labels(labels: Mapping[str, str] | None) -> bool:
    """True only when both management labels carry this tool's value."""
    if not labels:
        return False
    return all(labels.get(key) == value for key, value in MANAGED_LABELS.items())


def serialize_managed_keys(keys: Iterable[str]) -> str:
    return json.dumps(sorted(keys))


def parse_managed_keys(raw: str | None) -> set[str]:
    if not raw:
        return set()
    try:
        keys = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed %s annotation", MANAGED_KEYS_ANNOTATION)
        return set()
    if not isinstance(keys, list):
        return set()
    return {str(key) for key in keys}


def encode_data(data: Mapping[str, str]) -> dict[str, str]:
    return {key: base64.b64encode(value.encode("utf-8")).decode("ascii") for key, value in data.items()}


def decode_data(data: Mapping[str, str] | None) -> dict[str, str]:
    if not data:
        return {}
    return {
        key: base64.b64decode(value).decode("utf-8", errors="replace") for key, value in data.items()
    }


async def load_kube_config(
    in_cluster: bool = False, config_file: str | None = None, context: str | None = None
) -> None:
    """Load K8s config: in-cluster if available, local kubeconfig otherwise."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        if in_cluster:
            raise
        await config.load_kube_config(config_file=config_file or None, context=context or None)
        logger.info("Loaded local kubeconfig")


class KubernetesSecretStore:
    """Secret store backed by the Kubernetes API.

    Call initialize() once at startup to load config and create the API
    client, and close() at shutdown.

    Args:
        in_cluster: Require the in-cluster service account config.
        config_file: Optional kubeconfig path for local runs.
        context: Optional kubeconfig context name.
        request_timeout: Per-call timeout in seconds.
        metrics: Counts every API call by operation and outcome.
    """

    def __init__(
        self,
        in_cluster: bool = False,
        config_file: str | None = None,
        context: str | None = None,
        request_timeout: float = 30.0,
        api: CoreV1Api | None = None,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self.in_cluster = in_cluster
        self.config_file = config_file
        self.context = context
        self.request_timeout = request_timeout
        self._api = api
        self.metrics = metrics or SyncMetrics()

    async def initialize(self) -> None:
        await load_kube_config(self.in_cluster, self.config_file, self.context)
        self._api = client.CoreV1Api()
        logger.info("Kubernetes secret store initialized")

    async def close(self) -> None:
        if self._api is not None:
            await self._api.api_client.close()
            logger.info("Kubernetes secret store closed")

    @property
    def api(self) -> CoreV1Api:
        assert self._api is not None, "KubernetesSecretStore not initialized"
        return self._api

    async def _call(self, request: Awaitable[T], what: str) -> T:
        # "read secret prod/db" is counted as read_secret
        operation = "_".join(what.split()[:2])
        with self.metrics.track_kubernetes_call(operation):
            try:
                return await asyncio.wait_for(request, timeout=self.request_timeout)
            except asyncio.TimeoutError as exc:
                raise StoreUnavailable(f"Timed out after {self.request_timeout}s: {what}") from exc

    async def _read(self, namespace: str, name: str) -> Any | None:
        try:
            return await self._call(
                self.api.read_namespaced_secret(name=name, namespace=namespace),
                f"read secret {namespace}/{name}",
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise StoreUnavailable(f"Reading secret {namespace}/{name} failed: {e.reason}") from e

    async def namespace_exists(self, namespace: str) -> bool:
        try:
            await self._call(self.api.read_namespace(name=namespace), f"read namespace {namespace}")
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise StoreUnavailable(f"Reading namespace {namespace} failed: {e.reason}") from e

    async def list_namespaces(self) -> list[str]:
        try:
            result = await self._call(self.api.list_namespace(), "list namespaces")
        except ApiException as e:
            raise StoreUnavailable(f"Listing namespaces failed: {e.reason}") from e
        return [ns.metadata.name for ns in result.items]

    async def list_managed_secret_names(self, namespace: str) -> list[str]:
        """Names of secrets in ``namespace`` that carry both management labels."""
        try:
            result = await self._call(
                self.api.list_namespaced_secret(
                    namespace=namespace, label_selector=MANAGED_LABEL_SELECTOR
                ),
                f"list secrets in {namespace}",
            )
        except ApiException as e:
            if e.status == 404:
                logger.warning("Cannot list managed secrets, namespace %s does not exist", namespace)
                return []
            raise StoreUnavailable(f"Listing secrets in {namespace} failed: {e.reason}") from e
        # Re-check labels client side; the selector is only a server-side filter
        return [
            secret.metadata.name
            for secret in result.items
            if has_managed_labels(secret.metadata.labels)
        ]

    async def secret_exists(self, namespace: str, name: str) -> bool:
        return await self._read(namespace, name) is not None

    async def get_secret_data(self, namespace: str, name: str) -> dict[str, str] | None:
        """Decoded data of the managed keys, or None if the secret is absent.

        Keys outside the managed-keys annotation are left out so that data
        added by other tools is never mistaken for drift.
        """
        secret = await self._read(namespace, name)
        if secret is None:
            return None
        data = decode_data(secret.data)
        annotations = secret.metadata.annotations or {}
        if MANAGED_KEYS_ANNOTATION in annotations:
            managed = parse_managed_keys(annotations[MANAGED_KEYS_ANNOTATION])
            data = {key: value for key, value in data.items() if key in managed}
        return data

    async def get_secret_annotations(self, namespace: str, name: str) -> dict[str, str] | None:
        secret = await self._read(namespace, name)
        if secret is None:
            return None
        return dict(secret.metadata.annotations or {})

    async def create_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None:
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(MANAGED_LABELS),
                annotations={
                    **annotations,
                    MANAGED_KEYS_ANNOTATION: serialize_managed_keys(data),
                },
            ),
            type=SECRET_TYPE,
            data=encode_data(data),
        )
        try:
            await self._call(
                self.api.create_namespaced_secret(namespace=namespace, body=body),
                f"create secret {namespace}/{name}",
            )
        except ApiException as e:
            raise StoreUnavailable(f"Creating secret {namespace}/{name} failed: {e.reason}") from e
        logger.info("Created secret '%s' in namespace '%s' (%d keys)", name, namespace, len(data))

    async def update_secret(
        self, namespace: str, name: str, data: Mapping[str, str], annotations: Mapping[str, str]
    ) -> None:
        """Replace the managed keys of an existing secret.

        External keys, labels, annotations and the secret type are kept.

        Raises:
            NotFoundDuringUpdate: The secret disappeared before the replace.
            StoreUnavailable: Any other API failure.
        """
        existing = await self._read(namespace, name)
        if existing is None:
            raise NotFoundDuringUpdate(namespace, name)

        existing_annotations = dict(existing.metadata.annotations or {})
        previously_managed = parse_managed_keys(existing_annotations.get(MANAGED_KEYS_ANNOTATION))
        merged = {
            key: value
            for key, value in (existing.data or {}).items()
            if key not in previously_managed
        }
        merged.update(encode_data(data))

        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={**(existing.metadata.labels or {}), **MANAGED_LABELS},
                annotations={
                    **existing_annotations,
                    **annotations,
                    MANAGED_KEYS_ANNOTATION: serialize_managed_keys(data),
                },
                resource_version=existing.metadata.resource_version,
            ),
            type=existing.type or SECRET_TYPE,
            data=merged,
        )
        try:
            await self._call(
                self.api.replace_namespaced_secret(name=name, namespace=namespace, body=body),
                f"replace secret {namespace}/{name}",
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundDuringUpdate(namespace, name) from e
            raise StoreUnavailable(f"Updating secret {namespace}/{name} failed: {e.reason}") from e
        logger.info(
            "Updated secret '%s' in namespace '%s' (%d managed, %d external keys)",
            name,
            namespace,
            len(data),
            len(merged) - len(data),
        )

    async def delete_secret(self, namespace: str, name: str) -> bool:
        """Delete a secret. Returns False if it was already gone."""
        try:
            await self._call(
                self.api.delete_namespaced_secret(name=name, namespace=namespace),
                f"delete secret {namespace}/{name}",
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("Secret '%s/%s' already deleted (404)", namespace, name)
                return False
            raise StoreUnavailable(f"Deleting secret {namespace}/{name} failed: {e.reason}") from e
        logger.info("Deleted secret '%s' in namespace '%s'", name, namespace)
        return True
