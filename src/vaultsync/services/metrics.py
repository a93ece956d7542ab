"""Prometheus metrics for sync runs and the two stores.

Metrics exported:
- vaultwarden_sync_duration_seconds: Histogram of run duration by outcome
- vaultwarden_sync_total: Counter of runs by outcome
- vaultwarden_secrets_synced_total: Counter of secrets by operation
- vaultwarden_sync_errors_total: Counter of errors by type
- vaultwarden_items_watched: Gauge of vault items seen by the last run
- vaultwarden_api_calls_total: Counter of vault CLI calls
- vaultwarden_kubernetes_api_calls_total: Counter of Kubernetes API calls
- vaultwarden_last_successful_sync_timestamp: Unix time of the last good run

The collectors live in the default registry, so every ``SyncMetrics`` in the
process feeds the same series and ``GET /metrics`` serves them all.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

sync_duration_seconds = Histogram(
    "vaultwarden_sync_duration_seconds",
    "Duration of sync operations in seconds",
    labelnames=["success"],
    buckets=(0.1, 0.2, 0.4, 0.8, 1.6, 3.2, 6.4, 12.8, 25.6, 51.2),
)

sync_total = Counter(
    "vaultwarden_sync_total",
    "Total number of sync operations",
    labelnames=["success"],
)

secrets_synced_total = Counter(
    "vaultwarden_secrets_synced_total",
    "Total number of secrets synced",
    labelnames=["operation"],
)

sync_errors_total = Counter(
    "vaultwarden_sync_errors_total",
    "Total number of sync errors",
    labelnames=["error_type"],
)

items_watched = Gauge(
    "vaultwarden_items_watched",
    "Number of items currently watched from Vaultwarden",
)

vault_api_calls_total = Counter(
    "vaultwarden_api_calls_total",
    "Total number of Vaultwarden API calls",
    labelnames=["operation", "success"],
)

kubernetes_api_calls_total = Counter(
    "vaultwarden_kubernetes_api_calls_total",
    "Total number of Kubernetes API calls",
    labelnames=["operation", "success"],
)

last_successful_sync_timestamp = Gauge(
    "vaultwarden_last_successful_sync_timestamp",
    "Unix timestamp of the last successful sync",
)


def _flag(success: bool) -> str:
    return "true" if success else "false"


class SyncMetrics:
    """Records sync and store activity into the process-wide collectors."""

    def __init__(self) -> None:
        self.last_successful_sync: float | None = None

    def record_sync(self, duration_seconds: float, success: bool) -> None:
        sync_duration_seconds.labels(success=_flag(success)).observe(duration_seconds)
        sync_total.labels(success=_flag(success)).inc()
        if success:
            self.last_successful_sync = time.time()
            last_successful_sync_timestamp.set(self.last_successful_sync)

    def record_secrets(self, count: int, operation: str) -> None:
        """Add ``count`` to the secret counter for ``operation``; zero is not recorded."""
        if count > 0:
            secrets_synced_total.labels(operation=operation).inc(count)

    def record_error(self, error_type: str) -> None:
        sync_errors_total.labels(error_type=error_type).inc()

    def record_items_watched(self, count: int) -> None:
        items_watched.set(count)

    def record_vault_call(self, operation: str, success: bool) -> None:
        vault_api_calls_total.labels(operation=operation, success=_flag(success)).inc()

    def record_kubernetes_call(self, operation: str, success: bool) -> None:
        kubernetes_api_calls_total.labels(operation=operation, success=_flag(success)).inc()

    @contextmanager
    def track_kubernetes_call(self, operation: str) -> Iterator[None]:
        """Count one Kubernetes call; it failed if the block raises."""
        success = False
        try:
            yield
            success = True
        finally:
            self.record_kubernetes_call(operation, success)


def render_latest() -> bytes:
    """Exposition-format snapshot of the default registry."""
    return generate_latest(REGISTRY)
