"""Short-lived hint that a secret exists, used to avoid repeated reads.

The cache only ever answers "recently confirmed to exist". A miss or an
expired entry means "ask the secret store", and callers evict entries
as soon as a direct read proves them wrong.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ExistenceCache:
    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._confirmed: dict[str, float] = {}

    @staticmethod
    def key(namespace: str, name: str) -> str:
        return f"{namespace}/{name}"

    def is_fresh(self, namespace: str, name: str) -> bool:
        confirmed_at = self._confirmed.get(self.key(namespace, name))
        if confirmed_at is None:
            return False
        if self._clock() - confirmed_at >= self.ttl_seconds:
            del self._confirmed[self.key(namespace, name)]
            return False
        return True

    def mark(self, namespace: str, name: str) -> None:
        self._confirmed[self.key(namespace, name)] = self._clock()

    def evict(self, namespace: str, name: str) -> None:
        if self._confirmed.pop(self.key(namespace, name), None) is not None:
            logger.debug("Evicted existence cache entry for %s/%s", namespace, name)

    def clear(self) -> None:
        self._confirmed.clear()

    def __len__(self) -> int:
        return len(self._confirmed)
