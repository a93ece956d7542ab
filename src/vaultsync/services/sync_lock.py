"""Host-wide lock that allows one reconciliation at a time.

Every trigger (timer, CLI, API, webhook) goes through the same lock file, so
a second run started from another process or task fails fast instead of
queueing. The lock is an exclusive ``flock`` on the file; the holder writes
its PID and start time into the file and deletes it on release.

Only processes on the same host see the lock. Running replicas on several
hosts needs a cluster-side lease instead.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

from vaultsync.errors import LockTimeout

logger = logging.getLogger(__name__)

SPIN_INTERVAL_SECONDS = 0.01


class GlobalSyncLock:
    """File-based exclusive lock with a bounded acquisition timeout.

    Use ``await lock.try_acquire()`` / ``lock.release()`` for the non-raising
    form, or ``async with lock:`` which raises :class:`LockTimeout`.

    Args:
        path: Lock file location.
        timeout_ms: How long to spin before giving up.
    """

    def __init__(self, path: Path | str, timeout_ms: int = 100) -> None:
        self.path = Path(path)
        self.timeout_ms = timeout_ms
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _try_lock_once(self) -> bool:
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        # The previous holder may have unlinked the file after we opened it
        try:
            current = os.stat(self.path)
        except FileNotFoundError:
            os.close(fd)
            return False
        if current.st_ino != os.fstat(fd).st_ino:
            os.close(fd)
            return False
        self._fd = fd
        return True

    def _write_owner(self) -> None:
        assert self._fd is not None
        info = (
            f"PID:{os.getpid()}\n"
            f"Started:{datetime.now(timezone.utc).isoformat()}\n"
            "Type:SyncOperation\n"
        )
        os.ftruncate(self._fd, 0)
        os.pwrite(self._fd, info.encode(), 0)

    def owner_info(self) -> str | None:
        try:
            return self.path.read_text().strip() or None
        except OSError:
            return None

    async def try_acquire(self) -> bool:
        """Spin until the lock is ours or the timeout passes.

        A run already holding this instance counts as busy, so two tasks
        sharing one engine cannot both get in.

        Returns:
            True if acquired, False if another sync holds the lock or the
            lock file cannot be opened.
        """
        deadline = time.monotonic() + self.timeout_ms / 1000
        while True:
            try:
                if not self.held and self._try_lock_once():
                    self._write_owner()
                    logger.debug("Acquired sync lock %s", self.path)
                    return True
            except OSError:
                logger.exception("Cannot open sync lock file %s", self.path)
                return False
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(SPIN_INTERVAL_SECONDS)
        logger.warning(
            "Sync lock timeout, another sync is in progress: %s",
            self.owner_info() or "unknown owner",
        )
        return False

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            self.path.unlink(missing_ok=True)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        logger.debug("Released sync lock %s", self.path)

    async def __aenter__(self) -> GlobalSyncLock:
        if not await self.try_acquire():
            raise LockTimeout("Sync already in progress")
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()
