"""Vault to cluster reconciliation engine and its periodic loop.

A run fetches every vault item, groups the items by target namespace and
secret name, and brings each secret in line with the merged item data:

1. Namespaces are checked once; every secret in a missing namespace fails.
2. When the whole-vault quick hash matches the last successful run, secrets
   are only checked for existence and recreated if they vanished.
3. Otherwise each secret's data is rebuilt, diffed against the live secret
   and created, updated or skipped.
4. Full runs finish with orphan cleanup and stale audit state cleanup.

Only one run executes at a time on a host (:class:`GlobalSyncLock`).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from vaultsync.config import SyncOptions
from vaultsync.errors import (
    AuthenticationFailure,
    InvalidName,
    LockTimeout,
    NamespaceNotFound,
    NotFoundDuringUpdate,
    VaultSyncError,
)
from vaultsync.schemas.summary import (
    ChangeReason,
    NamespaceSummary,
    OrphanCleanupSummary,
    ReconcileOutcome,
    SecretSummary,
    SyncSummary,
)
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.audit import AuditSink, NullAuditSink, RunStatus, SecretStatus
from vaultsync.services.existence_cache import ExistenceCache
from vaultsync.services.extractor import SecretDataExtractor
from vaultsync.services.hashing import combined_hash, quick_hash
from vaultsync.services.metrics import SyncMetrics
from vaultsync.services.orphans import OrphanCleaner
from vaultsync.services.output_publisher import SyncOutputPublisher
from vaultsync.services.sanitizer import sanitize_secret_name
from vaultsync.services.secret_store import HASH_ANNOTATION, MANAGED_LABELS, SecretStore
from vaultsync.services.sync_lock import GlobalSyncLock
from vaultsync.services.vault_store import VaultStore

logger = logging.getLogger(__name__)

PHASE_FULL = "Full Sync"
PHASE_NAMESPACE = "Namespace Sync"
PHASE_ITEM = "Item Sync"
PHASE_ORPHANS = "Orphan Cleanup"


@dataclass
class SecretDescriptor:
    """Desired state of one managed secret."""

    namespace: str
    name: str
    data: dict[str, str]
    combined_hash: str
    item_ids: tuple[str, ...] = ()
    item_names: tuple[str, ...] = ()
    # Names the contributing items would have produced without a secret-name override
    previous_names: tuple[str, ...] = ()
    labels: dict[str, str] = field(default_factory=lambda: dict(MANAGED_LABELS))

    @property
    def annotations(self) -> dict[str, str]:
        return {HASH_ANNOTATION: self.combined_hash}


@dataclass
class ItemGroups:
    """Items grouped by namespace, then by target secret name."""

    secrets: dict[str, dict[str, list[VaultItem]]] = field(default_factory=dict)
    # Items whose target secret name could not be sanitized, per namespace
    invalid: dict[str, list[tuple[VaultItem, str]]] = field(default_factory=dict)

    @property
    def namespaces(self) -> list[str]:
        return sorted(set(self.secrets) | set(self.invalid))

    def restrict(self, namespaces: Iterable[str]) -> ItemGroups:
        wanted = set(namespaces)
        return ItemGroups(
            secrets={ns: group for ns, group in self.secrets.items() if ns in wanted},
            invalid={ns: group for ns, group in self.invalid.items() if ns in wanted},
        )

    def expected_pairs(self) -> set[tuple[str, str]]:
        return {(ns, name) for ns, group in self.secrets.items() for name in group}


def classify_change(data_changed: bool, hash_changed: bool, stored_hash: str | None) -> ChangeReason:
    """Reason reported for an update.

    Only called when the data or the stored hash differs from the desired state.
    """
    if not stored_hash and not data_changed:
        return ChangeReason.INITIAL_HASH
    if data_changed and hash_changed:
        return ChangeReason.CONTENT_AND_METADATA
    if data_changed:
        return ChangeReason.CONTENT
    return ChangeReason.METADATA


def merge_item_data(extracted: Sequence[dict[str, str]]) -> dict[str, str]:
    """Merge per-item data key by key; later items win on collisions."""
    merged: dict[str, str] = {}
    for data in extracted:
        merged.update(data)
    return merged


class SyncEngine:
    """Reconciles vault items into Kubernetes secrets.

    Args:
        vault: Source of vault items.
        secrets: Cluster secret store.
        options: Engine options.
        audit: Optional audit sink; the null sink is used when omitted.
        publisher: Optional live output publisher.
        lock: Host-wide sync lock; built from ``options`` when omitted.
        cache: Existence cache; built from ``options`` when omitted.
        extractor: Item to secret data mapper; built from ``options`` when omitted.
        metrics: Prometheus recorder for run outcomes and secret counts.
    """

    def __init__(
        self,
        vault: VaultStore,
        secrets: SecretStore,
        options: SyncOptions | None = None,
        *,
        audit: AuditSink | None = None,
        publisher: SyncOutputPublisher | None = None,
        lock: GlobalSyncLock | None = None,
        cache: ExistenceCache | None = None,
        extractor: SecretDataExtractor | None = None,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self.vault = vault
        self.secrets = secrets
        self.options = options or SyncOptions()
        self.audit = audit or NullAuditSink()
        self.publisher = publisher or SyncOutputPublisher()
        self.lock = lock or GlobalSyncLock(self.options.lock_path, self.options.lock_timeout_ms)
        self.cache = cache or ExistenceCache(self.options.existence_cache_ttl_seconds)
        self.extractor = extractor or SecretDataExtractor(self.options, vault)
        self.orphans = OrphanCleaner(secrets, self.options.fields, self.audit)
        self.metrics = metrics or SyncMetrics()
        self.sync_number = 0
        self._last_items_hash: str | None = None
        self._descriptors: dict[tuple[str, str], SecretDescriptor] = {}

    @property
    def last_items_hash(self) -> str | None:
        return self._last_items_hash

    def reset_items_hash(self) -> None:
        """Forget the last successful quick hash so the next run rebuilds every secret."""
        self._last_items_hash = None
        self._descriptors = {}
        self.cache.clear()
        logger.info("Cleared stored vault hash, next sync will rebuild all secrets")

    def _dry_run(self, dry_run: bool | None) -> bool:
        return self.options.dry_run if dry_run is None else dry_run

    # -- entry points --------------------------------------------------------

    async def sync(self, namespace: str | None = None, dry_run: bool | None = None) -> SyncSummary:
        """Run a reconciliation over every namespace, or only ``namespace``.

        Raises:
            LockTimeout: Another sync holds the lock.
            AuthenticationFailure: The vault rejected our credentials.
        """
        dry_run = self._dry_run(dry_run)
        scope = {namespace} if namespace else None
        phase = PHASE_NAMESPACE if namespace else PHASE_FULL
        async with self.lock:
            return await self._execute(phase, dry_run, scope)

    async def sync_namespace(self, namespace: str, dry_run: bool | None = None) -> SyncSummary:
        return await self.sync(namespace=namespace, dry_run=dry_run)

    async def sync_item(self, item_id: str, dry_run: bool | None = None) -> SyncSummary | None:
        """Reconcile only the namespaces a single item is tagged with.

        Returns:
            The run summary, or None when the vault has no item ``item_id``.

        Raises:
            LockTimeout: Another sync holds the lock.
            AuthenticationFailure: The vault rejected our credentials.
        """
        dry_run = self._dry_run(dry_run)
        async with self.lock:
            item = await self.vault.fetch_item(item_id)
            if item is None:
                logger.info("Item %s not found in vault", item_id)
                return None
            namespaces = self.extractor.metadata(item).namespaces
            if not namespaces:
                logger.info("Item %s has no namespace tags, nothing to sync", item_id)
                return SyncSummary(dry_run=dry_run).finish()
            return await self._execute(PHASE_ITEM, dry_run, set(namespaces))

    async def cleanup_orphans(self, dry_run: bool | None = None) -> OrphanCleanupSummary:
        """Delete managed secrets that no current vault item produces.

        Raises:
            LockTimeout: Another sync holds the lock.
            AuthenticationFailure: The vault rejected our credentials.
        """
        dry_run = self._dry_run(dry_run)
        async with self.lock:
            items = await self.vault.fetch_all_items()
            if not items:
                # An empty listing is indistinguishable from a broken session
                logger.warning("No items found in vault, skipping orphan cleanup")
                return OrphanCleanupSummary(enabled=True, dry_run=dry_run)
            run_id = await self.audit.start_run(PHASE_ORPHANS, len(items))
            result = await self.orphans.cleanup(items, dry_run)
            if not dry_run:
                self.metrics.record_secrets(result.total_orphans_deleted, "deleted")
            await self.audit.update_progress(
                run_id,
                processed=0,
                created=0,
                updated=0,
                skipped=0,
                failed=0,
                deleted=result.total_orphans_deleted,
            )
            await self.audit.complete_run(
                run_id, RunStatus.SUCCESS if result.success else RunStatus.FAILED
            )
            return result

    # -- run -----------------------------------------------------------------

    async def _execute(self, phase: str, dry_run: bool, scope: set[str] | None) -> SyncSummary:
        self.sync_number += 1
        summary = SyncSummary(sync_number=self.sync_number, dry_run=dry_run)
        run_id: str | None = None
        logger.info("Sync #%d started (%s%s)", self.sync_number, phase, ", dry run" if dry_run else "")
        await self.publisher.clear()
        await self.publisher.publish(f"Sync #{self.sync_number} started: {phase}")
        try:
            items = sorted(await self.vault.fetch_all_items(), key=lambda item: item.id)
            self.metrics.record_items_watched(len(items))
            run_id = await self.audit.start_run(phase, len(items))
            await self._reconcile(summary, items, scope, dry_run, run_id)
        except AuthenticationFailure as exc:
            logger.error("Vault authentication failed: %s", exc)
            summary.add_error(f"Authentication failed: {exc}")
            summary.finish()
            self.metrics.record_error("authentication")
            self.metrics.record_sync(summary.duration_seconds, success=False)
            if run_id is None:
                run_id = await self.audit.start_run(phase, 0)
            await self.audit.complete_run(run_id, RunStatus.FAILED, str(exc))
            await self.publisher.publish(f"Sync #{self.sync_number} failed: authentication failed")
            raise
        except Exception as exc:
            logger.exception("Sync #%d failed", self.sync_number)
            summary.add_error(f"Sync failed: {exc}")
            self.metrics.record_error(type(exc).__name__)

        summary.finish()
        await self.audit.update_progress(run_id, **self._progress(summary))
        self._record_metrics(summary)
        await self.audit.complete_run(
            run_id, self._run_status(summary), "; ".join(summary.errors) or None
        )
        logger.info(
            "Sync #%d finished: %s (%d processed, %d created, %d updated, %d skipped, %d failed) in %.2fs",
            summary.sync_number,
            summary.status_text,
            summary.processed,
            summary.created,
            summary.updated,
            summary.skipped,
            summary.failed,
            summary.duration_seconds,
        )
        await self.publisher.publish(
            f"Sync #{summary.sync_number} finished: {summary.status_text} "
            f"({summary.created} created, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.failed} failed)"
        )
        return summary

    @staticmethod
    def _run_status(summary: SyncSummary) -> RunStatus:
        if not summary.overall_success:
            return RunStatus.FAILED
        if summary.created or summary.updated or summary.orphans_deleted:
            return RunStatus.SUCCESS
        return RunStatus.UP_TO_DATE

    def _record_metrics(self, summary: SyncSummary) -> None:
        self.metrics.record_sync(summary.duration_seconds, summary.overall_success)
        if summary.failed:
            self.metrics.record_error("secret")
        if summary.dry_run:
            return
        self.metrics.record_secrets(summary.created, "created")
        self.metrics.record_secrets(summary.updated, "updated")
        self.metrics.record_secrets(summary.skipped, "skipped")
        self.metrics.record_secrets(summary.failed, "failed")
        self.metrics.record_secrets(summary.orphans_deleted, "deleted")

    @staticmethod
    def _progress(summary: SyncSummary) -> dict[str, int]:
        counts = summary.counts()
        return {
            "processed": counts["processed"],
            "created": counts["created"],
            "updated": counts["updated"],
            "skipped": counts["skipped"],
            "failed": counts["failed"],
            "deleted": counts["orphans_deleted"],
        }

    def group_items(self, items: Sequence[VaultItem]) -> ItemGroups:
        """Group items by namespace and secret name.

        Items without namespace tags are ignored. Within a group items keep
        the order of ``items``.
        """
        groups = ItemGroups()
        for item in items:
            namespaces = self.extractor.metadata(item).namespaces
            if not namespaces:
                continue
            try:
                name = self.extractor.secret_name(item)
            except InvalidName as exc:
                logger.error("Item %s has an unusable secret name: %s", item.id, exc)
                for namespace in namespaces:
                    groups.invalid.setdefault(namespace, []).append((item, str(exc)))
                continue
            for namespace in namespaces:
                groups.secrets.setdefault(namespace, {}).setdefault(name, []).append(item)
        return groups

    async def _reconcile(
        self,
        summary: SyncSummary,
        items: list[VaultItem],
        scope: set[str] | None,
        dry_run: bool,
        run_id: str | None,
    ) -> None:
        summary.total_items = len(items)
        if not items:
            logger.warning("No items found in vault")
            summary.add_warning("No items found in vault")
            return

        items_hash = quick_hash(items, self.options.fields)
        summary.has_changes = items_hash != self._last_items_hash
        full_run = scope is None
        groups = self.group_items(items)
        if scope is not None:
            groups = groups.restrict(scope)
        summary.total_namespaces = len(groups.namespaces)

        verify_only = not summary.has_changes and bool(self._descriptors)
        if verify_only:
            logger.info("No vault changes since last sync, verifying secret existence only")

        descriptors: dict[tuple[str, str], SecretDescriptor] = {}
        for namespace in groups.namespaces:
            ns_summary = await self._sync_namespace(
                namespace, groups, dry_run, verify_only, descriptors
            )
            summary.add_namespace(ns_summary)
            await self.audit.update_progress(run_id, **self._progress(summary))

        if full_run and self.options.delete_orphans:
            orphan_summary = await self.orphans.cleanup(items, dry_run)
            summary.orphan_cleanup = orphan_summary
            for ns_orphans in orphan_summary.namespaces:
                for error in ns_orphans.errors:
                    summary.add_warning(f"Orphan cleanup in {ns_orphans.name}: {error}")
        else:
            summary.orphan_cleanup = OrphanCleanupSummary(enabled=False, dry_run=dry_run)

        if full_run and not dry_run:
            stale = await self.audit.cleanup_stale_secret_states(groups.expected_pairs())
            if stale:
                logger.info("Marked %d stale secret states as deleted", stale)

        if full_run and not dry_run and summary.overall_success:
            self._last_items_hash = items_hash
            self._descriptors = descriptors

    async def _sync_namespace(
        self,
        namespace: str,
        groups: ItemGroups,
        dry_run: bool,
        verify_only: bool,
        descriptors: dict[tuple[str, str], SecretDescriptor],
    ) -> NamespaceSummary:
        secrets = groups.secrets.get(namespace, {})
        invalid = groups.invalid.get(namespace, [])
        source_ids = {item.id for group in secrets.values() for item in group}
        ns_summary = NamespaceSummary(name=namespace, source_items=len(source_ids) + len(invalid))
        await self.publisher.publish(f"Namespace {namespace}: {len(secrets)} secrets")

        for item, error in invalid:
            ns_summary.add_secret(
                SecretSummary(
                    name=item.name or item.id,
                    outcome=ReconcileOutcome.FAILED,
                    source_item_count=1,
                    error=error,
                )
            )

        missing_error = await self._check_namespace(namespace)
        if missing_error is not None:
            for name, group in sorted(secrets.items()):
                result = SecretSummary(
                    name=name,
                    outcome=ReconcileOutcome.FAILED,
                    source_item_count=len(group),
                    error=missing_error,
                )
                ns_summary.add_secret(result)
                await self._record_state(namespace, group, result, dry_run)
            return ns_summary

        for name, group in sorted(secrets.items()):
            cached = self._descriptors.get((namespace, name)) if verify_only else None
            try:
                if cached is not None:
                    result, descriptor = await self._verify_secret(cached, len(group), dry_run)
                else:
                    result, descriptor = await self._sync_secret(
                        namespace, name, group, set(secrets), dry_run
                    )
            except Exception as exc:
                logger.exception("Failed to sync secret %s/%s", namespace, name)
                result = SecretSummary(
                    name=name,
                    outcome=ReconcileOutcome.FAILED,
                    source_item_count=len(group),
                    error=str(exc),
                )
                descriptor = None
            if descriptor is not None and result.outcome is not ReconcileOutcome.FAILED:
                descriptors[(namespace, name)] = descriptor
            ns_summary.add_secret(result)
            await self._record_state(namespace, group, result, dry_run)
            await self.publisher.publish(f"  {namespace}/{name}: {result.status_text}")
        return ns_summary

    async def _check_namespace(self, namespace: str) -> str | None:
        """Return an error message if ``namespace`` is unusable."""
        try:
            if await self.secrets.namespace_exists(namespace):
                return None
        except VaultSyncError as exc:
            logger.error("Could not check namespace %s: %s", namespace, exc)
            return str(exc)
        error = NamespaceNotFound(namespace)
        logger.error("%s", error)
        return str(error)

    async def build_descriptor(
        self, namespace: str, name: str, items: Sequence[VaultItem]
    ) -> SecretDescriptor:
        """Extract and merge the data of every item mapped to one secret.

        Raises:
            InvalidName: If a key of any item cannot be sanitized.
        """
        extracted = [await self.extractor.extract_item(item) for item in items]
        previous: list[str] = []
        for item in items:
            if not self.extractor.metadata(item).secret_name:
                continue
            try:
                raw_name = sanitize_secret_name(item.name)
            except InvalidName:
                continue
            if raw_name != name and raw_name not in previous:
                previous.append(raw_name)
        return SecretDescriptor(
            namespace=namespace,
            name=name,
            data=merge_item_data(extracted),
            combined_hash=combined_hash(items, self.options.fields),
            item_ids=tuple(item.id for item in items),
            item_names=tuple(item.name for item in items),
            previous_names=tuple(previous),
        )

    async def _sync_secret(
        self,
        namespace: str,
        name: str,
        items: Sequence[VaultItem],
        expected_names: set[str],
        dry_run: bool,
    ) -> tuple[SecretSummary, SecretDescriptor | None]:
        result = SecretSummary(name=name, source_item_count=len(items))
        try:
            descriptor = await self.build_descriptor(namespace, name, items)
        except InvalidName as exc:
            logger.error("Cannot build secret %s/%s: %s", namespace, name, exc)
            result.outcome = ReconcileOutcome.FAILED
            result.error = str(exc)
            return result, None
        result.key_count = len(descriptor.data)

        if dry_run:
            logger.info(
                "[DRY RUN] Would sync secret %s/%s (%d keys)", namespace, name, len(descriptor.data)
            )
            return result, descriptor

        await self._delete_previous_names(descriptor, expected_names)
        result.outcome, result.change_reason = await self._apply(descriptor)
        return result, descriptor

    async def _delete_previous_names(
        self, descriptor: SecretDescriptor, expected_names: set[str]
    ) -> None:
        """Delete secrets left behind under a name used before a secret-name override."""
        candidates = [name for name in descriptor.previous_names if name not in expected_names]
        if not candidates:
            return
        namespace = descriptor.namespace
        try:
            managed = set(await self.secrets.list_managed_secret_names(namespace))
        except VaultSyncError as exc:
            logger.warning("Could not list managed secrets in %s: %s", namespace, exc)
            return
        for old_name in candidates:
            if old_name not in managed:
                continue
            try:
                if await self.secrets.delete_secret(namespace, old_name):
                    logger.info(
                        "Deleted secret %s/%s superseded by %s", namespace, old_name, descriptor.name
                    )
            except VaultSyncError as exc:
                logger.warning("Failed to delete old secret %s/%s: %s", namespace, old_name, exc)
            self.cache.evict(namespace, old_name)

    async def _apply(
        self, descriptor: SecretDescriptor
    ) -> tuple[ReconcileOutcome, ChangeReason | None]:
        namespace, name = descriptor.namespace, descriptor.name
        current = await self.secrets.get_secret_data(namespace, name)
        if current is None:
            if self.cache.is_fresh(namespace, name):
                logger.warning("Secret %s/%s was deleted externally, recreating", namespace, name)
            self.cache.evict(namespace, name)
            await self._create(descriptor)
            return ReconcileOutcome.CREATED, None

        self.cache.mark(namespace, name)
        annotations = await self.secrets.get_secret_annotations(namespace, name) or {}
        stored_hash = annotations.get(HASH_ANNOTATION)
        data_changed = current != descriptor.data
        hash_changed = stored_hash != descriptor.combined_hash

        if not data_changed and not hash_changed:
            if await self.secrets.secret_exists(namespace, name):
                logger.debug("Secret %s/%s is up to date", namespace, name)
                return ReconcileOutcome.SKIPPED, None
            logger.warning("Secret %s/%s disappeared during sync, recreating", namespace, name)
            self.cache.evict(namespace, name)
            await self._create(descriptor)
            return ReconcileOutcome.CREATED, None

        reason = classify_change(data_changed, hash_changed, stored_hash)
        try:
            await self.secrets.update_secret(namespace, name, descriptor.data, descriptor.annotations)
        except NotFoundDuringUpdate:
            logger.warning("Secret %s/%s vanished before update, creating it instead", namespace, name)
            self.cache.evict(namespace, name)
            await self._create(descriptor)
            return ReconcileOutcome.CREATED, None
        logger.info("Updated secret %s/%s (%s)", namespace, name, reason.value)
        return ReconcileOutcome.UPDATED, reason

    async def _create(self, descriptor: SecretDescriptor) -> None:
        await self.secrets.create_secret(
            descriptor.namespace, descriptor.name, descriptor.data, descriptor.annotations
        )
        self.cache.mark(descriptor.namespace, descriptor.name)

    async def _verify_secret(
        self, descriptor: SecretDescriptor, item_count: int, dry_run: bool
    ) -> tuple[SecretSummary, SecretDescriptor]:
        """Existence-only check used when the vault has not changed."""
        namespace, name = descriptor.namespace, descriptor.name
        result = SecretSummary(
            name=name, source_item_count=item_count, key_count=len(descriptor.data)
        )
        if await self.secrets.secret_exists(namespace, name):
            self.cache.mark(namespace, name)
            return result, descriptor

        self.cache.evict(namespace, name)
        if dry_run:
            logger.info("[DRY RUN] Would recreate missing secret %s/%s", namespace, name)
            return result, descriptor
        logger.warning("Secret %s/%s is missing from the cluster, recreating", namespace, name)
        await self._create(descriptor)
        result.outcome = ReconcileOutcome.CREATED
        return result, descriptor

    async def _record_state(
        self, namespace: str, items: Sequence[VaultItem], result: SecretSummary, dry_run: bool
    ) -> None:
        if result.outcome is ReconcileOutcome.FAILED:
            status = SecretStatus.FAILED
        elif dry_run:
            status = SecretStatus.DRY_RUN
        else:
            status = SecretStatus.ACTIVE
        await self.audit.upsert_secret_state(
            namespace,
            result.name,
            items[0].id if items else "",
            ", ".join(item.name for item in items)[:255],
            status,
            result.key_count,
            result.error,
        )


class SyncLoop:
    """Background loop that runs a full sync every ``interval`` seconds.

    A busy lock or a failed run is logged and the loop carries on with the
    next cycle.

    Args:
        engine: Engine to drive.
        interval: Seconds between the end of one run and the start of the next.
    """

    def __init__(self, engine: SyncEngine, interval: int = 3600) -> None:
        self.engine = engine
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self.last_summary: SyncSummary | None = None
        self.last_run_at: datetime | None = None
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sync background task."""
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Sync loop started (interval=%ds)", self.interval)

    async def stop(self) -> None:
        """Cancel and await the sync background task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sync loop stopped")

    async def run_once(self) -> SyncSummary | None:
        started = time.monotonic()
        self.last_run_at = datetime.now(timezone.utc)
        try:
            summary = await self.engine.sync()
        except LockTimeout:
            logger.info("Skipping scheduled sync, another sync is in progress")
            return None
        except AuthenticationFailure:
            self.consecutive_failures += 1
            logger.exception("Scheduled sync aborted by vault authentication failure")
            return None
        self.last_summary = summary
        if summary.overall_success:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
        logger.debug("Scheduled sync took %.2fs", time.monotonic() - started)
        return summary

    async def _run_loop(self) -> None:
        """Run syncs in a loop, sleeping between cycles."""
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Sync cycle failed")
            await asyncio.sleep(self.interval)
