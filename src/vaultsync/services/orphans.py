"""Removal of managed secrets that no vault item produces any more.

Only secrets carrying both management labels are ever candidates, and the
reserved auth token secret is never touched. Failures are isolated per
namespace and per secret.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from vaultsync.config import FieldNames
from vaultsync.errors import InvalidName, VaultSyncError
from vaultsync.schemas.summary import OrphanCleanupSummary, OrphanNamespaceSummary
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.audit import STALE_SECRET_MESSAGE, AuditSink, NullAuditSink, SecretStatus
from vaultsync.services.extractor import parse_item_metadata, target_secret_name
from vaultsync.services.secret_store import RESERVED_SECRET_NAMES, SecretStore

logger = logging.getLogger(__name__)


def expected_secret_names(
    items: Sequence[VaultItem], fields: FieldNames = FieldNames()
) -> dict[str, set[str]]:
    """Map each tagged namespace to the secret names current items produce.

    Items whose name cannot be sanitized contribute nothing.
    """
    expected: dict[str, set[str]] = {}
    for item in items:
        namespaces = parse_item_metadata(item, fields).namespaces
        if not namespaces:
            continue
        try:
            name = target_secret_name(item, fields)
        except InvalidName:
            continue
        for namespace in namespaces:
            expected.setdefault(namespace, set()).add(name)
    return expected


def find_orphans(managed: Sequence[str], expected: set[str]) -> list[str]:
    return sorted(
        name for name in managed if name not in expected and name not in RESERVED_SECRET_NAMES
    )


class OrphanCleaner:
    """Finds and deletes orphaned managed secrets across all namespaces.

    Args:
        secrets: Cluster secret store.
        fields: Field name configuration used to resolve item metadata.
        audit: Sink that records deleted secrets.
    """

    def __init__(
        self,
        secrets: SecretStore,
        fields: FieldNames = FieldNames(),
        audit: AuditSink | None = None,
    ) -> None:
        self.secrets = secrets
        self.fields = fields
        self.audit = audit or NullAuditSink()

    async def namespaces_with_managed_secrets(self) -> dict[str, list[str]]:
        """List every cluster namespace and keep those holding managed secrets."""
        found: dict[str, list[str]] = {}
        for namespace in await self.secrets.list_namespaces():
            try:
                managed = await self.secrets.list_managed_secret_names(namespace)
            except VaultSyncError:
                logger.warning("Could not list secrets in namespace %s", namespace, exc_info=True)
                continue
            if managed:
                found[namespace] = managed
        return found

    async def cleanup(self, items: Sequence[VaultItem], dry_run: bool = False) -> OrphanCleanupSummary:
        summary = OrphanCleanupSummary(enabled=True, dry_run=dry_run)
        expected = expected_secret_names(items, self.fields)
        try:
            managed_by_namespace = await self.namespaces_with_managed_secrets()
        except VaultSyncError:
            logger.exception("Failed to list namespaces for orphan cleanup")
            summary.success = False
            return summary

        for namespace, managed in sorted(managed_by_namespace.items()):
            orphans = find_orphans(managed, expected.get(namespace, set()))
            ns_summary = OrphanNamespaceSummary(
                name=namespace, orphans_found=len(orphans), orphan_names=orphans
            )
            for name in orphans:
                if dry_run:
                    logger.info("[DRY RUN] Would delete orphaned secret %s/%s", namespace, name)
                    ns_summary.orphans_deleted += 1
                    continue
                try:
                    deleted = await self.secrets.delete_secret(namespace, name)
                except VaultSyncError as exc:
                    logger.error(
                        "Failed to delete orphaned secret %s in namespace %s: %s", name, namespace, exc
                    )
                    ns_summary.errors.append(f"{name}: {exc}")
                    continue
                if deleted:
                    ns_summary.orphans_deleted += 1
                    logger.info("Deleted orphaned secret %s/%s", namespace, name)
                await self.audit.upsert_secret_state(
                    namespace, name, "", name, SecretStatus.DELETED, 0, STALE_SECRET_MESSAGE
                )
            summary.add_namespace(ns_summary)
        return summary
