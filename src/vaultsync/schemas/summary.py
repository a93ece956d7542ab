"""Result models for one reconciliation run.

A :class:`SyncSummary` is created when a run starts, filled in as
namespaces and secrets are processed, and handed back to the caller once the
run ends. Aggregate counts are derived from the namespace summaries so they
can never disagree with the per-secret outcomes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconcileOutcome(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class ChangeReason(str, Enum):
    CONTENT = "content"
    METADATA = "metadata"
    CONTENT_AND_METADATA = "content+metadata"
    INITIAL_HASH = "initial-hash"


class SecretSummary(BaseModel):
    """Outcome of reconciling one secret."""

    name: str
    outcome: ReconcileOutcome = ReconcileOutcome.SKIPPED
    change_reason: ChangeReason | None = None
    source_item_count: int = 0
    key_count: int = 0
    error: str | None = None

    @property
    def status_text(self) -> str:
        if self.outcome is ReconcileOutcome.UPDATED:
            return f"UPDATED ({self.change_reason.value if self.change_reason else 'unknown'})"
        if self.outcome is ReconcileOutcome.FAILED:
            return f"FAILED ({self.error})"
        if self.outcome is ReconcileOutcome.SKIPPED:
            return "UP-TO-DATE"
        return "CREATED"


class NamespaceSummary(BaseModel):
    """Per-namespace roll-up of secret outcomes."""

    name: str
    success: bool = True
    source_items: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    secrets: list[SecretSummary] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def add_secret(self, secret: SecretSummary) -> None:
        self.secrets.append(secret)
        if secret.outcome is ReconcileOutcome.CREATED:
            self.created += 1
        elif secret.outcome is ReconcileOutcome.UPDATED:
            self.updated += 1
        elif secret.outcome is ReconcileOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.success = False
            self.errors.append(f"Secret {secret.name}: {secret.error}")

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.failed


class OrphanNamespaceSummary(BaseModel):
    name: str
    orphans_found: int = 0
    orphans_deleted: int = 0
    orphan_names: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class OrphanCleanupSummary(BaseModel):
    enabled: bool = False
    success: bool = True
    dry_run: bool = False
    total_orphans_found: int = 0
    total_orphans_deleted: int = 0
    namespaces: list[OrphanNamespaceSummary] = Field(default_factory=list)

    def add_namespace(self, namespace: OrphanNamespaceSummary) -> None:
        self.namespaces.append(namespace)
        self.total_orphans_found += namespace.orphans_found
        self.total_orphans_deleted += namespace.orphans_deleted
        if namespace.errors:
            self.success = False


class SyncSummary(BaseModel):
    """Aggregate result of one reconciliation run."""

    sync_number: int = 0
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    overall_success: bool = True
    dry_run: bool = False
    has_changes: bool = False
    total_items: int = 0
    total_namespaces: int = 0
    namespaces: list[NamespaceSummary] = Field(default_factory=list)
    orphan_cleanup: OrphanCleanupSummary | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def add_namespace(self, namespace: NamespaceSummary) -> None:
        self.namespaces.append(namespace)
        if not namespace.success:
            self.overall_success = False

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.overall_success = False

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def finish(self) -> SyncSummary:
        self.end_time = utcnow()
        return self

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def created(self) -> int:
        return sum(ns.created for ns in self.namespaces)

    @property
    def updated(self) -> int:
        return sum(ns.updated for ns in self.namespaces)

    @property
    def skipped(self) -> int:
        return sum(ns.skipped for ns in self.namespaces)

    @property
    def failed(self) -> int:
        return sum(ns.failed for ns in self.namespaces)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    @property
    def orphans_deleted(self) -> int:
        return self.orphan_cleanup.total_orphans_deleted if self.orphan_cleanup else 0

    @property
    def status_text(self) -> str:
        if not self.overall_success and self.processed == 0:
            return "FAILED"
        if self.failed > 0 or not self.overall_success:
            return "PARTIAL"
        if self.created > 0 or self.updated > 0:
            return "SUCCESS"
        return "UP-TO-DATE"

    def counts(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "orphans_deleted": self.orphans_deleted,
        }
