"""Plain-text rendering of sync summaries for the CLI and the output stream."""

from __future__ import annotations

from vaultsync.schemas.summary import (
    NamespaceSummary,
    OrphanCleanupSummary,
    ReconcileOutcome,
    SyncSummary,
)

RULE = "=" * 64
MAX_ISSUE_LENGTH = 120


def _shorten(text: str, limit: int = MAX_ISSUE_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def capped(lines: list[str], limit: int) -> list[str]:
    """First ``limit`` lines, followed by an ``...and N more`` marker when cut."""
    if limit <= 0 or len(lines) <= limit:
        return list(lines)
    return [*lines[:limit], f"...and {len(lines) - limit} more"]


def format_namespace(namespace: NamespaceSummary, max_errors: int = 3) -> list[str]:
    status = "OK" if namespace.success else "FAILED"
    lines = [
        f"  {namespace.name} [{status}] items={namespace.source_items} "
        f"created={namespace.created} updated={namespace.updated} "
        f"up-to-date={namespace.skipped} failed={namespace.failed}"
    ]
    for secret in namespace.secrets:
        if secret.outcome in (ReconcileOutcome.CREATED, ReconcileOutcome.UPDATED):
            lines.append(f"    {secret.name}: {_shorten(secret.status_text)}")
    lines.extend(f"    ! {_shorten(error)}" for error in capped(namespace.errors, max_errors))
    return lines


def format_orphans(orphans: OrphanCleanupSummary) -> list[str]:
    if not orphans.enabled:
        return ["Orphan cleanup: disabled"]
    verb = "would delete" if orphans.dry_run else "deleted"
    lines = [
        f"Orphan cleanup: {orphans.total_orphans_deleted}/{orphans.total_orphans_found} {verb}"
    ]
    for namespace in orphans.namespaces:
        if namespace.orphan_names:
            lines.append(f"  {namespace.name}: {', '.join(namespace.orphan_names)}")
        lines.extend(f"    ! {_shorten(error)}" for error in namespace.errors)
    return lines


def format_summary(summary: SyncSummary, max_errors_per_namespace: int = 3) -> str:
    """Render a summary as a multi-line report.

    Per-namespace error lists are capped at ``max_errors_per_namespace``
    entries with an ``...and N more`` marker.
    """
    title = f"Sync #{summary.sync_number}"
    if summary.dry_run:
        title += " [DRY RUN]"
    lines = [
        RULE,
        title,
        RULE,
        f"Status:      {summary.status_text}",
        f"Duration:    {summary.duration_seconds:.1f}s",
        f"Vault items: {summary.total_items}",
        f"Namespaces:  {summary.total_namespaces}",
        f"Changes:     {'yes' if summary.has_changes else 'no'}",
        "",
        f"Created: {summary.created}  Updated: {summary.updated}  "
        f"Up-to-date: {summary.skipped}  Failed: {summary.failed}  "
        f"Orphans deleted: {summary.orphans_deleted}  Total: {summary.processed}",
    ]
    if summary.namespaces:
        lines += ["", "Namespaces:"]
        for namespace in sorted(summary.namespaces, key=lambda ns: ns.name):
            lines += format_namespace(namespace, max_errors_per_namespace)
    if summary.orphan_cleanup is not None:
        lines += ["", *format_orphans(summary.orphan_cleanup)]
    if summary.errors or summary.warnings:
        lines += ["", "Issues:"]
        lines += [f"  ERROR {_shorten(error)}" for error in summary.errors]
        lines += [f"  WARN  {_shorten(warning)}" for warning in summary.warnings]
    lines.append(RULE)
    return "\n".join(lines)
