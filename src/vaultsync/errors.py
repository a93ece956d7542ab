"""Error taxonomy for vault-to-cluster reconciliation.

Only :class:`AuthenticationFailure` is allowed to abort a whole run. Every
other error is caught at the smallest unit it affects (one secret, one
namespace, one orphan) and recorded in the sync summary.
"""

from __future__ import annotations


class VaultSyncError(Exception):
    """Base class for all errors raised by vaultsync."""


class AuthenticationFailure(VaultSyncError):
    """The vault rejected our credentials or the session could not be restored."""


class NamespaceNotFound(VaultSyncError):
    """A target namespace does not exist in the cluster."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        super().__init__(f"Namespace '{namespace}' does not exist in Kubernetes cluster")


class InvalidName(VaultSyncError, ValueError):
    """A vault item or field name cannot be turned into a valid Kubernetes name."""


class StoreUnavailable(VaultSyncError):
    """A transient failure talking to the vault or the cluster."""


class VaultCommandError(StoreUnavailable):
    """A vault CLI command exited non-zero or timed out."""

    def __init__(self, command: str, detail: str) -> None:
        self.command = command
        self.detail = detail
        super().__init__(f"bw {command} failed: {detail}")


class NotFoundDuringUpdate(VaultSyncError):
    """An update targeted a secret that vanished after it was read."""

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"Secret '{name}' not found in namespace '{namespace}' during update")


class LockTimeout(VaultSyncError):
    """Another reconciliation holds the global sync lock."""
