"""Error taxonomy shared by the store, watcher, provisioner and worker layers."""

from __future__ import annotations

from typing import Any, Optional


class ClusterError(Exception):
    """Base class for failures talking to or reasoning about the cluster."""

    retryable = False


class TransportFailure(ClusterError):
    """The store could not be reached or answered with a transient error."""

    retryable = True


class PermanentStoreError(ClusterError):
    """The request itself is wrong (malformed, forbidden, missing binary)."""


class NotFoundError(ClusterError):
    """The addressed object does not exist."""


class AlreadyExistsError(ClusterError):
    """An object with the same kind, namespace and name already exists."""


class ProvisioningError(ClusterError):
    reason = "provisioning"

    def __init__(self, message: str, *, resource: Optional[str] = None) -> None:
        super().__init__(message)
        self.resource = resource


class ResourceConflict(ProvisioningError):
    """Apply collided with a differently-shaped existing object."""

    reason = "conflict"


class InvalidSpec(ProvisioningError):
    reason = "invalid_spec"


class ProvisioningTransportError(ProvisioningError):
    reason = "transport"
    retryable = True


class WatchTimeout(ClusterError):
    """A bounded wait elapsed without the condition being satisfied."""

    def __init__(self, message: str, *, last_value: Any = None) -> None:
        super().__init__(message)
        self.last_value = last_value


class WatchCancelled(ClusterError):
    """The caller's cancellation flag was observed between polls."""


class PreconditionViolation(ClusterError):
    """One or more compliance rules failed; carries the full report."""

    def __init__(self, report: Any) -> None:
        lines = [str(v) for v in getattr(report, "violations", [])]
        super().__init__("; ".join(lines) or "compliance check failed")
        self.report = report


class UsageError(ClusterError):
    """Malformed command invocation, raised before any cluster interaction."""


__all__ = [
    "AlreadyExistsError",
    "ClusterError",
    "InvalidSpec",
    "NotFoundError",
    "PermanentStoreError",
    "PreconditionViolation",
    "ProvisioningError",
    "ProvisioningTransportError",
    "ResourceConflict",
    "TransportFailure",
    "UsageError",
    "WatchCancelled",
    "WatchTimeout",
]
