"""Helper pods bridging local directories and persistent volume claims."""

from .lifecycle import WorkerPodLifecycle, WorkerPodSpec, WorkerState
from .transfer import TransferSession, cleanup_helpers, download, upload

__all__ = [
    "TransferSession",
    "WorkerPodLifecycle",
    "WorkerPodSpec",
    "WorkerState",
    "cleanup_helpers",
    "download",
    "upload",
]
