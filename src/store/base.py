from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "ClusterRole",
        "ClusterRoleBinding",
        "CSIDriver",
        "CustomResourceDefinition",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
        "PersistentVolume",
        "StorageClass",
    }
)


def is_cluster_scoped(kind: str) -> bool:
    return kind in CLUSTER_SCOPED_KINDS


def object_ref(obj: Mapping[str, Any]) -> str:
    """Render ``Kind/namespace/name`` (or ``Kind/name`` when cluster scoped)."""

    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    kind = obj.get("kind") or "<unknown>"
    name = metadata.get("name") or "<unnamed>"
    namespace = metadata.get("namespace")
    if namespace and not is_cluster_scoped(kind):
        return f"{kind}/{namespace}/{name}"
    return f"{kind}/{name}"


def identity(obj: Mapping[str, Any]) -> tuple:
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    kind = obj.get("kind")
    namespace = None if is_cluster_scoped(str(kind)) else metadata.get("namespace")
    return (kind, namespace, metadata.get("name"))


def is_pod_ready(pod: Mapping[str, Any]) -> bool:
    status = pod.get("status") if isinstance(pod.get("status"), dict) else {}
    for condition in status.get("conditions") or []:
        if isinstance(condition, dict) and condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


class ResourceStore:
    """Capability over a cluster object store.

    Every method raises from :mod:`src.common.errors`: ``NotFoundError`` and
    ``AlreadyExistsError`` for addressing problems, ``TransportFailure`` for
    transient trouble and ``PermanentStoreError`` for requests that will
    never succeed as written.
    """

    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        selector: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        raise NotImplementedError

    def exec(self, pod: str, namespace: str, command: Sequence[str]) -> str:
        raise NotImplementedError

    def copy_to(self, local_dir: Path, pod: str, namespace: str, remote_dir: str) -> None:
        """Copy the contents of ``local_dir`` into ``remote_dir`` inside ``pod``."""
        raise NotImplementedError

    def copy_from(self, pod: str, namespace: str, remote_dir: str, local_dir: Path) -> None:
        """Copy the contents of ``remote_dir`` inside ``pod`` into ``local_dir``."""
        raise NotImplementedError


__all__ = ["CLUSTER_SCOPED_KINDS", "ResourceStore", "identity", "is_cluster_scoped", "is_pod_ready", "object_ref"]
