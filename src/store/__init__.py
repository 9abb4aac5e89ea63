"""Cluster object store backends."""

from .base import ResourceStore, is_pod_ready, object_ref
from .kubectl import KubectlStore

__all__ = ["KubectlStore", "ResourceStore", "is_pod_ready", "object_ref"]
