from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RBAC_API_GROUP = "rbac.authorization.k8s.io"

DRIVER_POLICY_RULES: List[Dict[str, Any]] = [
    {
        "apiGroups": [""],
        "resources": ["pods", "services", "configmaps", "persistentvolumeclaims"],
        "verbs": ["create", "get", "list", "watch", "delete", "update", "patch"],
    },
    {
        "apiGroups": [""],
        "resources": ["events"],
        "verbs": ["create", "get", "list", "watch"],
    },
]

VERIFICATION_LABELS = {"test": "openshift-integration"}
DEPLOY_LABELS = {"app.kubernetes.io/part-of": "docling-spark"}


def namespace_manifest(name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"name": name}
    if labels:
        metadata["labels"] = dict(labels)
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}


@dataclass
class AuxiliaryResourceSet:
    """Service account, role and binding that grant the driver its API access.

    The binding's only subject is the service account of the same set.
    """

    namespace: str
    service_account_name: str
    role_name: str
    binding_name: str
    cluster_scoped: bool = False
    labels: Dict[str, str] = field(default_factory=dict)
    rules: List[Dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DRIVER_POLICY_RULES))

    @classmethod
    def with_suffix(
        cls,
        namespace: str,
        suffix: str,
        *,
        service_account_base: str = "spark-driver",
        cluster_scoped: bool = True,
        labels: Optional[Dict[str, str]] = None,
    ) -> "AuxiliaryResourceSet":
        return cls(
            namespace=namespace,
            service_account_name=f"{service_account_base}-{suffix}",
            role_name=f"docling-spark-driver-role-{suffix}",
            binding_name=f"docling-spark-driver-binding-{suffix}",
            cluster_scoped=cluster_scoped,
            labels=dict(VERIFICATION_LABELS if labels is None else labels),
        )

    @classmethod
    def fixed(
        cls,
        namespace: str,
        service_account_name: str = "spark-driver",
        *,
        labels: Optional[Dict[str, str]] = None,
    ) -> "AuxiliaryResourceSet":
        return cls(
            namespace=namespace,
            service_account_name=service_account_name,
            role_name=f"{service_account_name}-role",
            binding_name=f"{service_account_name}-binding",
            cluster_scoped=False,
            labels=dict(DEPLOY_LABELS if labels is None else labels),
        )

    @property
    def role_kind(self) -> str:
        return "ClusterRole" if self.cluster_scoped else "Role"

    @property
    def binding_kind(self) -> str:
        return "ClusterRoleBinding" if self.cluster_scoped else "RoleBinding"

    def _metadata(self, name: str, *, namespaced: bool) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": name}
        if namespaced:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        return metadata

    def service_account(self) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": self._metadata(self.service_account_name, namespaced=True),
        }

    def role(self) -> Dict[str, Any]:
        return {
            "apiVersion": f"{RBAC_API_GROUP}/v1",
            "kind": self.role_kind,
            "metadata": self._metadata(self.role_name, namespaced=not self.cluster_scoped),
            "rules": copy.deepcopy(self.rules),
        }

    def binding(self) -> Dict[str, Any]:
        return {
            "apiVersion": f"{RBAC_API_GROUP}/v1",
            "kind": self.binding_kind,
            "metadata": self._metadata(self.binding_name, namespaced=not self.cluster_scoped),
            "subjects": [
                {
                    "kind": "ServiceAccount",
                    "name": self.service_account_name,
                    "namespace": self.namespace,
                }
            ],
            "roleRef": {
                "kind": self.role_kind,
                "name": self.role_name,
                "apiGroup": RBAC_API_GROUP,
            },
        }

    def creation_order(self) -> List[Dict[str, Any]]:
        return [self.service_account(), self.role(), self.binding()]

    def deletion_order(self) -> List[Dict[str, Any]]:
        return list(reversed(self.creation_order()))


__all__ = [
    "AuxiliaryResourceSet",
    "DEPLOY_LABELS",
    "DRIVER_POLICY_RULES",
    "VERIFICATION_LABELS",
    "namespace_manifest",
]
