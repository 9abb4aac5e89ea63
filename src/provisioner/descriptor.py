from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonpatch
import yaml

from src.common.errors import InvalidSpec

SERVER_METADATA_FIELDS = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
)
ROLES = ("driver", "executor")
MAX_NAME_LENGTH = 63


def unique_suffix() -> str:
    return str(time.time_ns())


def unique_name(base: str, suffix: str) -> str:
    """Join ``base`` and ``suffix`` keeping the result a valid object name."""

    room = MAX_NAME_LENGTH - len(suffix) - 1
    if room <= 0:
        raise ValueError(f"suffix '{suffix}' leaves no room for a name")
    return f"{base[:room].rstrip('-')}-{suffix}"


@dataclass(frozen=True)
class RoleSpec:
    role: str
    cores: Optional[int] = None
    core_limit: Optional[str] = None
    memory: Optional[str] = None
    instances: Optional[int] = None
    service_account: Optional[str] = None
    security_context: Optional[Dict[str, Any]] = None
    pod_security_context: Optional[Dict[str, Any]] = None
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, role: str, data: Any) -> "RoleSpec":
        if not isinstance(data, dict):
            return cls(role=role)
        security = data.get("securityContext")
        pod_security = data.get("podSecurityContext")
        labels = data.get("labels")
        return cls(
            role=role,
            cores=data.get("cores"),
            core_limit=data.get("coreLimit"),
            memory=data.get("memory"),
            instances=data.get("instances"),
            service_account=data.get("serviceAccount"),
            security_context=copy.deepcopy(security) if isinstance(security, dict) else None,
            pod_security_context=copy.deepcopy(pod_security) if isinstance(pod_security, dict) else None,
            labels=dict(labels) if isinstance(labels, dict) else {},
        )


class WorkloadDescriptor:
    """Read access to a SparkApplication document plus submission rewrites.

    Only ``metadata.name``, ``metadata.namespace`` and
    ``spec.driver.serviceAccount`` are ever rewritten; every other field is
    carried through untouched.
    """

    def __init__(self, document: Dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise InvalidSpec("workload descriptor must be a mapping")
        if not isinstance(document.get("spec"), dict):
            raise InvalidSpec("workload descriptor has no spec")
        self._doc = copy.deepcopy(document)

    @classmethod
    def from_yaml(cls, text: str) -> "WorkloadDescriptor":
        try:
            documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
        except yaml.YAMLError as exc:
            raise InvalidSpec(f"descriptor YAML is malformed: {exc}") from exc
        first = next((doc for doc in documents if isinstance(doc, dict)), None)
        if first is None:
            raise InvalidSpec("descriptor YAML contains no mapping document")
        return cls(first)

    @classmethod
    def load(cls, path: Path) -> "WorkloadDescriptor":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidSpec(f"cannot read descriptor {path}: {exc}") from exc
        return cls.from_yaml(text)

    @property
    def document(self) -> Dict[str, Any]:
        return copy.deepcopy(self._doc)

    @property
    def kind(self) -> str:
        return str(self._doc.get("kind") or "SparkApplication")

    @property
    def metadata(self) -> Dict[str, Any]:
        metadata = self._doc.get("metadata")
        return metadata if isinstance(metadata, dict) else {}

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def spec(self) -> Dict[str, Any]:
        return self._doc["spec"]

    @property
    def app_type(self) -> Optional[str]:
        return self.spec.get("type")

    @property
    def mode(self) -> Optional[str]:
        return self.spec.get("mode")

    @property
    def image(self) -> Optional[str]:
        return self.spec.get("image")

    @property
    def image_pull_policy(self) -> Optional[str]:
        return self.spec.get("imagePullPolicy")

    @property
    def spark_version(self) -> Optional[str]:
        return self.spec.get("sparkVersion")

    @property
    def python_version(self) -> Optional[str]:
        return self.spec.get("pythonVersion")

    @property
    def main_application_file(self) -> Optional[str]:
        return self.spec.get("mainApplicationFile")

    @property
    def arguments(self) -> List[str]:
        return list(self.spec.get("arguments") or [])

    @property
    def restart_policy(self) -> Optional[str]:
        policy = self.spec.get("restartPolicy")
        return policy.get("type") if isinstance(policy, dict) else None

    @property
    def time_to_live_seconds(self) -> Optional[int]:
        return self.spec.get("timeToLiveSeconds")

    def role(self, role: str) -> RoleSpec:
        if role not in ROLES:
            raise ValueError(f"unknown role '{role}'")
        return RoleSpec.from_mapping(role, self.spec.get(role))

    @property
    def driver(self) -> RoleSpec:
        return self.role("driver")

    @property
    def executor(self) -> RoleSpec:
        return self.role("executor")

    def prepared(
        self,
        *,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        service_account: Optional[str] = None,
    ) -> "WorkloadDescriptor":
        """Return a submittable copy with server metadata cleared and overrides applied."""

        doc = copy.deepcopy(self._doc)
        metadata = doc.setdefault("metadata", {})
        if not isinstance(metadata, dict):
            raise InvalidSpec("descriptor metadata must be a mapping")
        ops: List[Dict[str, Any]] = [
            {"op": "remove", "path": f"/metadata/{key}"} for key in SERVER_METADATA_FIELDS if key in metadata
        ]
        if "status" in doc:
            ops.append({"op": "remove", "path": "/status"})
        if name is not None:
            ops.append({"op": "add", "path": "/metadata/name", "value": name})
        if namespace is not None:
            ops.append({"op": "add", "path": "/metadata/namespace", "value": namespace})
        if service_account is not None:
            if not isinstance(doc["spec"].get("driver"), dict):
                raise InvalidSpec("descriptor has no spec.driver to bind the service account to")
            ops.append({"op": "add", "path": "/spec/driver/serviceAccount", "value": service_account})
        try:
            patched = jsonpatch.apply_patch(doc, ops, in_place=False)
        except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
            raise InvalidSpec(f"cannot apply descriptor overrides: {exc}") from exc
        return WorkloadDescriptor(patched)


__all__ = ["ROLES", "RoleSpec", "SERVER_METADATA_FIELDS", "WorkloadDescriptor", "unique_name", "unique_suffix"]
