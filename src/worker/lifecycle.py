from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, TypeVar

from src.common.errors import ClusterError, NotFoundError, ResourceConflict
from src.provisioner.provisioner import ResourceProvisioner
from src.store.base import ResourceStore, is_pod_ready
from src.watcher import predicates
from src.watcher.watcher import ConditionWatcher

LOGGER = logging.getLogger(__name__)

DEFAULT_HELPER_IMAGE = "registry.access.redhat.com/ubi9/ubi"
WORKER_LABELS = {"app.kubernetes.io/managed-by": "spark-e2e", "app.kubernetes.io/component": "pvc-helper"}
# restartPolicy is Never, so a pod in one of these phases can never become Ready again.
TERMINATED_PHASES = frozenset({"Succeeded", "Failed"})

T = TypeVar("T")


class WorkerState(str, Enum):
    ABSENT = "Absent"
    PROVISIONING = "Provisioning"
    READY = "Ready"
    IN_USE = "InUse"
    TERMINATING = "Terminating"


@dataclass(frozen=True)
class WorkerPodSpec:
    name: str
    namespace: str
    claim_name: str
    mount_path: str
    image: str = DEFAULT_HELPER_IMAGE
    command: Tuple[str, ...] = ("sleep", "3600")
    volume_name: str = "data"

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(WORKER_LABELS),
            },
            "spec": {
                "restartPolicy": "Never",
                "securityContext": {
                    "runAsNonRoot": True,
                    "seccompProfile": {"type": "RuntimeDefault"},
                },
                "containers": [
                    {
                        "name": self.name,
                        "image": self.image,
                        "command": list(self.command),
                        "securityContext": {
                            "allowPrivilegeEscalation": False,
                            "capabilities": {"drop": ["ALL"]},
                            "runAsNonRoot": True,
                            "seccompProfile": {"type": "RuntimeDefault"},
                        },
                        "volumeMounts": [{"name": self.volume_name, "mountPath": self.mount_path}],
                    }
                ],
                "volumes": [
                    {
                        "name": self.volume_name,
                        "persistentVolumeClaim": {"claimName": self.claim_name},
                    }
                ],
            },
        }

    def mounts_claim(self, pod: Dict[str, Any]) -> bool:
        for volume in (pod.get("spec") or {}).get("volumes") or []:
            claim = volume.get("persistentVolumeClaim") if isinstance(volume, dict) else None
            if isinstance(claim, dict) and claim.get("claimName") == self.claim_name:
                return True
        return False


class WorkerPodLifecycle:
    """Owns one helper pod bound to a claim: Absent → Provisioning → Ready → InUse → Terminating → Absent.

    Operations against the pod are sequenced by the caller; starting one
    while another is in flight raises ``RuntimeError``.
    """

    def __init__(
        self,
        store: ResourceStore,
        spec: WorkerPodSpec,
        *,
        watcher: Optional[ConditionWatcher] = None,
        ready_timeout: float = 120.0,
        delete_timeout: float = 60.0,
        poll_interval: float = 2.0,
        retries: int = 3,
    ) -> None:
        self.store = store
        self.spec = spec
        self.watcher = watcher or ConditionWatcher()
        self.provisioner = ResourceProvisioner(store, retries=retries, watcher=self.watcher)
        self.ready_timeout = ready_timeout
        self.delete_timeout = delete_timeout
        self.poll_interval = poll_interval
        self.state = WorkerState.ABSENT
        self.reused = False
        self.leaked = False

    def __enter__(self) -> "WorkerPodLifecycle":
        self.provision()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.teardown()
        return False

    def provision(self) -> Dict[str, Any]:
        if self.state is not WorkerState.ABSENT:
            raise RuntimeError(f"worker {self.spec.name} is {self.state.value}, expected Absent")
        self.state = WorkerState.PROVISIONING
        create_attempted = False
        try:
            existing = self._existing()
            if existing is not None and is_pod_ready(existing):
                LOGGER.info("Helper pod '%s' already exists", self.spec.name)
                self.reused = True
                self.state = WorkerState.READY
                return existing
            if existing is None:
                LOGGER.info("Creating helper pod '%s'...", self.spec.name)
                create_attempted = True
                self.provisioner.apply(self.spec.to_manifest())
            LOGGER.info("Waiting for pod to be ready...")
            pod = self._wait_ready()
        except ClusterError as exc:
            if create_attempted and not isinstance(exc, ResourceConflict):
                # A failed create may still have been accepted by the server.
                self.teardown()
            elif self.state is WorkerState.PROVISIONING:
                self.state = WorkerState.ABSENT
            raise
        LOGGER.info("Helper pod ready")
        self.state = WorkerState.READY
        return pod

    def run(self, operation: Callable[[ResourceStore, WorkerPodSpec], T]) -> T:
        if self.state is WorkerState.IN_USE:
            raise RuntimeError(f"worker {self.spec.name} is already in use")
        if self.state is not WorkerState.READY:
            raise RuntimeError(f"worker {self.spec.name} is {self.state.value}, expected Ready")
        self.state = WorkerState.IN_USE
        try:
            return operation(self.store, self.spec)
        finally:
            self.state = WorkerState.READY

    def upload(self, local_dir: Path, remote_dir: Optional[str] = None) -> None:
        target = remote_dir or self.spec.mount_path
        self.run(lambda store, spec: store.copy_to(Path(local_dir), spec.name, spec.namespace, target))

    def download(self, local_dir: Path, remote_dir: Optional[str] = None) -> None:
        source = remote_dir or self.spec.mount_path
        self.run(lambda store, spec: store.copy_from(spec.name, spec.namespace, source, Path(local_dir)))

    def exec(self, command: Sequence[str]) -> str:
        return self.run(lambda store, spec: store.exec(spec.name, spec.namespace, list(command)))

    def teardown(self) -> bool:
        """Delete the pod and wait for it to go; True when removal was confirmed."""

        if self.state is WorkerState.ABSENT:
            return not self.leaked
        self.state = WorkerState.TERMINATING
        LOGGER.info("Deleting helper pod '%s'...", self.spec.name)
        confirmed = True
        try:
            self.provisioner.delete(self.spec.to_manifest())
        except ClusterError as exc:
            LOGGER.warning("Could not delete helper pod '%s': %s", self.spec.name, exc)
            confirmed = False
        if confirmed:
            outcome = self.watcher.observe(
                predicates.object_exists(self.store, "Pod", self.spec.name, self.spec.namespace),
                self.poll_interval,
                self.delete_timeout,
                until=predicates.absent,
                description=f"removal of helper pod {self.spec.name}",
            )
            confirmed = outcome.satisfied
        if not confirmed:
            LOGGER.warning("Helper pod '%s' in namespace %s leaked; delete it manually", self.spec.name, self.spec.namespace)
        self.leaked = not confirmed
        self.reused = False
        self.state = WorkerState.ABSENT
        return confirmed

    def _existing(self) -> Optional[Dict[str, Any]]:
        try:
            pod = self.provisioner.fetch("Pod", self.spec.name, self.spec.namespace)
        except NotFoundError:
            return None
        if (pod.get("metadata") or {}).get("deletionTimestamp"):
            LOGGER.info("Helper pod '%s' is terminating; waiting for it to go", self.spec.name)
            self._wait_absent()
            return None
        if not self.spec.mounts_claim(pod):
            raise ResourceConflict(
                f"pod {self.spec.name} exists but does not mount claim {self.spec.claim_name}",
                resource=f"Pod/{self.spec.namespace}/{self.spec.name}",
            )
        phase = (pod.get("status") or {}).get("phase")
        if phase in TERMINATED_PHASES:
            LOGGER.info("Helper pod '%s' has already %s; recreating it", self.spec.name, phase.lower())
            self.provisioner.delete(self.spec.to_manifest())
            self._wait_absent()
            return None
        return pod

    def _wait_absent(self) -> None:
        self.watcher.wait(
            predicates.object_exists(self.store, "Pod", self.spec.name, self.spec.namespace),
            self.poll_interval,
            self.delete_timeout,
            until=predicates.absent,
            description=f"removal of stale helper pod {self.spec.name}",
        )

    def _wait_ready(self) -> Dict[str, Any]:
        outcome = self.watcher.observe(
            predicates.get_object(self.store, "Pod", self.spec.name, self.spec.namespace),
            self.poll_interval,
            self.ready_timeout,
            until=predicates.pod_ready,
            description=f"readiness of helper pod {self.spec.name}",
        )
        if outcome.satisfied:
            return outcome.value
        self.teardown()
        return outcome.unwrap(f"readiness of helper pod {self.spec.name}")


__all__ = ["DEFAULT_HELPER_IMAGE", "WorkerPodLifecycle", "WorkerPodSpec", "WorkerState"]
