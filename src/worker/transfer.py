from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from src.common.config import Settings
from src.common.errors import ClusterError, InvalidSpec, NotFoundError, UsageError
from src.provisioner.provisioner import ResourceProvisioner
from src.store.base import ResourceStore
from src.watcher.watcher import ConditionWatcher

from .lifecycle import WorkerPodLifecycle, WorkerPodSpec, WorkerState

LOGGER = logging.getLogger(__name__)

UPLOAD = "upload"
DOWNLOAD = "download"
UPLOADER_POD = "pvc-uploader"
DOWNLOADER_POD = "pvc-downloader"
INPUT_MOUNT = "/input"
OUTPUT_MOUNT = "/output"
HELPER_PODS = (UPLOADER_POD, DOWNLOADER_POD)


@dataclass
class TransferSession:
    """One upload or download through a single helper pod."""

    direction: str
    local_dir: Path
    volume_path: str
    worker: WorkerPodLifecycle
    local_files: List[str] = field(default_factory=list)
    remote_listing: Optional[str] = None
    identity: Optional[str] = None
    leaked_worker: bool = False

    @property
    def state(self) -> WorkerState:
        return self.worker.state

    @property
    def claim(self) -> str:
        return self.worker.spec.claim_name


def list_local_files(directory: Path) -> List[str]:
    root = Path(directory)
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def claim_manifest(name: str, namespace: str, size: str = "10Gi") -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": size}},
        },
    }


def load_claim_manifest(path: Path, name: str, namespace: str) -> Dict[str, Any]:
    if not path.exists():
        return claim_manifest(name, namespace)
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidSpec(f"claim manifest {path} is malformed: {exc}") from exc
    if not isinstance(doc, dict) or doc.get("kind") != "PersistentVolumeClaim":
        raise InvalidSpec(f"{path} does not hold a PersistentVolumeClaim")
    metadata = doc.setdefault("metadata", {})
    metadata["name"] = name
    metadata["namespace"] = namespace
    return doc


def _provisioner(
    store: ResourceStore,
    settings: Settings,
    watcher: Optional[ConditionWatcher],
) -> ResourceProvisioner:
    return ResourceProvisioner(store, retries=settings.transport_retries, watcher=watcher)


def _worker(
    store: ResourceStore,
    settings: Settings,
    pod_name: str,
    claim: str,
    mount_path: str,
    watcher: Optional[ConditionWatcher],
) -> WorkerPodLifecycle:
    spec = WorkerPodSpec(
        name=pod_name,
        namespace=settings.namespace,
        claim_name=claim,
        mount_path=mount_path,
        image=settings.helper_image,
    )
    return WorkerPodLifecycle(
        store,
        spec,
        watcher=watcher,
        ready_timeout=settings.ready_timeout,
        delete_timeout=settings.delete_timeout,
        poll_interval=settings.poll_interval,
        retries=settings.transport_retries,
    )


def upload(
    store: ResourceStore,
    settings: Settings,
    local_dir: Path,
    *,
    watcher: Optional[ConditionWatcher] = None,
) -> TransferSession:
    """Copy the contents of ``local_dir`` onto the input claim."""

    local_dir = Path(local_dir)
    if not local_dir.is_dir():
        raise UsageError(f"Directory '{local_dir}' does not exist")

    provisioner = _provisioner(store, settings, watcher)
    if not provisioner.exists("PersistentVolumeClaim", settings.input_claim, settings.namespace):
        LOGGER.info("Creating input PVC...")
        provisioner.apply(
            load_claim_manifest(settings.manifest("docling-input-pvc.yaml"), settings.input_claim, settings.namespace)
        )

    worker = _worker(store, settings, UPLOADER_POD, settings.input_claim, INPUT_MOUNT, watcher)
    session = TransferSession(UPLOAD, local_dir, INPUT_MOUNT, worker, local_files=list_local_files(local_dir))
    with worker:
        LOGGER.info("Copying files to PVC...")
        worker.upload(local_dir, INPUT_MOUNT)
        session.remote_listing = worker.exec(["ls", "-la", f"{INPUT_MOUNT}/"])
        session.identity = worker.exec(["id"])
    session.leaked_worker = worker.leaked
    return session


def download(
    store: ResourceStore,
    settings: Settings,
    local_dir: Path,
    *,
    watcher: Optional[ConditionWatcher] = None,
) -> TransferSession:
    """Copy the contents of the output claim into ``local_dir``."""

    local_dir = Path(local_dir)
    local_dir.mkdir(parents=True, exist_ok=True)
    if not _provisioner(store, settings, watcher).exists(
        "PersistentVolumeClaim", settings.output_claim, settings.namespace
    ):
        raise NotFoundError(f"Output PVC '{settings.output_claim}' does not exist")

    worker = _worker(store, settings, DOWNLOADER_POD, settings.output_claim, OUTPUT_MOUNT, watcher)
    session = TransferSession(DOWNLOAD, local_dir, OUTPUT_MOUNT, worker)
    with worker:
        try:
            session.remote_listing = worker.exec(["ls", "-la", f"{OUTPUT_MOUNT}/"])
        except ClusterError as exc:
            LOGGER.warning("Output may be empty: %s", exc)
        LOGGER.info("Copying files to '%s'...", local_dir)
        worker.download(local_dir, OUTPUT_MOUNT)
    session.local_files = list_local_files(local_dir)
    session.leaked_worker = worker.leaked
    return session


def cleanup_helpers(store: ResourceStore, settings: Settings) -> Dict[str, str]:
    """Delete both helper pods; missing pods and read errors are not failures."""

    provisioner = _provisioner(store, settings, None)
    results: Dict[str, str] = {}
    for name in HELPER_PODS:
        pod = {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": name, "namespace": settings.namespace}}
        try:
            results[name] = provisioner.delete(pod)
        except ClusterError as exc:
            LOGGER.warning("Could not delete helper pod '%s': %s", name, exc)
            results[name] = "error"
    return results


__all__ = [
    "DOWNLOAD",
    "DOWNLOADER_POD",
    "HELPER_PODS",
    "TransferSession",
    "UPLOAD",
    "UPLOADER_POD",
    "cleanup_helpers",
    "claim_manifest",
    "download",
    "list_local_files",
    "upload",
]
