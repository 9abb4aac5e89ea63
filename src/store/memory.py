"""In-memory ResourceStore used for simulated runs and the test-suite.

It mimics the parts of the API server this tooling depends on: server-side
metadata, label-selector listing, pod readiness that arrives after a few
reads, graceful deletion, and persistent volume claims whose file trees are
shared by every pod that mounts them.
"""

from __future__ import annotations

import copy
import itertools
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Callable, DefaultDict, Dict, List, Mapping, Optional, Sequence, Tuple

from src.common.errors import AlreadyExistsError, NotFoundError, PermanentStoreError

from .base import ResourceStore, identity, is_pod_ready

Key = Tuple[Optional[str], Optional[str], Optional[str]]
Controller = Callable[["InMemoryStore", Dict[str, Any]], None]

SIMULATED_UID = 1000680000


class InMemoryStore(ResourceStore):
    def __init__(
        self,
        *,
        pod_ready_after: Optional[int] = 0,
        delete_after: Optional[int] = 0,
    ) -> None:
        """
        ``pod_ready_after`` is the number of reads a new pod stays Pending
        (``None``: never becomes Ready). ``delete_after`` is the number of
        reads a deleted object lingers with a deletion timestamp (``None``:
        it never goes away, as with a stuck finalizer).
        """

        self.pod_ready_after = pod_ready_after
        self.delete_after = delete_after
        self.calls: List[Tuple[str, Any]] = []
        self._objects: Dict[Key, Dict[str, Any]] = {}
        self._pending_reads: Dict[Key, int] = {}
        self._deleting: Dict[Key, Optional[int]] = {}
        self._volumes: DefaultDict[Tuple[str, str], Dict[str, bytes]] = defaultdict(dict)
        self._controllers: DefaultDict[str, List[Controller]] = defaultdict(list)
        self._faults: DefaultDict[str, List[Exception]] = defaultdict(list)
        self._versions = itertools.count(1)

    # -- simulation controls -------------------------------------------------

    def register_controller(self, kind: str, controller: Controller) -> None:
        """Invoke ``controller(store, obj)`` after every create of ``kind``."""

        self._controllers[kind].append(controller)

    def inject_failure(self, operation: str, exc: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls to ``operation`` raise ``exc``."""

        self._faults[operation].extend([exc] * times)

    def put(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        """Create or overwrite an object without conflict checks or hooks."""

        stored = copy.deepcopy(dict(obj))
        key = identity(stored)
        existing = self._objects.get(key)
        metadata = stored.setdefault("metadata", {})
        if existing is not None:
            metadata.setdefault("uid", existing["metadata"].get("uid"))
        self._stamp(metadata)
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def set_status(self, kind: str, name: str, namespace: Optional[str], status: Mapping[str, Any]) -> None:
        obj = self._objects.get(self._key(kind, name, namespace))
        if obj is None:
            raise NotFoundError(f"{kind}/{name} not found")
        obj["status"] = copy.deepcopy(dict(status))
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def volume_files(self, namespace: str, claim: str) -> Dict[str, bytes]:
        return dict(self._volumes[(namespace, claim)])

    def write_volume_file(self, namespace: str, claim: str, path: str, data: bytes) -> None:
        self._volumes[(namespace, claim)][path.strip("/")] = data

    # -- ResourceStore -------------------------------------------------------

    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        self._record("create", obj)
        stored = copy.deepcopy(dict(obj))
        kind = stored.get("kind")
        metadata = stored.get("metadata")
        if not kind or not isinstance(metadata, dict) or not metadata.get("name"):
            raise PermanentStoreError("object must carry kind and metadata.name")
        for server_field in ("resourceVersion", "uid"):
            if metadata.get(server_field):
                raise PermanentStoreError(f"metadata.{server_field} must not be set on create")
        key = identity(stored)
        if key in self._objects:
            raise AlreadyExistsError(f"{kind} \"{metadata['name']}\" already exists")
        metadata["uid"] = str(uuid.uuid4())
        metadata["generation"] = 1
        metadata["creationTimestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._stamp(metadata)
        if kind == "Pod":
            stored["status"] = _pod_status(ready=False)
            if self.pod_ready_after is not None:
                self._pending_reads[key] = self.pod_ready_after
            self._maybe_mark_ready(key, stored)
        self._objects[key] = stored
        for controller in list(self._controllers.get(kind, [])):
            controller(self, copy.deepcopy(stored))
        return copy.deepcopy(stored)

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self._record("get", (kind, name, namespace))
        key = self._key(kind, name, namespace)
        self._advance(key)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(f"{kind} \"{name}\" not found")
        return copy.deepcopy(obj)

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        selector: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        self._record("list", (kind, namespace, dict(selector or {})))
        matches = []
        for key in sorted(k for k in self._objects if k[0] == kind):
            if namespace is not None and key[1] not in (None, namespace):
                continue
            self._advance(key)
            obj = self._objects.get(key)
            if obj is None:
                continue
            labels = obj.get("metadata", {}).get("labels") or {}
            if selector and any(labels.get(k) != v for k, v in selector.items()):
                continue
            matches.append(copy.deepcopy(obj))
        return matches

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        self._record("delete", (kind, name, namespace))
        key = self._key(kind, name, namespace)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(f"{kind} \"{name}\" not found")
        if key in self._deleting:
            return
        if self.delete_after == 0:
            self._remove(key)
            return
        obj["metadata"]["deletionTimestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._deleting[key] = self.delete_after

    def exec(self, pod: str, namespace: str, command: Sequence[str]) -> str:
        self._record("exec", (pod, namespace, tuple(command)))
        obj = self._running_pod(pod, namespace)
        if not command:
            raise PermanentStoreError("you must specify at least one command for the container")
        program = command[0]
        if program == "id":
            return f"uid={SIMULATED_UID}(1000680000) gid=0(root) groups=0(root),{SIMULATED_UID}\n"
        if program == "ls":
            targets = [arg for arg in command[1:] if not arg.startswith("-")]
            claim, prefix = self._resolve(obj, targets[0] if targets else "/")
            return _render_listing(self._volumes[(namespace, claim)], prefix)
        raise PermanentStoreError(f"exec: \"{program}\": executable file not found in $PATH")

    def copy_to(self, local_dir: Path, pod: str, namespace: str, remote_dir: str) -> None:
        self._record("copy_to", (str(local_dir), pod, namespace, remote_dir))
        obj = self._running_pod(pod, namespace)
        claim, prefix = self._resolve(obj, remote_dir)
        files = self._volumes[(namespace, claim)]
        root = Path(local_dir)
        for path in sorted(root.rglob("*")):
            if path.is_file():
                relative = path.relative_to(root).as_posix()
                files[_join(prefix, relative)] = path.read_bytes()

    def copy_from(self, pod: str, namespace: str, remote_dir: str, local_dir: Path) -> None:
        self._record("copy_from", (pod, namespace, remote_dir, str(local_dir)))
        obj = self._running_pod(pod, namespace)
        claim, prefix = self._resolve(obj, remote_dir)
        root = Path(local_dir)
        for stored_path, data in sorted(self._volumes[(namespace, claim)].items()):
            relative = _strip_prefix(stored_path, prefix)
            if relative is None:
                continue
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

    # -- internals -----------------------------------------------------------

    def _record(self, operation: str, payload: Any) -> None:
        self.calls.append((operation, payload))
        queued = self._faults.get(operation)
        if queued:
            raise queued.pop(0)

    def _key(self, kind: str, name: str, namespace: Optional[str]) -> Key:
        return identity({"kind": kind, "metadata": {"name": name, "namespace": namespace}})

    def _stamp(self, metadata: Dict[str, Any]) -> None:
        metadata["resourceVersion"] = str(next(self._versions))

    def _advance(self, key: Key) -> None:
        obj = self._objects.get(key)
        if obj is None:
            return
        remaining = self._deleting.get(key, -1)
        if key in self._deleting and remaining is not None:
            if remaining <= 0:
                self._remove(key)
                return
            self._deleting[key] = remaining - 1
        if obj.get("kind") == "Pod":
            self._maybe_mark_ready(key, obj)

    def _maybe_mark_ready(self, key: Key, obj: Dict[str, Any]) -> None:
        if key not in self._pending_reads or not self._claims_bound(obj):
            return
        if self._pending_reads[key] > 0:
            self._pending_reads[key] -= 1
            return
        del self._pending_reads[key]
        obj["status"] = _pod_status(ready=True)

    def _claims_bound(self, pod: Mapping[str, Any]) -> bool:
        namespace = pod.get("metadata", {}).get("namespace")
        for claim in _pod_claims(pod).values():
            if ("PersistentVolumeClaim", namespace, claim) not in self._objects:
                return False
        return True

    def _remove(self, key: Key) -> None:
        self._objects.pop(key, None)
        self._deleting.pop(key, None)
        self._pending_reads.pop(key, None)

    def _running_pod(self, pod: str, namespace: str) -> Dict[str, Any]:
        obj = self._objects.get(("Pod", namespace, pod))
        if obj is None:
            raise NotFoundError(f"pods \"{pod}\" not found")
        if not is_pod_ready(obj):
            raise PermanentStoreError(f"pod {pod} does not have a running container")
        return obj

    def _resolve(self, pod: Mapping[str, Any], remote_path: str) -> Tuple[str, str]:
        claims = _pod_claims(pod)
        containers = pod.get("spec", {}).get("containers") or [{}]
        remote = PurePosixPath(remote_path)
        for mount in containers[0].get("volumeMounts") or []:
            mount_path = PurePosixPath(mount.get("mountPath", ""))
            if mount.get("name") not in claims:
                continue
            if remote == mount_path or mount_path in remote.parents:
                relative = remote.relative_to(mount_path).as_posix()
                return claims[mount["name"]], "" if relative == "." else relative
        raise PermanentStoreError(f"{remote_path}: no volume mounted at this path")


def _pod_status(*, ready: bool) -> Dict[str, Any]:
    return {
        "phase": "Running" if ready else "Pending",
        "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
    }


def _pod_claims(pod: Mapping[str, Any]) -> Dict[str, str]:
    claims: Dict[str, str] = {}
    for volume in pod.get("spec", {}).get("volumes") or []:
        pvc = volume.get("persistentVolumeClaim") if isinstance(volume, dict) else None
        if isinstance(pvc, dict) and pvc.get("claimName"):
            claims[volume.get("name")] = pvc["claimName"]
    return claims


def _join(prefix: str, relative: str) -> str:
    return f"{prefix}/{relative}" if prefix else relative


def _strip_prefix(stored_path: str, prefix: str) -> Optional[str]:
    if not prefix:
        return stored_path
    if stored_path.startswith(prefix + "/"):
        return stored_path[len(prefix) + 1 :]
    return None


def _render_listing(files: Mapping[str, bytes], prefix: str) -> str:
    entries = sorted(
        (relative, len(data))
        for relative, data in ((_strip_prefix(p, prefix), d) for p, d in files.items())
        if relative is not None
    )
    lines = [f"total {len(entries)}"]
    for relative, size in entries:
        lines.append(f"-rw-r--r--. 1 {SIMULATED_UID} {SIMULATED_UID} {size:>8} {relative}")
    return "\n".join(lines) + "\n"


__all__ = ["InMemoryStore"]
