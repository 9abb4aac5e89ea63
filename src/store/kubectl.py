from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from src.common.errors import (
    AlreadyExistsError,
    NotFoundError,
    PermanentStoreError,
    TransportFailure,
)

from .base import ResourceStore, is_cluster_scoped

LOGGER = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("NotFound", "not found")
_EXISTS_MARKERS = ("AlreadyExists", "already exists")
_PERMANENT_MARKERS = (
    "BadRequest",
    "Invalid value",
    "is invalid",
    "Forbidden",
    "forbidden",
    "error validating",
    "unknown flag",
    "unknown command",
    "the server doesn't have a resource type",
    "error: must specify",
)


def classify_failure(stderr: str, *, what: str):
    """Map kubectl stderr text to the matching store error."""

    detail = stderr.strip() or "no error output"
    if any(marker in detail for marker in _EXISTS_MARKERS):
        return AlreadyExistsError(f"{what}: {detail}")
    if any(marker in detail for marker in _PERMANENT_MARKERS):
        return PermanentStoreError(f"{what}: {detail}")
    if any(marker in detail for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(f"{what}: {detail}")
    return TransportFailure(f"{what}: {detail}")


def format_selector(selector: Optional[Mapping[str, str]]) -> Optional[str]:
    if not selector:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))


class KubectlStore(ResourceStore):
    """ResourceStore backed by the ``kubectl`` (or ``oc``) binary."""

    def __init__(self, cli: str = "kubectl", *, context: Optional[str] = None) -> None:
        self.cli = cli
        self.context = context

    def create(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        manifest = yaml.safe_dump(dict(obj), sort_keys=False)
        kind = obj.get("kind", "object")
        out = self._call(["create", "-f", "-", "-o", "json"], what=f"create {kind}", input_data=manifest)
        return self._decode(out)

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        args = ["get", kind, name] + self._namespace_args(kind, namespace) + ["-o", "json"]
        return self._decode(self._call(args, what=f"get {kind}/{name}"))

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        selector: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        args = ["get", kind] + self._namespace_args(kind, namespace)
        label_arg = format_selector(selector)
        if label_arg:
            args.extend(["-l", label_arg])
        args.extend(["-o", "json"])
        data = self._decode(self._call(args, what=f"list {kind}"))
        items = data.get("items")
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        args = ["delete", kind, name] + self._namespace_args(kind, namespace) + ["--wait=false"]
        self._call(args, what=f"delete {kind}/{name}")

    def exec(self, pod: str, namespace: str, command: Sequence[str]) -> str:
        args = ["exec", pod, "-n", namespace, "--"] + list(command)
        return self._call(args, what=f"exec in pod/{pod}")

    def copy_to(self, local_dir: Path, pod: str, namespace: str, remote_dir: str) -> None:
        source = f"{Path(local_dir).as_posix().rstrip('/')}/."
        target = f"{pod}:{remote_dir.rstrip('/')}/"
        self._call(["cp", source, target, "-n", namespace], what=f"copy into pod/{pod}")

    def copy_from(self, pod: str, namespace: str, remote_dir: str, local_dir: Path) -> None:
        source = f"{pod}:{remote_dir.rstrip('/')}/."
        target = f"{Path(local_dir).as_posix().rstrip('/')}/"
        self._call(["cp", source, target, "-n", namespace], what=f"copy from pod/{pod}")

    def _namespace_args(self, kind: str, namespace: Optional[str]) -> List[str]:
        if namespace and not is_cluster_scoped(kind):
            return ["-n", namespace]
        return []

    def _call(self, args: List[str], *, what: str, input_data: Optional[str] = None) -> str:
        proc = self._run(args, input_data=input_data)
        stdout = _text(proc.stdout)
        if proc.returncode != 0:
            raise classify_failure(_text(proc.stderr) or stdout, what=what)
        return stdout

    def _run(self, args: List[str], *, input_data: Optional[str] = None) -> subprocess.CompletedProcess:
        cmd = [self.cli]
        if self.context:
            cmd.extend(["--context", self.context])
        cmd.extend(args)
        LOGGER.debug("running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                input=input_data.encode("utf-8") if input_data is not None else None,
                capture_output=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise PermanentStoreError(f"{self.cli} executable not found") from exc

    @staticmethod
    def _decode(output: str) -> Dict[str, Any]:
        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            raise TransportFailure(f"unparseable response: {exc}") from exc
        if not isinstance(data, dict):
            raise TransportFailure("response is not a JSON object")
        return data


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


__all__ = ["KubectlStore", "classify_failure", "format_selector"]
