from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from src.common.errors import (
    AlreadyExistsError,
    InvalidSpec,
    NotFoundError,
    PermanentStoreError,
    ProvisioningTransportError,
    ResourceConflict,
    TransportFailure,
)
from src.store.base import ResourceStore, object_ref
from src.watcher import predicates
from src.watcher.watcher import ConditionWatcher

from .descriptor import WorkloadDescriptor
from .resources import namespace_manifest

LOGGER = logging.getLogger(__name__)

CREATED = "created"
UNCHANGED = "unchanged"
DELETED = "deleted"
ALREADY_ABSENT = "already_absent"

_IGNORED_TOP_LEVEL = {"apiVersion", "kind", "metadata", "status"}

T = TypeVar("T")


def contains(desired: Any, existing: Any) -> bool:
    """True when every field of ``desired`` is present with the same value in ``existing``.

    Extra fields on ``existing`` (server defaults) are allowed.
    """

    if isinstance(desired, Mapping):
        if not isinstance(existing, Mapping):
            return False
        return all(key in existing and contains(value, existing[key]) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(contains(d, e) for d, e in zip(desired, existing))
    return desired == existing


def same_shape(desired: Mapping[str, Any], existing: Mapping[str, Any]) -> bool:
    desired_labels = (desired.get("metadata") or {}).get("labels") or {}
    existing_labels = (existing.get("metadata") or {}).get("labels") or {}
    if not contains(desired_labels, existing_labels):
        return False
    return all(
        contains(value, existing.get(key)) for key, value in desired.items() if key not in _IGNORED_TOP_LEVEL
    )


class ResourceProvisioner:
    """Idempotent create/delete of auxiliary resources and workload descriptors."""

    def __init__(
        self,
        store: ResourceStore,
        *,
        retries: int = 3,
        watcher: Optional[ConditionWatcher] = None,
        sleep: Optional[Callable[[float], None]] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.store = store
        self.retries = max(0, int(retries))
        self.watcher = watcher or ConditionWatcher(sleep=sleep or time.sleep)
        self._sleep = sleep or self.watcher.sleep
        self._rng = random.Random(seed) if seed is not None else random.Random()

    def apply(self, obj: Mapping[str, Any]) -> str:
        ref = object_ref(obj)
        try:
            self._with_retries(lambda: self.store.create(obj), f"create {ref}")
        except AlreadyExistsError:
            try:
                existing = self._with_retries(lambda: self._get(obj), f"get {ref}")
            except NotFoundError:
                # Deleted between our create and get; one more create settles it.
                self._with_retries(lambda: self.store.create(obj), f"create {ref}")
                LOGGER.info("Created %s", ref)
                return CREATED
            if not same_shape(obj, existing):
                raise ResourceConflict(f"{ref} already exists with a different definition", resource=ref)
            LOGGER.info("%s already present and unchanged", ref)
            return UNCHANGED
        LOGGER.info("Created %s", ref)
        return CREATED

    def delete(self, obj: Mapping[str, Any]) -> str:
        ref = object_ref(obj)
        metadata = obj.get("metadata") or {}
        try:
            self._with_retries(
                lambda: self.store.delete(obj.get("kind"), metadata.get("name"), metadata.get("namespace")),
                f"delete {ref}",
            )
        except NotFoundError:
            LOGGER.debug("%s already absent", ref)
            return ALREADY_ABSENT
        LOGGER.info("Deleted %s", ref)
        return DELETED

    def replace(
        self,
        obj: Mapping[str, Any],
        *,
        timeout: float = 60.0,
        poll_interval: float = 2.0,
    ) -> str:
        """Delete any existing copy, wait for it to disappear, then create."""

        metadata = obj.get("metadata") or {}
        if self.delete(obj) == DELETED:
            self.watcher.wait(
                predicates.object_exists(self.store, obj.get("kind"), metadata.get("name"), metadata.get("namespace")),
                poll_interval,
                timeout,
                until=predicates.absent,
                description=f"removal of {object_ref(obj)}",
            )
        return self.apply(obj)

    def fetch(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Read one object, retrying transport failures; ``NotFoundError`` passes through."""

        ref = f"{kind}/{namespace}/{name}" if namespace else f"{kind}/{name}"
        return self._with_retries(lambda: self.store.get(kind, name, namespace), f"get {ref}")

    def exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        try:
            self.fetch(kind, name, namespace)
        except NotFoundError:
            return False
        return True

    def ensure_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        try:
            self.fetch("Namespace", name)
        except NotFoundError:
            return self.apply(namespace_manifest(name, labels))
        return UNCHANGED

    def submit(self, descriptor: WorkloadDescriptor) -> str:
        if not descriptor.name or not descriptor.namespace:
            raise InvalidSpec("descriptor must be prepared with a name and namespace before submission")
        return self.apply(descriptor.document)

    def _get(self, obj: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = obj.get("metadata") or {}
        return self.store.get(obj.get("kind"), metadata.get("name"), metadata.get("namespace"))

    def _with_retries(self, call: Callable[[], T], what: str) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except TransportFailure as exc:
                if attempt >= self.retries:
                    raise ProvisioningTransportError(f"{what} failed after {attempt + 1} attempt(s): {exc}") from exc
                delay = self._backoff_seconds(attempt)
                LOGGER.warning("%s failed (%s); retrying in %.1fs", what, exc, delay)
                self._sleep(delay)
                attempt += 1
            except PermanentStoreError as exc:
                raise InvalidSpec(f"{what} rejected: {exc}") from exc

    def _backoff_seconds(self, attempt: int) -> float:
        base = 0.5 * (2 ** attempt)
        jitter = self._rng.uniform(0, base)
        return base + jitter


__all__ = [
    "ALREADY_ABSENT",
    "CREATED",
    "DELETED",
    "ResourceProvisioner",
    "UNCHANGED",
    "contains",
    "same_shape",
]
