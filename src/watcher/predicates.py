"""Reusable probes (store reads) and pure predicates for ConditionWatcher."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional

from src.common.errors import NotFoundError
from src.store.base import ResourceStore, is_pod_ready


def lookup(obj: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through nested mappings."""

    current = obj
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def get_object(store: ResourceStore, kind: str, name: str, namespace: Optional[str]) -> Callable[[], Dict[str, Any]]:
    return lambda: store.get(kind, name, namespace)


def object_field(
    store: ResourceStore,
    kind: str,
    name: str,
    namespace: Optional[str],
    path: str,
) -> Callable[[], Any]:
    return lambda: lookup(store.get(kind, name, namespace), path)


def object_exists(store: ResourceStore, kind: str, name: str, namespace: Optional[str]) -> Callable[[], bool]:
    def probe() -> bool:
        try:
            store.get(kind, name, namespace)
        except NotFoundError:
            return False
        return True

    return probe


def list_objects(
    store: ResourceStore,
    kind: str,
    namespace: Optional[str],
    selector: Optional[Mapping[str, str]] = None,
) -> Callable[[], List[Dict[str, Any]]]:
    return lambda: store.list(kind, namespace, selector)


def equals(expected: Any) -> Callable[[Any], bool]:
    return lambda value: value == expected


def at_least(count: int) -> Callable[[Any], bool]:
    return lambda items: items is not None and len(items) >= count


def non_empty(items: Any) -> bool:
    return bool(items)


def absent(exists: Any) -> bool:
    return not exists


def pod_ready(pod: Any) -> bool:
    return isinstance(pod, Mapping) and is_pod_ready(pod)


__all__ = [
    "absent",
    "at_least",
    "equals",
    "get_object",
    "list_objects",
    "lookup",
    "non_empty",
    "object_exists",
    "object_field",
    "pod_ready",
]
