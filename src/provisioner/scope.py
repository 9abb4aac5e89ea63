from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Tuple

from src.common.errors import ClusterError
from src.store.base import object_ref

from .provisioner import ResourceProvisioner

LOGGER = logging.getLogger(__name__)


class OwnedResources:
    """Objects applied during one run, released in reverse order on exit.

    Release runs on every exit path and continues past individual failures,
    which are logged and kept in ``release_errors`` so they never mask the
    error that ended the run. With ``cleanup=False`` nothing is deleted.
    """

    def __init__(self, provisioner: ResourceProvisioner, *, cleanup: bool = True) -> None:
        self.provisioner = provisioner
        self.cleanup = cleanup
        self.owned: List[Dict[str, Any]] = []
        self.release_errors: List[Tuple[str, Exception]] = []

    def __enter__(self) -> "OwnedResources":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def apply(self, obj: Mapping[str, Any]) -> str:
        result = self.provisioner.apply(obj)
        self.owned.append(dict(obj))
        return result

    def adopt(self, obj: Mapping[str, Any]) -> None:
        """Take ownership of an object created elsewhere in the run."""

        self.owned.append(dict(obj))

    def release(self) -> List[Tuple[str, Exception]]:
        owned, self.owned = self.owned, []
        if not self.cleanup:
            for obj in owned:
                LOGGER.info("Keeping %s (cleanup disabled)", object_ref(obj))
            return []
        for obj in reversed(owned):
            ref = object_ref(obj)
            try:
                self.provisioner.delete(obj)
            except ClusterError as exc:
                LOGGER.warning("Failed to delete %s during cleanup: %s", ref, exc)
                self.release_errors.append((ref, exc))
        return list(self.release_errors)


__all__ = ["OwnedResources"]
