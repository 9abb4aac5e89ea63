"""Bounded polling for eventually-consistent cluster state."""

from .watcher import ConditionWatcher, PollOutcome

__all__ = ["ConditionWatcher", "PollOutcome"]
