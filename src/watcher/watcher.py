from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from src.common.errors import (
    ClusterError,
    NotFoundError,
    TransportFailure,
    WatchCancelled,
    WatchTimeout,
)

LOGGER = logging.getLogger(__name__)

SATISFIED = "satisfied"
TIMED_OUT = "timed_out"
ERRORED = "errored"

Probe = Callable[[], Any]
Predicate = Callable[[Any], bool]


@dataclass(frozen=True)
class PollOutcome:
    status: str
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def satisfied(self) -> bool:
        return self.status == SATISFIED

    @property
    def timed_out(self) -> bool:
        return self.status == TIMED_OUT

    @property
    def errored(self) -> bool:
        return self.status == ERRORED

    def unwrap(self, description: str = "condition") -> Any:
        """Return the satisfying value or raise the matching error."""

        if self.satisfied:
            return self.value
        if self.timed_out:
            raise WatchTimeout(
                f"{description} not satisfied after {self.elapsed:.1f}s ({self.attempts} polls)",
                last_value=self.value,
            )
        if self.error is not None:
            raise self.error
        raise ClusterError(f"{description} failed without an error")


def _is_cancelled(cancel: Any) -> bool:
    if cancel is None:
        return False
    is_set = getattr(cancel, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    return bool(cancel())


class ConditionWatcher:
    """Bounded polling of eventually-consistent cluster state.

    ``probe`` performs the read-only store calls and returns the observed
    value; ``until`` is a pure predicate over that value. Polling starts
    immediately and repeats every ``poll_interval`` seconds until the
    predicate holds or ``timeout`` elapses. A missing object and a transient
    ``TransportFailure`` both count as "not yet"; more than
    ``max_transport_errors`` consecutive transport failures, or any other
    ``ClusterError``, end the wait with an ``errored`` outcome.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        max_transport_errors: int = 5,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self.max_transport_errors = max(0, int(max_transport_errors))

    def observe(
        self,
        probe: Probe,
        poll_interval: float,
        timeout: float,
        *,
        until: Predicate = bool,
        cancel: Any = None,
        description: str = "condition",
    ) -> PollOutcome:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if timeout < poll_interval:
            raise ValueError(f"timeout ({timeout}s) must not be shorter than poll_interval ({poll_interval}s)")

        start = self.clock()
        deadline = start + timeout
        attempts = 0
        transport_errors = 0
        value: Any = None

        while True:
            if _is_cancelled(cancel):
                return PollOutcome(
                    ERRORED,
                    value=value,
                    error=WatchCancelled(f"wait for {description} cancelled"),
                    attempts=attempts,
                    elapsed=self.clock() - start,
                )
            attempts += 1
            try:
                value = probe()
            except NotFoundError:
                value = None
                transport_errors = 0
            except TransportFailure as exc:
                transport_errors += 1
                LOGGER.debug("transient error polling %s (%d): %s", description, transport_errors, exc)
                if transport_errors > self.max_transport_errors:
                    return PollOutcome(ERRORED, error=exc, attempts=attempts, elapsed=self.clock() - start)
                value = None
            except ClusterError as exc:
                return PollOutcome(ERRORED, error=exc, attempts=attempts, elapsed=self.clock() - start)
            else:
                transport_errors = 0
                if until(value):
                    return PollOutcome(SATISFIED, value=value, attempts=attempts, elapsed=self.clock() - start)

            now = self.clock()
            if now >= deadline:
                LOGGER.debug("gave up waiting for %s after %d polls", description, attempts)
                return PollOutcome(TIMED_OUT, value=value, attempts=attempts, elapsed=now - start)
            self.sleep(min(poll_interval, deadline - now))

    def wait(
        self,
        probe: Probe,
        poll_interval: float,
        timeout: float,
        *,
        until: Predicate = bool,
        cancel: Any = None,
        description: str = "condition",
    ) -> Any:
        outcome = self.observe(
            probe,
            poll_interval,
            timeout,
            until=until,
            cancel=cancel,
            description=description,
        )
        return outcome.unwrap(description)


__all__ = ["ConditionWatcher", "ERRORED", "PollOutcome", "SATISFIED", "TIMED_OUT"]
