from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from src.compliance.assertion import ComplianceReport
from src.watcher.watcher import PollOutcome

PASSED = "passed"
FAILED = "failed"
TIMED_OUT = "timed_out"
ERRORED = "errored"
WARNING = "warning"
SKIPPED = "skipped"

_BLOCKING = {FAILED, TIMED_OUT, ERRORED}


@dataclass
class StageResult:
    name: str
    status: str
    detail: str = ""

    def __str__(self) -> str:
        suffix = f": {self.detail}" if self.detail else ""
        return f"{self.name} {self.status}{suffix}"


@dataclass
class ScenarioReport:
    subject: str
    stages: List[StageResult] = field(default_factory=list)
    compliance: ComplianceReport = field(default_factory=ComplianceReport)
    release_errors: List[Tuple[str, Exception]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.compliance.passed and not any(stage.status in _BLOCKING for stage in self.stages)

    @property
    def timeouts(self) -> List[StageResult]:
        return [stage for stage in self.stages if stage.status == TIMED_OUT]

    def stage(self, name: str) -> Optional[StageResult]:
        return next((s for s in self.stages if s.name == name), None)

    def record(self, name: str, status: str, detail: str = "") -> StageResult:
        result = StageResult(name, status, detail)
        self.stages.append(result)
        return result

    def record_outcome(self, name: str, outcome: PollOutcome, detail: str = "") -> StageResult:
        if outcome.satisfied:
            return self.record(name, PASSED, detail)
        if outcome.timed_out:
            return self.record(
                name,
                TIMED_OUT,
                f"not satisfied after {outcome.elapsed:.0f}s (last observed {_brief(outcome.value)})",
            )
        return self.record(name, ERRORED, str(outcome.error))

    def lines(self) -> List[str]:
        rendered = [str(stage) for stage in self.stages]
        rendered.extend(str(violation) for violation in self.compliance.violations)
        rendered.extend(f"cleanup of {ref} failed: {exc}" for ref, exc in self.release_errors)
        return rendered


def _brief(value: Any) -> str:
    if isinstance(value, list):
        return f"{len(value)} item(s)"
    if isinstance(value, dict):
        return (value.get("metadata") or {}).get("name", "object")
    return repr(value)


__all__ = ["ERRORED", "FAILED", "PASSED", "SKIPPED", "ScenarioReport", "StageResult", "TIMED_OUT", "WARNING"]
