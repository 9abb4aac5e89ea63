from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from src.common.errors import PreconditionViolation
from src.provisioner.descriptor import ROLES
from src.store.base import object_ref

from .rules import APPLICATION, CONTAINER, POD, WORKLOAD, ComplianceRule

ROLE_LABEL = "spark-role"


@dataclass(frozen=True)
class Target:
    """A slice of an object that rules are evaluated against."""

    ref: str
    role: Optional[str]
    level: str
    location: str
    context: Mapping[str, Any]


@dataclass(frozen=True)
class Violation:
    object_ref: str
    role: Optional[str]
    level: str
    location: str
    rule: str
    message: str
    expected: Any
    observed: Any

    def __str__(self) -> str:
        role = self.role or "-"
        return (
            f"{self.object_ref} [{role}] {self.location}: {self.rule}: {self.message} "
            f"(expected {self.expected!r}, observed {self.observed!r})"
        )


@dataclass
class ComplianceReport:
    violations: List[Violation] = field(default_factory=list)
    checks: int = 0

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def rule_names(self) -> List[str]:
        return [v.rule for v in self.violations]

    def for_role(self, role: str) -> List[Violation]:
        return [v for v in self.violations if v.role == role]

    def for_object(self, ref: str) -> List[Violation]:
        return [v for v in self.violations if v.object_ref == ref]

    def extend(self, other: "ComplianceReport") -> "ComplianceReport":
        self.violations.extend(other.violations)
        self.checks += other.checks
        return self

    def raise_for_violations(self) -> None:
        if self.violations:
            raise PreconditionViolation(self)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _workload_targets(obj: Mapping[str, Any], ref: str, roles: Sequence[str]) -> List[Target]:
    spec = _mapping(obj.get("spec"))
    targets = [Target(ref, None, APPLICATION, "spec", spec)]
    for role in roles:
        block = _mapping(spec.get(role))
        targets.append(Target(ref, role, WORKLOAD, f"spec.{role}", block))
        targets.append(
            Target(ref, role, CONTAINER, f"spec.{role}.securityContext", _mapping(block.get("securityContext")))
        )
        if "podSecurityContext" in block:
            targets.append(
                Target(ref, role, POD, f"spec.{role}.podSecurityContext", _mapping(block.get("podSecurityContext")))
            )
    return targets


def _pod_targets(obj: Mapping[str, Any], ref: str) -> List[Target]:
    metadata = _mapping(obj.get("metadata"))
    role = _mapping(metadata.get("labels")).get(ROLE_LABEL)
    spec = _mapping(obj.get("spec"))
    targets = [Target(ref, role, POD, "spec.securityContext", _mapping(spec.get("securityContext")))]
    for group in ("initContainers", "containers"):
        for index, container in enumerate(spec.get(group) or []):
            if not isinstance(container, Mapping):
                continue
            name = container.get("name") or index
            targets.append(
                Target(
                    ref,
                    role,
                    CONTAINER,
                    f"spec.{group}[{name}].securityContext",
                    _mapping(container.get("securityContext")),
                )
            )
    return targets


class ComplianceAssertion:
    """Evaluate rule sets against descriptors and pods, collecting every violation."""

    def __init__(self, roles: Sequence[str] = ROLES) -> None:
        self.roles = tuple(roles)

    def targets(self, obj: Mapping[str, Any]) -> List[Target]:
        ref = object_ref(obj)
        if obj.get("kind") == "Pod":
            return _pod_targets(obj, ref)
        return _workload_targets(obj, ref, self.roles)

    def evaluate(self, obj: Mapping[str, Any], rules: Iterable[ComplianceRule]) -> ComplianceReport:
        rule_list = list(rules)
        report = ComplianceReport()
        for target in self.targets(obj):
            for rule in rule_list:
                if not rule.applies_to(target.level, target.role):
                    continue
                report.checks += 1
                ok, observed = rule.check(target.context)
                if ok:
                    continue
                report.violations.append(
                    Violation(
                        object_ref=target.ref,
                        role=target.role,
                        level=target.level,
                        location=target.location,
                        rule=rule.name,
                        message=rule.message,
                        expected=rule.expected,
                        observed=observed,
                    )
                )
        return report

    def evaluate_all(
        self,
        objects: Iterable[Mapping[str, Any]],
        rules: Iterable[ComplianceRule],
    ) -> ComplianceReport:
        rule_list = list(rules)
        report = ComplianceReport()
        for obj in objects:
            report.extend(self.evaluate(obj, rule_list))
        return report


def summarize(report: ComplianceReport) -> Dict[str, Any]:
    return {
        "passed": report.passed,
        "checks": report.checks,
        "violations": [
            {
                "object": v.object_ref,
                "role": v.role,
                "location": v.location,
                "rule": v.rule,
                "expected": v.expected,
                "observed": v.observed,
            }
            for v in report.violations
        ],
    }


__all__ = ["ComplianceAssertion", "ComplianceReport", "ROLE_LABEL", "Target", "Violation", "summarize"]
