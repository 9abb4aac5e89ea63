"""Compliance rules for workload descriptors and the pods they produce.

Security rules are declared once and matched against every target of the
levels they name, whatever role the target belongs to. Resource-shape and
application rules are generated from a reference descriptor or an
expected-values mapping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from src.provisioner.descriptor import ROLES, WorkloadDescriptor
from src.watcher.predicates import lookup

POD = "pod"
CONTAINER = "container"
WORKLOAD = "workload"
APPLICATION = "application"

RESERVED_FS_GROUP = 185
_MISSING = object()


@dataclass(frozen=True)
class ComplianceRule:
    name: str
    message: str
    expected: Any
    observe: Callable[[Mapping[str, Any]], Any]
    accept: Callable[[Any], bool]
    levels: FrozenSet[str] = frozenset({POD, CONTAINER})
    roles: Optional[FrozenSet[str]] = None

    def applies_to(self, level: str, role: Optional[str]) -> bool:
        if level not in self.levels:
            return False
        return self.roles is None or role in self.roles

    def check(self, context: Optional[Mapping[str, Any]]) -> Tuple[bool, Any]:
        observed = self.observe(context or {})
        return bool(self.accept(observed)), observed


def _drop_list(ctx: Mapping[str, Any]) -> Any:
    return lookup(ctx, "capabilities.drop")


RUN_AS_NON_ROOT = ComplianceRule(
    name="run_as_non_root",
    message="must run as non-root",
    expected=True,
    observe=lambda ctx: ctx.get("runAsNonRoot"),
    accept=lambda value: value is True,
)
NO_PRIVILEGE_ESCALATION = ComplianceRule(
    name="no_privilege_escalation",
    message="must not allow privilege escalation",
    expected=False,
    observe=lambda ctx: ctx.get("allowPrivilegeEscalation"),
    accept=lambda value: value is False,
    levels=frozenset({CONTAINER}),
)
DROP_ALL_CAPABILITIES = ComplianceRule(
    name="drop_all_capabilities",
    message="must drop all capabilities",
    expected=["ALL"],
    observe=_drop_list,
    accept=lambda value: isinstance(value, list) and "ALL" in value,
    levels=frozenset({CONTAINER}),
)
SECCOMP_RUNTIME_DEFAULT = ComplianceRule(
    name="seccomp_runtime_default",
    message="must use the RuntimeDefault seccomp profile",
    expected="RuntimeDefault",
    observe=lambda ctx: lookup(ctx, "seccompProfile.type"),
    accept=lambda value: value == "RuntimeDefault",
)
RUN_AS_USER_UNSET = ComplianceRule(
    name="run_as_user_unset",
    message="runAsUser must be unset so the platform can assign the UID",
    expected=None,
    observe=lambda ctx: ctx.get("runAsUser"),
    accept=lambda value: value is None,
)
RUN_AS_GROUP_UNSET = ComplianceRule(
    name="run_as_group_unset",
    message="runAsGroup must be unset so the platform can assign the GID",
    expected=None,
    observe=lambda ctx: ctx.get("runAsGroup"),
    accept=lambda value: value is None,
)
FS_GROUP_NOT_RESERVED = ComplianceRule(
    name="fs_group_not_reserved",
    message=f"fsGroup must not be {RESERVED_FS_GROUP}",
    expected=f"unset or not {RESERVED_FS_GROUP}",
    observe=lambda ctx: ctx.get("fsGroup"),
    accept=lambda value: value != RESERVED_FS_GROUP,
    levels=frozenset({POD}),
)

# What a restricted-v2 admitted descriptor must declare.
SECURITY_RULES: Tuple[ComplianceRule, ...] = (
    RUN_AS_NON_ROOT,
    NO_PRIVILEGE_ESCALATION,
    DROP_ALL_CAPABILITIES,
    SECCOMP_RUNTIME_DEFAULT,
    RUN_AS_USER_UNSET,
    RUN_AS_GROUP_UNSET,
)

# Live pods: the platform fills in UID/GID at admission, so those rules are left out.
LIVE_POD_RULES: Tuple[ComplianceRule, ...] = (
    RUN_AS_NON_ROOT,
    SECCOMP_RUNTIME_DEFAULT,
    NO_PRIVILEGE_ESCALATION,
    DROP_ALL_CAPABILITIES,
)

OPERATOR_POD_RULES: Tuple[ComplianceRule, ...] = (FS_GROUP_NOT_RESERVED,)


def _equals_rule(name: str, path: str, expected: Any, level: str, roles: Optional[FrozenSet[str]] = None) -> ComplianceRule:
    return ComplianceRule(
        name=name,
        message=f"{path} must be {expected!r}",
        expected=expected,
        observe=lambda ctx, _path=path: lookup(ctx, _path),
        accept=lambda value, _expected=expected: value == _expected,
        levels=frozenset({level}),
        roles=roles,
    )


def resource_shape_rules(
    reference: WorkloadDescriptor,
    *,
    min_executor_instances: int = 1,
    roles: Sequence[str] = ROLES,
) -> List[ComplianceRule]:
    """Per-role cores/coreLimit/memory must match ``reference``; executors must meet a minimum count."""

    rules: List[ComplianceRule] = []
    for role in roles:
        declared = reference.role(role)
        only = frozenset({role})
        for rule_name, path, value in (
            ("cores_match", "cores", declared.cores),
            ("core_limit_match", "coreLimit", declared.core_limit),
            ("memory_match", "memory", declared.memory),
        ):
            if value is not None:
                rules.append(_equals_rule(rule_name, path, value, WORKLOAD, only))
    rules.append(
        ComplianceRule(
            name="executor_min_instances",
            message=f"executor instances must be at least {min_executor_instances}",
            expected=f">= {min_executor_instances}",
            observe=lambda ctx: ctx.get("instances"),
            accept=lambda value: isinstance(value, int) and value >= min_executor_instances,
            levels=frozenset({WORKLOAD}),
            roles=frozenset({"executor"}),
        )
    )
    return rules


def application_rules(expected: Mapping[str, Any], *, optional: Iterable[str] = ()) -> List[ComplianceRule]:
    """Rules asserting ``spec`` fields (dotted paths) hold the expected values.

    Paths listed in ``optional`` only have to match when the field is present.
    """

    optional_paths = set(optional)
    rules: List[ComplianceRule] = []
    for path, value in expected.items():
        name = f"{path.replace('.', '_')}_matches"
        if path in optional_paths:
            rules.append(
                ComplianceRule(
                    name=name,
                    message=f"{path} must be {value!r} when set",
                    expected=value,
                    observe=lambda ctx, _path=path: lookup(ctx, _path, _MISSING),
                    accept=lambda observed, _value=value: observed is _MISSING or observed == _value,
                    levels=frozenset({APPLICATION}),
                )
            )
        else:
            rules.append(_equals_rule(name, path, value, APPLICATION))
    return rules


def descriptor_expectations(reference: WorkloadDescriptor) -> Dict[str, Any]:
    """Expected application settings taken from a template descriptor."""

    expected: Dict[str, Any] = {}
    for path, value in (
        ("type", reference.app_type),
        ("mode", reference.mode),
        ("image", reference.image),
        ("imagePullPolicy", reference.image_pull_policy),
        ("sparkVersion", reference.spark_version),
        ("pythonVersion", reference.python_version),
        ("mainApplicationFile", reference.main_application_file),
        ("arguments", reference.arguments or None),
        ("restartPolicy.type", reference.restart_policy),
        ("timeToLiveSeconds", reference.time_to_live_seconds),
    ):
        if value is not None:
            expected[path] = value
    return expected


__all__ = [
    "APPLICATION",
    "CONTAINER",
    "ComplianceRule",
    "DROP_ALL_CAPABILITIES",
    "FS_GROUP_NOT_RESERVED",
    "LIVE_POD_RULES",
    "NO_PRIVILEGE_ESCALATION",
    "OPERATOR_POD_RULES",
    "POD",
    "RUN_AS_GROUP_UNSET",
    "RUN_AS_NON_ROOT",
    "RUN_AS_USER_UNSET",
    "SECCOMP_RUNTIME_DEFAULT",
    "SECURITY_RULES",
    "WORKLOAD",
    "application_rules",
    "descriptor_expectations",
    "resource_shape_rules",
]
