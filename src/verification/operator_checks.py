"""Post-install checks for the workload operator release."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from src.common.config import Settings
from src.common.errors import ClusterError
from src.compliance.assertion import ComplianceAssertion
from src.compliance.rules import OPERATOR_POD_RULES
from src.store.base import ResourceStore, is_pod_ready
from src.watcher import predicates
from src.watcher.watcher import ConditionWatcher

from .report import FAILED, PASSED, WARNING, ScenarioReport

LOGGER = logging.getLogger(__name__)

INSTANCE_LABEL = "app.kubernetes.io/instance"
COMPONENT_LABEL = "app.kubernetes.io/component"
CONTROLLER_COMPONENT = "controller"
NAMESPACES_FLAG = "--namespaces="
WEBHOOK_KINDS = ("MutatingWebhookConfiguration", "ValidatingWebhookConfiguration")


def all_ready(pods: Any) -> bool:
    return bool(pods) and all(is_pod_ready(pod) for pod in pods)


def watched_namespaces(pod: Mapping[str, Any]) -> Optional[List[str]]:
    """Namespaces named by the first container's ``--namespaces=`` flag, or ``None`` when absent."""

    containers = (pod.get("spec") or {}).get("containers") or []
    if not containers:
        return None
    first = containers[0]
    for arg in list(first.get("args") or []) + list(first.get("command") or []):
        if isinstance(arg, str) and arg.startswith(NAMESPACES_FLAG):
            value = arg[len(NAMESPACES_FLAG):]
            return [ns.strip() for ns in value.split(",") if ns.strip()]
    return None


def check_operator(
    store: ResourceStore,
    settings: Settings,
    release: str,
    namespace: str,
    expected_job_namespace: str,
    *,
    watcher: Optional[ConditionWatcher] = None,
) -> ScenarioReport:
    watcher = watcher or ConditionWatcher()
    report = ScenarioReport(subject=f"release {release} in {namespace}")
    selector = {INSTANCE_LABEL: release}

    outcome = watcher.observe(
        predicates.list_objects(store, "Pod", namespace, selector),
        settings.poll_interval,
        settings.ready_timeout,
        until=all_ready,
        description=f"operator pods of {release}",
    )
    report.record_outcome("operator-pods-ready", outcome, f"{len(outcome.value)} pod(s) ready" if outcome.satisfied else "")
    if outcome.errored:
        return report

    pods: List[Dict[str, Any]] = list(outcome.value or [])
    fs_group = ComplianceAssertion().evaluate_all(pods, OPERATOR_POD_RULES)
    report.compliance.extend(fs_group)
    report.record("operator-fs-group", PASSED if fs_group.passed else FAILED)

    controllers = [
        pod for pod in pods if ((pod.get("metadata") or {}).get("labels") or {}).get(COMPONENT_LABEL) == CONTROLLER_COMPONENT
    ]
    if not controllers:
        report.record("watched-namespaces", WARNING, "no controller pod found")
    else:
        namespaces = watched_namespaces(controllers[0])
        if namespaces is None:
            report.record("watched-namespaces", WARNING, f"{NAMESPACES_FLAG} not set on the controller")
        elif expected_job_namespace in namespaces:
            report.record("watched-namespaces", PASSED, ",".join(namespaces))
        else:
            LOGGER.warning("Operator does not watch namespace %s (watches %s)", expected_job_namespace, namespaces)
            report.record(
                "watched-namespaces",
                WARNING,
                f"{expected_job_namespace} not in {','.join(namespaces) or '(none)'}",
            )

    for kind in WEBHOOK_KINDS:
        stage = f"{kind[0].lower()}{kind[1:]}"
        try:
            found = store.list(kind, None, selector)
        except ClusterError as exc:
            report.record(stage, WARNING, f"could not list: {exc}")
            continue
        if found:
            report.record(stage, PASSED, f"{len(found)} found")
        else:
            report.record(stage, WARNING, "none found for the release")
    return report


__all__ = ["all_ready", "check_operator", "watched_namespaces"]
