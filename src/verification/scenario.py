"""Submit a workload descriptor under unique names and verify what the cluster makes of it."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from src.common.config import Settings
from src.common.errors import ClusterError
from src.compliance.assertion import ComplianceAssertion, ComplianceReport
from src.compliance.rules import (
    LIVE_POD_RULES,
    SECURITY_RULES,
    application_rules,
    descriptor_expectations,
    resource_shape_rules,
)
from src.provisioner.descriptor import WorkloadDescriptor, unique_name, unique_suffix
from src.provisioner.provisioner import ResourceProvisioner
from src.provisioner.resources import AuxiliaryResourceSet
from src.provisioner.scope import OwnedResources
from src.store.base import ResourceStore
from src.watcher import predicates
from src.watcher.watcher import ConditionWatcher

from .report import ERRORED, FAILED, PASSED, SKIPPED, ScenarioReport

LOGGER = logging.getLogger(__name__)

APP_NAME_LABEL = "sparkoperator.k8s.io/app-name"
ROLE_LABEL = "spark-role"
STATE_PATH = "status.applicationState.state"

SUBMITTED_OR_LATER = frozenset({"SUBMITTED", "RUNNING", "SUCCEEDING", "COMPLETED"})
FAILED_STATES = frozenset({"FAILED", "SUBMISSION_FAILED", "FAILING", "INVALIDATING"})


def descriptor_rules(reference: WorkloadDescriptor, service_account: Optional[str] = None) -> List[Any]:
    """Security, resource-shape and application rules for a submitted copy of ``reference``."""

    expected: Dict[str, Any] = descriptor_expectations(reference)
    if service_account is not None:
        expected["driver.serviceAccount"] = service_account
    return [
        *SECURITY_RULES,
        *resource_shape_rules(reference, min_executor_instances=1),
        *application_rules(expected, optional=("pythonVersion",)),
    ]


def check_descriptor(
    descriptor: Mapping[str, Any],
    reference: WorkloadDescriptor,
    service_account: Optional[str] = None,
) -> ComplianceReport:
    return ComplianceAssertion().evaluate(descriptor, descriptor_rules(reference, service_account))


class SubmissionScenario:
    """One verification run: auxiliary set + descriptor under a fresh suffix, then observation.

    Everything the run creates is released on exit unless cleanup is disabled
    in the settings.
    """

    def __init__(
        self,
        store: ResourceStore,
        settings: Settings,
        template: WorkloadDescriptor,
        *,
        namespace: Optional[str] = None,
        suffix: Optional[str] = None,
        watcher: Optional[ConditionWatcher] = None,
        observe_pods: bool = True,
        cancel: Any = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.template = template
        self.namespace = namespace or settings.namespace
        self.suffix = suffix or unique_suffix()
        self.watcher = watcher or ConditionWatcher()
        self.provisioner = ResourceProvisioner(store, retries=settings.transport_retries, watcher=self.watcher)
        self.observe_pods = observe_pods
        self.cancel = cancel
        self.resources = AuxiliaryResourceSet.with_suffix(
            self.namespace,
            self.suffix,
            service_account_base=settings.service_account,
        )
        self.app_name = unique_name(template.name or "docling-spark-job", self.suffix)

    def prepared(self) -> WorkloadDescriptor:
        return self.template.prepared(
            name=self.app_name,
            namespace=self.namespace,
            service_account=self.resources.service_account_name,
        )

    def run(self) -> ScenarioReport:
        report = ScenarioReport(subject=f"{self.template.kind}/{self.namespace}/{self.app_name}")
        LOGGER.info("Using namespace %s with unique resources (suffix: %s)", self.namespace, self.suffix)
        with OwnedResources(self.provisioner, cleanup=self.settings.cleanup) as owned:
            prepared = self._provision(owned, report)
            if prepared is not None:
                self._verify(prepared, report)
        report.release_errors = list(owned.release_errors)
        return report

    def _provision(self, owned: OwnedResources, report: ScenarioReport) -> Optional[WorkloadDescriptor]:
        try:
            for obj in self.resources.creation_order():
                owned.apply(obj)
            prepared = self.prepared()
            LOGGER.info("Creating %s '%s' in namespace '%s'", prepared.kind, self.app_name, self.namespace)
            owned.apply(prepared.document)
        except ClusterError as exc:
            report.record("provision", ERRORED, str(exc))
            return None
        report.record("provision", PASSED)
        return prepared

    def _verify(self, prepared: WorkloadDescriptor, report: ScenarioReport) -> None:
        try:
            submitted = self.store.get(prepared.kind, self.app_name, self.namespace)
        except ClusterError as exc:
            report.record("descriptor-compliance", ERRORED, str(exc))
        else:
            static = check_descriptor(submitted, self.template, self.resources.service_account_name)
            report.compliance.extend(static)
            report.record("descriptor-compliance", PASSED if static.passed else FAILED)

        if self.observe_pods:
            self._observe(prepared.kind, report)
        else:
            report.record("pods", SKIPPED)

    def _observe(self, kind: str, report: ScenarioReport) -> None:
        settings = self.settings
        outcome = self.watcher.observe(
            predicates.object_field(self.store, kind, self.app_name, self.namespace, STATE_PATH),
            settings.state_interval,
            settings.state_timeout,
            until=lambda state: state in SUBMITTED_OR_LATER or state in FAILED_STATES,
            cancel=self.cancel,
            description=f"submission of {self.app_name}",
        )
        if outcome.satisfied and outcome.value in FAILED_STATES:
            report.record("application-submitted", FAILED, f"application state {outcome.value}")
            return
        report.record_outcome("application-submitted", outcome, f"state {outcome.value}" if outcome.satisfied else "")
        if not outcome.satisfied:
            return

        outcome = self.watcher.observe(
            predicates.list_objects(self.store, "Pod", self.namespace, self._pod_selector("driver")),
            settings.pod_interval,
            settings.pod_timeout,
            until=predicates.non_empty,
            cancel=self.cancel,
            description=f"driver pod of {self.app_name}",
        )
        report.record_outcome("driver-pod", outcome)
        if outcome.satisfied:
            driver_report = ComplianceAssertion().evaluate(outcome.value[0], LIVE_POD_RULES)
            report.compliance.extend(driver_report)
            report.record("driver-pod-compliance", PASSED if driver_report.passed else FAILED)

        outcome = self.watcher.observe(
            predicates.list_objects(self.store, "Pod", self.namespace, self._pod_selector("executor")),
            settings.executor_interval,
            settings.executor_timeout,
            until=predicates.at_least(1),
            cancel=self.cancel,
            description=f"executor pods of {self.app_name}",
        )
        report.record_outcome(
            "executor-pods", outcome, f"{len(outcome.value)} executor pod(s)" if outcome.satisfied else ""
        )

    def _pod_selector(self, role: str) -> Dict[str, str]:
        return {ROLE_LABEL: role, APP_NAME_LABEL: self.app_name}


__all__ = ["SubmissionScenario", "check_descriptor", "descriptor_rules"]
