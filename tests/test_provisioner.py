import unittest

import pytest

from src.common.errors import (
    InvalidSpec,
    NotFoundError,
    PermanentStoreError,
    ProvisioningError,
    ProvisioningTransportError,
    ResourceConflict,
    TransportFailure,
)
from src.provisioner.descriptor import WorkloadDescriptor
from src.provisioner.provisioner import (
    ALREADY_ABSENT,
    CREATED,
    DELETED,
    UNCHANGED,
    ResourceProvisioner,
    contains,
)
from src.provisioner.resources import AuxiliaryResourceSet
from src.provisioner.scope import OwnedResources
from src.store.memory import InMemoryStore

from tests.fakes import FakeClock, fake_watcher


def config_map(name: str = "settings", data=None):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": "ns", "labels": {"app": "docling"}},
        "data": data or {"mode": "cluster"},
    }


class ResourceProvisionerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.sleeps = []
        self.provisioner = ResourceProvisioner(self.store, retries=3, sleep=self.sleeps.append, seed=7)

    def test_apply_is_idempotent(self) -> None:
        self.assertEqual(self.provisioner.apply(config_map()), CREATED)
        self.assertEqual(self.provisioner.apply(config_map()), UNCHANGED)
        self.assertEqual(len(self.store.list("ConfigMap", "ns")), 1)

    def test_apply_conflict_on_different_shape(self) -> None:
        self.store.put(config_map(data={"mode": "client"}))
        with self.assertRaises(ResourceConflict) as ctx:
            self.provisioner.apply(config_map())
        self.assertEqual(ctx.exception.resource, "ConfigMap/ns/settings")
        self.assertEqual(ctx.exception.reason, "conflict")

    def test_server_defaults_do_not_conflict(self) -> None:
        existing = config_map()
        existing["data"]["extra"] = "defaulted"
        self.store.put(existing)
        self.assertEqual(self.provisioner.apply(config_map()), UNCHANGED)

    def test_delete_absent_is_not_an_error(self) -> None:
        self.assertEqual(self.provisioner.delete(config_map()), ALREADY_ABSENT)
        self.provisioner.apply(config_map())
        self.assertEqual(self.provisioner.delete(config_map()), DELETED)
        with self.assertRaises(NotFoundError):
            self.store.get("ConfigMap", "settings", "ns")

    def test_transport_failures_are_retried_with_backoff(self) -> None:
        self.store.inject_failure("create", TransportFailure("connection reset"), times=2)
        self.assertEqual(self.provisioner.apply(config_map()), CREATED)
        self.assertEqual(len(self.sleeps), 2)
        for attempt, delay in enumerate(self.sleeps):
            base = 0.5 * 2 ** attempt
            self.assertGreaterEqual(delay, base)
            self.assertLessEqual(delay, 2 * base)

    def test_retry_budget_exhaustion(self) -> None:
        self.store.inject_failure("create", TransportFailure("i/o timeout"), times=4)
        with self.assertRaises(ProvisioningTransportError) as ctx:
            self.provisioner.apply(config_map())
        self.assertIsInstance(ctx.exception, ProvisioningError)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(len(self.sleeps), 3)

    def test_fetch_retries_reads_and_passes_not_found_through(self) -> None:
        self.store.inject_failure("get", TransportFailure("connection reset"))
        self.assertFalse(self.provisioner.exists("ConfigMap", "settings", "ns"))
        self.assertEqual(len(self.sleeps), 1)
        self.store.put(config_map())
        self.store.inject_failure("get", TransportFailure("connection reset"))
        self.assertEqual(self.provisioner.fetch("ConfigMap", "settings", "ns")["data"], {"mode": "cluster"})

    def test_backoff_uses_the_watcher_clock_by_default(self) -> None:
        clock = FakeClock()
        provisioner = ResourceProvisioner(self.store, watcher=fake_watcher(clock), seed=1)
        self.store.inject_failure("get", TransportFailure("connection reset"))
        provisioner.exists("ConfigMap", "settings", "ns")
        self.assertEqual(len(clock.sleeps), 1)

    def test_permanent_errors_are_not_retried(self) -> None:
        self.store.inject_failure("create", PermanentStoreError("error validating data"))
        with self.assertRaises(InvalidSpec):
            self.provisioner.apply(config_map())
        self.assertEqual(self.sleeps, [])

    def test_replace_recreates_the_object(self) -> None:
        store = InMemoryStore(delete_after=2)
        clock = FakeClock()
        provisioner = ResourceProvisioner(store, watcher=fake_watcher(clock), sleep=clock.sleep)
        first = store.create(config_map())
        self.assertEqual(provisioner.replace(config_map(), timeout=30, poll_interval=1), CREATED)
        second = store.get("ConfigMap", "settings", "ns")
        self.assertNotEqual(first["metadata"]["uid"], second["metadata"]["uid"])
        self.assertGreater(clock.now, 0)

    def test_replace_creates_when_absent(self) -> None:
        self.assertEqual(self.provisioner.replace(config_map()), CREATED)

    def test_ensure_namespace(self) -> None:
        self.assertEqual(self.provisioner.ensure_namespace("docling-spark", {"team": "docs"}), CREATED)
        self.assertEqual(self.provisioner.ensure_namespace("docling-spark"), UNCHANGED)
        ns = self.store.get("Namespace", "docling-spark")
        self.assertEqual(ns["metadata"]["labels"], {"team": "docs"})

    def test_submit_requires_identity(self) -> None:
        descriptor = WorkloadDescriptor({"kind": "SparkApplication", "metadata": {}, "spec": {"driver": {}}})
        with self.assertRaises(InvalidSpec):
            self.provisioner.submit(descriptor)
        prepared = descriptor.prepared(name="job", namespace="ns", service_account="sa")
        self.assertEqual(self.provisioner.submit(prepared), CREATED)


class OwnedResourcesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.provisioner = ResourceProvisioner(self.store, sleep=lambda _: None)
        self.aux = AuxiliaryResourceSet.with_suffix("ns", "42")

    def _deleted_kinds(self):
        return [payload[0] for op, payload in self.store.calls if op == "delete"]

    def test_release_in_reverse_order(self) -> None:
        with OwnedResources(self.provisioner) as owned:
            for obj in self.aux.creation_order():
                owned.apply(obj)
        self.assertEqual(self._deleted_kinds(), ["ClusterRoleBinding", "ClusterRole", "ServiceAccount"])
        self.assertEqual(self.store.list("ServiceAccount", "ns"), [])

    def test_release_runs_when_the_body_raises(self) -> None:
        with self.assertRaises(RuntimeError):
            with OwnedResources(self.provisioner) as owned:
                owned.apply(self.aux.service_account())
                raise RuntimeError("boom")
        self.assertEqual(self.store.list("ServiceAccount", "ns"), [])

    def test_release_continues_past_failures(self) -> None:
        with OwnedResources(self.provisioner) as owned:
            for obj in self.aux.creation_order():
                owned.apply(obj)
            self.store.inject_failure("delete", PermanentStoreError("forbidden"))
        self.assertEqual(len(owned.release_errors), 1)
        ref, _ = owned.release_errors[0]
        self.assertEqual(ref, "ClusterRoleBinding/docling-spark-driver-binding-42")
        self.assertEqual(self.store.list("ClusterRole"), [])
        self.assertEqual(self.store.list("ServiceAccount", "ns"), [])

    def test_cleanup_disabled_keeps_everything(self) -> None:
        with OwnedResources(self.provisioner, cleanup=False) as owned:
            for obj in self.aux.creation_order():
                owned.apply(obj)
        self.assertEqual(self._deleted_kinds(), [])
        self.assertEqual(len(self.store.list("ClusterRoleBinding")), 1)


@pytest.mark.parametrize(
    "desired, existing, expected",
    [
        ({"a": 1}, {"a": 1, "b": 2}, True),
        ({"a": {"b": [1, 2]}}, {"a": {"b": [1, 2], "c": 3}}, True),
        ({"a": [1, 2]}, {"a": [2, 1]}, False),
        ({"a": 1}, {"a": 2}, False),
        ({"a": 1}, {}, False),
    ],
)
def test_contains(desired, existing, expected) -> None:
    assert contains(desired, existing) is expected
