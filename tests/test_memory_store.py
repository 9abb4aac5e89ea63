import unittest

from src.common.errors import AlreadyExistsError, NotFoundError, PermanentStoreError, TransportFailure
from src.store.base import is_pod_ready, object_ref
from src.store.memory import InMemoryStore
from src.worker.lifecycle import WorkerPodSpec

from tests.fakes import claim


def helper_pod(claim_name: str = "docling-input"):
    return WorkerPodSpec("pvc-uploader", "ns", claim_name, "/input").to_manifest()


class InMemoryStoreTests(unittest.TestCase):
    def test_create_assigns_server_metadata(self) -> None:
        store = InMemoryStore()
        created = store.create({"kind": "ServiceAccount", "metadata": {"name": "sa", "namespace": "ns"}})
        for key in ("uid", "resourceVersion", "creationTimestamp", "generation"):
            self.assertIn(key, created["metadata"])
        with self.assertRaises(AlreadyExistsError):
            store.create({"kind": "ServiceAccount", "metadata": {"name": "sa", "namespace": "ns"}})
        with self.assertRaises(PermanentStoreError):
            store.create({"kind": "ServiceAccount", "metadata": {"name": "x", "namespace": "ns", "uid": "u"}})

    def test_selector_listing(self) -> None:
        store = InMemoryStore()
        store.put({"kind": "Pod", "metadata": {"name": "d", "namespace": "ns", "labels": {"spark-role": "driver"}}})
        store.put({"kind": "Pod", "metadata": {"name": "e", "namespace": "ns", "labels": {"spark-role": "executor"}}})
        store.put({"kind": "Pod", "metadata": {"name": "o", "namespace": "other", "labels": {"spark-role": "driver"}}})
        names = [p["metadata"]["name"] for p in store.list("Pod", "ns", {"spark-role": "driver"})]
        self.assertEqual(names, ["d"])
        self.assertEqual(len(store.list("Pod")), 3)

    def test_pod_is_ready_only_once_its_claim_exists(self) -> None:
        store = InMemoryStore()
        store.create(helper_pod())
        self.assertFalse(is_pod_ready(store.get("Pod", "pvc-uploader", "ns")))
        store.put(claim("docling-input", "ns"))
        self.assertTrue(is_pod_ready(store.get("Pod", "pvc-uploader", "ns")))

    def test_exec_and_copy_share_the_claim(self) -> None:
        store = InMemoryStore()
        store.put(claim("docling-input", "ns"))
        store.create(helper_pod())
        store.write_volume_file("ns", "docling-input", "doc.pdf", b"12345")
        self.assertIn("doc.pdf", store.exec("pvc-uploader", "ns", ["ls", "-la", "/input/"]))
        self.assertTrue(store.exec("pvc-uploader", "ns", ["id"]).startswith("uid="))
        with self.assertRaises(PermanentStoreError):
            store.exec("pvc-uploader", "ns", ["rm", "-rf", "/"])
        with self.assertRaises(PermanentStoreError):
            store.exec("pvc-uploader", "ns", ["ls", "/elsewhere"])

    def test_graceful_deletion(self) -> None:
        store = InMemoryStore(delete_after=1)
        store.put({"kind": "ConfigMap", "metadata": {"name": "cm", "namespace": "ns"}})
        store.delete("ConfigMap", "cm", "ns")
        self.assertIn("deletionTimestamp", store.get("ConfigMap", "cm", "ns")["metadata"])
        with self.assertRaises(NotFoundError):
            store.get("ConfigMap", "cm", "ns")

    def test_injected_failures_are_consumed(self) -> None:
        store = InMemoryStore()
        store.inject_failure("get", TransportFailure("reset"), times=1)
        with self.assertRaises(TransportFailure):
            store.get("Namespace", "ns")
        with self.assertRaises(NotFoundError):
            store.get("Namespace", "ns")

    def test_object_refs(self) -> None:
        self.assertEqual(object_ref({"kind": "Pod", "metadata": {"name": "p", "namespace": "ns"}}), "Pod/ns/p")
        self.assertEqual(object_ref({"kind": "ClusterRole", "metadata": {"name": "r", "namespace": "ns"}}), "ClusterRole/r")


def test_store_package_exports_only_production_backends() -> None:
    import src.store

    assert "KubectlStore" in src.store.__all__
    assert "InMemoryStore" not in src.store.__all__
