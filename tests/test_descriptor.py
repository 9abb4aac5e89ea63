import copy
import unittest

from src.common.errors import InvalidSpec
from src.provisioner.descriptor import SERVER_METADATA_FIELDS, WorkloadDescriptor, unique_name, unique_suffix
from src.provisioner.resources import AuxiliaryResourceSet

from tests.fakes import MANIFESTS

MINIMAL = """
apiVersion: sparkoperator.k8s.io/v1beta2
kind: SparkApplication
metadata:
  name: job
spec:
  type: Python
  driver:
    cores: 1
  executor:
    instances: 1
"""


class WorkloadDescriptorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.template = WorkloadDescriptor.load(MANIFESTS / "docling-spark-app.yaml")

    def test_template_fields(self) -> None:
        t = self.template
        self.assertEqual(t.kind, "SparkApplication")
        self.assertEqual(t.app_type, "Python")
        self.assertEqual(t.mode, "cluster")
        self.assertEqual(t.image, "quay.io/rishasin/docling-spark:latest")
        self.assertEqual(t.image_pull_policy, "Always")
        self.assertEqual(t.spark_version, "3.5.0")
        self.assertEqual(t.python_version, "3")
        self.assertEqual(t.main_application_file, "local:///app/scripts/run_spark_job.py")
        self.assertEqual(
            t.arguments,
            ["--input-dir", "/app/assets", "--output-file", "/app/output/results.jsonl"],
        )
        self.assertEqual(t.restart_policy, "Never")
        self.assertEqual(t.time_to_live_seconds, 1200)

    def test_role_resources(self) -> None:
        driver, executor = self.template.driver, self.template.executor
        self.assertEqual((driver.cores, driver.core_limit, driver.memory), (1, "1200m", "4g"))
        self.assertEqual((executor.instances, executor.cores, executor.memory), (2, 1, "4g"))
        self.assertEqual(driver.service_account, "spark-driver")
        self.assertEqual(driver.security_context["capabilities"]["drop"], ["ALL"])
        self.assertIsNone(driver.security_context.get("runAsUser"))
        with self.assertRaises(ValueError):
            self.template.role("sidecar")

    def test_prepared_overrides_identity_only(self) -> None:
        doc = self.template.document
        doc["metadata"].update(
            {"resourceVersion": "42", "uid": "abc", "creationTimestamp": "2024-01-01T00:00:00Z", "generation": 3}
        )
        doc["metadata"]["managedFields"] = [{"manager": "kubectl"}]
        doc["status"] = {"applicationState": {"state": "COMPLETED"}}
        source = WorkloadDescriptor(doc)

        prepared = source.prepared(name="job-1", namespace="test-ns", service_account="sa-1")
        out = prepared.document
        for key in SERVER_METADATA_FIELDS:
            self.assertNotIn(key, out["metadata"])
        self.assertNotIn("status", out)
        self.assertEqual(out["metadata"]["name"], "job-1")
        self.assertEqual(out["metadata"]["namespace"], "test-ns")
        self.assertEqual(out["spec"]["driver"]["serviceAccount"], "sa-1")

        expected_spec = copy.deepcopy(doc["spec"])
        expected_spec["driver"]["serviceAccount"] = "sa-1"
        self.assertEqual(out["spec"], expected_spec)
        # The source is never mutated.
        self.assertEqual(source.metadata["uid"], "abc")
        self.assertEqual(source.driver.service_account, "spark-driver")

    def test_missing_service_account_is_added(self) -> None:
        prepared = WorkloadDescriptor.from_yaml(MINIMAL).prepared(service_account="sa-2")
        self.assertEqual(prepared.spec["driver"]["serviceAccount"], "sa-2")
        self.assertEqual(prepared.spec["driver"]["cores"], 1)

    def test_missing_driver_block_is_invalid(self) -> None:
        descriptor = WorkloadDescriptor({"kind": "SparkApplication", "metadata": {"name": "x"}, "spec": {}})
        with self.assertRaises(InvalidSpec):
            descriptor.prepared(service_account="sa")
        # Without a service-account override there is nothing to bind.
        self.assertEqual(descriptor.prepared(name="y").name, "y")

    def test_invalid_documents(self) -> None:
        with self.assertRaises(InvalidSpec):
            WorkloadDescriptor({"kind": "SparkApplication"})
        with self.assertRaises(InvalidSpec):
            WorkloadDescriptor.from_yaml("spec: [unclosed")
        with self.assertRaises(InvalidSpec):
            WorkloadDescriptor.from_yaml("- just\n- a list\n")
        with self.assertRaises(InvalidSpec):
            WorkloadDescriptor.load(MANIFESTS / "missing.yaml")

    def test_first_mapping_document_wins(self) -> None:
        text = "---\n" + MINIMAL + "\n---\nkind: Other\nspec: {}\n"
        self.assertEqual(WorkloadDescriptor.from_yaml(text).name, "job")


class UniqueNameTests(unittest.TestCase):
    def test_suffix_is_numeric(self) -> None:
        self.assertTrue(unique_suffix().isdigit())

    def test_names_fit_dns_label_limit(self) -> None:
        name = unique_name("docling-spark-job-with-a-rather-long-descriptive-name", "1712345678901234567")
        self.assertLessEqual(len(name), 63)
        self.assertTrue(name.endswith("1712345678901234567"))
        self.assertFalse(name.startswith("-"))


class AuxiliaryResourceSetTests(unittest.TestCase):
    def test_suffixed_cluster_scoped_set(self) -> None:
        aux = AuxiliaryResourceSet.with_suffix("docling-spark", "123")
        sa, role, binding = aux.creation_order()
        self.assertEqual(sa["metadata"]["name"], "spark-driver-123")
        self.assertEqual(role["kind"], "ClusterRole")
        self.assertEqual(role["metadata"]["name"], "docling-spark-driver-role-123")
        self.assertNotIn("namespace", role["metadata"])
        self.assertEqual(binding["metadata"]["name"], "docling-spark-driver-binding-123")
        self.assertEqual(
            binding["subjects"], [{"kind": "ServiceAccount", "name": "spark-driver-123", "namespace": "docling-spark"}]
        )
        self.assertEqual(binding["roleRef"]["name"], role["metadata"]["name"])
        self.assertEqual(sa["metadata"]["labels"], {"test": "openshift-integration"})
        self.assertEqual([o["kind"] for o in aux.deletion_order()], ["ClusterRoleBinding", "ClusterRole", "ServiceAccount"])

    def test_fixed_namespaced_set(self) -> None:
        aux = AuxiliaryResourceSet.fixed("docling-spark")
        role, binding = aux.role(), aux.binding()
        self.assertEqual(role["kind"], "Role")
        self.assertEqual(role["metadata"]["namespace"], "docling-spark")
        self.assertEqual(binding["kind"], "RoleBinding")
        self.assertEqual(binding["roleRef"]["kind"], "Role")
        resources = {r for rule in role["rules"] for r in rule["resources"]}
        self.assertEqual(resources, {"pods", "services", "configmaps", "persistentvolumeclaims", "events"})
