import tempfile
import unittest
from pathlib import Path

from typer.testing import CliRunner

from src.mover import cli as mover_cli
from src.store.memory import InMemoryStore

from tests.fakes import MANIFESTS, claim

NS = "docling-spark"


class MoverCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runner = CliRunner()
        self.store = InMemoryStore()
        self.built = []
        original = mover_cli.build_store

        def build_store(settings):
            self.built.append(settings)
            return self.store

        mover_cli.build_store = build_store
        self.addCleanup(setattr, mover_cli, "build_store", original)
        self.env = {"SPARK_E2E_MANIFESTS_DIR": str(MANIFESTS), "SPARK_E2E_CLI": "kubectl"}
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _invoke(self, *args: str):
        return self.runner.invoke(mover_cli.app, list(args), env=self.env)

    def test_upload_without_directory_is_a_usage_error(self) -> None:
        result = self._invoke("upload")
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("Usage: spark-mover upload <local-directory>", result.output)
        self.assertEqual(self.built, [])

    def test_upload_of_missing_directory_fails_before_cluster_access(self) -> None:
        result = self._invoke("upload", str(Path(self.tmp.name) / "missing"))
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Usage: spark-mover upload <local-directory>", result.output)
        self.assertIn("does not exist", result.output)
        self.assertEqual(self.built, [])
        self.assertEqual(self.store.calls, [])

    def test_download_without_directory_is_a_usage_error(self) -> None:
        result = self._invoke("download")
        self.assertNotEqual(result.exit_code, 0)
        self.assertEqual(self.built, [])

    def test_upload_copies_files(self) -> None:
        source = Path(self.tmp.name) / "pdfs"
        source.mkdir()
        (source / "report.pdf").write_bytes(b"%PDF")
        result = self._invoke("upload", str(source))
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("report.pdf", result.output)
        self.assertIn("Upload complete.", result.output)
        self.assertEqual(self.store.volume_files(NS, "docling-input"), {"report.pdf": b"%PDF"})
        self.assertEqual(self.store.list("Pod", NS), [])

    def test_download_fails_without_output_claim(self) -> None:
        result = self._invoke("download", str(Path(self.tmp.name) / "out"))
        self.assertEqual(result.exit_code, 1)

    def test_download_writes_results(self) -> None:
        self.store.put(claim("docling-output", NS))
        self.store.write_volume_file(NS, "docling-output", "results.jsonl", b'{"doc": 1}\n')
        target = Path(self.tmp.name) / "results"
        result = self._invoke("download", str(target))
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual((target / "results.jsonl").read_bytes(), b'{"doc": 1}\n')

    def test_status_on_empty_namespace(self) -> None:
        result = self._invoke("status")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No PVCs found", result.output)
        self.assertIn("No SparkApplications found", result.output)
        self.assertIn("No pods found", result.output)
        self.assertNotIn("fsGroupPolicy", result.output)

    def test_status_lists_objects_and_csi_policy_with_oc(self) -> None:
        self.store.put(claim("docling-input", NS))
        self.store.put({"kind": "SparkApplication", "metadata": {"name": "docling-spark-job", "namespace": NS},
                        "status": {"applicationState": {"state": "RUNNING"}}})
        self.env["SPARK_E2E_CLI"] = "oc"
        result = self._invoke("status")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("docling-input", result.output)
        self.assertIn("RUNNING", result.output)
        self.assertIn("fsGroupPolicy: Could not check", result.output)

        self.store.put({"kind": "CSIDriver", "metadata": {"name": "ebs.csi.aws.com"}, "spec": {"fsGroupPolicy": "File"}})
        result = self._invoke("status")
        self.assertIn("fsGroupPolicy: File", result.output)

    def test_cleanup_is_idempotent(self) -> None:
        for _ in range(2):
            result = self._invoke("cleanup")
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertIn("Cleanup complete.", result.output)

    def test_deploy_creates_identity_and_workload(self) -> None:
        result = self._invoke("deploy")
        self.assertEqual(result.exit_code, 0, result.output)
        self.store.get("Namespace", NS)
        self.store.get("ServiceAccount", "spark-driver", NS)
        self.store.get("Role", "spark-driver-role", NS)
        binding = self.store.get("RoleBinding", "spark-driver-binding", NS)
        self.assertEqual(binding["subjects"][0]["name"], "spark-driver")
        app = self.store.get("SparkApplication", "docling-spark-job", NS)
        self.assertEqual(app["spec"]["driver"]["serviceAccount"], "spark-driver")
        self.assertIn(f"-n {NS}", result.output)

    def test_deploy_twice_replaces_the_workload(self) -> None:
        self.assertEqual(self._invoke("deploy").exit_code, 0)
        first = self.store.get("SparkApplication", "docling-spark-job", NS)["metadata"]["uid"]
        result = self._invoke("deploy")
        self.assertEqual(result.exit_code, 0, result.output)
        second = self.store.get("SparkApplication", "docling-spark-job", NS)["metadata"]["uid"]
        self.assertNotEqual(first, second)

    def test_no_command_deploys(self) -> None:
        result = self._invoke("--namespace", "other-ns")
        self.assertEqual(result.exit_code, 0, result.output)
        app = self.store.get("SparkApplication", "docling-spark-job", "other-ns")
        self.assertEqual(app["metadata"]["namespace"], "other-ns")

    def test_help_lists_workflow(self) -> None:
        result = self._invoke("help")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Workflow", result.output)
        self.assertEqual(self.built, [])
