from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import Optional

import typer

from src.common.config import Settings, load_settings
from src.common.errors import ClusterError
from src.provisioner.descriptor import WorkloadDescriptor
from src.store.base import ResourceStore
from src.store.kubectl import KubectlStore

from .operator_checks import check_operator
from .report import ScenarioReport
from .scenario import SubmissionScenario

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Verify workload submission and operator installation against a live cluster.")


def build_store(settings: Settings) -> ResourceStore:
    return KubectlStore(settings.resolved_cli, context=settings.context)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s: %(message)s")


def _settings(config: Optional[Path], **overrides) -> Settings:
    try:
        return load_settings(config, **overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _finish(report: ScenarioReport) -> None:
    typer.echo(report.subject)
    for line in report.lines():
        typer.echo(f"  {line}")
    if not report.passed:
        typer.echo("FAILED", err=True)
        raise typer.Exit(code=1)
    typer.echo("PASSED")


@app.command()
def submission(
    manifest: Path = typer.Option(
        Path("k8s/docling-spark-app.yaml"),
        "--manifest",
        "-m",
        help="Workload descriptor template to submit.",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML run configuration."),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Namespace to submit into."),
    context: Optional[str] = typer.Option(None, "--context", help="Cluster context to use."),
    cli: Optional[str] = typer.Option(None, "--cli", help="Cluster CLI binary (oc or kubectl)."),
    cleanup: Optional[bool] = typer.Option(
        None,
        "--cleanup/--keep",
        help="Delete (default) or keep the resources the run creates.",
    ),
    observe_pods: bool = typer.Option(
        True,
        "--observe-pods/--static-only",
        help="Wait for the driver and executor pods after submission.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Submit the descriptor under unique names, check it and watch its pods."""

    _configure_logging(verbose)
    settings = _settings(config, namespace=namespace, context=context, cli=cli, cleanup=cleanup)
    try:
        template = WorkloadDescriptor.load(manifest)
    except ClusterError as exc:
        raise typer.BadParameter(str(exc)) from exc

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        report = SubmissionScenario(
            build_store(settings),
            settings,
            template,
            observe_pods=observe_pods,
            cancel=cancel,
        ).run()
    finally:
        signal.signal(signal.SIGINT, previous)
    _finish(report)


@app.command()
def operator(
    release: str = typer.Option("spark-operator-openshift", "--release", help="Operator release name."),
    release_namespace: str = typer.Option(
        "spark-operator-openshift",
        "--release-namespace",
        help="Namespace the operator is installed in.",
    ),
    expected_job_namespace: str = typer.Option(
        "docling-spark",
        "--expected-job-namespace",
        help="Namespace the operator is expected to watch.",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML run configuration."),
    context: Optional[str] = typer.Option(None, "--context", help="Cluster context to use."),
    cli: Optional[str] = typer.Option(None, "--cli", help="Cluster CLI binary (oc or kubectl)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Check an installed operator release: readiness, fsGroup, watched namespaces, webhooks."""

    _configure_logging(verbose)
    settings = _settings(config, context=context, cli=cli)
    report = check_operator(build_store(settings), settings, release, release_namespace, expected_job_namespace)
    _finish(report)


if __name__ == "__main__":  # pragma: no cover
    app()
