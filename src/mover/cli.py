from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import typer
import yaml

from src.common.config import Settings, load_settings
from src.common.errors import ClusterError
from src.provisioner.descriptor import WorkloadDescriptor
from src.provisioner.provisioner import ResourceProvisioner
from src.provisioner.resources import DEPLOY_LABELS, AuxiliaryResourceSet
from src.store.base import ResourceStore, is_pod_ready
from src.store.kubectl import KubectlStore
from src.watcher.predicates import lookup
from src.worker import transfer

LOGGER = logging.getLogger(__name__)

CSI_DRIVER = "ebs.csi.aws.com"

USAGE = """Usage: spark-mover [OPTIONS] COMMAND [ARGS]

Commands:
  deploy              Create the namespace, driver identity and workload (default)
  upload <dir>        Upload a local directory to the input PVC
  download <dir>      Download the output PVC into a local directory
  status              Show PVCs, workloads and pods
  cleanup             Delete the helper pods
  help                Show this message

Workflow:
  1. spark-mover upload ./my-pdfs
  2. spark-mover deploy
  3. spark-mover status
  4. spark-mover download ./results
  5. spark-mover cleanup
"""

UPLOAD_USAGE = "Usage: spark-mover upload <local-directory>"

app = typer.Typer(help="Move data between local directories and the workload's volume claims.")


@dataclass
class CliState:
    settings: Settings


def build_store(settings: Settings) -> ResourceStore:
    return KubectlStore(settings.resolved_cli, context=settings.context)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="YAML run configuration."),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Target namespace."),
    context: Optional[str] = typer.Option(None, "--context", help="Cluster context to use."),
    cli: Optional[str] = typer.Option(None, "--cli", help="Cluster CLI binary (oc or kubectl)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s: %(message)s")
    try:
        settings = load_settings(config, namespace=namespace, context=context, cli=cli)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    ctx.obj = CliState(settings)
    if ctx.invoked_subcommand is None:
        _deploy(settings)


@app.command()
def deploy(ctx: typer.Context) -> None:
    """Create the namespace, driver identity and workload descriptor."""

    _deploy(_state(ctx).settings)


@app.command()
def upload(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Argument(None, help="Local directory to upload."),
) -> None:
    """Upload a local directory to the input claim."""

    if directory is None:
        typer.echo(UPLOAD_USAGE, err=True)
        raise typer.Exit(code=1)
    if not directory.is_dir():
        typer.echo(UPLOAD_USAGE, err=True)
        _fail(f"Directory '{directory}' does not exist")

    settings = _state(ctx).settings
    typer.echo(f"Uploading files from '{directory}' to PVC '{settings.input_claim}'...")
    try:
        session = transfer.upload(build_store(settings), settings, directory)
    except ClusterError as exc:
        _fail(str(exc))
    typer.echo("Files to upload:")
    for name in session.local_files:
        typer.echo(f"  {name}")
    typer.echo("Files in PVC:")
    typer.echo(session.remote_listing or "")
    if session.identity:
        typer.echo(f"Uploader identity: {session.identity.strip()}")
    typer.echo("Upload complete.")
    if session.leaked_worker:
        typer.echo(f"Warning: helper pod '{transfer.UPLOADER_POD}' may still be running", err=True)


@app.command()
def download(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Argument(None, help="Local directory to download into."),
) -> None:
    """Download the output claim into a local directory."""

    if directory is None:
        typer.echo("Usage: spark-mover download <local-directory>", err=True)
        raise typer.Exit(code=1)

    settings = _state(ctx).settings
    typer.echo(f"Downloading results from PVC '{settings.output_claim}' to '{directory}'...")
    try:
        session = transfer.download(build_store(settings), settings, directory)
    except ClusterError as exc:
        _fail(str(exc))
    if session.remote_listing:
        typer.echo("Files in output PVC:")
        typer.echo(session.remote_listing)
    typer.echo("Downloaded files:")
    for name in session.local_files:
        typer.echo(f"  {name}")
    typer.echo("Download complete.")
    if session.leaked_worker:
        typer.echo(f"Warning: helper pod '{transfer.DOWNLOADER_POD}' may still be running", err=True)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show claims, workload descriptors and pods; never fails."""

    settings = _state(ctx).settings
    store = build_store(settings)
    typer.echo(f"Status of namespace '{settings.namespace}':")
    _section(store, settings, "PersistentVolumeClaim", "PVCs", [
        ("NAME", lambda o: lookup(o, "metadata.name")),
        ("STATUS", lambda o: lookup(o, "status.phase")),
        ("CAPACITY", lambda o: lookup(o, "status.capacity.storage")),
    ])
    _section(store, settings, "SparkApplication", "SparkApplications", [
        ("NAME", lambda o: lookup(o, "metadata.name")),
        ("STATE", lambda o: lookup(o, "status.applicationState.state")),
    ])
    _section(store, settings, "Pod", "pods", [
        ("NAME", lambda o: lookup(o, "metadata.name")),
        ("PHASE", lambda o: lookup(o, "status.phase")),
        ("READY", lambda o: "yes" if is_pod_ready(o) else "no"),
    ])
    if Path(settings.resolved_cli).name == "oc":
        try:
            driver = store.get("CSIDriver", CSI_DRIVER)
        except ClusterError as exc:
            LOGGER.debug("CSIDriver lookup failed: %s", exc)
            typer.echo(f"CSI driver {CSI_DRIVER} fsGroupPolicy: Could not check")
        else:
            policy = lookup(driver, "spec.fsGroupPolicy") or "(default)"
            typer.echo(f"CSI driver {CSI_DRIVER} fsGroupPolicy: {policy}")


@app.command()
def cleanup(ctx: typer.Context) -> None:
    """Delete the helper pods; safe to run repeatedly."""

    settings = _state(ctx).settings
    results = transfer.cleanup_helpers(build_store(settings), settings)
    for name, result in results.items():
        typer.echo(f"{name}: {result.replace('_', ' ')}")
    typer.echo("Cleanup complete.")


@app.command("help")
def show_help() -> None:
    """Show the available commands and the usual workflow."""

    typer.echo(USAGE)


def _deploy(settings: Settings) -> None:
    store = build_store(settings)
    provisioner = ResourceProvisioner(store, retries=settings.transport_retries)
    try:
        provisioner.ensure_namespace(settings.namespace, _namespace_labels(settings.manifest("namespace.yaml")))
        resources = AuxiliaryResourceSet.fixed(settings.namespace, settings.service_account)
        for obj in resources.creation_order():
            provisioner.apply(obj)
        template = WorkloadDescriptor.load(settings.manifest("docling-spark-app.yaml"))
        prepared = template.prepared(namespace=settings.namespace, service_account=settings.service_account)
        provisioner.replace(
            prepared.document,
            timeout=settings.delete_timeout,
            poll_interval=settings.poll_interval,
        )
    except ClusterError as exc:
        _fail(str(exc))

    cli = settings.resolved_cli
    ns = settings.namespace
    typer.echo("Deployment complete.")
    typer.echo("Next steps:")
    typer.echo(f"  Watch status:   {cli} get sparkapplications -n {ns} -w")
    typer.echo(f"  Driver logs:    {cli} logs -f -l spark-role=driver -n {ns}")
    typer.echo(f"  Spark UI:       {cli} port-forward -n {ns} svc/{prepared.name}-ui-svc 4040:4040")


def _namespace_labels(path: Path) -> Dict[str, str]:
    if not path.exists():
        return dict(DEPLOY_LABELS)
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        _fail(f"{path} is malformed: {exc}")
    labels = (doc.get("metadata") or {}).get("labels") if isinstance(doc, dict) else None
    return dict(labels) if isinstance(labels, dict) else dict(DEPLOY_LABELS)


def _section(
    store: ResourceStore,
    settings: Settings,
    kind: str,
    title: str,
    columns: Sequence[tuple],
) -> None:
    typer.echo("")
    typer.echo(f"{title}:")
    try:
        items = store.list(kind, settings.namespace)
    except ClusterError as exc:
        LOGGER.debug("Listing %s failed: %s", kind, exc)
        items = []
    if not items:
        typer.echo(f"No {title} found")
        return
    rows = [[str(getter(item) or "") for _, getter in columns] for item in items]
    typer.echo(_table([header for header, _ in columns], rows))


def _table(headers: List[str], rows: List[List[str]]) -> str:
    widths = [max(len(headers[i]), *(len(row[i]) for row in rows)) for i in range(len(headers))]
    lines = ["  ".join(cell.ljust(widths[i]) for i, cell in enumerate(line)).rstrip() for line in [headers, *rows]]
    return "\n".join(lines)


if __name__ == "__main__":  # pragma: no cover
    app()
