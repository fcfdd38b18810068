import logging

import typer

from kubestrap.commands import fail, load_config
from kubestrap.errors import KubestrapError
from kubestrap.modules.kubeadm.models import OutcomeStatus
from kubestrap.modules.kubeadm.workflow import ProvisioningWorkflow

logger = logging.getLogger(__name__)

app = typer.Typer(help="Remove Kubernetes from this host")

STATUS_MARKS = {
    OutcomeStatus.OK: "✓",
    OutcomeStatus.SKIPPED: "-",
    OutcomeStatus.FAILED: "✗",
}


def _decline(question: str) -> bool:
    return False


def _ask(question: str) -> bool:
    return typer.confirm(question, default=False)


@app.command("node")
def node(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt and keep optional packages"),
):
    """
    Remove Kubernetes, the container runtime and Cilium from this host.

    Every step is best effort; failures are listed at the end but do not
    stop the remaining steps.
    """
    if not yes:
        typer.echo("⚠️  This will completely remove Kubernetes and all associated components!")
        typer.echo("This action cannot be undone. All cluster data will be lost.")
        if not typer.confirm("Are you sure you want to proceed?", default=False):
            typer.echo("Uninstall cancelled.")
            raise typer.Exit(code=0)

    config = load_config()
    try:
        report = ProvisioningWorkflow(config).uninstall(confirm=_decline if yes else _ask)
    except KubestrapError as e:
        fail(e)

    for outcome in report.outcomes:
        reason = f": {outcome.reason}" if outcome.reason else ""
        typer.echo(f"  {STATUS_MARKS[outcome.status]} {outcome.step}{reason}")

    summary = report.summary()
    typer.echo(f"\n{summary['ok']} ok, {summary['skipped']} skipped, {summary['failed']} failed "
               f"in {summary['duration']}s")
    if not report.clean:
        typer.echo("⚠️  Some steps failed; see the list above.")
    typer.echo("Kubernetes cluster removal completed. Swap is still disabled; re-enable it with 'swapon -a' if needed.")
