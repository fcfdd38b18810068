import logging
import os
from typing import Optional

import typer

from kubestrap.commands import fail, load_config
from kubestrap.errors import InvalidAddressError, KubestrapError
from kubestrap.modules.kubeadm.preflight import validate_address
from kubestrap.modules.kubeadm.workflow import ProvisioningWorkflow

logger = logging.getLogger(__name__)

app = typer.Typer(help="Install Kubernetes on this host")


@app.command("control-plane")
def control_plane():
    """
    Provision this host as a single-node control plane.

    Cleans up earlier installations, installs containerd, runc and the
    Kubernetes packages, runs kubeadm init and installs Cilium.
    """
    config = load_config()
    typer.echo("🚀 Installing Kubernetes control plane on this host")
    try:
        ProvisioningWorkflow(config).run_control_plane()
    except KubestrapError as e:
        fail(e)
    typer.echo("✅ Kubernetes cluster installation completed")


@app.command("worker")
def worker(
    control_plane_ip: Optional[str] = typer.Argument(None, help="IPv4 address of the control plane node"),
):
    """
    Prepare this host as a worker node.

    The CONTROL_PLANE_IP environment variable overrides the argument;
    without either the address is prompted for. Joining the cluster
    stays a manual step.
    """
    control_plane_ip = os.environ.get("CONTROL_PLANE_IP") or control_plane_ip
    if not control_plane_ip:
        typer.echo("Control plane IP not provided.")
        control_plane_ip = typer.prompt("Enter control plane IP address", default="", show_default=False)

    try:
        validate_address(control_plane_ip)
    except InvalidAddressError as e:
        fail(e)

    config = load_config()
    typer.echo(f"Using control plane IP: {control_plane_ip}")
    try:
        ProvisioningWorkflow(config).run_worker(control_plane_ip)
    except KubestrapError as e:
        fail(e)
    typer.echo("✅ Worker node prepared. Run the join command from the control plane to add it to the cluster.")
