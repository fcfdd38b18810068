import logging

import typer

from kubestrap.commands import fail, load_config
from kubestrap.errors import KubestrapError
from kubestrap.modules.kubeadm.host import detect_host_profile
from kubestrap.modules.kubeadm.preflight import validate_host, validate_privileges

logger = logging.getLogger(__name__)

app = typer.Typer(help="Check this host before installing")


@app.command("host")
def host():
    """
    Run the preflight checks (privileges, CPU, RAM, architecture) only.
    """
    config = load_config()
    try:
        if config.host.require_root:
            validate_privileges()
        profile = detect_host_profile()
        validate_host(profile, config.host)
    except KubestrapError as e:
        fail(e)

    typer.echo(
        f"✅ Host meets requirements: {profile.cpu_count} CPUs, {profile.ram_gib:.1f}GiB RAM, "
        f"{profile.os_family}/{profile.architecture.value}"
    )
