import json
import logging

import typer
import yaml

from kubestrap.commands import fail, load_config
from kubestrap.errors import KubestrapError
from kubestrap.modules.kubeadm.versions import VersionResolver

logger = logging.getLogger(__name__)

app = typer.Typer(help="Inspect component versions")


@app.command("show")
def show(
    output: str = typer.Option("yaml", "--output", "-o", help="Output format (yaml/json)"),
):
    """
    Resolve the versions an install would use, without touching the host.
    """
    if output not in ("yaml", "json"):
        fail(ValueError(f"Unsupported output format: {output}"))

    config = load_config()
    try:
        versions = VersionResolver.from_config(config).resolve_all()
    except KubestrapError as e:
        fail(e)

    data = versions.as_dict()
    if output == "json":
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip())
