import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from kubestrap import __version__
from kubestrap.commands import install, uninstall, validate, versions
from kubestrap.config import KubestrapConfig, set_config
from kubestrap.logging import setup_logging

app = typer.Typer(help="kubestrap - single-node kubeadm cluster provisioning")

# Global debug flag
debug_mode = False

# Add all command groups
app.add_typer(install.app, name="install")
app.add_typer(uninstall.app, name="uninstall")
app.add_typer(versions.app, name="versions")
app.add_typer(validate.app, name="validate")


def _version_callback(value: bool):
    if value:
        typer.echo(f"kubestrap {__version__}")
        raise typer.Exit()


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a kubestrap YAML config file"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True,
                                 help="Show the version and exit"),
):
    """kubestrap - install and remove single-node Kubernetes clusters with kubeadm."""
    global debug_mode
    debug_mode = debug

    try:
        settings = KubestrapConfig.load(config)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
    set_config(settings)

    setup_logging(
        debug_mode=debug,
        level=settings.logging.level,
        log_file=settings.logging.file,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
    )
    if debug:
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
