import logging
import traceback

import typer

from kubestrap.config import get_config
from kubestrap.errors import KubestrapError

logger = logging.getLogger(__name__)


def fail(error: Exception) -> None:
    """Report ``error`` and exit with status 1; the traceback is shown only with --debug."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.error(f"Unhandled exception: {error}\n{traceback.format_exc()}")
    typer.echo(f"❌ {error}", err=True)
    raise typer.Exit(code=1)


def load_config():
    try:
        return get_config()
    except (FileNotFoundError, ValueError) as e:
        fail(e)


__all__ = ['fail', 'load_config', 'KubestrapError']
