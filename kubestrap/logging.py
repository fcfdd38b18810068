"""Logging configuration for the kubestrap package."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

NOISY_LOGGERS = ('urllib3', 'kubernetes', 'requests')


def setup_logging(debug_mode: bool = False, level: str = "INFO", log_file: Optional[str] = None,
                  max_size_mb: int = 100, backup_count: int = 5) -> None:
    """Configure root logging for a CLI run.

    Args:
        debug_mode: Force DEBUG level and keep library loggers verbose
        level: Level name used when not in debug mode
        log_file: Optional path of a rotating log file
        max_size_mb: Size in MB before the log file rotates
        backup_count: Number of rotated files to keep
    """
    log_level = logging.DEBUG if debug_mode else getattr(logging, level.upper(), logging.INFO)
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        path = Path(log_file).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        ))

    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=DATE_FORMAT,
                        handlers=handlers, force=True)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
