"""Editing of /etc/hosts entries for the control plane alias."""
import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, List, Optional, Union

from kubestrap.utils import atomic_write_text
from .models import HostEntry

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup."


def line_names(line: str) -> List[str]:
    """Names on a hosts line, or [] for comments and blank lines."""
    content = line.split('#', 1)[0].strip()
    if not content:
        return []
    return content.split()[1:]


class HostsFile:
    """A hosts file edited with atomic replacement."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        return self.path.read_text().splitlines()

    def _write_lines(self, lines: List[str]) -> None:
        text = '\n'.join(lines)
        atomic_write_text(self.path, text + '\n' if text else '', mode=None if self.path.exists() else 0o644)

    def upsert(self, entries: Iterable[HostEntry]) -> None:
        """Make ``entries`` the only mappings for their hostnames.

        Every non-comment line naming one of the hostnames is dropped and the
        new entries are placed at the top of the file, so lookups hit them first.
        """
        entries = list(entries)
        names = {entry.hostname for entry in entries}
        kept = [line for line in self.read_lines() if not names.intersection(line_names(line))]
        self._write_lines([entry.render() for entry in entries] + kept)
        for entry in entries:
            logger.info(f"✅ {self.path}: {entry.render()}")

    def remove_name(self, name: str) -> int:
        """Remove every line naming ``name``; returns the number of lines removed."""
        lines = self.read_lines()
        kept = [line for line in lines if name not in line_names(line)]
        removed = len(lines) - len(kept)
        if removed:
            self._write_lines(kept)
            logger.info(f"Removed {removed} entr{'y' if removed == 1 else 'ies'} for {name} from {self.path}")
        return removed

    def backups(self) -> List[Path]:
        """Existing timestamped backups, oldest first."""
        pattern = f"{self.path.name}{BACKUP_SUFFIX}*"
        return sorted(self.path.parent.glob(pattern), key=lambda p: p.name)

    def backup(self, timestamp: Optional[str] = None) -> Optional[Path]:
        """Copy the file to ``<path>.backup.<timestamp>``."""
        if not self.path.exists():
            return None
        timestamp = timestamp or time.strftime('%Y%m%d%H%M%S')
        target = self.path.with_name(f"{self.path.name}{BACKUP_SUFFIX}{timestamp}")
        shutil.copy2(self.path, target)
        logger.info(f"Backed up {self.path} to {target}")
        return target

    def restore(self, backup: Union[str, Path]) -> None:
        atomic_write_text(self.path, Path(backup).read_text())
        logger.info(f"Restored {self.path} from {backup}")
