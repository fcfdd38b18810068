"""kubectl alias and completion wiring for the invoking user's shell."""
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from kubestrap.errors import CommandError
from .executor import CommandRunner
from .models import InvokingUser

logger = logging.getLogger(__name__)

ALIAS_LINE = "alias k='kubectl'"


@dataclass(frozen=True)
class ShellProfile:
    """How kubectl completion is wired into one shell."""
    name: str
    rc_path: str
    completion_line: str
    alias_completion_line: Optional[str] = None
    completion_package: Optional[str] = None

    def rc_file(self, home: str) -> Path:
        return Path(home) / self.rc_path


SHELL_PROFILES: Dict[str, ShellProfile] = {
    'bash': ShellProfile(
        name='bash',
        rc_path='.bashrc',
        completion_line='source <(kubectl completion bash)',
        alias_completion_line='complete -o default -F __start_kubectl k',
        completion_package='bash-completion',
    ),
    'zsh': ShellProfile(
        name='zsh',
        rc_path='.zshrc',
        completion_line='source <(kubectl completion zsh)',
        alias_completion_line='compdef __start_kubectl k',
        completion_package='zsh-completions',
    ),
    'fish': ShellProfile(
        name='fish',
        rc_path='.config/fish/config.fish',
        completion_line='kubectl completion fish | source',
    ),
}

# Lines left behind by earlier integrations, removed on uninstall
STRIP_PATTERNS = [
    re.compile(r"alias k=.kubectl."),
    re.compile(r"kubectl completion"),
    re.compile(r"complete.*__start_kubectl k"),
    re.compile(r"compdef __start_kubectl k"),
]


def detect_profile(user: InvokingUser, environ: Optional[Dict[str, str]] = None) -> ShellProfile:
    """Pick the shell profile for the user's login shell, defaulting to bash."""
    environ = os.environ if environ is None else environ
    shell = user.shell or environ.get('SHELL', '')
    name = os.path.basename(shell)
    profile = SHELL_PROFILES.get(name)
    if profile is None:
        logger.warning(f"⚠️  Unsupported shell {name or '(unknown)'}, using bash settings")
        return SHELL_PROFILES['bash']
    return profile


def _chown(path: Path, user: InvokingUser) -> None:
    try:
        os.chown(path, user.uid, user.gid)
    except PermissionError as e:
        logger.warning(f"Could not change owner of {path} to {user.name}: {e}")


def install_completion_package(runner: CommandRunner, profile: ShellProfile) -> bool:
    """Install the shell's completion package; failures are only reported."""
    if not profile.completion_package:
        return True
    try:
        runner.run(['apt-get', 'install', '-y', profile.completion_package])
        return True
    except CommandError as e:
        logger.warning(f"⚠️  Could not install {profile.completion_package}: {e}")
        return False


def integrate(profile: ShellProfile, user: InvokingUser, runner: Optional[CommandRunner] = None) -> List[str]:
    """Add the kubectl alias and completion lines to the user's rc file.

    Lines already present are left alone, so repeated runs do not duplicate
    anything.

    Returns:
        List[str]: The lines that were appended
    """
    if runner is not None:
        install_completion_package(runner, profile)

    rc_file = profile.rc_file(user.home)
    rc_file.parent.mkdir(parents=True, exist_ok=True)
    existing = rc_file.read_text() if rc_file.exists() else ''

    wanted = [
        (ALIAS_LINE, ALIAS_LINE),
        ('kubectl completion', profile.completion_line),
    ]
    if profile.alias_completion_line:
        wanted.append(('__start_kubectl k', profile.alias_completion_line))

    added = [line for marker, line in wanted if marker not in existing]
    if added:
        prefix = '' if not existing or existing.endswith('\n') else '\n'
        with open(rc_file, 'a') as f:
            f.write(prefix + '\n'.join(added) + '\n')
        logger.info(f"✅ Added {len(added)} line(s) to {rc_file}")
    else:
        logger.info(f"{rc_file} already has kubectl completion")

    _chown(rc_file, user)
    return added


def strip_profile(rc_file: Path, patterns: Optional[List[re.Pattern]] = None,
                  timestamp: Optional[str] = None,
                  backup: Callable[[Path, Path], object] = shutil.copy2) -> Optional[int]:
    """Back up ``rc_file`` and remove kubectl integration lines from it.

    Returns:
        Optional[int]: Lines removed, or None when the file does not exist
    """
    rc_file = Path(rc_file)
    if not rc_file.exists():
        return None
    patterns = patterns or STRIP_PATTERNS

    timestamp = timestamp or time.strftime('%Y%m%d%H%M%S')
    backup(rc_file, rc_file.with_name(f"{rc_file.name}.backup.{timestamp}"))

    lines = rc_file.read_text().splitlines(keepends=True)
    kept = [line for line in lines if not any(p.search(line) for p in patterns)]
    removed = len(lines) - len(kept)
    if removed:
        rc_file.write_text(''.join(kept))
    return removed
