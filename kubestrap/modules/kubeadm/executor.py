"""Local command execution.

Every external tool (apt, systemctl, kubeadm, crictl, cilium, ...) is invoked
through a CommandRunner so that callers see one result type and tests can
substitute a fake.
"""
import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from kubestrap.errors import CommandError

logger = logging.getLogger(__name__)

NONINTERACTIVE_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}


@dataclass
class CommandResult:
    """Exit status and captured output of a finished command."""
    command: List[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for diagnostics."""
        text = '\n'.join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)
        return '\n'.join(text.splitlines()[-lines:])


class CommandRunner:
    """Runs commands on the local host and waits for them to finish."""

    def __init__(self, timeout: int = 600, env: Optional[Dict[str, str]] = None):
        """Initialize the runner.

        Args:
            timeout: Default timeout in seconds for every command
            env: Extra environment variables applied to every command
        """
        self.timeout = timeout
        self.env = dict(NONINTERACTIVE_ENV)
        if env:
            self.env.update(env)

    def run(self, command: Sequence[str], check: bool = True, timeout: Optional[float] = None,
            input: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> CommandResult:
        """Execute a command.

        Args:
            command: Argument vector; no shell is involved
            check: If True, raise CommandError on a non-zero exit status
            timeout: Command timeout in seconds (default: runner timeout)
            input: Text passed on stdin
            env: Extra environment variables for this command only

        Returns:
            CommandResult: exit status and captured output

        Raises:
            CommandError: If the command fails and check is True, or times out
        """
        command = [str(part) for part in command]
        timeout = self.timeout if timeout is None else timeout
        start_time = time.time()
        logger.debug(f"[exec] {' '.join(command)}")

        result = self._execute(command, timeout, input, env)

        duration = time.time() - start_time
        logger.debug(f"[exec] {command[0]} exited {result.returncode} after {duration:.2f}s")

        if check and not result.ok:
            raise CommandError(command, result.returncode, result.stdout, result.stderr)
        return result

    def _execute(self, command: List[str], timeout: float, input: Optional[str],
                 env: Optional[Dict[str, str]]) -> CommandResult:
        merged_env = dict(os.environ)
        merged_env.update(self.env)
        if env:
            merged_env.update(env)

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout,
                env=merged_env,
            )
        except FileNotFoundError:
            return CommandResult(command, 127, '', f"{command[0]}: command not found")
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                command, -1,
                message=f"Command '{' '.join(command)}' timed out after {timeout}s"
            ) from e

        return CommandResult(command, completed.returncode, completed.stdout or '', completed.stderr or '')

    def which(self, binary: str) -> Optional[str]:
        """Return the full path of ``binary`` if it is on PATH."""
        return shutil.which(binary)

    def has(self, binary: str) -> bool:
        return self.which(binary) is not None
