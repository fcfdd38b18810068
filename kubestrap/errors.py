"""Exception hierarchy for kubestrap."""
from typing import List, Optional


class KubestrapError(Exception):
    """Base class for all kubestrap failures."""
    pass


class PreflightError(KubestrapError):
    """Raised when the host does not meet the minimum requirements."""
    pass


class InvalidAddressError(KubestrapError):
    """Raised when a control plane address is not an IPv4 dotted quad."""
    pass


class ResolutionError(KubestrapError):
    """Raised by a single resolution strategy that could not produce a version."""
    pass


class VersionResolutionError(KubestrapError):
    """Raised when no strategy could resolve a version every later step needs."""
    pass


class InstallError(KubestrapError):
    """Raised when an install step fails and the run must abort."""
    pass


class CommandError(KubestrapError):
    """Raised when an external command exits non-zero and the caller checks it."""

    def __init__(self, command: List[str], returncode: int, stdout: str = '', stderr: str = '',
                 message: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            message = f"Command '{' '.join(command)}' failed with status {returncode}"
            detail = (stderr or stdout).strip()
            if detail:
                message += f": {detail.splitlines()[-1]}"
        super().__init__(message)


class ChecksumMismatchError(InstallError):
    """Raised when a downloaded artifact does not match its published checksum."""

    def __init__(self, artifact: str, expected: str, actual: str):
        self.artifact = artifact
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum verification failed for {artifact}: expected {expected}, got {actual}"
        )
