"""Data models for kubeadm cluster provisioning."""

import re
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


GIB = 1024 ** 3

VERSION_PATTERN = re.compile(r'^\d+\.\d+(\.\d+)?([-+.][0-9A-Za-z.-]+)?$')


class Architecture(str, Enum):
    """CPU architectures with published runtime and CLI builds."""
    AMD64 = 'amd64'
    ARM64 = 'arm64'
    ARM = 'arm'


class NodeRole(str, Enum):
    """Node roles in the cluster."""
    CONTROL_PLANE = 'control-plane'
    WORKER = 'worker'


class ProvisioningPhase(str, Enum):
    """Phases of a provisioning run."""
    NOT_STARTED = 'not_started'
    PREFLIGHT = 'preflight'
    CLEANUP = 'cleanup'
    RESOLVE = 'resolve'
    INSTALL = 'install'
    BOOTSTRAP = 'bootstrap'
    SHELL = 'shell'
    COMPLETED = 'completed'
    FAILED = 'failed'


class OutcomeStatus(str, Enum):
    OK = 'ok'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass(frozen=True)
class HostProfile:
    """Resources and platform of the local host."""
    cpu_count: int
    ram_bytes: int
    os_family: str
    architecture: Architecture

    @property
    def ram_gib(self) -> float:
        return self.ram_bytes / GIB


@dataclass(frozen=True)
class VersionSet:
    """Resolved component versions, all bare semantic versions."""
    runtime_version: str
    shim_version: str
    orchestrator_version: str
    networking_plugin_version: str
    networking_cli_version: str
    sandbox_image_version: str

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not value or not isinstance(value, str):
                raise ValueError(f"{f.name} must be a non-empty version string")

    @property
    def orchestrator_minor(self) -> str:
        """major.minor of the Kubernetes version, e.g. '1.33'."""
        return minor_version(self.orchestrator_version)

    def as_dict(self) -> Dict[str, str]:
        return {
            'containerd': self.runtime_version,
            'runc': self.shim_version,
            'kubernetes': self.orchestrator_version,
            'cilium': self.networking_plugin_version,
            'cilium-cli': self.networking_cli_version,
            'pause': self.sandbox_image_version,
        }


@dataclass(frozen=True)
class ClusterEndpoint:
    """Where the control plane can be reached."""
    control_plane_address: str
    control_plane_hostname: str
    pod_subnet: str
    api_version: str = ''
    alias: str = 'k8scp'
    api_port: int = 6443

    @property
    def endpoint(self) -> str:
        return f"{self.alias}:{self.api_port}"


@dataclass(frozen=True)
class HostEntry:
    """One address to name mapping in the hosts file."""
    address: str
    hostname: str

    def render(self) -> str:
        return f"{self.address} {self.hostname}"


@dataclass(frozen=True)
class InvokingUser:
    """The user that started kubestrap, even when running under sudo."""
    name: str
    uid: int
    gid: int
    home: str
    shell: str = ''


@dataclass
class Outcome:
    """Result of one best-effort cleanup step."""
    step: str
    status: OutcomeStatus
    reason: str = ''

    @classmethod
    def ok(cls, step: str, reason: str = '') -> 'Outcome':
        return cls(step, OutcomeStatus.OK, reason)

    @classmethod
    def skipped(cls, step: str, reason: str) -> 'Outcome':
        return cls(step, OutcomeStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, step: str, reason: str) -> 'Outcome':
        return cls(step, OutcomeStatus.FAILED, reason)

    def __str__(self) -> str:
        text = f"[{self.status.value}] {self.step}"
        return f"{text}: {self.reason}" if self.reason else text


@dataclass
class CleanupReport:
    """Aggregated outcomes of a cleanup run."""
    outcomes: List[Outcome] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def add(self, outcome: Outcome) -> Outcome:
        self.outcomes.append(outcome)
        return outcome

    def _with_status(self, status: OutcomeStatus) -> List[Outcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> List[Outcome]:
        return self._with_status(OutcomeStatus.OK)

    @property
    def skipped(self) -> List[Outcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> List[Outcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def clean(self) -> bool:
        return not self.failed

    def finish(self) -> None:
        self.end_time = time.time()

    def summary(self) -> Dict[str, Any]:
        duration = (self.end_time or time.time()) - self.start_time
        return {
            'ok': len(self.succeeded),
            'skipped': len(self.skipped),
            'failed': len(self.failed),
            'duration': round(duration, 1),
        }


@dataclass
class ProvisioningState:
    """Tracks the state of a provisioning run."""
    role: NodeRole
    phase: ProvisioningPhase = ProvisioningPhase.NOT_STARTED
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)

    def update_phase(self, phase: ProvisioningPhase) -> None:
        """Update the provisioning phase."""
        self.phase = phase
        self.metadata[f'phase_{phase.value}_start'] = time.time()

    def add_error(self, error: str) -> None:
        """Add an error message and mark the run failed."""
        self.errors.append(error)
        self.phase = ProvisioningPhase.FAILED


def normalize_version(value: Optional[str]) -> str:
    """Strip whitespace and a leading 'v' from a version tag."""
    if not value:
        return ''
    value = value.strip()
    if value[:1] in ('v', 'V') and value[1:2].isdigit():
        value = value[1:]
    return value


def is_version(value: str) -> bool:
    return bool(value) and bool(VERSION_PATTERN.match(value))


def parse_minor(version: str) -> tuple:
    """Return (major, minor) as integers.

    Raises:
        ValueError: If the version has no numeric major.minor
    """
    match = re.match(r'^(\d+)\.(\d+)', normalize_version(version))
    if not match:
        raise ValueError(f"Version {version!r} has no major.minor component")
    return int(match.group(1)), int(match.group(2))


def minor_version(version: str) -> str:
    major, minor = parse_minor(version)
    return f"{major}.{minor}"
