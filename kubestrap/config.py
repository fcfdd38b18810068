"""Configuration management for kubestrap.

Configuration is loaded from the following sources, later ones winning:
1. Default values
2. The explicit --config file, or the first existing default path
3. Environment variables named KUBESTRAP_<SECTION>__<FIELD>
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from kubestrap.utils import merge_dicts

logger = logging.getLogger(__name__)

# Load environment variables from .env file if it exists
load_dotenv()

ENV_PREFIX = "KUBESTRAP_"
ENV_NESTED_DELIMITER = "__"

DEFAULT_CONFIG_PATHS = [
    Path("/etc/kubestrap/config.yaml"),
    Path("~/.config/kubestrap/config.yaml").expanduser(),
    Path("kubestrap.yaml").absolute(),
]


class HostRequirements(BaseModel):
    """Minimum host resources checked before any mutation."""
    min_cpus: int = Field(default=2, description="Minimum CPU cores")
    min_ram_bytes: int = Field(default=2 * 1024 ** 3, description="Minimum RAM in bytes")
    require_root: bool = Field(default=True, description="Refuse to run without root privileges")


class VersionConfig(BaseModel):
    """Version pins, static fallbacks and package details."""
    containerd: Optional[str] = Field(default=None, description="Pin containerd version")
    runc: Optional[str] = Field(default=None, description="Pin runc version")
    kubernetes: Optional[str] = Field(default=None, description="Pin Kubernetes version")
    cilium: Optional[str] = Field(default=None, description="Pin Cilium version")
    cilium_cli: Optional[str] = Field(default=None, description="Pin Cilium CLI version")
    pause: Optional[str] = Field(default=None, description="Pin pause image version")

    fallback_containerd: str = "2.1.3"
    fallback_runc: str = "1.3.0"
    fallback_kubernetes: str = "1.33.1"
    fallback_cilium: str = "1.17.5"
    fallback_cilium_cli: str = "0.18.5"

    package_revision: str = Field(default="1.1", description="Debian revision of the Kubernetes packages")
    github_token: Optional[str] = Field(default=None, description="Token for the GitHub API rate limit")

    def pin_for(self, component: str) -> Optional[str]:
        return getattr(self, component.replace('-', '_'), None)


class ClusterSettings(BaseModel):
    """Cluster-wide settings."""
    alias: str = Field(default="k8scp", description="Control plane alias in /etc/hosts")
    api_port: int = Field(default=6443, description="Kubernetes API server port")
    pod_subnet: str = Field(default="192.168.0.0/16", description="Pod network CIDR")
    pause_image: str = Field(default="registry.k8s.io/pause", description="Sandbox image repository")
    config_file: str = Field(default="kubeadm-config.yaml", description="kubeadm configuration document")
    init_log: str = Field(default="kubeadm-init.out", description="kubeadm init output log")


class PathsConfig(BaseModel):
    """Host file locations. Every absolute path is rebased onto ``root``."""
    root: Path = Field(default=Path("/"), description="Filesystem root the host paths live under")
    work_dir: Path = Field(default_factory=Path.cwd, description="Directory for generated cluster files")
    hosts_file: str = "/etc/hosts"
    sysctl_file: str = "/etc/sysctl.d/kubernetes.conf"
    modules_load_file: str = "/etc/modules-load.d/kubernetes.conf"
    ip_forward: str = "/proc/sys/net/ipv4/ip_forward"
    containerd_config: str = "/etc/containerd/config.toml"
    containerd_unit: str = "/etc/systemd/system/containerd.service"
    containerd_socket: str = "/run/containerd/containerd.sock"
    apt_sources: str = "/etc/apt/sources.list.d/kubernetes.list"
    apt_keyring: str = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    admin_conf: str = "/etc/kubernetes/admin.conf"
    prefix: str = "/usr/local"
    bin_dir: str = "/usr/local/bin"
    sbin_dir: str = "/usr/local/sbin"
    state_dirs: List[str] = Field(default_factory=lambda: [
        "/etc/cni/net.d",
        "/var/lib/cni",
        "/etc/kubernetes",
        "/var/lib/kubelet",
        "/var/lib/etcd",
        "/var/lib/dockershim",
        "/etc/systemd/system/kubelet.service.d",
        "/var/lib/containerd",
    ])

    @field_validator('work_dir')
    @classmethod
    def expand_work_dir(cls, v: Path) -> Path:
        """Expand the user home directory in the working directory."""
        return Path(v).expanduser()

    def host(self, path: Union[str, Path]) -> Path:
        """Map an absolute host path onto the configured root."""
        return self.root / str(path).lstrip("/")

    def work(self, name: str) -> Path:
        return self.work_dir / name


class TimeoutConfig(BaseModel):
    """Timeouts and bounded waits."""
    http: float = Field(default=15, description="HTTP request timeout in seconds")
    download: float = Field(default=300, description="Download timeout in seconds")
    command: int = Field(default=600, description="Default external command timeout in seconds")
    port_release_grace: float = Field(default=2, description="Wait after killing the API port holder")
    process_grace: float = Field(default=3, description="Wait after killing control plane daemons")
    cilium_uninstall: str = Field(default="10m", description="cilium uninstall --timeout value")
    cilium_wait: str = Field(default="5m", description="cilium status --wait-duration value")
    journal_lines: int = Field(default=20, description="Journal lines shown when a service fails")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    file: Optional[str] = Field(default=None, description="Path to log file (if None, logs to stderr)")
    max_size_mb: int = Field(default=100, description="Maximum log file size in MB before rotation")
    backup_count: int = Field(default=5, description="Number of backup log files to keep")


class KubestrapConfig(BaseModel):
    """kubestrap configuration."""
    host: HostRequirements = Field(default_factory=HostRequirements)
    versions: VersionConfig = Field(default_factory=VersionConfig)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None,
             environ: Optional[Mapping[str, str]] = None) -> 'KubestrapConfig':
        """Load configuration from file and environment variables."""
        config_data: Dict[str, Any] = {}

        if config_path:
            config_path = Path(config_path).expanduser().absolute()
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            config_data = cls._load_config_file(config_path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    logger.debug(f"Loaded config from {path}")
                    break

        overrides = env_overrides(os.environ if environ is None else environ)
        return cls(**merge_dicts(config_data, overrides))

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Collect KUBESTRAP_<SECTION>__<FIELD> variables into a nested dict."""
    overrides: Dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTED_DELIMITER)
        if len(parts) != 2 or not all(parts):
            continue
        section, field = parts
        overrides.setdefault(section, {})[field] = value
    return overrides


# Global configuration instance
_config: Optional[KubestrapConfig] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> KubestrapConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = KubestrapConfig.load(config_path)
    return _config


def set_config(config: Optional[KubestrapConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
