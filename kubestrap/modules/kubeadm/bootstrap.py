"""Cluster bootstrap for control plane and worker nodes."""
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from kubestrap.config import KubestrapConfig
from kubestrap.errors import InstallError
from kubestrap.utils import atomic_write_text
from . import cni
from .executor import CommandRunner
from .health import CONTROL_PLANE_TAINT, ClusterClient
from .host import detect_hostname, detect_primary_ipv4
from .hosts import HostsFile
from .installer.configuration import write_kubeadm_config
from .models import ClusterEndpoint, HostEntry, HostProfile, InvokingUser, VersionSet, parse_minor
from .versions import MetadataClient

logger = logging.getLogger(__name__)

# (lowest Kubernetes version, kubeadm configuration API), newest first
KUBEADM_API_VERSIONS: List[Tuple[Tuple[int, int], str]] = [
    ((1, 31), "kubeadm.k8s.io/v1beta4"),
    ((1, 15), "kubeadm.k8s.io/v1beta3"),
]
DEFAULT_KUBEADM_API_VERSION = "kubeadm.k8s.io/v1beta2"

JOIN_HINT = (
    "Worker prepared. To join it to the cluster, run on the control plane:\n"
    "    kubeadm token create --print-join-command\n"
    "then run the printed command on this node."
)


def api_version_for(kubernetes_version: str) -> str:
    version = parse_minor(kubernetes_version)
    for minimum, api_version in KUBEADM_API_VERSIONS:
        if version >= minimum:
            return api_version
    return DEFAULT_KUBEADM_API_VERSION


def parse_api_version(text: str) -> Optional[str]:
    """Return the first ``apiVersion:`` value in a YAML stream."""
    for line in text.splitlines():
        line = line.strip()
        if line.startswith('apiVersion:'):
            value = line.split(':', 1)[1].strip()
            if value:
                return value
    return None


def detect_kubeadm_api_version(runner: CommandRunner, kubernetes_version: str) -> str:
    """Ask the installed kubeadm for its configuration API, else use the version table."""
    if runner.has('kubeadm'):
        result = runner.run(['kubeadm', 'config', 'print', 'init-defaults'], check=False)
        api_version = parse_api_version(result.stdout) if result.ok else None
        if api_version:
            logger.info(f"Using kubeadm API version: {api_version} (from kubeadm)")
            return api_version
    api_version = api_version_for(kubernetes_version)
    logger.info(f"Using kubeadm API version: {api_version} for Kubernetes {kubernetes_version}")
    return api_version


def _chown(path: Path, user: InvokingUser) -> None:
    try:
        os.chown(path, user.uid, user.gid)
    except PermissionError as e:
        logger.warning(f"Could not change owner of {path} to {user.name}: {e}")


def copy_admin_kubeconfig(config: KubestrapConfig, user: InvokingUser) -> Path:
    """Copy admin.conf to ``~/.kube/config`` of the invoking user, mode 0600."""
    source = config.paths.host(config.paths.admin_conf)
    if not source.exists():
        raise InstallError(f"{source} not found; kubeadm init did not produce an admin kubeconfig")

    kube_dir = Path(user.home) / '.kube'
    kube_dir.mkdir(parents=True, exist_ok=True)
    target = kube_dir / 'config'
    shutil.copyfile(source, target)
    os.chmod(target, 0o600)
    _chown(kube_dir, user)
    _chown(target, user)
    logger.info(f"Configured kubectl for user {user.name}: {target}")
    return target


def update_hosts(config: KubestrapConfig, entries: List[HostEntry]) -> None:
    HostsFile(config.paths.host(config.paths.hosts_file)).upsert(entries)


class ControlPlaneBootstrapper:
    """Initializes a single control plane node and installs Cilium on it."""

    def __init__(self, runner: CommandRunner, config: KubestrapConfig, user: InvokingUser,
                 client: Optional[MetadataClient] = None,
                 cluster_factory: Callable[[Path], ClusterClient] = ClusterClient.from_kubeconfig):
        self.runner = runner
        self.config = config
        self.user = user
        self.client = client or MetadataClient(timeout=config.timeouts.http,
                                               token=config.versions.github_token)
        self.cluster_factory = cluster_factory

    def prepare_endpoint(self, versions: VersionSet) -> ClusterEndpoint:
        address = detect_primary_ipv4(self.runner)
        hostname = detect_hostname()
        logger.info(f"Detected control plane IP: {address}, hostname: {hostname}")

        alias = self.config.cluster.alias
        update_hosts(self.config, [HostEntry(address, alias), HostEntry(address, hostname)])

        return ClusterEndpoint(
            control_plane_address=address,
            control_plane_hostname=hostname,
            pod_subnet=self.config.cluster.pod_subnet,
            api_version=detect_kubeadm_api_version(self.runner, versions.orchestrator_version),
            alias=alias,
            api_port=self.config.cluster.api_port,
        )

    def init_cluster(self, endpoint: ClusterEndpoint, versions: VersionSet) -> None:
        """Run ``kubeadm init`` and keep its output next to the configuration.

        Raises:
            InstallError: With the tail of the kubeadm output if init fails
        """
        config_path = write_kubeadm_config(
            self.config.paths.work(self.config.cluster.config_file), endpoint, versions.orchestrator_version
        )
        logger.info("🚀 Initializing Kubernetes cluster...")
        result = self.runner.run(
            ['kubeadm', 'init', f'--config={config_path}', '--upload-certs',
             f'--node-name={endpoint.control_plane_hostname}'],
            check=False,
        )
        init_log = self.config.paths.work(self.config.cluster.init_log)
        atomic_write_text(init_log, result.stdout + result.stderr)

        if not result.ok:
            raise InstallError(f"kubeadm init failed (exit status {result.returncode}):\n{result.tail()}")
        logger.info(f"✅ Kubernetes cluster initialized; output saved to {init_log}")

    def configure_kubectl(self) -> ClusterClient:
        kubeconfig = copy_admin_kubeconfig(self.config, self.user)
        cluster = self.cluster_factory(kubeconfig)
        cluster.wait_until_reachable()
        return cluster

    def install_cni(self, cluster: ClusterClient, versions: VersionSet, profile: HostProfile) -> None:
        cni.install_cilium_cli(self.runner, self.client, self.config, versions, profile)
        cni.install_cilium(self.runner, versions)

        tainted = cluster.tainted_nodes(CONTROL_PLANE_TAINT)
        if tainted:
            logger.info("Removing control-plane taint for single-node setup...")
            cluster.remove_taint(CONTROL_PLANE_TAINT)

        cni.wait_for_cilium(self.runner, self.config)
        cni.run_connectivity_test(self.runner)

    def bootstrap(self, versions: VersionSet, profile: HostProfile) -> ClusterEndpoint:
        endpoint = self.prepare_endpoint(versions)
        self.init_cluster(endpoint, versions)
        cluster = self.configure_kubectl()
        self.install_cni(cluster, versions, profile)
        return endpoint


class WorkerBootstrapper:
    """Points a prepared worker at the control plane; joining stays manual."""

    def __init__(self, runner: CommandRunner, config: KubestrapConfig):
        self.runner = runner
        self.config = config

    def bootstrap(self, control_plane_address: str) -> ClusterEndpoint:
        address = detect_primary_ipv4(self.runner)
        hostname = detect_hostname()
        alias = self.config.cluster.alias
        update_hosts(self.config, [HostEntry(control_plane_address, alias), HostEntry(address, hostname)])

        logger.info(JOIN_HINT)
        return ClusterEndpoint(
            control_plane_address=control_plane_address,
            control_plane_hostname=alias,
            pod_subnet=self.config.cluster.pod_subnet,
            alias=alias,
            api_port=self.config.cluster.api_port,
        )
