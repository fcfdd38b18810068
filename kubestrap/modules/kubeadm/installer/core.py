"""Component installation pipeline."""
import logging
import time
from typing import Optional

from kubestrap.config import KubestrapConfig
from ..executor import CommandRunner
from ..models import HostProfile, VersionSet
from ..versions import MetadataClient
from . import packages, runtime, system

logger = logging.getLogger(__name__)


class ComponentInstaller:
    """Installs the container runtime and the Kubernetes packages on this host.

    Steps run in a fixed order and stop at the first failure; there is no
    rollback. A later run starts over from a clean slate.
    """

    def __init__(self, runner: CommandRunner, config: KubestrapConfig,
                 client: Optional[MetadataClient] = None):
        self.runner = runner
        self.config = config
        self.client = client or MetadataClient(timeout=config.timeouts.http,
                                               token=config.versions.github_token)

    def prepare_host(self) -> None:
        system.disable_swap(self.runner)
        system.install_base_packages(self.runner)
        system.load_kernel_modules(self.runner, self.config)
        system.configure_sysctl(self.runner, self.config)

    def install_runtime(self, versions: VersionSet, profile: HostProfile) -> None:
        runtime.install_containerd(self.runner, self.client, self.config, versions, profile)
        runtime.install_service_unit(self.client, self.config)
        runtime.install_runc(self.client, self.config, versions, profile)
        runtime.configure_containerd(self.runner, self.config, versions)
        runtime.start_containerd(self.runner, self.config)

    def install_kubernetes(self, versions: VersionSet) -> None:
        packages.add_kubernetes_repository(self.runner, self.client, self.config, versions.orchestrator_version)
        packages.install_kubernetes_packages(self.runner, self.config, versions.orchestrator_version)

    def install(self, versions: VersionSet, profile: HostProfile) -> None:
        """Run every install step.

        Raises:
            CommandError: If an external command fails
            InstallError: If a verification step fails
        """
        start_time = time.time()
        self.prepare_host()
        self.install_runtime(versions, profile)
        self.install_kubernetes(versions)
        logger.info(f"✅ Components installed in {time.time() - start_time:.1f}s")
