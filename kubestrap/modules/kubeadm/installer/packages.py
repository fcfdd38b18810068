"""Kubernetes apt repository and package installation."""
import logging

import requests

from kubestrap.config import KubestrapConfig
from kubestrap.errors import InstallError
from kubestrap.utils import atomic_write_text
from ..executor import CommandRunner
from ..models import minor_version
from ..versions import MetadataClient
from .system import apt_install, apt_update

logger = logging.getLogger(__name__)

KUBERNETES_PACKAGES = ['kubeadm', 'kubelet', 'kubectl']
REPOSITORY_URL = "https://pkgs.k8s.io/core:/stable:/v{minor}/deb/"


def repository_line(config: KubestrapConfig, kubernetes_version: str) -> str:
    url = REPOSITORY_URL.format(minor=minor_version(kubernetes_version))
    return f"deb [signed-by={config.paths.apt_keyring}] {url} /"


def add_kubernetes_repository(runner: CommandRunner, client: MetadataClient, config: KubestrapConfig,
                              kubernetes_version: str) -> None:
    """Register the pkgs.k8s.io repository for the version's minor release."""
    minor = minor_version(kubernetes_version)
    logger.info(f"Using Kubernetes repository version: v{minor}")

    keyring = config.paths.host(config.paths.apt_keyring)
    # A stale keyring makes gpg prompt before overwriting
    keyring.unlink(missing_ok=True)
    keyring.parent.mkdir(parents=True, exist_ok=True)

    key_url = REPOSITORY_URL.format(minor=minor) + "Release.key"
    try:
        key = client.fetch_text(key_url)
    except requests.RequestException as e:
        raise InstallError(f"Failed to fetch repository key {key_url}: {e}") from e
    runner.run(['gpg', '--dearmor', '-o', str(keyring)], input=key)

    sources = config.paths.host(config.paths.apt_sources)
    atomic_write_text(sources, repository_line(config, kubernetes_version) + '\n', mode=0o644)
    apt_update(runner)


def package_version(config: KubestrapConfig, kubernetes_version: str) -> str:
    return f"{kubernetes_version}-{config.versions.package_revision}"


def install_kubernetes_packages(runner: CommandRunner, config: KubestrapConfig, kubernetes_version: str) -> None:
    """Install kubeadm, kubelet and kubectl at one exact version and hold them."""
    version = package_version(config, kubernetes_version)
    logger.info(f"📦 Installing Kubernetes components version: {version}")
    apt_install(runner, [f"{name}={version}" for name in KUBERNETES_PACKAGES])
    runner.run(['apt-mark', 'hold', *KUBERNETES_PACKAGES])
