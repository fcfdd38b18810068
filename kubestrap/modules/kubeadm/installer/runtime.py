"""containerd and runc installation."""
import logging
import re
from pathlib import Path

from kubestrap.config import KubestrapConfig
from kubestrap.errors import InstallError
from kubestrap.utils import atomic_write_text, fetch_artifact
from ..executor import CommandRunner
from ..models import HostProfile, VersionSet
from ..versions import MetadataClient

logger = logging.getLogger(__name__)

CONTAINERD_RELEASE_URL = (
    "https://github.com/containerd/containerd/releases/download/"
    "v{version}/containerd-{version}-{os}-{arch}.tar.gz"
)
CONTAINERD_UNIT_URL = "https://raw.githubusercontent.com/containerd/containerd/main/containerd.service"
RUNC_RELEASE_URL = "https://github.com/opencontainers/runc/releases/download/v{version}/runc.{arch}"

SYSTEMD_CGROUP = re.compile(r'SystemdCgroup\s*=\s*false')
# containerd 1.x: sandbox_image = "registry.k8s.io/pause:3.8"
SANDBOX_IMAGE = re.compile(r'sandbox_image\s*=\s*"[^"]*"')
# containerd 2.x: sandbox = 'registry.k8s.io/pause:3.10'
SANDBOX = re.compile(r'\bsandbox\s*=\s*([\'"])[^\'"]*\1')


def pause_image(config: KubestrapConfig, versions: VersionSet) -> str:
    return f"{config.cluster.pause_image}:{versions.sandbox_image_version}"


def patch_containerd_config(text: str, image: str) -> str:
    """Switch runc to the systemd cgroup driver and point the sandbox at ``image``.

    Only these two settings are touched; every other default is kept.
    """
    patched = SYSTEMD_CGROUP.sub('SystemdCgroup = true', text)
    patched, legacy = SANDBOX_IMAGE.subn(f'sandbox_image = "{image}"', patched)
    patched, current = SANDBOX.subn(f"sandbox = '{image}'", patched)
    if not legacy and not current:
        logger.warning("⚠️  No sandbox image setting found in containerd configuration")
    return patched


def install_containerd(runner: CommandRunner, client: MetadataClient, config: KubestrapConfig,
                       versions: VersionSet, profile: HostProfile) -> None:
    """Download the containerd release tarball and unpack it under the prefix."""
    version = versions.runtime_version
    url = CONTAINERD_RELEASE_URL.format(version=version, os=profile.os_family, arch=profile.architecture.value)
    tarball = config.paths.work(Path(url).name)
    logger.info(f"📦 Installing containerd {version} for {profile.os_family}-{profile.architecture.value}")

    fetch_artifact(client.session, url, tarball, timeout=config.timeouts.download)
    try:
        runner.run(['tar', '-xzf', str(tarball), '-C', str(config.paths.host(config.paths.prefix))])
    finally:
        tarball.unlink(missing_ok=True)

    result = runner.run([f"{config.paths.bin_dir}/containerd", '--version'], check=False)
    if result.ok:
        logger.info(result.stdout.strip())


def install_runc(client: MetadataClient, config: KubestrapConfig, versions: VersionSet,
                 profile: HostProfile) -> Path:
    url = RUNC_RELEASE_URL.format(version=versions.shim_version, arch=profile.architecture.value)
    target = config.paths.host(config.paths.sbin_dir) / 'runc'
    logger.info(f"📦 Installing runc {versions.shim_version} for {profile.architecture.value}")
    return fetch_artifact(client.session, url, target, timeout=config.timeouts.download, mode=0o755)


def install_service_unit(client: MetadataClient, config: KubestrapConfig) -> Path:
    target = config.paths.host(config.paths.containerd_unit)
    return fetch_artifact(client.session, CONTAINERD_UNIT_URL, target, timeout=config.timeouts.http, mode=0o644)


def configure_containerd(runner: CommandRunner, config: KubestrapConfig, versions: VersionSet) -> Path:
    """Write containerd's default configuration with the Kubernetes adjustments."""
    result = runner.run([f"{config.paths.bin_dir}/containerd", 'config', 'default'])
    path = config.paths.host(config.paths.containerd_config)
    atomic_write_text(path, patch_containerd_config(result.stdout, pause_image(config, versions)), mode=0o644)
    logger.info(f"✅ Wrote {path} (sandbox image {pause_image(config, versions)})")
    return path


def start_containerd(runner: CommandRunner, config: KubestrapConfig) -> None:
    """Enable and start containerd, then make sure it stays up.

    Raises:
        InstallError: With recent journal lines if the service is not active
    """
    runner.run(['systemctl', 'daemon-reload'])
    runner.run(['systemctl', 'enable', 'containerd'])
    runner.run(['systemctl', 'start', 'containerd'])

    if not runner.run(['systemctl', 'is-active', '--quiet', 'containerd'], check=False).ok:
        lines = config.timeouts.journal_lines
        journal = runner.run(['journalctl', '-u', 'containerd', '-n', str(lines), '--no-pager'], check=False)
        raise InstallError(f"containerd failed to start. Recent journal entries:\n{journal.tail(lines)}")

    logger.info("✅ containerd is running")
    version = runner.run([f"{config.paths.bin_dir}/ctr", 'version'], check=False)
    if version.ok:
        logger.debug(version.stdout.strip())
