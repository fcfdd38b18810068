"""Host preparation: swap, base packages, kernel modules and sysctl.

Every function here is fail-fast; a failing command raises CommandError and
aborts the run.
"""
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from kubestrap.config import KubestrapConfig
from kubestrap.errors import InstallError
from kubestrap.utils import atomic_write_text
from ..executor import CommandRunner
from .configuration import render_sysctl_config

logger = logging.getLogger(__name__)

BASE_PACKAGES = [
    'apt-transport-https',
    'software-properties-common',
    'ca-certificates',
    'socat',
    'curl',
    'gpg',
]

KERNEL_MODULES = ['overlay', 'br_netfilter']


def disable_swap(runner: CommandRunner) -> None:
    logger.info("Disabling swap...")
    runner.run(['swapoff', '-a'])


def apt_update(runner: CommandRunner) -> None:
    runner.run(['apt-get', 'update'])


def apt_install(runner: CommandRunner, packages: Sequence[str]) -> None:
    runner.run(['apt-get', 'install', '-y', *packages])


def install_base_packages(runner: CommandRunner, packages: Sequence[str] = BASE_PACKAGES) -> None:
    logger.info(f"📦 Installing base packages: {' '.join(packages)}")
    apt_update(runner)
    apt_install(runner, packages)


def load_kernel_modules(runner: CommandRunner, config: KubestrapConfig,
                        modules: List[str] = KERNEL_MODULES) -> None:
    """Load the modules now and list them for loading at boot."""
    for module in modules:
        runner.run(['modprobe', module])
    path = config.paths.host(config.paths.modules_load_file)
    atomic_write_text(path, '\n'.join(modules) + '\n', mode=0o644)
    logger.info(f"✅ Kernel modules loaded: {', '.join(modules)}")


def read_ip_forward(path: Path) -> str:
    try:
        return path.read_text().strip()
    except FileNotFoundError:
        return ''


def configure_sysctl(runner: CommandRunner, config: KubestrapConfig,
                     write_ip_forward: Optional[Callable[[Path], None]] = None) -> None:
    """Write the bridge/forwarding sysctl settings and verify ip_forward.

    If forwarding is still off after ``sysctl --system``, it is switched on
    directly and the settings re-applied once before giving up.

    Raises:
        InstallError: If net.ipv4.ip_forward cannot be enabled
    """
    sysctl_file = config.paths.host(config.paths.sysctl_file)
    ip_forward = config.paths.host(config.paths.ip_forward)
    write_ip_forward = write_ip_forward or (lambda path: path.write_text('1\n'))

    atomic_write_text(sysctl_file, render_sysctl_config(), mode=0o644)
    runner.run(['sysctl', '--system'])

    if read_ip_forward(ip_forward) == '1':
        logger.info("✅ ip_forward is enabled")
        return

    logger.warning("⚠️  ip_forward is not enabled, attempting to fix...")
    write_ip_forward(ip_forward)
    text = sysctl_file.read_text()
    if 'net.ipv4.ip_forward = 0' in text:
        atomic_write_text(sysctl_file, text.replace('net.ipv4.ip_forward = 0', 'net.ipv4.ip_forward = 1'))
    runner.run(['sysctl', '--system'])

    if read_ip_forward(ip_forward) != '1':
        raise InstallError("Failed to enable ip_forward (net.ipv4.ip_forward is not 1)")
    logger.info("✅ ip_forward successfully enabled")
