"""Local host discovery: resources, architecture, addresses and the invoking user."""
import logging
import os
import platform
import pwd
import socket
from pathlib import Path
from typing import Mapping, Optional

from kubestrap.errors import InstallError, PreflightError
from .executor import CommandRunner
from .models import Architecture, HostProfile, InvokingUser

logger = logging.getLogger(__name__)

MACHINE_ARCHITECTURES = {
    'x86_64': Architecture.AMD64,
    'amd64': Architecture.AMD64,
    'aarch64': Architecture.ARM64,
    'arm64': Architecture.ARM64,
    'armv7l': Architecture.ARM,
}


def map_architecture(machine: str) -> Architecture:
    """Translate ``uname -m`` output into a release architecture.

    Raises:
        PreflightError: If no builds exist for the machine type
    """
    try:
        return MACHINE_ARCHITECTURES[machine.lower()]
    except KeyError:
        raise PreflightError(f"Unsupported architecture: {machine}") from None


def read_memtotal(meminfo_path: str = '/proc/meminfo') -> int:
    """Return total RAM in bytes as reported by the kernel."""
    with open(meminfo_path, 'r') as f:
        for line in f:
            if line.startswith('MemTotal:'):
                # MemTotal:        8053096 kB
                return int(line.split()[1]) * 1024
    raise PreflightError(f"MemTotal not found in {meminfo_path}")


def detect_host_profile(meminfo_path: str = '/proc/meminfo') -> HostProfile:
    """Build the HostProfile once at the start of a run."""
    profile = HostProfile(
        cpu_count=os.cpu_count() or 1,
        ram_bytes=read_memtotal(meminfo_path),
        os_family=platform.system().lower(),
        architecture=map_architecture(platform.machine()),
    )
    logger.debug(f"Host profile: {profile}")
    return profile


def detect_primary_ipv4(runner: CommandRunner) -> str:
    """Return the first global-scope IPv4 address of the host.

    Raises:
        InstallError: If no non-loopback address can be found
    """
    result = runner.run(['ip', '-4', '-o', 'addr', 'show', 'scope', 'global'], check=False)
    if result.ok:
        for line in result.stdout.splitlines():
            # 2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global eth0 ...
            parts = line.split()
            if 'inet' in parts:
                address = parts[parts.index('inet') + 1].split('/')[0]
                if not address.startswith('127.'):
                    return address

    try:
        # Create a socket connection to a public DNS server
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            address = s.getsockname()[0]
        finally:
            s.close()
        if address and not address.startswith('127.'):
            return address
    except OSError as e:
        logger.warning(f"Failed to detect address through the default route: {e}")

    raise InstallError(
        "Failed to detect IP address. No network interface found. "
        "Please ensure network interfaces are configured properly."
    )


def detect_hostname() -> str:
    return socket.gethostname()


def invoking_user(environ: Optional[Mapping[str, str]] = None) -> InvokingUser:
    """Resolve the user who started the process, looking through sudo."""
    environ = os.environ if environ is None else environ
    name = environ.get('SUDO_USER')
    try:
        entry = pwd.getpwnam(name) if name else pwd.getpwuid(os.getuid())
    except KeyError:
        entry = pwd.getpwuid(os.getuid())

    shell = entry.pw_shell or environ.get('SHELL', '')
    return InvokingUser(
        name=entry.pw_name,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        home=entry.pw_dir or str(Path.home()),
        shell=shell,
    )
