"""Preflight checks that must pass before the host is touched."""
import ipaddress
import logging
import os
import re
from typing import Optional

from kubestrap.config import HostRequirements
from kubestrap.errors import InvalidAddressError, PreflightError
from .models import GIB, HostProfile

logger = logging.getLogger(__name__)

DOTTED_QUAD = re.compile(r'^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}$')


def validate_host(profile: HostProfile, requirements: Optional[HostRequirements] = None) -> None:
    """Check CPU and RAM against the minimum requirements.

    Raises:
        PreflightError: Naming the observed value and the threshold
    """
    requirements = requirements or HostRequirements()

    if profile.cpu_count < requirements.min_cpus:
        raise PreflightError(
            f"Insufficient CPU cores. Found: {profile.cpu_count}, "
            f"Required: {requirements.min_cpus} or more"
        )
    logger.info(f"CPU check passed: {profile.cpu_count} cores available")

    if profile.ram_bytes < requirements.min_ram_bytes:
        raise PreflightError(
            f"Insufficient RAM. Found: {profile.ram_bytes / GIB:.2f}GiB "
            f"({profile.ram_bytes} bytes), Required: {requirements.min_ram_bytes / GIB:.2f}GiB or more"
        )
    logger.info(f"RAM check passed: {profile.ram_gib:.1f}GiB available")


def validate_privileges(euid: Optional[int] = None) -> None:
    """Require root, since host files and services are changed directly."""
    euid = os.geteuid() if euid is None else euid
    if euid != 0:
        raise PreflightError(
            f"Root privileges are required (effective uid is {euid}). Re-run with sudo."
        )


def validate_address(value: Optional[str]) -> str:
    """Validate a control plane address given on the command line or prompt.

    Returns:
        str: The address, unchanged

    Raises:
        InvalidAddressError: If the value is not an IPv4 dotted quad
    """
    if not value:
        raise InvalidAddressError("Control plane IP is required")
    if not DOTTED_QUAD.match(value):
        raise InvalidAddressError(f"Invalid IP address format: {value}")
    try:
        ipaddress.IPv4Address(value)
    except ipaddress.AddressValueError as e:
        raise InvalidAddressError(f"Invalid IP address format: {value} ({e})") from None
    return value
