import pytest

from kubestrap.config import HostRequirements
from kubestrap.errors import InvalidAddressError, PreflightError
from kubestrap.modules.kubeadm.host import map_architecture, read_memtotal, invoking_user
from kubestrap.modules.kubeadm.models import GIB, Architecture, HostProfile
from kubestrap.modules.kubeadm.preflight import validate_address, validate_host, validate_privileges


def make_profile(cpus=2, ram=2 * GIB):
    return HostProfile(cpu_count=cpus, ram_bytes=ram, os_family='linux', architecture=Architecture.AMD64)


def test_minimum_host_passes():
    validate_host(make_profile(cpus=2, ram=2 * GIB))


def test_single_cpu_is_rejected():
    with pytest.raises(PreflightError) as exc:
        validate_host(make_profile(cpus=1))
    assert "Found: 1" in str(exc.value)
    assert "Required: 2" in str(exc.value)


def test_low_ram_is_rejected():
    with pytest.raises(PreflightError) as exc:
        validate_host(make_profile(ram=2 * GIB - 1))
    assert "Insufficient RAM" in str(exc.value)
    assert "2.00GiB" in str(exc.value)


def test_thresholds_come_from_requirements():
    with pytest.raises(PreflightError):
        validate_host(make_profile(cpus=4), HostRequirements(min_cpus=8))


def test_non_root_is_rejected():
    with pytest.raises(PreflightError):
        validate_privileges(1000)
    validate_privileges(0)


@pytest.mark.parametrize("address", ["10.0.0.5", "192.168.1.1", "0.0.0.0"])
def test_valid_addresses(address):
    assert validate_address(address) == address


@pytest.mark.parametrize("address", ["abc", "10.0.0", "", None, " 10.0.0.5", "10.0.0.5 ", "256.1.1.1", "1.2.3.4.5"])
def test_invalid_addresses(address):
    with pytest.raises(InvalidAddressError):
        validate_address(address)


def test_architecture_mapping():
    assert map_architecture('x86_64') == Architecture.AMD64
    assert map_architecture('aarch64') == Architecture.ARM64
    assert map_architecture('armv7l') == Architecture.ARM
    with pytest.raises(PreflightError, match="Unsupported architecture: riscv64"):
        map_architecture('riscv64')


def test_read_memtotal(tmp_path):
    meminfo = tmp_path / 'meminfo'
    meminfo.write_text("MemTotal:        8053096 kB\nMemFree:         1000 kB\n")
    assert read_memtotal(str(meminfo)) == 8053096 * 1024


def test_read_memtotal_missing_field(tmp_path):
    meminfo = tmp_path / 'meminfo'
    meminfo.write_text("MemFree:         1000 kB\n")
    with pytest.raises(PreflightError):
        read_memtotal(str(meminfo))


def test_invoking_user_falls_back_to_current_user():
    user = invoking_user(environ={'SUDO_USER': 'no-such-user-kubestrap'})
    assert user.name
    assert user.home
