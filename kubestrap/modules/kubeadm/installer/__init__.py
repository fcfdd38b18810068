"""Component installation.

- core: the ordered install pipeline
- system: swap, base packages, kernel modules and sysctl
- runtime: containerd and runc
- packages: Kubernetes apt repository and packages
- configuration: Jinja2 rendered configuration files
"""

from .core import ComponentInstaller
from .configuration import (
    ConfigurationError,
    patch_kubeadm_config,
    render_kubeadm_config,
    render_sysctl_config,
    write_kubeadm_config,
)
from .runtime import patch_containerd_config
from .system import BASE_PACKAGES

__all__ = [
    'ComponentInstaller',
    'ConfigurationError',
    'patch_kubeadm_config',
    'render_kubeadm_config',
    'render_sysctl_config',
    'write_kubeadm_config',
    'patch_containerd_config',
    'BASE_PACKAGES',
]
