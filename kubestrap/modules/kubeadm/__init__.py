"""kubeadm node provisioning.

This package brings a Debian/Ubuntu host from a bare OS to a working
Kubernetes node. It's organized into several focused modules:

- preflight: host resource, privilege and address checks
- versions: component version resolution with fallbacks
- reset: best-effort cleanup of previous installations
- installer: container runtime and Kubernetes packages
- bootstrap: kubeadm init, kubeconfig and Cilium
- shell: kubectl alias and completion
- workflow: the ordered provisioning run
"""

from .models import (
    Architecture,
    CleanupReport,
    ClusterEndpoint,
    HostEntry,
    HostProfile,
    InvokingUser,
    NodeRole,
    Outcome,
    ProvisioningPhase,
    ProvisioningState,
    VersionSet,
)
from .reset import NodeReset, ResetScope
from .versions import MetadataClient, VersionResolver
from .workflow import ProvisioningWorkflow

__all__ = [
    'Architecture',
    'CleanupReport',
    'ClusterEndpoint',
    'HostEntry',
    'HostProfile',
    'InvokingUser',
    'NodeRole',
    'Outcome',
    'ProvisioningPhase',
    'ProvisioningState',
    'VersionSet',
    'NodeReset',
    'ResetScope',
    'MetadataClient',
    'VersionResolver',
    'ProvisioningWorkflow',
]
