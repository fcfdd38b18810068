"""Provisioning workflow.

Runs the phases of a node installation in order:
preflight -> clean slate -> resolve versions -> install -> bootstrap -> shell.
The install path is fail-fast; the first error aborts the run and nothing is
rolled back. A re-run starts over with the clean-slate reset.
"""
import logging
import time
from typing import Callable, Optional

import requests

from kubestrap.config import KubestrapConfig
from kubestrap.errors import InstallError, KubestrapError
from .bootstrap import ControlPlaneBootstrapper, WorkerBootstrapper
from .executor import CommandRunner
from .host import detect_host_profile, invoking_user
from .installer import ComponentInstaller
from .models import (
    CleanupReport, HostProfile, InvokingUser, NodeRole, ProvisioningPhase, ProvisioningState,
)
from .preflight import validate_address, validate_host, validate_privileges
from .reset import NodeReset, ResetScope
from .shell import detect_profile, integrate
from .versions import MetadataClient, VersionResolver

logger = logging.getLogger(__name__)


class ProvisioningWorkflow:
    """Wires the provisioning components together for one run."""

    def __init__(self, config: KubestrapConfig, runner: Optional[CommandRunner] = None,
                 client: Optional[MetadataClient] = None, user: Optional[InvokingUser] = None,
                 host_profile: Callable[[], HostProfile] = detect_host_profile,
                 euid: Optional[int] = None, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.runner = runner or CommandRunner(timeout=config.timeouts.command)
        self.client = client or MetadataClient(timeout=config.timeouts.http,
                                               token=config.versions.github_token)
        self.user = user or invoking_user()
        self.host_profile = host_profile
        self.euid = euid
        self.sleep = sleep
        self.state: Optional[ProvisioningState] = None

        self.resolver = VersionResolver.from_config(config, client=self.client)
        self.installer = ComponentInstaller(self.runner, config, client=self.client)
        self.control_plane = ControlPlaneBootstrapper(self.runner, config, self.user, client=self.client)
        self.worker = WorkerBootstrapper(self.runner, config)

    def preflight(self) -> HostProfile:
        """Check privileges and host resources; nothing is changed on the host.

        Raises:
            PreflightError: If a requirement is not met
        """
        if self.config.host.require_root:
            validate_privileges(self.euid)
        profile = self.host_profile()
        validate_host(profile, self.config.host)
        return profile

    def reset(self, scope: ResetScope, confirm: Optional[Callable[[str], bool]] = None) -> CleanupReport:
        return NodeReset(self.runner, self.config, scope=scope, confirm=confirm,
                         user=self.user, sleep=self.sleep).run()

    def run_control_plane(self) -> ProvisioningState:
        """Provision this host as a single control plane node.

        Raises:
            KubestrapError: On the first failing phase; the state records it
        """
        state = ProvisioningState(role=NodeRole.CONTROL_PLANE)
        self.state = state
        try:
            state.update_phase(ProvisioningPhase.PREFLIGHT)
            profile = self.preflight()

            state.update_phase(ProvisioningPhase.CLEANUP)
            state.metadata['cleanup'] = self.reset(ResetScope.CLEAN_SLATE).summary()

            state.update_phase(ProvisioningPhase.RESOLVE)
            versions = self.resolver.resolve_all()
            state.metadata['versions'] = versions.as_dict()

            state.update_phase(ProvisioningPhase.INSTALL)
            self.installer.install(versions, profile)

            state.update_phase(ProvisioningPhase.BOOTSTRAP)
            endpoint = self.control_plane.bootstrap(versions, profile)
            state.metadata['endpoint'] = endpoint

            state.update_phase(ProvisioningPhase.SHELL)
            integrate(detect_profile(self.user), self.user, self.runner)

            state.update_phase(ProvisioningPhase.COMPLETED)
        except KubestrapError as e:
            state.add_error(str(e))
            raise
        except (requests.RequestException, OSError) as e:
            phase = state.phase
            state.add_error(str(e))
            raise InstallError(f"{phase.value} phase failed: {e}") from e
        log_summary(state)
        return state

    def run_worker(self, control_plane_address: str) -> ProvisioningState:
        """Prepare this host as a worker; the join itself stays manual.

        Raises:
            InvalidAddressError: Before anything else if the address is malformed
            KubestrapError: On the first failing phase
        """
        validate_address(control_plane_address)
        state = ProvisioningState(role=NodeRole.WORKER)
        self.state = state
        try:
            state.update_phase(ProvisioningPhase.PREFLIGHT)
            profile = self.preflight()

            state.update_phase(ProvisioningPhase.CLEANUP)
            state.metadata['cleanup'] = self.reset(ResetScope.CLEAN_SLATE).summary()

            state.update_phase(ProvisioningPhase.RESOLVE)
            versions = self.resolver.resolve_all()
            state.metadata['versions'] = versions.as_dict()

            state.update_phase(ProvisioningPhase.INSTALL)
            self.installer.install(versions, profile)

            state.update_phase(ProvisioningPhase.BOOTSTRAP)
            state.metadata['endpoint'] = self.worker.bootstrap(control_plane_address)

            state.update_phase(ProvisioningPhase.COMPLETED)
        except KubestrapError as e:
            state.add_error(str(e))
            raise
        except (requests.RequestException, OSError) as e:
            phase = state.phase
            state.add_error(str(e))
            raise InstallError(f"{phase.value} phase failed: {e}") from e
        log_summary(state)
        return state

    def uninstall(self, confirm: Optional[Callable[[str], bool]] = None) -> CleanupReport:
        return self.reset(ResetScope.FULL, confirm=confirm)


def log_summary(state: ProvisioningState) -> None:
    versions = state.metadata.get('versions', {})
    endpoint = state.metadata.get('endpoint')
    duration = time.time() - state.start_time
    logger.info("=============================================")
    logger.info(f"✅ {state.role.value} installation completed in {duration:.1f}s")
    logger.info("=============================================")
    if versions:
        logger.info(f"  - Kubernetes version: {versions.get('kubernetes')}")
        logger.info(f"  - containerd: {versions.get('containerd')}, runc: {versions.get('runc')}")
    if endpoint is not None:
        logger.info(f"  - Control plane IP: {endpoint.control_plane_address}")
        logger.info(f"  - Control plane endpoint: {endpoint.endpoint}")
        if endpoint.api_version:
            logger.info(f"  - kubeadm API version: {endpoint.api_version}")
    if state.role == NodeRole.CONTROL_PLANE and versions:
        logger.info(f"  - CNI: Cilium {versions.get('cilium')}")
