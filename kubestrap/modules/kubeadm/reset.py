"""Node reset and cleanup.

Brings a host back to a clean slate before an install, or removes everything
kubestrap installed. Every step is best effort: a failure is recorded as an
Outcome and the next step still runs. Resources that are already gone are
reported as skipped, so running the reset twice is harmless.
"""
import logging
import shutil
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from kubestrap.config import KubestrapConfig
from kubestrap.utils import parse_duration
from .executor import CommandResult, CommandRunner
from .hosts import HostsFile
from .installer.system import BASE_PACKAGES
from .models import CleanupReport, InvokingUser, Outcome, OutcomeStatus
from .shell import SHELL_PROFILES, detect_profile, strip_profile

logger = logging.getLogger(__name__)

SERVICES = ['kubelet', 'containerd', 'etcd']
CONTROL_PLANE_DAEMONS = ['kube-apiserver', 'kube-controller-manager', 'kube-scheduler', 'etcd']
KUBERNETES_PACKAGES = ['kubeadm', 'kubelet', 'kubectl']
CILIUM_CNI_FILES = ['/etc/cni/net.d/05-cilium.conf', '/etc/cni/net.d/10-cilium-cni.conf']
CILIUM_INTERFACES = ['cilium_vxlan', 'cilium_host', 'cilium_net']
CILIUM_TEST_NAMESPACE = 'cilium-test'
# systemctl exit status for a unit that is not loaded
UNIT_NOT_LOADED = 5
RUNTIME_DOWN_MARKERS = ('connection refused', 'no such file or directory', 'deadline exceeded')

StepResult = Union[Outcome, List[Outcome]]


class ResetScope(str, Enum):
    """How much of the host to reset."""
    CLEAN_SLATE = 'clean-slate'
    FULL = 'full'


def _never(question: str) -> bool:
    return False


class NodeReset:
    """Runs the cleanup steps for one host and collects their outcomes."""

    def __init__(self, runner: CommandRunner, config: KubestrapConfig,
                 scope: ResetScope = ResetScope.FULL,
                 confirm: Optional[Callable[[str], bool]] = None,
                 user: Optional[InvokingUser] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the reset.

        Args:
            runner: Command runner for the local host
            config: kubestrap configuration
            scope: CLEAN_SLATE before an install, FULL for an uninstall
            confirm: Asked before optional destructive extras; defaults to no
            user: Invoking user whose kubeconfig and shell profile are cleaned
            sleep: Used for grace periods after killing processes
        """
        self.runner = runner
        self.config = config
        self.scope = scope
        self.confirm = confirm or _never
        self.user = user
        self.sleep = sleep
        self.paths = config.paths
        self.port = config.cluster.api_port

    def steps(self) -> List[Tuple[str, Callable[[], StepResult]]]:
        if self.scope == ResetScope.CLEAN_SLATE:
            return [
                ('stop services', self.stop_services),
                ('release API port', self.release_api_port),
                ('kill control plane daemons', self.kill_daemons),
                ('kubeadm reset', self.kubeadm_reset),
                ('remove state', self.remove_state),
                ('remove images', self.remove_images),
            ]
        return [
            ('stop services', self.stop_services),
            ('release API port', self.release_api_port),
            ('kill control plane daemons', self.kill_daemons),
            ('kubeadm reset', self.kubeadm_reset),
            ('remove packages', self.remove_packages),
            ('remove state', self.remove_state),
            ('remove images', self.remove_images),
            ('uninstall cilium', self.uninstall_cilium),
            ('remove runtime', self.remove_runtime),
            ('remove repository', self.remove_repository),
            ('reset kernel settings', self.reset_kernel),
            ('clean hosts file', self.clean_hosts),
            ('clean shell profile', self.clean_shell_profile),
            ('daemon reload', self.daemon_reload),
            ('verify API port', self.verify_port),
            ('optional packages', self.remove_optional_packages),
        ]

    def run(self) -> CleanupReport:
        """Run every step of the scope; never raises."""
        report = CleanupReport()
        logger.info(f"🧹 Resetting node ({self.scope.value})")

        for name, step in self.steps():
            logger.info(f"⏱️  [{name}]")
            for outcome in self._step(name, step):
                report.add(outcome)
                if outcome.status == OutcomeStatus.FAILED:
                    logger.warning(f"  ❌ {outcome}")
                else:
                    logger.debug(f"  {outcome}")

        report.finish()
        summary = report.summary()
        logger.info(
            f"Cleanup finished in {summary['duration']}s: {summary['ok']} ok, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        if not report.clean:
            logger.warning(f"⚠️  {len(report.failed)} cleanup step(s) failed")
        return report

    def _step(self, name: str, step: Callable[[], StepResult]) -> List[Outcome]:
        try:
            result = step()
        except Exception as e:
            logger.debug(f"Step {name} raised", exc_info=True)
            return [Outcome.failed(name, str(e))]
        return result if isinstance(result, list) else [result]

    # helpers

    def _has(self, binary: str) -> bool:
        return self.runner.has(binary)

    def _port_holders(self) -> List[str]:
        result = self.runner.run(['lsof', f'-ti:{self.port}'], check=False)
        return [pid for pid in result.stdout.split() if pid.isdigit()]

    def _kill(self, pids: Sequence[str]) -> None:
        for pid in pids:
            self.runner.run(['kill', '-9', pid], check=False)

    def _remove_path(self, path: Union[str, Path], step: str = 'remove') -> Outcome:
        path = Path(path)
        label = f"{step} {path}"
        if not path.exists() and not path.is_symlink():
            return Outcome.skipped(label, 'not present')
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return Outcome.ok(label)

    def _host(self, path: Union[str, Path]) -> Path:
        return self.paths.host(path)

    def _runtime_down(self, result: CommandResult) -> bool:
        """True when crictl could not reach containerd, which the first step stopped."""
        if not self._host(self.paths.containerd_socket).exists():
            return True
        return any(marker in result.stderr.lower() for marker in RUNTIME_DOWN_MARKERS)

    # steps

    def stop_services(self) -> List[Outcome]:
        outcomes = []
        for unit in SERVICES:
            result = self.runner.run(['systemctl', 'stop', unit], check=False)
            step = f"stop {unit}"
            if result.ok:
                outcomes.append(Outcome.ok(step))
            elif result.returncode == UNIT_NOT_LOADED or 'not loaded' in result.stderr:
                outcomes.append(Outcome.skipped(step, 'unit not loaded'))
            else:
                outcomes.append(Outcome.failed(step, result.tail(1) or f"exit status {result.returncode}"))
        return outcomes

    def release_api_port(self) -> Outcome:
        step = f"release port {self.port}"
        if not self._has('lsof'):
            return Outcome.skipped(step, 'lsof not available')
        pids = self._port_holders()
        if not pids:
            return Outcome.skipped(step, 'port is free')

        logger.info(f"Port {self.port} is held by PID(s) {', '.join(pids)}, killing")
        self._kill(pids)
        self.sleep(self.config.timeouts.port_release_grace)

        remaining = self._port_holders()
        if remaining:
            return Outcome.failed(step, f"still held by PID(s) {', '.join(remaining)}")
        return Outcome.ok(step, f"killed {', '.join(pids)}")

    def kill_daemons(self) -> Outcome:
        killed = [
            daemon for daemon in CONTROL_PLANE_DAEMONS
            if self.runner.run(['pkill', '-f', daemon], check=False).ok
        ]
        if not killed:
            return Outcome.skipped('kill daemons', 'no control plane daemons running')
        self.sleep(self.config.timeouts.process_grace)
        return Outcome.ok('kill daemons', ', '.join(killed))

    def kubeadm_reset(self) -> Outcome:
        if not self._has('kubeadm'):
            return Outcome.skipped('kubeadm reset', 'kubeadm not installed')
        self.runner.run(['kubeadm', 'reset', '-f'])
        return Outcome.ok('kubeadm reset')

    def _installed_packages(self, names: Sequence[str]) -> List[str]:
        installed = []
        for name in names:
            result = self.runner.run(['dpkg-query', '-W', '-f=${Status}', name], check=False)
            if result.ok and 'install ok installed' in result.stdout:
                installed.append(name)
        return installed

    def remove_packages(self) -> Outcome:
        installed = self._installed_packages(KUBERNETES_PACKAGES)
        if not installed:
            return Outcome.skipped('remove packages', 'no Kubernetes packages installed')
        self.runner.run(['apt-mark', 'unhold', *installed])
        self.runner.run(['apt-get', 'remove', '-y', *installed])
        self.runner.run(['apt-get', 'autoremove', '-y'])
        return Outcome.ok('remove packages', ', '.join(installed))

    def remove_state(self) -> List[Outcome]:
        targets = [self._host(path) for path in self.paths.state_dirs]
        if self.scope == ResetScope.FULL:
            targets.append(self.paths.work(self.config.cluster.config_file))
            targets.append(self.paths.work(self.config.cluster.init_log))
            if self.user:
                targets.append(Path(self.user.home) / '.kube')
        return [self._remove_path(path) for path in targets]

    def remove_images(self) -> Outcome:
        if not self._has('crictl'):
            return Outcome.skipped('remove images', 'crictl not installed')
        listing = self.runner.run(['crictl', 'images', '-q'], check=False)
        if not listing.ok:
            if self._runtime_down(listing):
                return Outcome.skipped('remove images', 'container runtime not running')
            return Outcome.failed('remove images', listing.tail(1) or 'crictl images failed')
        images = listing.stdout.split()
        if not images:
            return Outcome.skipped('remove images', 'no images')
        self.runner.run(['crictl', 'rmi', *images])
        return Outcome.ok('remove images', f"{len(images)} image(s)")

    def uninstall_cilium(self) -> List[Outcome]:
        outcomes = []
        if self._has('cilium'):
            wait = self.config.timeouts.cilium_uninstall
            result = self.runner.run(['cilium', 'uninstall', '--wait', '--timeout', wait],
                                     check=False, timeout=parse_duration(wait) + 60)
            if result.ok:
                outcomes.append(Outcome.ok('cilium uninstall'))
            else:
                outcomes.append(Outcome.failed('cilium uninstall', result.tail(1)))
        else:
            outcomes.append(Outcome.skipped('cilium uninstall', 'cilium CLI not installed'))

        if self._has('kubectl'):
            self.runner.run(['kubectl', 'delete', 'namespace', CILIUM_TEST_NAMESPACE,
                             '--ignore-not-found'], check=False)
            outcomes.append(Outcome.ok(f"delete namespace {CILIUM_TEST_NAMESPACE}"))

        outcomes.extend(self._remove_path(self._host(path)) for path in CILIUM_CNI_FILES)

        for interface in CILIUM_INTERFACES:
            step = f"delete interface {interface}"
            if not self.runner.run(['ip', 'link', 'show', interface], check=False).ok:
                outcomes.append(Outcome.skipped(step, 'not present'))
                continue
            result = self.runner.run(['ip', 'link', 'delete', interface], check=False)
            outcomes.append(Outcome.ok(step) if result.ok else Outcome.failed(step, result.tail(1)))
        return outcomes

    def remove_runtime(self) -> List[Outcome]:
        self.runner.run(['systemctl', 'disable', 'containerd'], check=False)
        self.runner.run(['pkill', '-f', 'containerd'], check=False)

        bin_dir = self._host(self.paths.bin_dir)
        targets = [self._host(self.paths.containerd_unit)]
        targets.extend(sorted(bin_dir.glob('containerd*')) if bin_dir.exists() else [])
        targets.extend([
            bin_dir / 'ctr',
            self._host(self.paths.sbin_dir) / 'runc',
            bin_dir / 'cilium',
            self._host(self.paths.containerd_config).parent,
        ])
        return [self._remove_path(path) for path in targets]

    def remove_repository(self) -> List[Outcome]:
        outcomes = [
            self._remove_path(self._host(self.paths.apt_sources)),
            self._remove_path(self._host(self.paths.apt_keyring)),
        ]
        result = self.runner.run(['apt-get', 'update'], check=False)
        outcomes.append(Outcome.ok('apt-get update') if result.ok
                        else Outcome.failed('apt-get update', result.tail(1)))
        return outcomes

    def reset_kernel(self) -> List[Outcome]:
        outcomes = [
            self._remove_path(self._host(self.paths.sysctl_file)),
            self._remove_path(self._host(self.paths.modules_load_file)),
        ]
        for module in ('br_netfilter', 'overlay'):
            step = f"unload {module}"
            if self.runner.run(['modprobe', '-r', module], check=False).ok:
                outcomes.append(Outcome.ok(step))
            else:
                outcomes.append(Outcome.skipped(step, 'not loaded or in use'))
        return outcomes

    def clean_hosts(self) -> List[Outcome]:
        hosts = HostsFile(self._host(self.paths.hosts_file))
        if not hosts.path.exists():
            return [Outcome.skipped('clean hosts', f"{hosts.path} not found")]

        previous = hosts.backups()
        backup = hosts.backup()
        outcomes = [Outcome.ok('backup hosts', str(backup))]

        alias = self.config.cluster.alias
        removed = hosts.remove_name(alias)
        if removed:
            outcomes.append(Outcome.ok(f"remove {alias} entries", f"{removed} line(s)"))
        else:
            outcomes.append(Outcome.skipped(f"remove {alias} entries", 'none present'))

        if previous and self.confirm(f"Restore {hosts.path} from {previous[-1].name}?"):
            hosts.restore(previous[-1])
            outcomes.append(Outcome.ok('restore hosts', previous[-1].name))
        return outcomes

    def clean_shell_profile(self) -> Outcome:
        if not self.user:
            return Outcome.skipped('clean shell profile', 'invoking user unknown')
        profile = detect_profile(self.user)
        rc_file = profile.rc_file(self.user.home)
        removed = strip_profile(rc_file)
        if removed is None:
            return Outcome.skipped('clean shell profile', f"{rc_file} not found")
        if not removed:
            return Outcome.skipped('clean shell profile', 'no kubectl lines')
        return Outcome.ok('clean shell profile', f"{removed} line(s) removed from {rc_file}")

    def daemon_reload(self) -> Outcome:
        self.runner.run(['systemctl', 'daemon-reload'])
        return Outcome.ok('daemon reload')

    def verify_port(self) -> Outcome:
        step = f"verify port {self.port}"
        if not self._has('lsof'):
            return Outcome.skipped(step, 'lsof not available')
        pids = self._port_holders()
        if not pids:
            return Outcome.ok(step, 'port is free')

        self._kill(pids)
        self.sleep(self.config.timeouts.port_release_grace)
        if not self._port_holders():
            return Outcome.ok(step, 'port is free')

        holders = self.runner.run(['lsof', '-i', f':{self.port}'], check=False)
        return Outcome.failed(step, f"port still in use:\n{holders.stdout.strip()}")

    def remove_optional_packages(self) -> List[Outcome]:
        outcomes = []
        completion = [p.completion_package for p in SHELL_PROFILES.values() if p.completion_package]
        if self.confirm(f"Remove shell completion packages ({', '.join(completion)})?"):
            result = self.runner.run(['apt-get', 'remove', '-y', *completion], check=False)
            outcomes.append(Outcome.ok('remove completion packages') if result.ok
                            else Outcome.failed('remove completion packages', result.tail(1)))
        else:
            outcomes.append(Outcome.skipped('remove completion packages', 'kept'))

        if self.confirm(f"Remove base packages ({', '.join(BASE_PACKAGES)})?"):
            self.runner.run(['apt-get', 'remove', '-y', *BASE_PACKAGES])
            self.runner.run(['apt-get', 'autoremove', '-y'])
            outcomes.append(Outcome.ok('remove base packages'))
        else:
            outcomes.append(Outcome.skipped('remove base packages', 'kept'))
        return outcomes
