import json

import pytest
from typer.testing import CliRunner

from kubestrap import __version__, cli
from kubestrap.commands import install, uninstall, versions
from kubestrap.errors import PreflightError
from kubestrap.modules.kubeadm.models import CleanupReport, Outcome, VersionSet

runner = CliRunner()


class StubWorkflow:
    calls = []
    error = None

    def __init__(self, config):
        self.config = config

    def run_control_plane(self):
        StubWorkflow.calls.append(('control-plane',))
        if StubWorkflow.error:
            raise StubWorkflow.error

    def run_worker(self, address):
        StubWorkflow.calls.append(('worker', address))

    def uninstall(self, confirm=None):
        StubWorkflow.calls.append(('uninstall', confirm('Remove shell completion packages?')))
        report = CleanupReport()
        report.add(Outcome.ok('stop kubelet'))
        report.add(Outcome.skipped('kubeadm reset', 'kubeadm not installed'))
        report.add(Outcome.failed('verify port 6443', 'port still in use'))
        report.finish()
        return report


@pytest.fixture(autouse=True)
def stubs(monkeypatch):
    StubWorkflow.calls = []
    StubWorkflow.error = None
    monkeypatch.setattr(cli, 'setup_logging', lambda **kwargs: None)
    monkeypatch.setattr(install, 'ProvisioningWorkflow', StubWorkflow)
    monkeypatch.setattr(uninstall, 'ProvisioningWorkflow', StubWorkflow)
    monkeypatch.delenv('CONTROL_PLANE_IP', raising=False)


def test_help_lists_command_groups():
    result = runner.invoke(cli.app, ['--help'])
    assert result.exit_code == 0
    for group in ('install', 'uninstall', 'versions', 'validate'):
        assert group in result.output


def test_version():
    result = runner.invoke(cli.app, ['--version'])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_missing_config_file(tmp_path):
    result = runner.invoke(cli.app, ['--config', str(tmp_path / 'missing.yaml'), 'install', 'control-plane'])
    assert result.exit_code == 1
    assert 'Config file not found' in result.output
    assert StubWorkflow.calls == []


def test_control_plane():
    result = runner.invoke(cli.app, ['install', 'control-plane'])
    assert result.exit_code == 0
    assert StubWorkflow.calls == [('control-plane',)]
    assert 'installation completed' in result.output


def test_control_plane_failure_exits_1():
    StubWorkflow.error = PreflightError("Insufficient CPU cores. Found: 1, Required: 2 or more")
    result = runner.invoke(cli.app, ['install', 'control-plane'])
    assert result.exit_code == 1
    assert '❌ Insufficient CPU cores' in result.output


def test_worker_invalid_address_exits_1():
    result = runner.invoke(cli.app, ['install', 'worker', '10.0.0.300'])
    assert result.exit_code == 1
    assert 'Invalid IP address format: 10.0.0.300' in result.output
    assert StubWorkflow.calls == []


def test_worker_address_argument():
    result = runner.invoke(cli.app, ['install', 'worker', '10.0.0.5'])
    assert result.exit_code == 0
    assert StubWorkflow.calls == [('worker', '10.0.0.5')]


def test_worker_address_from_environment():
    result = runner.invoke(cli.app, ['install', 'worker'], env={'CONTROL_PLANE_IP': '10.0.0.6'})
    assert result.exit_code == 0
    assert StubWorkflow.calls == [('worker', '10.0.0.6')]


def test_worker_environment_overrides_argument():
    result = runner.invoke(cli.app, ['install', 'worker', '10.0.0.1'], env={'CONTROL_PLANE_IP': '10.0.0.9'})
    assert result.exit_code == 0
    assert 'Using control plane IP: 10.0.0.9' in result.output
    assert StubWorkflow.calls == [('worker', '10.0.0.9')]


def test_worker_address_prompt():
    result = runner.invoke(cli.app, ['install', 'worker'], input='10.0.0.7\n')
    assert result.exit_code == 0
    assert 'Control plane IP not provided.' in result.output
    assert StubWorkflow.calls == [('worker', '10.0.0.7')]


def test_worker_empty_prompt_exits_1():
    result = runner.invoke(cli.app, ['install', 'worker'], input='\n')
    assert result.exit_code == 1
    assert 'Control plane IP is required' in result.output


def test_uninstall_cancelled():
    result = runner.invoke(cli.app, ['uninstall', 'node'], input='n\n')
    assert result.exit_code == 0
    assert 'Uninstall cancelled.' in result.output
    assert StubWorkflow.calls == []


def test_uninstall_yes_reports_outcomes():
    result = runner.invoke(cli.app, ['uninstall', 'node', '--yes'])

    assert result.exit_code == 0
    assert StubWorkflow.calls == [('uninstall', False)]
    assert '✓ stop kubelet' in result.output
    assert '- kubeadm reset: kubeadm not installed' in result.output
    assert '✗ verify port 6443: port still in use' in result.output
    assert '1 ok, 1 skipped, 1 failed' in result.output
    assert 'Some steps failed' in result.output


def test_versions_show_json(monkeypatch):
    resolved = VersionSet('2.1.3', '1.3.0', '1.33.1', '1.17.5', '0.18.5', '3.10')

    class StubResolver:
        @classmethod
        def from_config(cls, config):
            return cls()

        def resolve_all(self):
            return resolved

    monkeypatch.setattr(versions, 'VersionResolver', StubResolver)

    result = runner.invoke(cli.app, ['versions', 'show', '--output', 'json'])

    assert result.exit_code == 0
    assert json.loads(result.output) == resolved.as_dict()


def test_versions_show_rejects_unknown_format():
    result = runner.invoke(cli.app, ['versions', 'show', '--output', 'xml'])
    assert result.exit_code == 1
    assert 'Unsupported output format: xml' in result.output
