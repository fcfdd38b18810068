from pathlib import Path

import pytest
import yaml

from kubestrap.config import KubestrapConfig, PathsConfig, env_overrides
from kubestrap.utils import merge_dicts, parse_duration


def test_defaults():
    config = KubestrapConfig.load(environ={})
    assert config.host.min_cpus == 2
    assert config.cluster.alias == 'k8scp'
    assert config.cluster.api_port == 6443
    assert config.versions.package_revision == '1.1'


def test_load_file_with_environment_override(tmp_path):
    path = tmp_path / 'kubestrap.yaml'
    path.write_text(yaml.safe_dump({
        'cluster': {'pod_subnet': '10.244.0.0/16', 'alias': 'cp'},
        'versions': {'kubernetes': '1.32.4'},
    }))

    config = KubestrapConfig.load(path, environ={
        'KUBESTRAP_CLUSTER__ALIAS': 'k8s-api',
        'KUBESTRAP_HOST__MIN_CPUS': '4',
        'UNRELATED': 'x',
    })

    assert config.cluster.pod_subnet == '10.244.0.0/16'
    assert config.cluster.alias == 'k8s-api'
    assert config.host.min_cpus == 4
    assert config.versions.pin_for('kubernetes') == '1.32.4'
    assert config.versions.pin_for('cilium-cli') is None


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        KubestrapConfig.load(tmp_path / 'missing.yaml', environ={})


def test_unknown_sections_are_ignored(tmp_path):
    path = tmp_path / 'kubestrap.yaml'
    path.write_text(yaml.safe_dump({'ansible': {'inventory': 'hosts'}, 'cluster': {'alias': 'cp'}}))

    config = KubestrapConfig.load(path, environ={'KUBESTRAP_NODES__COUNT': '3'})

    assert KubestrapConfig.model_config['extra'] == 'ignore'
    assert config.cluster.alias == 'cp'
    assert 'ansible' not in config.model_dump()
    assert 'nodes' not in config.model_dump()


def test_env_overrides_ignores_malformed_keys():
    assert env_overrides({
        'KUBESTRAP_LOGGING__LEVEL': 'DEBUG',
        'KUBESTRAP_LEVEL': 'x',
        'KUBESTRAP_A__B__C': 'x',
    }) == {'logging': {'level': 'DEBUG'}}


def test_host_paths_are_rebased(tmp_path):
    paths = PathsConfig(root=tmp_path, work_dir=tmp_path / 'work')
    assert paths.host('/etc/hosts') == tmp_path / 'etc' / 'hosts'
    assert paths.work('kubeadm-config.yaml') == tmp_path / 'work' / 'kubeadm-config.yaml'
    assert PathsConfig().host('/etc/hosts') == Path('/etc/hosts')


def test_merge_dicts():
    assert merge_dicts({'a': {'b': 1, 'c': 2}}, {'a': {'c': 3}, 'd': 4}) == {'a': {'b': 1, 'c': 3}, 'd': 4}


@pytest.mark.parametrize('value,seconds', [('10m', 600), ('90s', 90), ('1h', 3600), ('45', 45), (30, 30)])
def test_parse_duration(value, seconds):
    assert parse_duration(value) == seconds
