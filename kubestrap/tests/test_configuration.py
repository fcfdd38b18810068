import pytest
import yaml

from kubestrap.modules.kubeadm.installer import configuration
from kubestrap.modules.kubeadm.installer.configuration import (
    ConfigurationError,
    patch_kubeadm_config,
    render_kubeadm_config,
    render_sysctl_config,
    write_kubeadm_config,
)
from kubestrap.modules.kubeadm.models import ClusterEndpoint


@pytest.fixture
def endpoint():
    return ClusterEndpoint(
        control_plane_address='10.0.0.5',
        control_plane_hostname='node1',
        pod_subnet='192.168.0.0/16',
        api_version='kubeadm.k8s.io/v1beta4',
    )


def test_render_kubeadm_config(endpoint):
    doc = yaml.safe_load(render_kubeadm_config(endpoint, '1.33.1'))
    assert doc == {
        'apiVersion': 'kubeadm.k8s.io/v1beta4',
        'kind': 'ClusterConfiguration',
        'kubernetesVersion': 'v1.33.1',
        'controlPlaneEndpoint': 'k8scp:6443',
        'networking': {'podSubnet': '192.168.0.0/16'},
    }


def test_render_requires_api_version(endpoint):
    bare = ClusterEndpoint('10.0.0.5', 'node1', '192.168.0.0/16')
    with pytest.raises(ConfigurationError, match='API version'):
        render_kubeadm_config(bare, '1.33.1')


def test_missing_template_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match='not found'):
        configuration._render('missing.j2')


def test_render_sysctl_config():
    text = render_sysctl_config({'net.ipv4.ip_forward': 1})
    assert text == "# Managed by kubestrap\nnet.ipv4.ip_forward = 1\n"


def test_patch_updates_versions_and_keeps_operator_settings(endpoint):
    existing = """apiVersion: kubeadm.k8s.io/v1beta3
kind: ClusterConfiguration
kubernetesVersion: v1.30.2
controlPlaneEndpoint: lb.example.com:6443
networking:
  podSubnet: 10.244.0.0/16
  serviceSubnet: 10.96.0.0/12
---
apiVersion: kubelet.config.k8s.io/v1beta1
kind: KubeletConfiguration
cgroupDriver: systemd
"""
    docs = list(yaml.safe_load_all(patch_kubeadm_config(existing, endpoint, '1.33.1')))

    cluster, kubelet = docs
    assert cluster['apiVersion'] == 'kubeadm.k8s.io/v1beta4'
    assert cluster['kubernetesVersion'] == 'v1.33.1'
    assert cluster['controlPlaneEndpoint'] == 'lb.example.com:6443'
    assert cluster['networking'] == {'podSubnet': '10.244.0.0/16', 'serviceSubnet': '10.96.0.0/12'}
    assert kubelet['apiVersion'] == 'kubelet.config.k8s.io/v1beta1'
    assert kubelet['cgroupDriver'] == 'systemd'


def test_patch_appends_missing_cluster_configuration(endpoint):
    existing = "apiVersion: kubeadm.k8s.io/v1beta3\nkind: InitConfiguration\n"
    docs = list(yaml.safe_load_all(patch_kubeadm_config(existing, endpoint, '1.33.1')))

    assert [doc['kind'] for doc in docs] == ['InitConfiguration', 'ClusterConfiguration']
    assert docs[0]['apiVersion'] == 'kubeadm.k8s.io/v1beta4'
    assert docs[1]['networking'] == {'podSubnet': '192.168.0.0/16'}


def test_patch_rejects_invalid_yaml(endpoint):
    with pytest.raises(ConfigurationError):
        patch_kubeadm_config("kind: [unclosed", endpoint, '1.33.1')


def test_write_creates_then_updates(tmp_path, endpoint):
    path = tmp_path / 'kubeadm-config.yaml'

    write_kubeadm_config(path, endpoint, '1.32.0')
    assert yaml.safe_load(path.read_text())['kubernetesVersion'] == 'v1.32.0'

    write_kubeadm_config(path, endpoint, '1.33.1')
    docs = list(yaml.safe_load_all(path.read_text()))
    assert len(docs) == 1
    assert docs[0]['kubernetesVersion'] == 'v1.33.1'
