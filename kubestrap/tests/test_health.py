from types import SimpleNamespace

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from kubestrap.errors import InstallError
from kubestrap.modules.kubeadm.health import CONTROL_PLANE_TAINT, ClusterClient


def node(name, *taint_keys):
    taints = [client.V1Taint(key=key, effect='NoSchedule') for key in taint_keys] or None
    return client.V1Node(metadata=client.V1ObjectMeta(name=name), spec=client.V1NodeSpec(taints=taints))


class FakeCoreApi:
    def __init__(self, nodes, patch_error=None):
        self.nodes = nodes
        self.patch_error = patch_error
        self.patches = []

    def list_node(self):
        return client.V1NodeList(items=self.nodes)

    def patch_node(self, name, body):
        if self.patch_error:
            raise self.patch_error
        self.patches.append((name, body))


class FakeVersionApi:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0

    def get_code(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError("connection refused")
        return SimpleNamespace(git_version='v1.33.1')


def test_tainted_nodes():
    core = FakeCoreApi([node('cp1', CONTROL_PLANE_TAINT), node('w1'), node('w2', 'dedicated')])
    assert ClusterClient(core=core, version=FakeVersionApi()).tainted_nodes() == ['cp1']


def test_remove_taint_keeps_other_taints():
    core = FakeCoreApi([node('cp1', CONTROL_PLANE_TAINT, 'dedicated'), node('w1')])

    changed = ClusterClient(core=core, version=FakeVersionApi()).remove_taint()

    assert changed == ['cp1']
    assert core.patches == [('cp1', {'spec': {'taints': [{'key': 'dedicated', 'effect': 'NoSchedule'}]}})]


def test_remove_taint_api_error():
    core = FakeCoreApi([node('cp1', CONTROL_PLANE_TAINT)], patch_error=ApiException(status=403, reason='Forbidden'))
    with pytest.raises(InstallError, match='Forbidden'):
        ClusterClient(core=core, version=FakeVersionApi()).remove_taint()


def test_wait_until_reachable_retries():
    version = FakeVersionApi(failures=2)
    cluster = ClusterClient(core=FakeCoreApi([]), version=version)

    assert cluster.wait_until_reachable(timeout=30, interval=0) == 'v1.33.1'
    assert version.calls == 3


def test_unreachable_api_server():
    cluster = ClusterClient(core=FakeCoreApi([]), version=FakeVersionApi(failures=100))
    with pytest.raises(InstallError, match='not reachable'):
        cluster.wait_until_reachable(timeout=0, interval=0)


def test_missing_kubeconfig(tmp_path):
    with pytest.raises(FileNotFoundError):
        ClusterClient.from_kubeconfig(tmp_path / 'admin.conf')
