from kubestrap.modules.kubeadm.hosts import HostsFile, line_names
from kubestrap.modules.kubeadm.models import HostEntry

HOSTS = """127.0.0.1 localhost
10.0.0.9 k8scp
# 10.0.0.8 k8scp
10.0.0.9 node1 node1.lan
192.168.5.5 k8scp-backup
"""


def test_line_names():
    assert line_names("10.0.0.1 a b # comment") == ['a', 'b']
    assert line_names("# 10.0.0.1 a") == []
    assert line_names("   ") == []


def test_upsert_replaces_and_prepends(tmp_path):
    path = tmp_path / 'hosts'
    path.write_text(HOSTS)
    hosts = HostsFile(path)

    hosts.upsert([HostEntry('10.0.0.5', 'k8scp'), HostEntry('10.0.0.5', 'node1')])

    lines = path.read_text().splitlines()
    assert lines[:2] == ['10.0.0.5 k8scp', '10.0.0.5 node1']
    assert [line for line in lines if 'k8scp' in line_names(line)] == ['10.0.0.5 k8scp']
    assert [line for line in lines if 'node1' in line_names(line)] == ['10.0.0.5 node1']
    # comments and similarly named hosts are untouched
    assert '# 10.0.0.8 k8scp' in lines
    assert '192.168.5.5 k8scp-backup' in lines
    assert '127.0.0.1 localhost' in lines


def test_upsert_twice_keeps_one_entry(tmp_path):
    path = tmp_path / 'hosts'
    path.write_text(HOSTS)
    hosts = HostsFile(path)
    entries = [HostEntry('10.0.0.5', 'k8scp'), HostEntry('10.0.0.5', 'node1')]

    hosts.upsert(entries)
    first = path.read_text()
    hosts.upsert(entries)

    assert path.read_text() == first
    names = [name for line in hosts.read_lines() for name in line_names(line)]
    assert names.count('k8scp') == 1


def test_upsert_creates_missing_file(tmp_path):
    path = tmp_path / 'etc' / 'hosts'
    HostsFile(path).upsert([HostEntry('10.0.0.5', 'k8scp')])
    assert path.read_text() == '10.0.0.5 k8scp\n'


def test_remove_name(tmp_path):
    path = tmp_path / 'hosts'
    path.write_text(HOSTS)
    hosts = HostsFile(path)

    assert hosts.remove_name('k8scp') == 1
    assert hosts.remove_name('k8scp') == 0
    assert 'k8scp-backup' in path.read_text()


def test_backup_and_restore(tmp_path):
    path = tmp_path / 'hosts'
    path.write_text(HOSTS)
    hosts = HostsFile(path)

    older = hosts.backup('20240101000000')
    newer = hosts.backup('20250101000000')
    assert hosts.backups() == [older, newer]

    path.write_text('')
    hosts.restore(newer)
    assert path.read_text() == HOSTS


def test_backup_of_missing_file(tmp_path):
    assert HostsFile(tmp_path / 'hosts').backup() is None
