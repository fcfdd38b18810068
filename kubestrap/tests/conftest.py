import json
import os
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest
import requests

from kubestrap.config import KubestrapConfig, PathsConfig, TimeoutConfig, set_config
from kubestrap.modules.kubeadm.executor import CommandResult, CommandRunner
from kubestrap.modules.kubeadm.models import Architecture, HostProfile, InvokingUser, VersionSet

Response = Union[Tuple[int, str, str], Callable[[List[str]], CommandResult]]


class FakeRunner(CommandRunner):
    """Records commands instead of running them.

    Responses are matched by command prefix; the most recently registered
    match wins. Unmatched commands succeed with empty output.
    """

    def __init__(self, binaries=()):
        super().__init__()
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.responses: List[Tuple[Tuple[str, ...], Response]] = []
        self.binaries = set(binaries)

    def respond(self, prefix: str, returncode: int = 0, stdout: str = '', stderr: str = '') -> None:
        self.responses.insert(0, (tuple(prefix.split()), (returncode, stdout, stderr)))

    def respond_with(self, prefix: str, handler: Callable[[List[str]], CommandResult]) -> None:
        self.responses.insert(0, (tuple(prefix.split()), handler))

    def _execute(self, command, timeout, input, env):
        self.calls.append(command)
        self.inputs.append(input)
        for prefix, response in self.responses:
            if tuple(command[:len(prefix)]) == prefix:
                if callable(response):
                    return response(command)
                returncode, stdout, stderr = response
                return CommandResult(command, returncode, stdout, stderr)
        return CommandResult(command, 0, '', '')

    def which(self, binary):
        return f"/usr/bin/{binary}" if binary in self.binaries else None

    @property
    def commands(self) -> List[str]:
        return [' '.join(call) for call in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(command.startswith(prefix) for command in self.commands)

    def index(self, prefix: str) -> int:
        for i, command in enumerate(self.commands):
            if command.startswith(prefix):
                return i
        raise AssertionError(f"{prefix!r} was not run; ran: {self.commands}")


class FakeResponse:
    def __init__(self, content: bytes = b'', status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @property
    def text(self) -> str:
        return self.content.decode()

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        yield self.content


class FakeSession:
    """Serves fixed bodies by URL; anything else is a 404."""

    def __init__(self, files: Optional[Dict[str, Union[bytes, str]]] = None):
        self.files = {url: body.encode() if isinstance(body, str) else body
                      for url, body in (files or {}).items()}
        self.headers: Dict[str, str] = {}
        self.requested: List[str] = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        if url in self.files:
            return FakeResponse(self.files[url])
        return FakeResponse(b'', 404)


class FakeMetadataClient:
    """Release metadata without network access; unknown lookups fail."""

    def __init__(self, releases=None, files=None, texts=None, session=None):
        self.releases: Dict[str, str] = releases or {}
        self.files: Dict[Tuple[str, str, str], str] = files or {}
        self.texts: Dict[str, str] = texts or {}
        self.session = session or FakeSession()
        self.lookups: List[str] = []

    def latest_release_tag(self, repo):
        self.lookups.append(f"release:{repo}")
        if repo not in self.releases:
            raise requests.ConnectionError(f"cannot reach {repo}")
        return self.releases[repo]

    def raw_file(self, repo, ref, path):
        self.lookups.append(f"raw:{repo}@{ref}")
        if (repo, ref, path) not in self.files:
            raise requests.HTTPError("404 Not Found")
        return self.files[(repo, ref, path)]

    def fetch_text(self, url):
        self.lookups.append(f"url:{url}")
        if url not in self.texts:
            raise requests.HTTPError("404 Not Found")
        return self.texts[url]


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def config(tmp_path):
    root = tmp_path / 'root'
    work = tmp_path / 'work'
    root.mkdir()
    work.mkdir()
    settings = KubestrapConfig(
        paths=PathsConfig(root=root, work_dir=work),
        timeouts=TimeoutConfig(port_release_grace=0, process_grace=0),
    )
    set_config(settings)
    yield settings
    set_config(None)


@pytest.fixture
def user(tmp_path):
    home = tmp_path / 'home'
    home.mkdir()
    return InvokingUser(name='tester', uid=os.getuid(), gid=os.getgid(), home=str(home), shell='/bin/bash')


@pytest.fixture
def profile():
    return HostProfile(cpu_count=4, ram_bytes=8 * 1024 ** 3, os_family='linux', architecture=Architecture.AMD64)


@pytest.fixture
def versions():
    return VersionSet(
        runtime_version='2.1.3',
        shim_version='1.3.0',
        orchestrator_version='1.33.1',
        networking_plugin_version='1.17.5',
        networking_cli_version='0.18.5',
        sandbox_image_version='3.10',
    )


@pytest.fixture
def metadata():
    return FakeMetadataClient()
