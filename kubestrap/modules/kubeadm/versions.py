"""Component version resolution.

Each component is resolved by an ordered chain of strategies; the first one
that yields a well-formed version wins. Failures of a single strategy are
logged and the chain moves on. Only an unusable Kubernetes version is fatal,
since every later step depends on it.
"""
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from kubestrap.config import KubestrapConfig, VersionConfig
from kubestrap.errors import ResolutionError, VersionResolutionError
from .models import VersionSet, is_version, normalize_version, parse_minor

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
GITHUB_RAW = "https://raw.githubusercontent.com"

CONTAINERD_REPO = "containerd/containerd"
RUNC_REPO = "opencontainers/runc"
KUBERNETES_REPO = "kubernetes/kubernetes"
CILIUM_REPO = "cilium/cilium"
CILIUM_CLI_REPO = "cilium/cilium-cli"

KUBEADM_CONSTANTS_PATH = "cmd/kubeadm/app/constants/constants.go"

PAUSE_ASSIGNMENT = re.compile(r'(?:PauseVersion|pauseVersion)\s*=\s*"([^"]+)"')
PAUSE_LOOSE = re.compile(r'pause.*version\s*=\s*"([^"]+)"', re.IGNORECASE)

# (lowest minor, highest minor, pause version) for Kubernetes 1.x
PAUSE_VERSION_TABLE: List[Tuple[int, int, str]] = [
    (31, 33, "3.10"),
    (27, 30, "3.9"),
    (25, 26, "3.8"),
]
DEFAULT_PAUSE_VERSION = "3.10"

RETRYABLE_ERRORS = (requests.ConnectionError, requests.Timeout)


class MetadataClient:
    """Fetches release metadata from GitHub over HTTPS."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15,
                 token: Optional[str] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.session.headers.setdefault('User-Agent', 'kubestrap')
        if token:
            self.session.headers['Authorization'] = f"Bearer {token}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )
    def fetch_text(self, url: str) -> str:
        """GET ``url`` and return the body as text.

        Raises:
            requests.RequestException: On transport errors or an error status
        """
        logger.debug(f"GET {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )
    def latest_release_tag(self, repo: str) -> str:
        """Return the tag name of the latest GitHub release of ``repo``."""
        url = f"{GITHUB_API}/repos/{repo}/releases/latest"
        logger.debug(f"GET {url}")
        response = self.session.get(url, timeout=self.timeout,
                                    headers={'Accept': 'application/vnd.github+json'})
        response.raise_for_status()
        tag = response.json().get('tag_name')
        if not tag:
            raise ResolutionError(f"No tag_name in latest release of {repo}")
        return tag

    def raw_file(self, repo: str, ref: str, path: str) -> str:
        """Return a file from ``repo`` at ``ref``."""
        return self.fetch_text(f"{GITHUB_RAW}/{repo}/{ref}/{path}")


class ResolutionStrategy:
    """One way of finding a component version."""

    description = "strategy"

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        """Return a bare version string.

        Raises:
            ResolutionError: If this strategy cannot produce a version
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.description}>"


def _checked(value: Optional[str], source: str) -> str:
    version = normalize_version(value)
    if not is_version(version):
        raise ResolutionError(f"{source} returned {value!r}, which is not a version")
    return version


class PinnedVersion(ResolutionStrategy):
    """Operator pin from configuration."""

    description = "pinned"

    def __init__(self, value: Optional[str]):
        self.value = value

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        if not self.value:
            raise ResolutionError("no pin configured")
        return _checked(self.value, "pin")


class LatestGitHubRelease(ResolutionStrategy):
    def __init__(self, client: MetadataClient, repo: str):
        self.client = client
        self.repo = repo
        self.description = f"latest release of {repo}"

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        try:
            tag = self.client.latest_release_tag(self.repo)
        except requests.RequestException as e:
            raise ResolutionError(f"{self.description}: {e}") from e
        return _checked(tag, self.description)


class StableChannelFile(ResolutionStrategy):
    """A one-line stable.txt style file published in a repository."""

    def __init__(self, client: MetadataClient, repo: str, path: str = "stable.txt", ref: str = "main"):
        self.client = client
        self.repo = repo
        self.path = path
        self.ref = ref
        self.description = f"{repo}/{ref}/{path}"

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        try:
            text = self.client.raw_file(self.repo, self.ref, self.path)
        except requests.RequestException as e:
            raise ResolutionError(f"{self.description}: {e}") from e
        lines = text.strip().splitlines()
        return _checked(lines[0] if lines else '', self.description)


class StaticVersion(ResolutionStrategy):
    """Last-resort built-in version."""

    def __init__(self, value: str):
        self.value = value
        self.description = f"fallback {value}"

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        return _checked(self.value, self.description)


class PauseFromConstants(ResolutionStrategy):
    """Reads the pause version kubeadm itself pins for a release.

    With ``ref=None`` the ``release-<major.minor>`` branch of the Kubernetes
    version being installed is used.
    """

    def __init__(self, client: MetadataClient, ref: Optional[str] = None):
        self.client = client
        self.ref = ref
        self.description = f"kubeadm constants on {ref or 'release branch'}"

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        ref = self.ref
        if ref is None:
            if not kubernetes_version:
                raise ResolutionError("release branch lookup needs a Kubernetes version")
            major, minor = parse_minor(kubernetes_version)
            ref = f"release-{major}.{minor}"

        try:
            text = self.client.raw_file(KUBERNETES_REPO, ref, KUBEADM_CONSTANTS_PATH)
        except requests.RequestException as e:
            raise ResolutionError(f"constants.go on {ref}: {e}") from e

        match = PAUSE_ASSIGNMENT.search(text) or PAUSE_LOOSE.search(text)
        if not match:
            raise ResolutionError(f"no pause version found in constants.go on {ref}")
        return _checked(match.group(1), f"constants.go on {ref}")


class PauseVersionTable(ResolutionStrategy):
    """Static mapping from Kubernetes minor version to pause version."""

    description = "pause version table"

    def __init__(self, table: Sequence[Tuple[int, int, str]] = PAUSE_VERSION_TABLE,
                 default: str = DEFAULT_PAUSE_VERSION):
        self.table = table
        self.default = default

    def resolve(self, kubernetes_version: Optional[str] = None) -> str:
        return pause_for_kubernetes(kubernetes_version, self.table, self.default)


def pause_for_kubernetes(kubernetes_version: Optional[str],
                         table: Sequence[Tuple[int, int, str]] = PAUSE_VERSION_TABLE,
                         default: str = DEFAULT_PAUSE_VERSION) -> str:
    """Look up the pause version for a Kubernetes version in the static table."""
    try:
        major, minor = parse_minor(kubernetes_version or '')
    except ValueError:
        logger.warning(f"Cannot read Kubernetes version {kubernetes_version!r}, using pause {default}")
        return default

    if major == 1:
        for low, high, pause in table:
            if low <= minor <= high:
                return pause

    logger.warning(f"⚠️  No pause mapping for Kubernetes {major}.{minor}, using default pause {default}")
    return default


class VersionResolver:
    """Resolves the full VersionSet for one provisioning run."""

    def __init__(self, client: Optional[MetadataClient] = None,
                 versions: Optional[VersionConfig] = None,
                 chains: Optional[Dict[str, List[ResolutionStrategy]]] = None):
        self.versions = versions or VersionConfig()
        self.client = client or MetadataClient(token=self.versions.github_token)
        self.chains = chains or self.default_chains()

    @classmethod
    def from_config(cls, config: KubestrapConfig,
                    client: Optional[MetadataClient] = None) -> 'VersionResolver':
        client = client or MetadataClient(timeout=config.timeouts.http, token=config.versions.github_token)
        return cls(client=client, versions=config.versions)

    def default_chains(self) -> Dict[str, List[ResolutionStrategy]]:
        v = self.versions
        client = self.client
        chains = {
            'kubernetes': [
                LatestGitHubRelease(client, KUBERNETES_REPO),
                StaticVersion(v.fallback_kubernetes),
            ],
            'containerd': [
                LatestGitHubRelease(client, CONTAINERD_REPO),
                StaticVersion(v.fallback_containerd),
            ],
            'runc': [
                LatestGitHubRelease(client, RUNC_REPO),
                StaticVersion(v.fallback_runc),
            ],
            'cilium': [
                StableChannelFile(client, CILIUM_REPO),
                StaticVersion(v.fallback_cilium),
            ],
            'cilium-cli': [
                StableChannelFile(client, CILIUM_CLI_REPO),
                StaticVersion(v.fallback_cilium_cli),
            ],
            'pause': [
                PauseFromConstants(client),
                PauseFromConstants(client, ref="master"),
                PauseVersionTable(),
            ],
        }
        # an explicit pin always wins
        return {name: [PinnedVersion(v.pin_for(name)), *chain] for name, chain in chains.items()}

    def resolve(self, component: str, kubernetes_version: Optional[str] = None) -> Optional[str]:
        """Walk the chain for ``component`` and return the first usable version.

        Returns:
            Optional[str]: The version, or None if every strategy failed
        """
        for strategy in self.chains[component]:
            try:
                version = strategy.resolve(kubernetes_version)
            except ResolutionError as e:
                logger.debug(f"{component}: {strategy.description} failed: {e}")
                continue
            logger.info(f"📦 {component} {version} ({strategy.description})")
            return version

        logger.warning(f"⚠️  No strategy resolved a version for {component}")
        return None

    def resolve_all(self) -> VersionSet:
        """Resolve every component, Kubernetes first.

        Raises:
            VersionResolutionError: If Kubernetes or any required component is unresolved
        """
        kubernetes = self.resolve('kubernetes')
        if not kubernetes:
            raise VersionResolutionError("Could not determine a Kubernetes version")
        try:
            parse_minor(kubernetes)
        except ValueError as e:
            raise VersionResolutionError(f"Kubernetes version {kubernetes!r} is unusable: {e}") from e

        resolved = {'kubernetes': kubernetes}
        for component in ('containerd', 'runc', 'cilium', 'cilium-cli', 'pause'):
            version = self.resolve(component, kubernetes_version=kubernetes)
            if not version:
                raise VersionResolutionError(f"Could not determine a version for {component}")
            resolved[component] = version

        return VersionSet(
            runtime_version=resolved['containerd'],
            shim_version=resolved['runc'],
            orchestrator_version=resolved['kubernetes'],
            networking_plugin_version=resolved['cilium'],
            networking_cli_version=resolved['cilium-cli'],
            sandbox_image_version=resolved['pause'],
        )
