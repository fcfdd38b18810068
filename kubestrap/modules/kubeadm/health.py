"""Cluster checks through the Kubernetes API."""
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

from kubestrap.errors import InstallError

logger = logging.getLogger(__name__)

CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane"


class ClusterClient:
    """Thin wrapper over the API calls needed right after ``kubeadm init``."""

    def __init__(self, api_client: Optional[client.ApiClient] = None,
                 core: Optional[Any] = None, version: Optional[Any] = None):
        self.api_client = api_client or client.ApiClient()
        self.core = core or client.CoreV1Api(self.api_client)
        self.version = version or client.VersionApi(self.api_client)

    @classmethod
    def from_kubeconfig(cls, path: Union[str, Path]) -> 'ClusterClient':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {path}")
        return cls(config.new_client_from_config(config_file=str(path)))

    def server_version(self) -> str:
        return self.version.get_code().git_version

    def wait_until_reachable(self, timeout: float = 60, interval: float = 5) -> str:
        """Poll the API server until it answers.

        Returns:
            str: The server's git version

        Raises:
            InstallError: If the API server is still unreachable after ``timeout``
        """
        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        try:
            version = retryer(self.server_version)
        except Exception as e:
            raise InstallError(f"kubectl configuration failed: API server is not reachable ({e})") from e
        logger.info(f"✅ API server reachable, version {version}")
        return version

    def tainted_nodes(self, key: str = CONTROL_PLANE_TAINT) -> List[str]:
        """Names of nodes carrying a taint with ``key``."""
        try:
            nodes = self.core.list_node().items
        except ApiException as e:
            raise InstallError(f"Failed to list nodes: {e.reason}") from e
        return [
            node.metadata.name for node in nodes
            if any(taint.key == key for taint in (node.spec.taints or []))
        ]

    def remove_taint(self, key: str = CONTROL_PLANE_TAINT) -> List[str]:
        """Remove every taint with ``key`` from every node.

        Returns:
            List[str]: Names of the nodes that were changed
        """
        changed = []
        for node in self.core.list_node().items:
            taints = node.spec.taints or []
            kept = [taint for taint in taints if taint.key != key]
            if len(kept) == len(taints):
                continue
            body = {"spec": {"taints": [self.api_client.sanitize_for_serialization(t) for t in kept]}}
            try:
                self.core.patch_node(node.metadata.name, body)
            except ApiException as e:
                raise InstallError(f"Failed to remove taint {key} from {node.metadata.name}: {e.reason}") from e
            logger.info(f"Removed taint {key} from {node.metadata.name}")
            changed.append(node.metadata.name)
        return changed
