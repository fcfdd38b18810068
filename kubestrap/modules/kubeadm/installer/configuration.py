"""Configuration file generation.

Templates live in templates/ and are rendered with Jinja2:
- kubeadm-config.yaml.j2: ClusterConfiguration for ``kubeadm init``
  (api_version, kubernetes_version, endpoint, pod_subnet)
- sysctl.conf.j2: kernel parameters required by Kubernetes networking

An existing kubeadm configuration is patched rather than replaced, so that
operator additions survive a re-run.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

from kubestrap.errors import KubestrapError
from kubestrap.utils import atomic_write_text
from ..models import ClusterEndpoint

logger = logging.getLogger(__name__)

KUBEADM_GROUP = "kubeadm.k8s.io/"

SYSCTL_SETTINGS = {
    'net.bridge.bridge-nf-call-ip6tables': 1,
    'net.bridge.bridge-nf-call-iptables': 1,
    'net.ipv4.ip_forward': 1,
}


class ConfigurationError(KubestrapError):
    """Raised when there is an error generating the configuration."""
    pass


def get_template_path() -> str:
    """Get the absolute path to the templates directory."""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def _render(template_name: str, **context: Any) -> str:
    env = Environment(
        loader=FileSystemLoader(get_template_path()),
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined  # Raise error for undefined variables
    )
    try:
        text = env.get_template(template_name).render(**context)
    except TemplateNotFound as e:
        raise ConfigurationError(f"Configuration template not found: {e}") from e
    except TemplateSyntaxError as e:
        raise ConfigurationError(f"Template syntax error: {e}") from e
    except UndefinedError as e:
        raise ConfigurationError(f"Missing required template variable: {e}") from e
    return text if text.endswith('\n') else text + '\n'


def render_sysctl_config(settings: Optional[Dict[str, Any]] = None) -> str:
    return _render('sysctl.conf.j2', settings=settings or SYSCTL_SETTINGS)


def render_kubeadm_config(endpoint: ClusterEndpoint, kubernetes_version: str) -> str:
    """Render a fresh ClusterConfiguration document.

    Raises:
        ConfigurationError: If the endpoint has no kubeadm API version
    """
    if not endpoint.api_version:
        raise ConfigurationError("kubeadm API version must be known before rendering the configuration")
    return _render(
        'kubeadm-config.yaml.j2',
        api_version=endpoint.api_version,
        kubernetes_version=kubernetes_version,
        endpoint=endpoint.endpoint,
        pod_subnet=endpoint.pod_subnet,
    )


def patch_kubeadm_config(text: str, endpoint: ClusterEndpoint, kubernetes_version: str) -> str:
    """Bring an existing kubeadm configuration up to date.

    Every kubeadm.k8s.io document gets the new apiVersion. The
    ClusterConfiguration gets the new kubernetesVersion; its
    controlPlaneEndpoint and networking.podSubnet are only filled in when
    missing. Documents of other API groups (KubeletConfiguration, ...) are
    left as they are.

    Raises:
        ConfigurationError: If the file is not valid YAML
    """
    try:
        documents: List[Any] = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Existing kubeadm configuration is not valid YAML: {e}") from e

    found_cluster_config = False
    for doc in documents:
        if not isinstance(doc, dict):
            continue
        if str(doc.get('apiVersion', '')).startswith(KUBEADM_GROUP) and endpoint.api_version:
            doc['apiVersion'] = endpoint.api_version
        if doc.get('kind') == 'ClusterConfiguration':
            found_cluster_config = True
            doc['kubernetesVersion'] = f"v{kubernetes_version}"
            doc.setdefault('controlPlaneEndpoint', endpoint.endpoint)
            networking = doc.setdefault('networking', {}) or {}
            networking.setdefault('podSubnet', endpoint.pod_subnet)
            doc['networking'] = networking

    if not found_cluster_config:
        logger.warning("No ClusterConfiguration found in existing kubeadm configuration, appending one")
        documents.append(yaml.safe_load(render_kubeadm_config(endpoint, kubernetes_version)))

    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)


def write_kubeadm_config(path: Union[str, Path], endpoint: ClusterEndpoint, kubernetes_version: str) -> Path:
    """Create or update the kubeadm configuration file at ``path``."""
    path = Path(path)
    if path.exists():
        logger.info(f"Updating {path} with Kubernetes version {kubernetes_version}")
        content = patch_kubeadm_config(path.read_text(), endpoint, kubernetes_version)
    else:
        logger.info(f"Creating {path} with Kubernetes version {kubernetes_version}")
        content = render_kubeadm_config(endpoint, kubernetes_version)
    atomic_write_text(path, content)
    return path
