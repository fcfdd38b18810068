"""Utility functions and helpers for the kubestrap application."""
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from kubestrap.errors import InstallError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def merge_dicts(base: Dict[Any, Any], override: Dict[Any, Any]) -> Dict[Any, Any]:
    """Recursively merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary with values to override

    Returns:
        dict: Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def atomic_write_text(path: PathLike, content: str, mode: Optional[int] = None) -> None:
    """Replace a file's content in one rename so readers never see a partial file.

    The original file mode is kept unless ``mode`` is given.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None and path.exists():
        mode = path.stat().st_mode & 0o777

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f'.{path.name}.')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def file_sha256(path: PathLike) -> str:
    """Return the hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            digest.update(chunk)
    return digest.hexdigest()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, max=10),
    retry=retry_if_exception_type(requests.ConnectionError),
    reraise=True,
)
def download_file(session: requests.Session, url: str, dest: PathLike,
                  timeout: float = 60, mode: Optional[int] = None) -> Path:
    """Stream ``url`` into ``dest``.

    Args:
        session: HTTP session to use
        url: Source URL
        dest: Destination path; parent directories are created
        timeout: Per-request timeout in seconds
        mode: Optional file mode applied after the download

    Returns:
        Path: The destination path

    Raises:
        requests.HTTPError: If the server answers with an error status
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Downloading {url} -> {dest}")

    with session.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
        response.raise_for_status()
        with open(dest, 'wb') as f:
            for chunk in response.iter_content(chunk_size=65536):
                if chunk:
                    f.write(chunk)

    if mode is not None:
        os.chmod(dest, mode)
    return dest


def fetch_artifact(session: requests.Session, url: str, dest: PathLike,
                   timeout: float = 60, mode: Optional[int] = None) -> Path:
    """Download an install artifact.

    Raises:
        InstallError: If the download or the write fails
    """
    try:
        return download_file(session, url, dest, timeout=timeout, mode=mode)
    except (requests.RequestException, OSError) as e:
        raise InstallError(f"Failed to download {url}: {e}") from e


DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600}


def parse_duration(value: Union[str, int, float]) -> float:
    """Convert a Go-style duration such as ``10m`` or ``90s`` to seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip().lower()
    if text and text[-1] in DURATION_UNITS:
        return float(text[:-1]) * DURATION_UNITS[text[-1]]
    return float(text)
