"""
Helpers for translating between IPFS paths, identifiers and local files.
"""

import os
from typing import List, Tuple

from oss_store.core.exceptions import PathError


IPFS_NAMESPACE = "/ipfs"


def split_segments(path: str) -> List[str]:
    """Split a slash separated path into its non-empty segments."""
    return [segment for segment in path.split("/") if segment]


def normalize_content_path(raw: str) -> Tuple[str, str]:
    """
    Bring an identifier into canonical ``/ipfs/<cid>`` form.

    Args:
        raw: Either a bare identifier or an ``/ipfs/...`` path

    Returns:
        Tuple of (canonical path, identifier)

    Raises:
        PathError: If ``raw`` holds no identifier
    """
    prefix = IPFS_NAMESPACE + "/"
    if raw.startswith(prefix):
        segments = split_segments(raw)
        if len(segments) < 2:
            raise PathError(f"path does not specify a valid ipfs CID: '{raw}'")
        return raw, segments[1]

    cid = raw.strip("/")
    if not cid:
        raise PathError(f"path does not specify a valid ipfs CID: '{raw}'")
    return prefix + cid, cid


def make_filename(temp_dir: str, path: str) -> str:
    """
    Derive the local staging filename for an IPFS path.

    The final segment of ``path`` names the file under ``temp_dir``.

    Args:
        temp_dir: Staging directory
        path: IPFS path or bare identifier

    Returns:
        Local filename

    Raises:
        PathError: If ``path`` has no segments
    """
    segments = split_segments(path)
    if not segments:
        raise PathError(f"path does not specify a valid ipfs CID: '{path}'")
    return os.path.join(temp_dir, segments[-1])


def ensure_dir(path: str) -> None:
    """Create ``path`` and its parents if it does not exist yet."""
    os.makedirs(path, exist_ok=True)
