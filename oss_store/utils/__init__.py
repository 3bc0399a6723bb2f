"""
Utility functions for OSS-Store.
"""

from .hash_utils import compute_content_hash, compute_file_checksum
from .path_utils import IPFS_NAMESPACE, make_filename, normalize_content_path

__all__ = [
    "compute_content_hash",
    "compute_file_checksum",
    "IPFS_NAMESPACE",
    "make_filename",
    "normalize_content_path",
]
