"""
OSS-Store: one storage contract over IPFS and S3 backends.
"""

from oss_store.api import create_storage
from oss_store.core import ContentHandle, NodeConfig, StorageBackend
from oss_store.ipfs import IpfsStorage
from oss_store.s3 import S3Storage

__version__ = "0.1.0"

__all__ = [
    "create_storage",
    "ContentHandle",
    "NodeConfig",
    "StorageBackend",
    "IpfsStorage",
    "S3Storage",
]
