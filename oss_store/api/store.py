"""
Main API for OSS-Store.
"""

from typing import Any, Optional

from oss_store.core import ConfigError, NodeConfig, StorageBackend
from oss_store.ipfs import IpfsStorage
from oss_store.s3 import S3Storage


BACKENDS = ("ipfs", "s3")


def create_storage(kind: str, config: Optional[NodeConfig] = None, **options: Any) -> StorageBackend:
    """
    Create a storage backend.

    Args:
        kind: Backend type ('ipfs' or 's3')
        config: Node configuration for the 'ipfs' backend; when omitted it
            is built from ``options`` using the configuration document keys
        **options: Backend options. For 'ipfs', configuration document keys
            plus ``engine`` and ``plugins``; for 's3', the ``S3Storage``
            arguments

    Returns:
        The storage backend
    """
    kind = kind.lower()
    if kind == "ipfs":
        engine = options.pop("engine", None)
        plugins = options.pop("plugins", None)
        if config is None:
            config = NodeConfig.from_dict(options)
        elif options:
            raise ConfigError(f"Unexpected options with an explicit config: {', '.join(sorted(options))}")
        return IpfsStorage(config, engine=engine, plugins=plugins)
    elif kind == "s3":
        if "bucket" not in options:
            raise ConfigError("bucket is required for the s3 backend")
        return S3Storage(**options)
    else:
        raise ConfigError(f"Unsupported storage backend: {kind}")
