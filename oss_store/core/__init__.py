"""
Core abstractions and interfaces for OSS-Store
"""

from .base import StorageBackend
from .models import ContentHandle, EntryKind, NodeConfig, NodeState
from .exceptions import (
    OSSError,
    ConfigError,
    RepositoryError,
    RepositoryExistsError,
    RepositoryOpenError,
    NodeStartError,
    NodeStateError,
    PathError,
    NotFoundError,
    TypeMismatchError,
    PeerAddressError,
    PinError,
    EngineError,
    DeadlineExceededError,
)

__all__ = [
    "StorageBackend",
    "ContentHandle",
    "EntryKind",
    "NodeConfig",
    "NodeState",
    "OSSError",
    "ConfigError",
    "RepositoryError",
    "RepositoryExistsError",
    "RepositoryOpenError",
    "NodeStartError",
    "NodeStateError",
    "PathError",
    "NotFoundError",
    "TypeMismatchError",
    "PeerAddressError",
    "PinError",
    "EngineError",
    "DeadlineExceededError",
]
