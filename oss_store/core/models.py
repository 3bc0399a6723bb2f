"""
Data models for OSS-Store.
"""

import datetime
import enum
import os
import re
import weakref
from dataclasses import InitVar, asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from oss_store.core.exceptions import ConfigError


# Raw override payload: either an already decoded mapping or undecoded JSON.
RawSpec = Union[Mapping[str, Any], str, bytes]

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class EntryKind(enum.Enum):
    """What a content identifier resolves to."""
    FILE = "file"
    DIRECTORY = "directory"


class NodeState(enum.Enum):
    """Lifecycle states of a managed node."""
    UNSTARTED = "unstarted"
    PROVISIONED = "provisioned"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class NodeConfig:
    """
    Configuration for an IPFS backed storage node.

    Attributes:
        root_path: Directory holding the node repository
        temp_dir: Directory for files staged by ``get``; defaults to
            ``<root_path>/staging``
        networking: Start the node online; ``False`` starts it offline
        encrypted_connections: Recorded for the node; the engine always
            encrypts transport connections
        peers: Peer addresses in multiaddr form, each ending in ``/p2p/<id>``
        node_type: Node type tag (full, client, server)
        datastore: Datastore section override (mapping or raw JSON)
        addresses: Addresses section override (mapping or raw JSON)
        private_network: Write a swarm key so the node only talks to peers
            sharing it
        swarm_key: Hex encoded pre-shared key for a private network
        ipfs_binary: Engine executable
        key_bits: Size of the generated RSA identity key
        request_timeout: Default timeout in seconds for engine calls
        startup_timeout: Seconds to wait for the node API to come up
        ignore_plugin_errors: Swallow plugin injection failures at startup
        reuse_repository: Open an already initialized repository instead of
            failing with RepositoryExistsError
        verify_staged: Check staged files against a recorded checksum on
            cache hits
        connect_peers: Dial ``peers`` in the background after startup
    """
    root_path: str
    temp_dir: Optional[str] = None
    networking: bool = True
    encrypted_connections: bool = True
    peers: Tuple[str, ...] = ()
    node_type: str = "full"
    datastore: Optional[RawSpec] = None
    addresses: Optional[RawSpec] = None
    private_network: bool = False
    swarm_key: Optional[str] = None
    ipfs_binary: str = "ipfs"
    key_bits: int = 2048
    request_timeout: float = 60.0
    startup_timeout: float = 60.0
    ignore_plugin_errors: bool = True
    reuse_repository: bool = False
    verify_staged: bool = False
    connect_peers: bool = True

    def __post_init__(self):
        if not self.root_path:
            raise ConfigError("root_path is required")
        if self.temp_dir is None:
            object.__setattr__(self, "temp_dir", os.path.join(self.root_path, "staging"))
        if isinstance(self.peers, str):
            raise ConfigError("peers must be a list of addresses, not a string")
        object.__setattr__(self, "peers", tuple(self.peers or ()))
        if self.key_bits < 2048:
            raise ConfigError(f"key_bits must be at least 2048, got {self.key_bits}")
        if self.swarm_key is not None and not _HEX_KEY.match(self.swarm_key):
            raise ConfigError("swarm_key must be 32 bytes, hex encoded")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = asdict(self)
        result["peers"] = list(self.peers)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeConfig":
        """
        Create from a configuration document.

        Args:
            data: Mapping using the configuration document keys

        Returns:
            NodeConfig instance

        Raises:
            ConfigError: If ``data`` has unknown keys or misses ``root_path``
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        if "root_path" not in data:
            raise ConfigError("root_path is required")
        return cls(**data)


@dataclass
class ContentHandle:
    """
    Handle for an object held by a storage backend.

    Attributes:
        path: Backend path of the object (``/ipfs/<cid>`` for IPFS)
        name: Display name (the identifier for IPFS, the base name for S3)
        last_modified: Modification time
        storage: Backend that produced the handle; only a weak reference is
            kept, available through ``backend``
    """
    path: str
    name: str
    last_modified: Optional[datetime.datetime] = None
    storage: InitVar[Any] = None
    _storage_ref: Any = field(init=False, default=None, repr=False, compare=False)

    def __post_init__(self, storage):
        if storage is not None:
            self._storage_ref = weakref.ref(storage)

    @property
    def backend(self) -> Any:
        """The producing backend, or None once it has been collected."""
        if self._storage_ref is None:
            return None
        return self._storage_ref()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "name": self.name,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }
