"""
IPFS storage backend for OSS-Store.
"""

from .engine import KuboClient, KuboEngine
from .node import NodeManager
from .peers import PeerConnector
from .storage import IpfsStorage

__all__ = [
    "IpfsStorage",
    "KuboClient",
    "KuboEngine",
    "NodeManager",
    "PeerConnector",
]
