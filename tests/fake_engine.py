"""
In-memory engine used by the tests in place of a kubo installation.
"""

import hashlib
import io
import json
import os
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from oss_store.core.exceptions import EngineError, NotFoundError
from oss_store.core.models import EntryKind


PEER_ID = "QmNnooDu7bfjPFoTZYxMNLWUQJyrVwtbZg5gBMjTezGAJN"

# Directory objects are lists of (name, cid) links.
Obj = Union[bytes, List[tuple]]


def fake_cid(obj: Obj) -> str:
    if isinstance(obj, bytes):
        digest = hashlib.sha256(b"file:" + obj).hexdigest()
    else:
        digest = hashlib.sha256(("dir:" + ",".join(f"{n}={c}" for n, c in obj)).encode()).hexdigest()
    return "Qm" + digest[:44]


class FakeClient:
    """Content API with the same surface as ``KuboClient``."""

    def __init__(self, peer_id: str = PEER_ID, addresses: Optional[List[str]] = None):
        self.peer_id = peer_id
        self.addresses = ["/ip4/127.0.0.1/tcp/4001"] if addresses is None else addresses
        self.objects: Dict[str, Obj] = {}
        self.pins = set()
        self.write_count = 0
        self.prefixed_links = False
        self.fail_pin = False
        self.fail_id = False
        self.unreachable = set()
        self.dialed: List[List[str]] = []
        self.dial_delay = 0.0

    # -- helpers

    def _store(self, obj: Obj) -> str:
        cid = fake_cid(obj)
        self.objects[cid] = obj
        return cid

    def _add_tree(self, path: str) -> str:
        if os.path.isdir(path):
            links = [(name, self._add_tree(os.path.join(path, name))) for name in sorted(os.listdir(path))]
            return self._store(links)
        with open(path, "rb") as f:
            return self._store(f.read())

    def _resolve(self, path: str):
        segments = [s for s in path.split("/") if s]
        if segments and segments[0] == "ipfs":
            segments = segments[1:]
        if not segments or segments[0] not in self.objects:
            raise NotFoundError(f"failed to resolve {path}: block not found")
        cid = segments[0]
        for name in segments[1:]:
            links = dict(self.objects[cid]) if isinstance(self.objects[cid], list) else {}
            if name not in links:
                raise NotFoundError(f"no link named {name!r}")
            cid = links[name]
        return cid, self.objects[cid]

    def _write(self, obj: Obj, dest: str) -> None:
        if isinstance(obj, bytes):
            with open(dest, "wb") as f:
                f.write(obj)
            return
        os.makedirs(dest, exist_ok=True)
        for name, cid in obj:
            self._write(self.objects[cid], os.path.join(dest, name))

    # -- content API

    def add_path(self, path: str, timeout: Optional[float] = None) -> str:
        return self._add_tree(path)

    def add_stream(self, stream, timeout: Optional[float] = None) -> str:
        return self._store(stream.read())

    def stat(self, path: str, timeout: Optional[float] = None) -> EntryKind:
        _, obj = self._resolve(path)
        return EntryKind.FILE if isinstance(obj, bytes) else EntryKind.DIRECTORY

    def cat(self, path: str, timeout: Optional[float] = None):
        _, obj = self._resolve(path)
        if not isinstance(obj, bytes):
            raise EngineError("this dag node is a directory")
        return io.BytesIO(obj)

    def write_to(self, path: str, dest: str, timeout: Optional[float] = None) -> EntryKind:
        _, obj = self._resolve(path)
        self.write_count += 1
        self._write(obj, dest)
        return EntryKind.FILE if isinstance(obj, bytes) else EntryKind.DIRECTORY

    def ls(self, path: str, timeout: Optional[float] = None):
        _, obj = self._resolve(path)
        links = obj if isinstance(obj, list) else []
        for name, cid in links:
            child = self.objects[cid]
            yield {
                "Name": name,
                "Hash": "/ipfs/" + cid if self.prefixed_links else cid,
                "Size": len(child) if isinstance(child, bytes) else 0,
                "Type": 2 if isinstance(child, bytes) else 1,
            }

    def pin_add(self, path: str, timeout: Optional[float] = None) -> None:
        if self.fail_pin:
            raise EngineError("pin: datastore closed")
        cid, _ = self._resolve(path)
        self.pins.add(cid)

    def pin_rm(self, path: str, timeout: Optional[float] = None) -> None:
        segments = [s for s in path.split("/") if s and s != "ipfs"]
        cid = segments[0] if segments else ""
        if cid not in self.pins:
            raise NotFoundError("pin/rm: not pinned or pinned indirectly")
        self.pins.remove(cid)

    def id(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if self.fail_id:
            raise EngineError("id: connection refused")
        return {
            "ID": self.peer_id,
            "Addresses": [f"{a}/p2p/{self.peer_id}" for a in self.addresses],
        }

    def swarm_connect(self, addresses: Sequence[str], timeout: Optional[float] = None) -> None:
        if self.dial_delay:
            time.sleep(self.dial_delay)
        self.dialed.append(list(addresses))
        for address in addresses:
            if any(address.endswith(peer) for peer in self.unreachable):
                raise EngineError(f"swarm/connect: failure: dial backoff {address}")


class FakeDaemon:
    def __init__(self, client: FakeClient):
        self.client = client
        self.stopped = False

    def stop(self, timeout: float = 30.0) -> None:
        self.stopped = True


class FakeEngine:
    """Engine with the same surface as ``KuboEngine``, writing only a config file."""

    def __init__(self, client: Optional[FakeClient] = None):
        self.client = client or FakeClient()
        self.key_bits = None
        self.start_args = None
        self.start_error: Optional[Exception] = None
        self.daemons: List[FakeDaemon] = []

    def default_config(self, key_bits: int = 2048, timeout: Optional[float] = None) -> Dict[str, Any]:
        self.key_bits = key_bits
        return {
            "Identity": {"PeerID": PEER_ID, "PrivKey": "CAASqAkwggSkAgEAAoIBAQ"},
            "Addresses": {
                "Swarm": ["/ip4/0.0.0.0/tcp/4001", "/ip6/::/tcp/4001"],
                "Announce": [],
                "NoAnnounce": [],
                "API": "/ip4/127.0.0.1/tcp/5001",
                "Gateway": "/ip4/127.0.0.1/tcp/8080",
            },
            "Bootstrap": ["/dnsaddr/bootstrap.libp2p.io/p2p/" + PEER_ID],
            "Datastore": {
                "StorageMax": "10GB",
                "StorageGCWatermark": 90,
                "GCPeriod": "1h",
                "Spec": {"type": "mount", "mounts": []},
            },
        }

    def is_initialized(self, repo_path: str) -> bool:
        return os.path.isfile(os.path.join(repo_path, "config"))

    def init_repo(self, repo_path: str, config: Dict[str, Any], timeout: Optional[float] = None) -> None:
        with open(os.path.join(repo_path, "config"), "w") as f:
            json.dump(config, f)

    def read_config(self, repo_path: str) -> Dict[str, Any]:
        with open(os.path.join(repo_path, "config")) as f:
            return json.load(f)

    def start(self, repo_path, online=True, routing="dht", timeout=60.0, request_timeout=60.0) -> FakeDaemon:
        self.start_args = {"repo_path": repo_path, "online": online, "routing": routing}
        if self.start_error is not None:
            raise self.start_error
        daemon = FakeDaemon(self.client)
        self.daemons.append(daemon)
        return daemon
