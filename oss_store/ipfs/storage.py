"""
IPFS storage backend.

Objects live in a content-addressed store run by a managed node. Paths
are identifiers in ``/ipfs/<cid>`` form; retrieved content is staged in a
local directory under the identifier's final segment.
"""

import contextlib
import datetime
import logging
import os
import shutil
import threading
import uuid
from typing import Any, BinaryIO, Dict, IO, Iterator, List, Optional, Sequence, Set

from oss_store.core.base import StorageBackend
from oss_store.core.exceptions import NotFoundError, OSSError, PathError, PinError, TypeMismatchError
from oss_store.core.models import ContentHandle, EntryKind, NodeConfig
from oss_store.ipfs.config import resolve_config
from oss_store.ipfs.engine import KuboEngine
from oss_store.ipfs.node import NodeManager
from oss_store.ipfs.peers import PeerConnector
from oss_store.utils.hash_utils import compute_file_checksum
from oss_store.utils.path_utils import IPFS_NAMESPACE, make_filename, normalize_content_path


logger = logging.getLogger(__name__)

CHECKSUM_DIR = ".checksums"


class IpfsStorage(StorageBackend):
    """
    Storage backend on top of an IPFS node.

    Construction provisions the repository, starts the node and dials the
    configured peers in the background. If any step before the node is
    running fails, the node is torn down and the error is raised; no
    partially initialized backend is returned.

    Every ``put`` pins the new content. ``delete`` removes the pin, which
    makes the content eligible for a later garbage collection pass.
    """

    def __init__(
        self,
        config: NodeConfig,
        engine: Optional[Any] = None,
        plugins: Optional[Sequence[Any]] = None
    ):
        """
        Initialize the IPFS backend.

        Args:
            config: Node configuration
            engine: Engine running the node; defaults to a ``KuboEngine``
                for ``config.ipfs_binary``
            plugins: Engine plugins; loaded from entry points when None
        """
        self.config = config
        self.engine = engine or KuboEngine(config.ipfs_binary)

        # Peer addresses are parsed first so bad input fails before any side effect.
        self.peer_connector = PeerConnector(config.peers)
        self.node = NodeManager(config, self.engine, plugins=plugins)

        self._inflight: Dict[str, list] = {}
        self._inflight_lock = threading.Lock()
        self._peer_thread: Optional[threading.Thread] = None

        try:
            base_config = resolve_config(config, self.engine)
            self.node.provision(base_config)
            self.client = self.node.start()
        except OSSError as e:
            logger.error(f"Failed to start ipfs storage at {config.root_path}: {e}")
            self.node.stop()
            raise

        if config.connect_peers and self.peer_connector.peers:
            self._peer_thread = threading.Thread(
                target=self.connect_peers,
                name="peer-connect",
                daemon=True
            )
            self._peer_thread.start()

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.config.request_timeout if timeout is None else timeout

    # -- staging cache

    @contextlib.contextmanager
    def _staging(self, fname: str) -> Iterator[None]:
        """Serialize work on one staged file; other files are not blocked."""
        with self._inflight_lock:
            entry = self._inflight.setdefault(fname, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._inflight_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._inflight[fname]

    def _checksum_path(self, fname: str) -> str:
        return os.path.join(self.config.temp_dir, CHECKSUM_DIR, os.path.basename(fname))

    def _staged_ok(self, fname: str) -> bool:
        if not self.config.verify_staged:
            return True

        try:
            with open(self._checksum_path(fname)) as f:
                recorded = f.read().strip()
        except FileNotFoundError:
            recorded = None

        if recorded is not None and recorded == compute_file_checksum(fname):
            return True

        logger.warning(f"Staged file {fname} failed verification, fetching again")
        self._remove_staged(fname)
        return False

    def _materialize(self, path: str, fname: str, timeout: float) -> EntryKind:
        # Written under a private name and renamed so a partial file is never visible.
        partial = f"{fname}.partial-{uuid.uuid4().hex}"
        try:
            kind = self.client.write_to(path, partial, timeout=timeout)
            os.replace(partial, fname)
        finally:
            self._remove_local(partial)

        if self.config.verify_staged and kind is EntryKind.FILE:
            checksum_path = self._checksum_path(fname)
            os.makedirs(os.path.dirname(checksum_path), exist_ok=True)
            with open(checksum_path, "w") as f:
                f.write(compute_file_checksum(fname))
        logger.debug(f"Staged {path} at {fname}")
        return kind

    def _remove_staged(self, fname: str) -> None:
        self._remove_local(fname)
        self._remove_local(self._checksum_path(fname))

    @staticmethod
    def _remove_local(local_path: str) -> None:
        try:
            if os.path.isdir(local_path) and not os.path.islink(local_path):
                shutil.rmtree(local_path)
            else:
                os.remove(local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove {local_path}: {e}")

    # -- storage contract

    def put(
        self,
        path: str,
        stream: Optional[IO[bytes]] = None,
        timeout: Optional[float] = None
    ) -> ContentHandle:
        """
        Add content and pin it.

        Args:
            path: Local file or directory to add when ``stream`` is None;
                ignored for content purposes otherwise
            stream: Optional readable stream with the content
            timeout: Optional timeout in seconds

        Returns:
            Handle with path ``/ipfs/<cid>`` and the identifier as name

        Raises:
            NotFoundError: If ``path`` does not exist and no stream is given
            PinError: If the content was added but could not be pinned; the
                handle is available as ``PinError.handle``
        """
        timeout = self._timeout(timeout)
        if stream is None:
            try:
                os.stat(path)
            except OSError as e:
                raise NotFoundError(f"cannot add '{path}': {e}") from e
            cid = self.client.add_path(path, timeout=timeout)
        else:
            cid = self.client.add_stream(stream, timeout=timeout)

        content_path, name = normalize_content_path(cid)
        handle = ContentHandle(
            path=content_path,
            name=name,
            last_modified=datetime.datetime.now(),
            storage=self
        )

        try:
            self.client.pin_add(content_path, timeout=timeout)
        except OSSError as e:
            raise PinError(f"failed to pin {content_path}: {e}", handle=handle) from e
        return handle

    def stat(self, path: str, timeout: Optional[float] = None) -> EntryKind:
        """Resolve ``path`` and report whether it is a file or a directory."""
        return self.client.stat(path, timeout=self._timeout(timeout))

    def get(self, path: str, timeout: Optional[float] = None) -> BinaryIO:
        """
        Retrieve a file as a local file object.

        A file staged by an earlier call is returned without fetching it
        again. The caller must close the returned file.

        Raises:
            PathError: If ``path`` holds no identifier
            NotFoundError: If ``path`` does not resolve
            TypeMismatchError: If ``path`` resolves to a directory
        """
        timeout = self._timeout(timeout)
        fname = make_filename(self.config.temp_dir, path)
        with self._staging(fname):
            if os.path.isdir(fname):
                raise TypeMismatchError(f"path is not a file: '{path}'")
            if os.path.isfile(fname) and self._staged_ok(fname):
                logger.debug(f"Serving {path} from {fname}")
                return open(fname, "rb")

            if self.client.stat(path, timeout=timeout) is EntryKind.DIRECTORY:
                raise TypeMismatchError(f"path is not a file: '{path}'")
            self._materialize(path, fname, timeout)
            return open(fname, "rb")

    def get_directory(self, path: str, timeout: Optional[float] = None) -> str:
        """
        Retrieve a directory tree into the staging directory.

        Returns:
            Local path of the staged directory

        Raises:
            PathError: If ``path`` holds no identifier
            NotFoundError: If ``path`` does not resolve
            TypeMismatchError: If ``path`` resolves to a file
        """
        timeout = self._timeout(timeout)
        fname = make_filename(self.config.temp_dir, path)
        with self._staging(fname):
            if os.path.isfile(fname):
                raise TypeMismatchError(f"path is not a directory: '{path}'")
            if os.path.isdir(fname):
                return fname

            if self.client.stat(path, timeout=timeout) is not EntryKind.DIRECTORY:
                raise TypeMismatchError(f"path is not a directory: '{path}'")
            self._materialize(path, fname, timeout)
            return fname

    def get_stream(self, path: str, timeout: Optional[float] = None) -> IO[bytes]:
        """
        Open a file for streaming reads without staging it.

        Raises:
            NotFoundError: If ``path`` does not resolve
            TypeMismatchError: If ``path`` resolves to a directory
        """
        timeout = self._timeout(timeout)
        if self.client.stat(path, timeout=timeout) is EntryKind.DIRECTORY:
            raise TypeMismatchError(f"path is not a file: '{path}'")
        return self.client.cat(path, timeout=timeout)

    def list(self, path: str, timeout: Optional[float] = None) -> List[ContentHandle]:
        """
        List the direct children of a directory.

        Entries come back in the order the node emits them, each with a
        canonical ``/ipfs/<cid>`` path.

        Raises:
            NotFoundError: If ``path`` does not resolve
        """
        now = datetime.datetime.now()
        handles = []
        for link in self.client.ls(path, timeout=self._timeout(timeout)):
            content_path, name = normalize_content_path(link["Hash"])
            handles.append(ContentHandle(
                path=content_path,
                name=name,
                last_modified=now,
                storage=self
            ))
        return handles

    def delete(self, path: str, timeout: Optional[float] = None) -> None:
        """
        Unpin content and drop its staged copy.

        Removing the staged copy is best effort. The content itself is only
        reclaimed by a later garbage collection.

        Raises:
            NotFoundError: If ``path`` is not pinned
        """
        try:
            fname = make_filename(self.config.temp_dir, path)
        except PathError:
            fname = None
        if fname is not None:
            with self._staging(fname):
                self._remove_staged(fname)

        self.client.pin_rm(path, timeout=self._timeout(timeout))

    def get_url(self, path: str) -> str:
        return path

    def get_endpoint(self) -> str:
        return IPFS_NAMESPACE

    # -- node

    def node_addr(self, timeout: Optional[float] = None) -> str:
        """
        Dialable address of this node.

        Returns:
            First listen address with the peer id appended, or an empty
            string if the node has no address to offer
        """
        try:
            info = self.node.identity(timeout=self._timeout(timeout))
        except OSSError as e:
            logger.debug(f"Could not read node identity: {e}")
            return ""

        addresses = info.get("Addresses") or []
        peer_id = info.get("ID")
        if not addresses or not peer_id:
            return ""

        address = addresses[0]
        if "/p2p/" not in address:
            address = f"{address}/p2p/{peer_id}"
        return address

    def connect_peers(self, timeout: Optional[float] = None) -> Set[str]:
        """
        Dial the configured peers and wait for all dials.

        Returns:
            Set of peer ids that connected
        """
        return self.peer_connector.connect(self.client, timeout=self._timeout(timeout))

    def close(self) -> None:
        """Wait for in-flight peer dials, then stop the node."""
        if self._peer_thread is not None and self._peer_thread.is_alive():
            self._peer_thread.join(timeout=self.config.request_timeout)
            if self._peer_thread.is_alive():
                logger.warning("Peer dials still running while stopping the node")
        self.node.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
