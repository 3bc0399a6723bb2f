"""
Engine layer for the IPFS backend.

The content-addressed store itself is the kubo implementation. ``KuboEngine``
drives its command line (repository init, daemon process) and
``KuboClient`` talks to a running daemon over the HTTP RPC API.
"""

import json
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile
import time
from typing import Any, Dict, IO, Iterator, List, Mapping, Optional, Sequence
from urllib.parse import quote

import requests
import urllib3
from multiaddr import Multiaddr

from oss_store.core.exceptions import (
    DeadlineExceededError,
    EngineError,
    NotFoundError,
    RepositoryOpenError,
)
from oss_store.core.models import EntryKind


logger = logging.getLogger(__name__)

# Substrings of kubo error messages that mean a path or pin does not exist.
NOT_FOUND_HINTS = (
    "not found",
    "no link named",
    "could not resolve",
    "failed to resolve",
    "invalid path",
    "invalid cid",
    "not pinned",
)

# Substrings of daemon startup output that mean the repository could not be opened.
REPO_OPEN_HINTS = (
    "no ipfs repo found",
    "lock",
    "repo needs migration",
    "config file",
)

CHUNK_SIZE = 64 * 1024


def api_url_from_multiaddr(address: str) -> str:
    """
    Convert a daemon API multiaddr into an HTTP base URL.

    Args:
        address: Multiaddr such as ``/ip4/127.0.0.1/tcp/5001``

    Returns:
        Base URL such as ``http://127.0.0.1:5001``
    """
    try:
        maddr = Multiaddr(address.strip())
    except (ValueError, LookupError, TypeError) as e:
        raise EngineError(f"invalid api address '{address}': {e}") from e

    host = None
    for proto in ("ip4", "ip6", "dns4", "dns6"):
        try:
            host = maddr.value_for_protocol(proto)
        except LookupError:
            continue
        if host:
            if proto == "ip6":
                host = f"[{host}]"
            break
    try:
        port = maddr.value_for_protocol("tcp")
    except LookupError:
        port = None

    if not host or not port:
        raise EngineError(f"api address is not a tcp address: '{address}'")
    return f"http://{host}:{port}"


class ResponseStream:
    """Readable stream over a streamed RPC response; closing it releases the connection."""

    def __init__(self, response: requests.Response):
        self.response = response
        self.response.raw.decode_content = True

    def read(self, size: int = -1) -> bytes:
        try:
            if size is None or size < 0:
                return self.response.raw.read()
            return self.response.raw.read(size)
        except urllib3.exceptions.ReadTimeoutError as e:
            raise DeadlineExceededError(f"cat: read timed out: {e}") from e
        except urllib3.exceptions.HTTPError as e:
            raise EngineError(f"cat: {e}") from e

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        self.response.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class KuboClient:
    """
    Client for the kubo HTTP RPC API.

    All commands are ``POST /api/v0/<command>``. Errors come back as a JSON
    body with a ``Message`` field and are mapped onto the OSS-Store error
    taxonomy.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the daemon API, e.g. ``http://127.0.0.1:5001``
            timeout: Default timeout in seconds
            session: Optional requests session to use
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, command: str) -> str:
        return f"{self.api_url}/api/v0/{command}"

    def _post(
        self,
        command: str,
        params: Optional[Any] = None,
        files: Optional[Any] = None,
        stream: bool = False,
        timeout: Optional[float] = None
    ) -> requests.Response:
        timeout = self.timeout if timeout is None else timeout
        try:
            response = self.session.post(
                self._url(command),
                params=params,
                files=files,
                stream=stream,
                timeout=timeout
            )
        except requests.Timeout as e:
            raise DeadlineExceededError(f"{command}: no response within {timeout}s") from e
        except requests.RequestException as e:
            raise EngineError(f"{command}: {e}") from e

        if response.status_code != 200:
            try:
                self._raise_for_error(command, response)
            finally:
                response.close()
        return response

    def _raise_for_error(self, command: str, response: requests.Response) -> None:
        try:
            message = response.json().get("Message", "")
        except ValueError:
            message = response.text
        message = message or f"HTTP {response.status_code}"

        lowered = message.lower()
        if "context deadline exceeded" in lowered:
            raise DeadlineExceededError(f"{command}: {message}")
        if any(hint in lowered for hint in NOT_FOUND_HINTS):
            raise NotFoundError(f"{command}: {message}")
        raise EngineError(f"{command}: {message}")

    def _json_lines(self, response: requests.Response) -> Iterator[Dict[str, Any]]:
        try:
            for line in response.iter_lines():
                if not line:
                    continue
                entry = json.loads(line)
                if entry.get("Type") == "error":
                    raise EngineError(entry.get("Message", "stream error"))
                yield entry
        except requests.RequestException as e:
            raise EngineError(str(e)) from e
        finally:
            response.close()

    # -- content

    def add_stream(self, stream: IO[bytes], timeout: Optional[float] = None) -> str:
        """Add the bytes of ``stream`` and return the resulting identifier."""
        files = [("file", ("blob", stream, "application/octet-stream"))]
        entries = list(self._json_lines(self._add(files, timeout)))
        if not entries:
            raise EngineError("add: no result returned")
        return entries[-1]["Hash"]

    def add_path(self, path: str, timeout: Optional[float] = None) -> str:
        """
        Add a local file or directory tree.

        Args:
            path: Local file or directory
            timeout: Optional timeout in seconds

        Returns:
            Identifier of the file, or of the whole tree for a directory
        """
        root_name = os.path.basename(os.path.abspath(path))
        opened: List[IO[bytes]] = []
        try:
            if os.path.isdir(path):
                files = self._directory_parts(path, root_name, opened)
            else:
                f = open(path, "rb")
                opened.append(f)
                files = [("file", (quote(root_name, safe=""), f, "application/octet-stream"))]

            entries = list(self._json_lines(self._add(files, timeout)))
        finally:
            for f in opened:
                f.close()

        if not entries:
            raise EngineError(f"add: no result returned for '{path}'")
        for entry in entries:
            if entry.get("Name") == root_name:
                return entry["Hash"]
        return entries[-1]["Hash"]

    def _directory_parts(self, path: str, root_name: str, opened: List[IO[bytes]]) -> List[Any]:
        # Parents must precede their children in the multipart body.
        parts = []
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames.sort()
            rel_dir = os.path.relpath(dirpath, path)
            name = root_name if rel_dir == "." else f"{root_name}/{rel_dir.replace(os.sep, '/')}"
            parts.append(("file", (quote(name, safe=""), b"", "application/x-directory")))
            for filename in sorted(filenames):
                f = open(os.path.join(dirpath, filename), "rb")
                opened.append(f)
                parts.append(("file", (quote(f"{name}/{filename}", safe=""), f, "application/octet-stream")))
        return parts

    def _add(self, files: Sequence[Any], timeout: Optional[float]) -> requests.Response:
        params = {"pin": "false", "wrap-with-directory": "false"}
        return self._post("add", params=params, files=files, stream=True, timeout=timeout)

    def stat(self, path: str, timeout: Optional[float] = None) -> EntryKind:
        """Resolve ``path`` and report whether it is a file or a directory."""
        response = self._post("files/stat", params={"arg": self._ipfs_path(path)}, timeout=timeout)
        try:
            kind = response.json().get("Type")
        finally:
            response.close()
        if kind == "directory":
            return EntryKind.DIRECTORY
        return EntryKind.FILE

    def cat(self, path: str, timeout: Optional[float] = None) -> ResponseStream:
        """Open the content of a file for streaming reads."""
        return ResponseStream(self._post("cat", params={"arg": path}, stream=True, timeout=timeout))

    def write_to(self, path: str, dest: str, timeout: Optional[float] = None) -> EntryKind:
        """
        Materialize ``path`` at the local path ``dest``.

        The daemon sends the content as a tar stream whose first member is
        named after the identifier; that member becomes ``dest``.

        Returns:
            Kind of the materialized entry
        """
        response = self._post("get", params={"arg": path}, stream=True, timeout=timeout)
        kind = EntryKind.FILE
        root = os.path.abspath(dest)
        try:
            response.raw.decode_content = True
            with tarfile.open(fileobj=response.raw, mode="r|") as tar:
                for member in tar:
                    name = member.name[2:] if member.name.startswith("./") else member.name
                    rel = name.split("/", 1)[1] if "/" in name else ""
                    target = os.path.abspath(os.path.join(root, rel)) if rel else root
                    if target != root and not target.startswith(root + os.sep):
                        raise EngineError(f"get: unsafe member path '{member.name}'")

                    if member.isdir():
                        os.makedirs(target, exist_ok=True)
                        if not rel:
                            kind = EntryKind.DIRECTORY
                    elif member.isfile():
                        os.makedirs(os.path.dirname(target), exist_ok=True)
                        src = tar.extractfile(member)
                        with open(target, "wb") as out:
                            shutil.copyfileobj(src, out, CHUNK_SIZE)
                    else:
                        logger.debug(f"Skipping tar member {member.name} of type {member.type!r}")
        except tarfile.TarError as e:
            raise EngineError(f"get: malformed archive for '{path}': {e}") from e
        except urllib3.exceptions.ReadTimeoutError as e:
            raise DeadlineExceededError(f"get: read timed out for '{path}': {e}") from e
        except urllib3.exceptions.HTTPError as e:
            raise EngineError(f"get: {e}") from e
        except requests.RequestException as e:
            raise EngineError(f"get: {e}") from e
        finally:
            response.close()
        return kind

    def ls(self, path: str, timeout: Optional[float] = None) -> Iterator[Dict[str, Any]]:
        """Yield the direct links of a directory in the order the daemon emits them."""
        response = self._post("ls", params={"arg": path, "stream": "true"}, stream=True, timeout=timeout)
        for entry in self._json_lines(response):
            for obj in entry.get("Objects") or []:
                for link in obj.get("Links") or []:
                    yield link

    # -- pins

    def pin_add(self, path: str, timeout: Optional[float] = None) -> None:
        self._post("pin/add", params={"arg": path, "recursive": "true"}, timeout=timeout).close()

    def pin_rm(self, path: str, timeout: Optional[float] = None) -> None:
        self._post("pin/rm", params={"arg": path, "recursive": "true"}, timeout=timeout).close()

    # -- node

    def id(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Identity and listen addresses of the node."""
        response = self._post("id", timeout=timeout)
        try:
            return response.json()
        finally:
            response.close()

    def swarm_connect(self, addresses: Sequence[str], timeout: Optional[float] = None) -> None:
        """Dial a peer using all of its addresses."""
        params = [("arg", address) for address in addresses]
        self._post("swarm/connect", params=params, timeout=timeout).close()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        self._post("shutdown", timeout=timeout).close()

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _ipfs_path(path: str) -> str:
        if path.startswith("/"):
            return path
        return "/ipfs/" + path


class KuboDaemon:
    """A running kubo daemon process and its API client."""

    def __init__(self, process: subprocess.Popen, repo_path: str, log_path: str):
        self.process = process
        self.repo_path = repo_path
        self.log_path = log_path
        self.client: Optional[KuboClient] = None

    def wait_ready(self, timeout: float, request_timeout: float) -> KuboClient:
        """
        Wait until the daemon API answers.

        Raises:
            RepositoryOpenError: If the daemon exits because the repository
                could not be opened
            EngineError: If the daemon exits for any other reason
            DeadlineExceededError: If the API does not come up in time
        """
        try:
            return self._poll_ready(timeout, request_timeout)
        except BaseException:
            # A daemon that never became usable must not keep the repo lock.
            if self.process.poll() is None:
                self._terminate()
            raise

    def _poll_ready(self, timeout: float, request_timeout: float) -> KuboClient:
        api_file = os.path.join(self.repo_path, "api")
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.process.poll() is not None:
                output = self._read_log()
                if any(hint in output.lower() for hint in REPO_OPEN_HINTS):
                    raise RepositoryOpenError(f"failed to open repo at {self.repo_path}: {output.strip()}")
                raise EngineError(f"daemon exited with code {self.process.returncode}: {output.strip()}")

            if os.path.exists(api_file):
                try:
                    with open(api_file) as f:
                        address = f.read()
                except OSError as e:
                    raise EngineError(f"cannot read daemon api file {api_file}: {e}") from e
                client = KuboClient(api_url_from_multiaddr(address), timeout=request_timeout)
                try:
                    client.id(timeout=2)
                except (EngineError, NotFoundError):
                    client.close()
                else:
                    self.client = client
                    return client
            time.sleep(0.2)

        raise DeadlineExceededError(f"daemon API did not come up within {timeout}s")

    def stop(self, timeout: float = 30.0) -> None:
        """Ask the daemon to shut down, killing it if it does not exit in time."""
        if self.client is not None:
            try:
                self.client.shutdown(timeout=timeout)
            except EngineError as e:
                logger.debug(f"shutdown request failed: {e}")
            finally:
                self.client.close()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._terminate()

    def _terminate(self) -> None:
        self.process.terminate()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()

    def _read_log(self) -> str:
        try:
            with open(self.log_path, errors="replace") as f:
                return f.read()[-4096:]
        except OSError:
            return ""


class KuboEngine:
    """
    Drives the kubo command line.

    Attributes:
        binary: Executable to run
        env: Extra environment variables for every command
        daemon_args: Extra arguments for ``ipfs daemon``
    """

    def __init__(self, binary: str = "ipfs", env: Optional[Mapping[str, str]] = None):
        self.binary = binary
        self.env: Dict[str, str] = dict(env or {})
        self.daemon_args: List[str] = []

    def _environ(self, repo_path: str) -> Dict[str, str]:
        return {**os.environ, **self.env, "IPFS_PATH": repo_path}

    def run(self, args: Sequence[str], repo_path: str, timeout: Optional[float] = None) -> str:
        """
        Run an engine command against a repository.

        Returns:
            Standard output of the command
        """
        cmd = [self.binary, *args]
        logger.debug(f"Running {' '.join(cmd)} (IPFS_PATH={repo_path})")
        try:
            result = subprocess.run(
                cmd,
                env=self._environ(repo_path),
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except FileNotFoundError as e:
            raise EngineError(f"engine executable not found: {self.binary}") from e
        except subprocess.TimeoutExpired as e:
            raise DeadlineExceededError(f"{' '.join(cmd)} did not finish within {timeout}s") from e

        if result.returncode != 0:
            raise EngineError(f"{' '.join(cmd)} failed: {result.stderr.strip() or result.stdout.strip()}")
        return result.stdout

    def default_config(self, key_bits: int = 2048, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Generate a default node configuration with a fresh RSA identity.

        The engine writes its defaults into a scratch repository, which is
        read back and removed.
        """
        with tempfile.TemporaryDirectory(prefix="oss-store-init-") as scratch:
            self.run(
                ["init", "--empty-repo", "--algorithm", "rsa", "--bits", str(key_bits)],
                scratch,
                timeout=timeout
            )
            with open(os.path.join(scratch, "config")) as f:
                return json.load(f)

    def is_initialized(self, repo_path: str) -> bool:
        return os.path.isfile(os.path.join(repo_path, "config"))

    def init_repo(self, repo_path: str, config: Mapping[str, Any], timeout: Optional[float] = None) -> None:
        """Create a repository at ``repo_path`` from a complete configuration."""
        fd, config_file = tempfile.mkstemp(prefix="oss-store-config-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(config, f, indent=2)
            self.run(["init", "--empty-repo", config_file], repo_path, timeout=timeout)
        finally:
            os.remove(config_file)

    def start(
        self,
        repo_path: str,
        online: bool = True,
        routing: str = "dht",
        timeout: float = 60.0,
        request_timeout: float = 60.0
    ) -> KuboDaemon:
        """
        Start a daemon for the repository and wait for its API.

        Args:
            repo_path: Repository root
            online: Connect to the network; ``False`` starts offline
            routing: Routing mode, ``dht`` for a full routing node
            timeout: Seconds to wait for the API
            request_timeout: Default timeout of the returned daemon's client

        Returns:
            The running daemon
        """
        cmd = [self.binary, "daemon", f"--routing={routing}", *self.daemon_args]
        if not online:
            cmd.append("--offline")

        # A stale api file from an unclean exit would point at a dead port.
        api_file = os.path.join(repo_path, "api")
        if os.path.exists(api_file):
            os.remove(api_file)

        log_path = os.path.join(repo_path, "daemon.log")
        logger.debug(f"Starting {' '.join(cmd)} (IPFS_PATH={repo_path})")
        with open(log_path, "ab") as log:
            try:
                process = subprocess.Popen(
                    cmd,
                    env=self._environ(repo_path),
                    stdout=log,
                    stderr=subprocess.STDOUT
                )
            except FileNotFoundError as e:
                raise EngineError(f"engine executable not found: {self.binary}") from e

        daemon = KuboDaemon(process, repo_path, log_path)
        daemon.wait_ready(timeout, request_timeout)
        return daemon
