"""
S3 storage backend.

Objects are keyed by path inside a single bucket. Any fsspec filesystem
can stand in for S3, which is how the backend is exercised locally.
"""

import datetime
import logging
import os
import shutil
import tempfile
from typing import Any, BinaryIO, Dict, IO, List, Optional
from urllib.parse import urlparse

import fsspec
import s3fs

from oss_store.core.base import StorageBackend
from oss_store.core.exceptions import NotFoundError
from oss_store.core.models import ContentHandle


logger = logging.getLogger(__name__)


def to_relative_path(key: str) -> str:
    """Handle path for an object key: the key with exactly one leading slash."""
    return "/" + key.lstrip("/")


class S3Storage(StorageBackend):
    """Storage backend on an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        access_id: Optional[str] = None,
        access_key: Optional[str] = None,
        region: Optional[str] = None,
        session_token: Optional[str] = None,
        acl: str = "public-read",
        endpoint_url: Optional[str] = None,
        fs: Optional[fsspec.AbstractFileSystem] = None
    ):
        """
        Initialize the S3 backend.

        Without ``access_id`` and ``access_key`` the default credential
        chain is used, which includes instance role credentials.

        Args:
            bucket: Bucket name
            access_id: Access key id
            access_key: Secret access key
            region: Bucket region
            session_token: Session token for temporary credentials
            acl: Canned ACL applied to written objects
            endpoint_url: Custom endpoint for S3 compatible services
            fs: Filesystem to use instead of an ``s3fs.S3FileSystem``
        """
        self.bucket = bucket
        self.region = region
        self.acl = acl
        self.endpoint_url = endpoint_url

        if fs is None:
            client_kwargs: Dict[str, Any] = {}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            fs = s3fs.S3FileSystem(
                key=access_id,
                secret=access_key,
                token=session_token,
                client_kwargs=client_kwargs
            )
        self.fs = fs
        self._write_kwargs = {"acl": acl} if isinstance(fs, s3fs.S3FileSystem) else {}

    def _key(self, path: str) -> str:
        return f"{self.bucket}/{path.lstrip('/')}"

    def _object_key(self, fs_path: str) -> str:
        stripped = fs_path.lstrip("/")
        prefix = self.bucket + "/"
        if stripped.startswith(prefix):
            return stripped[len(prefix):]
        return stripped

    @staticmethod
    def _modified(info: Dict[str, Any]) -> Optional[datetime.datetime]:
        value = info.get("LastModified") or info.get("created") or info.get("mtime")
        if isinstance(value, datetime.datetime):
            return value
        if isinstance(value, (int, float)):
            return datetime.datetime.fromtimestamp(value)
        return None

    def _handle(self, key: str, last_modified: Optional[datetime.datetime]) -> ContentHandle:
        return ContentHandle(
            path=to_relative_path(key),
            name=os.path.basename(key),
            last_modified=last_modified,
            storage=self
        )

    def put(
        self,
        path: str,
        stream: Optional[IO[bytes]] = None,
        timeout: Optional[float] = None
    ) -> ContentHandle:
        """
        Store an object under ``path``.

        When ``stream`` is None the local file at ``path`` is uploaded.
        """
        key = self._key(path)
        if stream is None:
            try:
                source = open(path, "rb")
            except OSError as e:
                raise NotFoundError(f"cannot upload '{path}': {e}") from e
        else:
            source = stream

        try:
            with self.fs.open(key, "wb", **self._write_kwargs) as f:
                shutil.copyfileobj(source, f)
        finally:
            if stream is None:
                source.close()

        return self._handle(path, datetime.datetime.now())

    def get(self, path: str, timeout: Optional[float] = None) -> BinaryIO:
        """Copy an object into a temporary file, rewound for reading."""
        local = tempfile.NamedTemporaryFile(prefix="s3")
        try:
            with self.fs.open(self._key(path), "rb") as src:
                shutil.copyfileobj(src, local)
        except FileNotFoundError as e:
            local.close()
            raise NotFoundError(f"no object at '{path}'") from e
        local.seek(0)
        return local

    def get_stream(self, path: str, timeout: Optional[float] = None) -> IO[bytes]:
        try:
            return self.fs.open(self._key(path), "rb")
        except FileNotFoundError as e:
            raise NotFoundError(f"no object at '{path}'") from e

    def delete(self, path: str, timeout: Optional[float] = None) -> None:
        key = self._key(path)
        if not self.fs.exists(key):
            raise NotFoundError(f"no object at '{path}'")
        self.fs.rm(key)

    def list(self, path: str, timeout: Optional[float] = None) -> List[ContentHandle]:
        """List all objects whose key starts with ``path``."""
        prefix = path.lstrip("/")
        base = self._key(prefix.rsplit("/", 1)[0] if "/" in prefix else "")
        found = self.fs.find(base, detail=True)

        handles = []
        for fs_path in sorted(found):
            key = self._object_key(fs_path)
            if key.startswith(prefix):
                handles.append(self._handle(key, self._modified(found[fs_path])))
        return handles

    def get_url(self, path: str) -> str:
        """Signed URL for the object when the filesystem can sign, else its s3:// URL."""
        sign = getattr(self.fs, "url", None)
        if sign is not None:
            try:
                return sign(self._key(path))
            except NotImplementedError:
                logger.debug("Filesystem cannot sign URLs")
        return f"s3://{self._key(path)}"

    def get_endpoint(self) -> str:
        if self.endpoint_url:
            return urlparse(self.endpoint_url).netloc or self.endpoint_url
        if self.region:
            return f"{self.bucket}.s3.{self.region}.amazonaws.com"
        return f"{self.bucket}.s3.amazonaws.com"
