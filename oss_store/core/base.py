"""
Base abstractions for the OSS-Store system.
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, IO, List, Optional

from oss_store.core.models import ContentHandle


class StorageBackend(ABC):
    """
    Abstract base class for OSS-Store storage backends.

    Every backend stores, retrieves, lists and deletes byte blobs through
    this contract, so application code can switch backends freely.
    """

    @abstractmethod
    def put(
        self,
        path: str,
        stream: Optional[IO[bytes]] = None,
        timeout: Optional[float] = None
    ) -> ContentHandle:
        """
        Store an object.

        Args:
            path: Object path; for backends that ingest local files, the
                local file or directory to store when ``stream`` is None
            stream: Optional readable stream with the object's bytes
            timeout: Optional timeout in seconds for the operation

        Returns:
            Handle for the stored object
        """
        pass

    @abstractmethod
    def get(self, path: str, timeout: Optional[float] = None) -> BinaryIO:
        """
        Retrieve an object as a readable, seekable local file.

        Args:
            path: Object path
            timeout: Optional timeout in seconds for the operation

        Returns:
            Open binary file; the caller must close it
        """
        pass

    @abstractmethod
    def get_stream(self, path: str, timeout: Optional[float] = None) -> IO[bytes]:
        """
        Open an object for streaming reads.

        Args:
            path: Object path
            timeout: Optional timeout in seconds for the operation

        Returns:
            Readable stream; the caller must close it
        """
        pass

    @abstractmethod
    def delete(self, path: str, timeout: Optional[float] = None) -> None:
        """
        Delete an object.

        Args:
            path: Object path
            timeout: Optional timeout in seconds for the operation
        """
        pass

    @abstractmethod
    def list(self, path: str, timeout: Optional[float] = None) -> List[ContentHandle]:
        """
        List the objects under a path.

        Args:
            path: Directory path or key prefix
            timeout: Optional timeout in seconds for the operation

        Returns:
            List of handles, one per object
        """
        pass

    @abstractmethod
    def get_url(self, path: str) -> str:
        """Get a URL for an object."""
        pass

    @abstractmethod
    def get_endpoint(self) -> str:
        """Get the endpoint of this backend."""
        pass
