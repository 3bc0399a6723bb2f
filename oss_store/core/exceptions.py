"""
Exception hierarchy for OSS-Store.
"""

from typing import Optional


class OSSError(Exception):
    """Base class for all OSS-Store errors."""


class ConfigError(OSSError):
    """A configuration override payload is structurally invalid."""


class RepositoryError(OSSError):
    """Base class for repository provisioning and opening errors."""


class RepositoryExistsError(RepositoryError):
    """The root path already holds an initialized repository."""


class RepositoryOpenError(RepositoryError):
    """The repository at the root path could not be opened."""


class NodeStartError(OSSError):
    """
    The node could not be started.

    Always raised from the underlying cause, which is also kept in
    ``cause`` for callers that inspect it directly.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NodeStateError(OSSError):
    """A lifecycle transition was requested from the wrong state."""


class PathError(OSSError):
    """A path does not name a usable content identifier."""


class NotFoundError(OSSError):
    """A path, identifier or pin does not exist."""


class TypeMismatchError(OSSError):
    """An identifier resolved to a directory where a file was expected, or the reverse."""


class PeerAddressError(OSSError):
    """A configured peer address is malformed."""


class PinError(OSSError):
    """
    Content was added but could not be pinned.

    The handle for the added content is still available in ``handle``.
    """

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        self.handle = handle


class EngineError(OSSError):
    """The storage engine reported an error."""


class DeadlineExceededError(EngineError):
    """An engine call did not complete before its timeout."""
