"""Error kinds raised by the file store.

Callers can tell caller-correctable problems (bad path, stale token, non-empty
directory) apart from backend trouble and from capabilities the backend lacks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bucketfs.domain.models import TransferResult


class FileStoreError(Exception):
    """Base class for file store errors.

    Attributes:
        message: Human-readable error message.
        path: Path or key associated with the operation (if applicable).
    """

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} path={self.path}"
        return self.message


class InvalidPathError(FileStoreError):
    """Raised when a path is malformed or collides with the directory-marker convention."""


class ObjectNotFoundError(FileStoreError):
    """Raised when an operation requires an object that does not exist."""

    def __init__(self, message: str = "Object not found", *, path: str | None = None):
        super().__init__(message, path=path)


class PreconditionFailedError(FileStoreError):
    """Raised when a conditional read or write sees a different version token.

    ``current_token`` is the backend's token at the time of the failure, or
    ``None`` when the object no longer exists.
    """

    def __init__(
        self,
        message: str = "Version token mismatch",
        *,
        path: str | None = None,
        expected_token: str | None = None,
        current_token: str | None = None,
    ) -> None:
        super().__init__(message, path=path)
        self.expected_token = expected_token
        self.current_token = current_token


class DirectoryNotEmptyError(FileStoreError):
    """Raised by a non-recursive delete of a directory that still has entries."""


class PartialFailureError(FileStoreError):
    """Raised when a batch operation did not complete for every key."""

    def __init__(
        self, message: str, *, path: str | None = None, result: "TransferResult"
    ) -> None:
        super().__init__(message, path=path)
        self.result = result


class BackendUnavailableError(FileStoreError):
    """Raised when transient backend errors persist after all retry attempts."""

    def __init__(
        self,
        message: str = "Storage backend unavailable",
        *,
        path: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, path=path)
        self.attempts = attempts


class NotSupportedError(FileStoreError):
    """Raised for operations the object storage backend cannot provide."""


class OperationCancelledError(FileStoreError):
    """Raised when a cancellation signal stops a streaming operation."""


class StorageBackendNotConfiguredError(FileStoreError):
    """Raised when the storage backend is not properly configured."""
