"""Storage client protocol and data types.

This module defines the abstract interface the file store needs from an object
storage backend: paged listing, metadata lookups, conditional reads and writes,
multipart uploads and single or batched deletes. Every method is a coroutine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence

# Error codes a backend uses for an absent key, including in per-key delete results
MISSING_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    def __init__(
        self, message: str, *, object_key: str | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.object_key = object_key
        self.code = code


class ObjectMissingError(StorageError):
    """Raised when the requested key does not exist."""


class PreconditionMismatchError(StorageError):
    """Raised when an ``if_match`` condition does not hold for the stored object."""


class TransientStorageError(StorageError):
    """Raised for throttling, timeouts and 5xx responses that may succeed on retry."""


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    etag: str
    last_modified: datetime | None
    content_type: str | None = None


@dataclass(frozen=True, slots=True)
class ObjectEntry:
    """A single key returned by a listing."""

    key: str
    size_bytes: int
    etag: str | None
    last_modified: datetime | None


@dataclass(frozen=True, slots=True)
class ObjectListing:
    """One page of a listing.

    ``common_prefixes`` is only populated when a delimiter was given.
    """

    entries: list[ObjectEntry] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    next_page_token: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteOutcome:
    """Per-key result of a batched delete."""

    key: str
    error_code: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


class ObjectBody(Protocol):
    """An open download stream.

    ``etag`` is the version being streamed and ``content_length`` the number of
    bytes this stream will deliver; either may be None when the backend omits it.
    """

    etag: str | None
    content_length: int | None

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``b""`` signals the end of the object."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection."""
        ...


class ObjectStoreClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations must provide all methods defined here. Absence is reported
    with ObjectMissingError, failed ``if_match`` conditions with
    PreconditionMismatchError and retryable faults with TransientStorageError.
    """

    async def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        page_token: str | None = None,
        max_keys: int | None = None,
    ) -> ObjectListing:
        """List one page of keys under ``prefix``.

        Args:
            bucket: Target bucket name.
            prefix: Only keys starting with this prefix are returned.
            delimiter: Roll keys up into common prefixes at this character.
            page_token: Continuation token from a previous page.
            max_keys: Upper bound on entries plus common prefixes in the page.

        Returns:
            ObjectListing with the page contents and the next page token.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content.

        Raises:
            ObjectMissingError: If the object doesn't exist.
            StorageError: If the operation fails.
        """
        ...

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        if_match: str | None = None,
        range_start: int = 0,
    ) -> ObjectBody:
        """Open a download stream, starting at byte ``range_start``.

        Raises:
            ObjectMissingError: If the object doesn't exist.
            PreconditionMismatchError: If ``if_match`` differs from the current ETag.
            StorageError: If the operation fails.
        """
        ...

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        if_match: str | None = None,
    ) -> str:
        """Store ``data`` as a single object and return its new ETag.

        Raises:
            PreconditionMismatchError: If ``if_match`` differs from the current
                ETag or the object does not exist.
            StorageError: If the operation fails.
        """
        ...

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        ...

    async def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> CompletedPart:
        """Upload one part (1-based ``part_number``) of a multipart upload."""
        ...

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
        if_match: str | None = None,
    ) -> str:
        """Combine the uploaded parts into the object and return its ETag.

        Raises:
            PreconditionMismatchError: If ``if_match`` differs from the current ETag.
            StorageError: If the operation fails.
        """
        ...

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        ...

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object; deleting an absent key is not an error."""
        ...

    async def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> list[DeleteOutcome]:
        """Delete several keys in one request and report the outcome per key."""
        ...

    async def aclose(self) -> None:
        """Release connections held by the client."""
        ...
