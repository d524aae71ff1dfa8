"""Streaming transfers between caller streams and the object store.

Downloads copy chunk by chunk into the caller's sink, so the object is never
held in memory as a whole. Uploads buffer at most one part: once a write
overflows the part size the handle switches to a multipart upload, which is
what lets sources of unknown length stream into arbitrarily large objects.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Any, AsyncIterator

from bucketfs.common.config import Settings
from bucketfs.domain.errors import (
    BackendUnavailableError,
    FileStoreError,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from bucketfs.domain.models import VersionToken
from bucketfs.infra.observability.metrics import TRANSFER_BYTES
from bucketfs.infra.storage.account import StoreAccount
from bucketfs.infra.storage.client import (
    CompletedPart,
    ObjectBody,
    StorageError,
    TransientStorageError,
)
from bucketfs.services.base import BaseService, check_cancelled
from bucketfs.services.retry import RetryPolicy

logger = logging.getLogger("bucketfs.store")

DEFAULT_PART_SIZE_BYTES = 8 * 1024 * 1024
DEFAULT_CHUNK_SIZE_BYTES = 1024 * 1024
# Maximum part number allowed by S3
MAX_PART_NUMBER = 10000

# bytes, a sync or async binary reader, or an async iterable of bytes
UploadSource = Any


class ReadHandle:
    """Open download stream for one key.

    The underlying network stream is released exactly once: on ``aclose()`` or
    when the ``async with`` block exits, whatever the reason. A transient
    failure mid-stream reopens the object at the current offset, pinned to the
    version first opened, under the service's retry policy.
    """

    def __init__(
        self,
        body: ObjectBody,
        *,
        key: str,
        version_token: str | None = None,
        service: "TransferService | None" = None,
    ) -> None:
        self._body = body
        self.key = key
        self.version_token = version_token
        self._service = service
        self._pinned_etag = version_token or body.etag
        self._size = body.content_length
        self._offset = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def offset(self) -> int:
        return self._offset

    async def read(self, size: int = -1) -> bytes:
        if self._closed:
            raise FileStoreError("Read handle is closed", path=self.key)
        attempt = 1
        while True:
            try:
                data = await self._body.read(size)
                break
            except TransientStorageError as exc:
                if self._size is not None and self._offset >= self._size:
                    # Only the end-of-stream read failed
                    data = b""
                    break
                if (
                    self._service is None
                    or self._pinned_etag is None
                    or attempt >= self._service.retry_policy.attempts
                ):
                    raise BackendUnavailableError(
                        f"Download stream interrupted: {exc}",
                        path=self.key,
                        attempts=attempt,
                    ) from exc
                await self._resume(attempt, exc)
                attempt += 1
            except StorageError as exc:
                raise FileStoreError(str(exc), path=self.key) from exc
        if data:
            self._offset += len(data)
            TRANSFER_BYTES.labels("download").inc(len(data))
        return data

    async def _resume(self, attempt: int, error: Exception) -> None:
        assert self._service is not None
        delay = self._service.retry_policy.backoff_seconds(attempt - 1)
        logger.warning(
            "download_resume key=%s offset=%s attempt=%s delay_s=%.3f",
            self.key,
            self._offset,
            attempt,
            delay,
            extra={
                "extra": {
                    "key": self.key,
                    "offset": self._offset,
                    "attempt": attempt,
                    "delay_s": round(delay, 3),
                    "error": str(error),
                }
            },
        )
        await asyncio.sleep(delay)
        await self._body.aclose()
        try:
            self._body = await self._service._call(
                "get_object",
                object_key=self.key,
                if_match=self._pinned_etag,
                range_start=self._offset,
            )
        except PreconditionFailedError as exc:
            # The object was replaced since the stream was first opened
            self._closed = True
            raise (await self._service._stale(self.key, self._pinned_etag)) from exc

    async def iter_chunks(
        self, chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES
    ) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(chunk_size)
            if not chunk:
                return
            yield chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._body.aclose()

    async def __aenter__(self) -> "ReadHandle":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class WriteHandle:
    """Buffered upload session for one key.

    Nothing becomes visible in the store until ``aclose()`` commits the object.
    ``abort()``, or an exception inside ``async with``, discards everything
    written so far, including parts of an open multipart upload.
    """

    def __init__(
        self,
        service: "TransferService",
        *,
        key: str,
        if_match: str | None = None,
        part_size: int = DEFAULT_PART_SIZE_BYTES,
    ) -> None:
        self._service = service
        self.key = key
        self.if_match = if_match
        self._part_size = part_size
        self._buffer = bytearray()
        self._upload_id: str | None = None
        self._parts: list[CompletedPart] = []
        self._state = "open"
        self.bytes_written = 0
        self.version_token: VersionToken | None = None

    @property
    def closed(self) -> bool:
        return self._state != "open"

    @property
    def is_multipart(self) -> bool:
        return self._upload_id is not None

    async def write(self, data: bytes) -> int:
        if self._state != "open":
            raise FileStoreError(f"Write handle is {self._state}", path=self.key)
        self._buffer.extend(data)
        self.bytes_written += len(data)
        # Keep at least one byte back so the final part is never empty.
        while len(self._buffer) > self._part_size:
            part = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            await self._upload_part(part)
        return len(data)

    async def _upload_part(self, data: bytes) -> None:
        if self._upload_id is None:
            upload = await self._service._call(
                "init_multipart_upload", object_key=self.key
            )
            self._upload_id = upload.upload_id
        part_number = len(self._parts) + 1
        if part_number > MAX_PART_NUMBER:
            raise FileStoreError(
                f"Object needs more than {MAX_PART_NUMBER} parts; raise the part size",
                path=self.key,
            )
        part = await self._service._call(
            "upload_part",
            object_key=self.key,
            upload_id=self._upload_id,
            part_number=part_number,
            data=data,
        )
        self._parts.append(part)
        TRANSFER_BYTES.labels("upload").inc(len(data))

    async def aclose(self) -> VersionToken | None:
        """Commit the object and return its version token."""
        if self._state != "open":
            return self.version_token
        try:
            if self._upload_id is None:
                payload = bytes(self._buffer)
                etag = await self._service._call(
                    "put_object",
                    object_key=self.key,
                    data=payload,
                    if_match=self.if_match,
                )
                TRANSFER_BYTES.labels("upload").inc(len(payload))
            else:
                if self._buffer:
                    await self._upload_part(bytes(self._buffer))
                etag = await self._service._call(
                    "complete_multipart_upload",
                    object_key=self.key,
                    upload_id=self._upload_id,
                    parts=list(self._parts),
                    if_match=self.if_match,
                )
        except PreconditionFailedError as exc:
            await self.abort()
            raise (await self._service._stale(self.key, self.if_match)) from exc
        except ObjectNotFoundError as exc:
            # S3 answers a conditional write on a deleted key with 404
            await self.abort()
            if self.if_match is None:
                raise
            raise (await self._service._stale(self.key, self.if_match)) from exc
        except BaseException:
            await self.abort()
            raise
        self._buffer.clear()
        self._state = "committed"
        self.version_token = VersionToken(etag)
        return self.version_token

    async def abort(self) -> None:
        """Discard the upload; safe to call more than once."""
        if self._state != "open":
            return
        self._state = "aborted"
        self._buffer.clear()
        if self._upload_id is None:
            return
        try:
            await self._service._call(
                "abort_multipart_upload",
                object_key=self.key,
                upload_id=self._upload_id,
            )
        except Exception as exc:
            # Best effort: an unfinished upload is eventually expired by the backend.
            logger.warning(
                "multipart_abort_failed key=%s upload_id=%s",
                self.key,
                self._upload_id,
                extra={
                    "extra": {
                        "key": self.key,
                        "upload_id": self._upload_id,
                        "error": repr(exc),
                    }
                },
            )

    async def __aenter__(self) -> "WriteHandle":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is not None:
            await self.abort()
            return
        await self.aclose()


async def _iter_source(source: UploadSource, chunk_size: int) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for offset in range(0, len(view), chunk_size):
            yield bytes(view[offset : offset + chunk_size])
        return
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            yield bytes(chunk)
        return
    if hasattr(source, "read"):
        while True:
            chunk = source.read(chunk_size)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                return
            yield bytes(chunk)
    raise TypeError(
        "source must be bytes, a binary reader or an async iterable of bytes, "
        f"got {type(source).__name__}"
    )


async def _write_sink(sink: Any, chunk: bytes) -> None:
    result = sink.write(chunk)
    if inspect.isawaitable(result):
        await result


class TransferService(BaseService):
    """Uploads and downloads single objects through scoped handles."""

    def __init__(
        self,
        account: StoreAccount,
        *,
        retry_policy: RetryPolicy | None = None,
        part_size: int = DEFAULT_PART_SIZE_BYTES,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES,
    ) -> None:
        super().__init__(account, retry_policy=retry_policy)
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        self._part_size = part_size
        self._chunk_size = max(1, min(chunk_size, part_size))

    @classmethod
    def from_settings(
        cls, account: StoreAccount, settings: Settings
    ) -> "TransferService":
        return cls(
            account,
            retry_policy=RetryPolicy.from_settings(settings),
            part_size=settings.STORE_PART_SIZE_BYTES,
        )

    @property
    def part_size(self) -> int:
        return self._part_size

    async def open_read(self, key: str, *, if_match: str | None = None) -> ReadHandle:
        """Open a download stream.

        Raises:
            ObjectNotFoundError: If the key is absent when the stream opens.
            PreconditionFailedError: If ``if_match`` differs from the current token.
        """
        try:
            body = await self._call("get_object", object_key=key, if_match=if_match)
        except PreconditionFailedError as exc:
            raise (await self._stale(key, if_match)) from exc
        return ReadHandle(body, key=key, version_token=if_match, service=self)

    def open_write(self, key: str, *, if_match: str | None = None) -> WriteHandle:
        """Start a buffered upload; no backend call happens before the first part."""
        return WriteHandle(self, key=key, if_match=if_match, part_size=self._part_size)

    async def download(
        self,
        key: str,
        sink: Any,
        *,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Copy ``key`` into ``sink`` (sync or async ``write``) and return the byte count."""
        check_cancelled(cancel, key)
        total = 0
        async with await self.open_read(key) as handle:
            async for chunk in handle.iter_chunks(self._chunk_size):
                check_cancelled(cancel, key)
                await _write_sink(sink, chunk)
                total += len(chunk)
        return total

    async def download_to_file(
        self,
        key: str,
        local_path: str | os.PathLike[str],
        *,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Download ``key`` to a local file, removing the partial file on failure."""
        check_cancelled(cancel, key)
        target = Path(local_path)
        total = 0
        async with await self.open_read(key) as handle:
            fh = await asyncio.to_thread(open, target, "wb")
            try:
                async for chunk in handle.iter_chunks(self._chunk_size):
                    check_cancelled(cancel, key)
                    await asyncio.to_thread(fh.write, chunk)
                    total += len(chunk)
            except BaseException:
                await asyncio.to_thread(fh.close)
                await asyncio.to_thread(target.unlink, True)
                raise
            await asyncio.to_thread(fh.close)
        return total

    async def upload(
        self,
        key: str,
        source: UploadSource,
        *,
        if_match: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> VersionToken:
        """Stream ``source`` into ``key`` and return the new version token."""
        return await self._upload_chunks(
            key, _iter_source(source, self._chunk_size), if_match=if_match, cancel=cancel
        )

    async def upload_from_file(
        self,
        local_path: str | os.PathLike[str],
        key: str,
        *,
        if_match: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> VersionToken:
        source = Path(local_path)
        fh = await asyncio.to_thread(open, source, "rb")
        try:
            return await self._upload_chunks(
                key, self._iter_file(fh), if_match=if_match, cancel=cancel
            )
        finally:
            await asyncio.to_thread(fh.close)

    async def _iter_file(self, fh: Any) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(fh.read, self._chunk_size)
            if not chunk:
                return
            yield chunk

    async def _upload_chunks(
        self,
        key: str,
        chunks: AsyncIterator[bytes],
        *,
        if_match: str | None,
        cancel: asyncio.Event | None,
    ) -> VersionToken:
        check_cancelled(cancel, key)
        async with self.open_write(key, if_match=if_match) as handle:
            async for chunk in chunks:
                check_cancelled(cancel, key)
                await handle.write(chunk)
        assert handle.version_token is not None
        return handle.version_token
