"""In-memory storage client.

Implements the storage client protocol on top of plain dictionaries, with the
same listing, conditional-write and multipart semantics as the S3 client.
Selected with ``STORAGE_BACKEND=memory``; mostly useful for tests and local runs.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from bucketfs.infra.storage.client import (
    CompletedPart,
    DeleteOutcome,
    MultipartUpload,
    ObjectEntry,
    ObjectHead,
    ObjectListing,
    ObjectMissingError,
    PreconditionMismatchError,
    StorageError,
)

DEFAULT_MAX_KEYS = 1000


@dataclass(frozen=True, slots=True)
class _StoredObject:
    data: bytes
    etag: str
    last_modified: datetime
    content_type: str | None = None


class _MemoryObjectBody:
    def __init__(self, data: bytes, *, etag: str | None = None) -> None:
        self._buffer = io.BytesIO(data)
        self.etag = etag
        self.content_length = len(data)
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise StorageError("Read from a closed object stream")
        return self._buffer.read(size)

    async def aclose(self) -> None:
        self.closed = True


def _new_etag() -> str:
    # Fresh token on every write, even when the bytes are unchanged.
    return f'"{uuid.uuid4().hex}"'


@dataclass
class InMemoryStorageClient:
    """Dictionary-backed implementation of the storage client protocol."""

    objects: dict[tuple[str, str], _StoredObject] = field(default_factory=dict)
    uploads: dict[str, dict[str, Any]] = field(default_factory=dict)
    completed_uploads: list[str] = field(default_factory=list)
    aborted_uploads: list[str] = field(default_factory=list)
    closed: bool = False
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _upload_counter: int = field(default=0, repr=False)

    def _check_condition(self, bucket: str, object_key: str, if_match: str | None) -> None:
        if if_match is None:
            return
        current = self.objects.get((bucket, object_key))
        if current is None or current.etag != if_match:
            raise PreconditionMismatchError(
                "At least one of the pre-conditions you specified did not hold",
                object_key=object_key,
                code="PreconditionFailed",
            )

    def _store(
        self, bucket: str, object_key: str, data: bytes, content_type: str | None = None
    ) -> str:
        etag = _new_etag()
        self.objects[(bucket, object_key)] = _StoredObject(
            data=bytes(data),
            etag=etag,
            last_modified=datetime.now(timezone.utc),
            content_type=content_type,
        )
        return etag

    async def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        page_token: str | None = None,
        max_keys: int | None = None,
    ) -> ObjectListing:
        limit = max_keys or DEFAULT_MAX_KEYS
        items: dict[str, _StoredObject | None] = {}
        for (obj_bucket, key), stored in self.objects.items():
            if obj_bucket != bucket or not key.startswith(prefix):
                continue
            rest = key[len(prefix) :]
            if delimiter and delimiter in rest:
                common = prefix + rest[: rest.index(delimiter) + len(delimiter)]
                items[common] = None
            else:
                items[key] = stored

        names = sorted(name for name in items if page_token is None or name > page_token)
        page = names[:limit]
        entries: list[ObjectEntry] = []
        prefixes: list[str] = []
        for name in page:
            stored = items[name]
            if stored is None:
                prefixes.append(name)
            else:
                entries.append(
                    ObjectEntry(
                        key=name,
                        size_bytes=len(stored.data),
                        etag=stored.etag,
                        last_modified=stored.last_modified,
                    )
                )
        next_token = page[-1] if len(names) > limit else None
        return ObjectListing(
            entries=entries, common_prefixes=prefixes, next_page_token=next_token
        )

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        stored = self.objects.get((bucket, object_key))
        if stored is None:
            raise ObjectMissingError(
                "Not Found", object_key=object_key, code="NotFound"
            )
        return ObjectHead(
            size_bytes=len(stored.data),
            etag=stored.etag,
            last_modified=stored.last_modified,
            content_type=stored.content_type,
        )

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        if_match: str | None = None,
        range_start: int = 0,
    ) -> _MemoryObjectBody:
        stored = self.objects.get((bucket, object_key))
        if stored is None:
            raise ObjectMissingError(
                "The specified key does not exist.",
                object_key=object_key,
                code="NoSuchKey",
            )
        if if_match is not None and stored.etag != if_match:
            raise PreconditionMismatchError(
                "At least one of the pre-conditions you specified did not hold",
                object_key=object_key,
                code="PreconditionFailed",
            )
        return _MemoryObjectBody(stored.data[range_start:], etag=stored.etag)

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        if_match: str | None = None,
    ) -> str:
        async with self._lock:
            self._check_condition(bucket, object_key, if_match)
            return self._store(bucket, object_key, data)

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        self._upload_counter += 1
        upload_id = f"memory-upload-{self._upload_counter}"
        self.uploads[upload_id] = {
            "bucket": bucket,
            "object_key": object_key,
            "content_type": content_type,
            "parts": {},
        }
        return MultipartUpload(
            upload_id=upload_id, bucket=bucket, object_key=object_key
        )

    def _get_upload(self, upload_id: str, object_key: str) -> dict[str, Any]:
        upload = self.uploads.get(upload_id)
        if upload is None:
            raise StorageError(
                f"Upload {upload_id} not found",
                object_key=object_key,
                code="NoSuchUpload",
            )
        return upload

    async def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> CompletedPart:
        upload = self._get_upload(upload_id, object_key)
        payload = bytes(data)
        upload["parts"][int(part_number)] = payload
        etag = f'"{hashlib.md5(payload).hexdigest()}"'
        return CompletedPart(part_number=int(part_number), etag=etag)

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
        if_match: str | None = None,
    ) -> str:
        upload = self._get_upload(upload_id, object_key)
        if not parts:
            raise StorageError(
                "You must specify at least one part",
                object_key=object_key,
                code="MalformedXML",
            )
        chunks: list[bytes] = []
        for part in sorted(parts, key=lambda p: p.part_number):
            if part.part_number not in upload["parts"]:
                raise StorageError(
                    f"Part {part.part_number} was never uploaded",
                    object_key=object_key,
                    code="InvalidPart",
                )
            chunks.append(upload["parts"][part.part_number])

        async with self._lock:
            self._check_condition(bucket, object_key, if_match)
            etag = self._store(
                bucket, object_key, b"".join(chunks), upload["content_type"]
            )
        del self.uploads[upload_id]
        self.completed_uploads.append(upload_id)
        return etag

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        if self.uploads.pop(upload_id, None) is not None:
            self.aborted_uploads.append(upload_id)

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        async with self._lock:
            self.objects.pop((bucket, object_key), None)

    async def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> list[DeleteOutcome]:
        async with self._lock:
            for key in object_keys:
                self.objects.pop((bucket, key), None)
        return [DeleteOutcome(key=key) for key in object_keys]

    async def aclose(self) -> None:
        self.closed = True

    def keys(self, bucket: str) -> list[str]:
        """Sorted keys currently stored in ``bucket``."""
        return sorted(key for obj_bucket, key in self.objects if obj_bucket == bucket)
