"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
AWS S3, MinIO, and other S3-compatible object storage services.
boto3 is synchronous, so every SDK call runs in a worker thread and the
event loop only waits on its completion.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Sequence

from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from bucketfs.infra.storage.client import (
    MISSING_CODES,
    CompletedPart,
    DeleteOutcome,
    MultipartUpload,
    ObjectEntry,
    ObjectHead,
    ObjectListing,
    ObjectMissingError,
    PreconditionMismatchError,
    StorageError,
    TransientStorageError,
)

if TYPE_CHECKING:
    from bucketfs.common.config import Settings

logger = logging.getLogger("bucketfs.backend")

PRECONDITION_CODES = frozenset({"PreconditionFailed", "412"})
TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestTimeout",
        "RequestTimeoutException",
        "InternalError",
        "ServiceUnavailable",
        "ConditionalRequestConflict",
    }
)


def _translate_error(
    exc: Exception, action: str, object_key: str | None = None
) -> StorageError:
    """Map a boto3 failure onto the storage error kinds."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code") or "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{action}: {exc}"
        if code in MISSING_CODES or (status == 404 and code != "NoSuchBucket"):
            return ObjectMissingError(message, object_key=object_key, code=code)
        if code in PRECONDITION_CODES or status == 412:
            return PreconditionMismatchError(message, object_key=object_key, code=code)
        if code in TRANSIENT_CODES or (isinstance(status, int) and status >= 500):
            return TransientStorageError(message, object_key=object_key, code=code)
        return StorageError(message, object_key=object_key, code=code)
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return TransientStorageError(f"{action}: {exc}", object_key=object_key)
    return StorageError(f"{action}: {exc}", object_key=object_key)


def _etag_text(etag: Any) -> str:
    return str(etag or "")


class _S3ObjectBody:
    """Download stream over a botocore StreamingBody."""

    def __init__(
        self,
        body: Any,
        object_key: str,
        *,
        etag: str | None = None,
        content_length: int | None = None,
    ) -> None:
        self._body = body
        self._object_key = object_key
        self.etag = etag
        self.content_length = content_length

    async def read(self, size: int = -1) -> bytes:
        try:
            if size is None or size < 0:
                return await asyncio.to_thread(self._body.read)
            return await asyncio.to_thread(self._body.read, size)
        except Exception as exc:
            raise _translate_error(
                exc, "Failed to read object stream", self._object_key
            ) from exc

    async def aclose(self) -> None:
        await asyncio.to_thread(self._body.close)


class S3StorageClient:
    """S3-compatible object storage client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Settings containing S3 configuration.
        """
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        import boto3
        from botocore.config import Config

        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config = Config(
            s3={"addressing_style": addressing_style},
            retries={"max_attempts": 1, "mode": "standard"},
        )

        if settings.S3_PROFILE:
            session = boto3.session.Session(
                profile_name=settings.S3_PROFILE, region_name=settings.S3_REGION
            )
            return session.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT_URL,
                use_ssl=bool(settings.S3_USE_SSL),
                config=config,
            )

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    async def _invoke(
        self, action: str, method: str, object_key: str | None = None, **params: Any
    ) -> Any:
        try:
            return await asyncio.to_thread(getattr(self._client, method), **params)
        except Exception as exc:
            error = _translate_error(exc, action, object_key)
            logger.debug(
                "s3_error method=%s key=%s kind=%s code=%s",
                method,
                object_key,
                type(error).__name__,
                error.code,
            )
            raise error from exc

    async def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        page_token: str | None = None,
        max_keys: int | None = None,
    ) -> ObjectListing:
        """List one page of keys under a prefix."""
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if delimiter:
            params["Delimiter"] = delimiter
        if page_token:
            params["ContinuationToken"] = page_token
        if max_keys:
            params["MaxKeys"] = int(max_keys)

        response = await self._invoke(
            "Failed to list objects", "list_objects_v2", prefix, **params
        )

        entries = [
            ObjectEntry(
                key=str(item["Key"]),
                size_bytes=int(item.get("Size") or 0),
                etag=item.get("ETag"),
                last_modified=item.get("LastModified"),
            )
            for item in response.get("Contents") or []
        ]
        prefixes = [
            str(item["Prefix"]) for item in response.get("CommonPrefixes") or []
        ]
        next_token = (
            response.get("NextContinuationToken")
            if response.get("IsTruncated")
            else None
        )
        return ObjectListing(
            entries=entries, common_prefixes=prefixes, next_page_token=next_token
        )

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content."""
        response = await self._invoke(
            "Failed to get object metadata",
            "head_object",
            object_key,
            Bucket=bucket,
            Key=object_key,
        )

        size = response.get("ContentLength")
        return ObjectHead(
            size_bytes=int(size) if size is not None else 0,
            etag=_etag_text(response.get("ETag")),
            last_modified=response.get("LastModified"),
            content_type=response.get("ContentType"),
        )

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        if_match: str | None = None,
        range_start: int = 0,
    ) -> _S3ObjectBody:
        """Open a download stream, optionally resuming at ``range_start``."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if if_match:
            params["IfMatch"] = if_match
        if range_start > 0:
            params["Range"] = f"bytes={range_start}-"

        response = await self._invoke(
            "Failed to get object", "get_object", object_key, **params
        )
        etag = response.get("ETag")
        length = response.get("ContentLength")
        return _S3ObjectBody(
            response["Body"],
            object_key,
            etag=_etag_text(etag) if etag else None,
            content_length=int(length) if length is not None else None,
        )

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        if_match: str | None = None,
    ) -> str:
        """Store a single object."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key, "Body": data}
        if if_match:
            params["IfMatch"] = if_match

        response = await self._invoke(
            "Failed to put object", "put_object", object_key, **params
        )
        etag = response.get("ETag")
        if not etag:
            raise StorageError("S3 response missing ETag", object_key=object_key)
        return _etag_text(etag)

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type

        response = await self._invoke(
            "Failed to create multipart upload",
            "create_multipart_upload",
            object_key,
            **params,
        )

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId", object_key=object_key)

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

    async def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> CompletedPart:
        """Upload one part of a multipart upload."""
        response = await self._invoke(
            "Failed to upload part",
            "upload_part",
            object_key,
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            PartNumber=int(part_number),
            Body=data,
        )
        etag = response.get("ETag")
        if not etag:
            raise StorageError("S3 response missing part ETag", object_key=object_key)
        return CompletedPart(part_number=int(part_number), etag=str(etag))

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
        if_match: str | None = None,
    ) -> str:
        """Complete a multipart upload by combining all parts."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "UploadId": upload_id,
            "MultipartUpload": {
                "Parts": [
                    {"ETag": part.etag, "PartNumber": int(part.part_number)}
                    for part in sorted(parts, key=lambda p: p.part_number)
                ]
            },
        }
        if if_match:
            params["IfMatch"] = if_match

        response = await self._invoke(
            "Failed to complete multipart upload",
            "complete_multipart_upload",
            object_key,
            **params,
        )
        return _etag_text(response.get("ETag"))

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        await self._invoke(
            "Failed to abort multipart upload",
            "abort_multipart_upload",
            object_key,
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
        )

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage."""
        try:
            await self._invoke(
                "Failed to delete object",
                "delete_object",
                object_key,
                Bucket=bucket,
                Key=object_key,
            )
        except ObjectMissingError:
            return

    async def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> list[DeleteOutcome]:
        """Delete a batch of keys, reporting each key's outcome."""
        if not object_keys:
            return []
        response = await self._invoke(
            "Failed to delete objects",
            "delete_objects",
            None,
            Bucket=bucket,
            Delete={
                "Objects": [{"Key": key} for key in object_keys],
                "Quiet": False,
            },
        )

        deleted = {str(item["Key"]) for item in response.get("Deleted") or []}
        errors = {
            str(item["Key"]): item for item in response.get("Errors") or []
        }
        outcomes: list[DeleteOutcome] = []
        for key in object_keys:
            if key in errors:
                outcomes.append(
                    DeleteOutcome(
                        key=key,
                        error_code=str(errors[key].get("Code") or "Unknown"),
                        message=errors[key].get("Message"),
                    )
                )
            elif key in deleted:
                outcomes.append(DeleteOutcome(key=key))
            else:
                outcomes.append(
                    DeleteOutcome(
                        key=key,
                        error_code="MissingFromResponse",
                        message="Key absent from delete response",
                    )
                )
        return outcomes

    async def aclose(self) -> None:
        await asyncio.to_thread(self._client.close)
