"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for S3, MinIO, other S3-compatible services and an in-memory
stand-in.
"""

from .account import StoreAccount
from .client import (
    CompletedPart,
    DeleteOutcome,
    MultipartUpload,
    ObjectBody,
    ObjectEntry,
    ObjectHead,
    ObjectListing,
    ObjectMissingError,
    ObjectStoreClient,
    PreconditionMismatchError,
    StorageError,
    TransientStorageError,
)
from .memory_client import InMemoryStorageClient
from .s3_client import S3StorageClient

__all__ = [
    "CompletedPart",
    "DeleteOutcome",
    "InMemoryStorageClient",
    "MultipartUpload",
    "ObjectBody",
    "ObjectEntry",
    "ObjectHead",
    "ObjectListing",
    "ObjectMissingError",
    "ObjectStoreClient",
    "PreconditionMismatchError",
    "S3StorageClient",
    "StorageError",
    "StoreAccount",
    "TransientStorageError",
]
