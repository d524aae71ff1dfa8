from .base import BaseService, check_cancelled
from .conditional_service import ConditionalService
from .directory_service import DirectoryService
from .file_store import STORE_NAME, FileStore, build_file_store
from .retry import NO_RETRY, RetryPolicy, compute_backoff_seconds
from .transfer_service import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_PART_SIZE_BYTES,
    MAX_PART_NUMBER,
    ReadHandle,
    TransferService,
    WriteHandle,
)

__all__ = [
    "BaseService",
    "check_cancelled",
    "ConditionalService",
    "DirectoryService",
    "FileStore",
    "build_file_store",
    "STORE_NAME",
    "RetryPolicy",
    "NO_RETRY",
    "compute_backoff_seconds",
    "TransferService",
    "ReadHandle",
    "WriteHandle",
    "DEFAULT_CHUNK_SIZE_BYTES",
    "DEFAULT_PART_SIZE_BYTES",
    "MAX_PART_NUMBER",
]
