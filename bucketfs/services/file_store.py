"""Public file store facade.

``FileStore`` is the only entry point callers need: it resolves user paths
against its default directory, converts them to object keys and delegates to
the directory, transfer and conditional services. It holds no mutable state of
its own; several facades with different default directories can share one
account.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from bucketfs.common.config import Settings
from bucketfs.common.logging import setup_logging
from bucketfs.domain import ROOT_DIRECTORY
from bucketfs.domain.errors import (
    NotSupportedError,
    ObjectNotFoundError,
    PartialFailureError,
    PreconditionFailedError,
)
from bucketfs.domain.models import ChildEntry, TransferResult, TransferStatus, VersionToken
from bucketfs.domain.paths import (
    file_key,
    is_rooted,
    join,
    leaf_name,
    normalize,
    parent_of,
    to_path,
)
from bucketfs.infra.storage.account import StoreAccount
from bucketfs.services.base import BaseService
from bucketfs.services.conditional_service import ConditionalService
from bucketfs.services.directory_service import DirectoryService
from bucketfs.services.transfer_service import (
    ReadHandle,
    TransferService,
    UploadSource,
    WriteHandle,
)

logger = logging.getLogger("bucketfs.store")

STORE_NAME = "bucketfs.S3FileStore"

T = TypeVar("T")


class FileStore(BaseService):
    """Hierarchical file operations over one bucket.

    Paths may be rooted (``/a/b``) or relative to ``default_directory``.
    """

    name = STORE_NAME
    root_directory = ROOT_DIRECTORY
    # S3 compares keys byte for byte; paths are never case-folded.
    is_case_sensitive = True

    def __init__(
        self,
        account: StoreAccount,
        *,
        directories: DirectoryService,
        transfers: TransferService,
        conditional: ConditionalService,
        default_directory: str = ROOT_DIRECTORY,
    ) -> None:
        super().__init__(account, retry_policy=transfers.retry_policy)
        self._directories = directories
        self._transfers = transfers
        self._conditional = conditional
        self._default_directory = to_path(normalize(default_directory))

    @classmethod
    def from_settings(cls, account: StoreAccount, settings: Settings) -> "FileStore":
        transfers = TransferService.from_settings(account, settings)
        return cls(
            account,
            directories=DirectoryService.from_settings(account, settings),
            transfers=transfers,
            conditional=ConditionalService(account, transfers=transfers),
            default_directory=settings.STORE_DEFAULT_DIRECTORY,
        )

    @classmethod
    def for_account(cls, account: StoreAccount, **options: Any) -> "FileStore":
        """Build a store with service defaults, overriding any keyword in ``options``.

        Accepted options: ``retry_policy``, ``part_size``, ``chunk_size``,
        ``list_page_size``, ``delete_batch_size`` and ``default_directory``.
        """
        retry_policy = options.pop("retry_policy", None)
        default_directory = options.pop("default_directory", ROOT_DIRECTORY)
        transfer_options = {
            key: options.pop(key) for key in ("part_size", "chunk_size") if key in options
        }
        transfers = TransferService(
            account, retry_policy=retry_policy, **transfer_options
        )
        directories = DirectoryService(account, retry_policy=retry_policy, **options)
        return cls(
            account,
            directories=directories,
            transfers=transfers,
            conditional=ConditionalService(account, transfers=transfers),
            default_directory=default_directory,
        )

    # -- metadata -----------------------------------------------------------

    @property
    def id(self) -> str:
        return f"arn:aws:s3:::{self.bucket}"

    @property
    def default_directory(self) -> str:
        return self._default_directory

    @property
    def directories(self) -> DirectoryService:
        return self._directories

    @property
    def transfers(self) -> TransferService:
        return self._transfers

    @property
    def conditional(self) -> ConditionalService:
        return self._conditional

    def with_default_directory(self, path: str) -> "FileStore":
        """Return a facade over the same account rooted at ``path``."""
        return FileStore(
            self.account,
            directories=self._directories,
            transfers=self._transfers,
            conditional=self._conditional,
            default_directory=self.resolve(path),
        )

    # -- paths --------------------------------------------------------------

    def resolve(self, path: str) -> str:
        """Rooted form of ``path``; relative paths hang off the default directory."""
        if is_rooted(path):
            return path
        return join(self._default_directory, path)

    def _file_key(self, path: str) -> str:
        return file_key(self.resolve(path))

    @staticmethod
    def combine(*parts: str) -> str:
        return join(*parts)

    @staticmethod
    def get_file_name(path: str) -> str:
        return leaf_name(path)

    @staticmethod
    def get_directory_name(path: str) -> str:
        return parent_of(path)

    @staticmethod
    def is_rooted(path: str) -> bool:
        return is_rooted(path)

    @staticmethod
    def random_directory_name() -> str:
        return uuid.uuid4().hex

    # -- directories --------------------------------------------------------

    async def directory_exists(self, path: str) -> bool:
        return await self._directories.exists(self.resolve(path))

    async def create_directory(self, path: str) -> None:
        await self._directories.create(self.resolve(path))

    async def delete_directory(
        self,
        path: str,
        *,
        recursive: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> TransferResult:
        """Delete a directory and report what happened to each key.

        Raises:
            DirectoryNotEmptyError: If ``recursive`` is False and the directory
                has entries.
            PartialFailureError: If any key failed or was left pending; the
                error's ``result`` lists which.
        """
        resolved = self.resolve(path)
        result = await self._directories.delete(
            resolved, recursive=recursive, cancel=cancel
        )
        if result.status is not TransferStatus.COMPLETE:
            raise PartialFailureError(
                f"Directory delete {result.status.value}: "
                f"{len(result.failed)} failed, {len(result.pending)} pending",
                path=resolved,
                result=result,
            )
        return result

    async def enumerate_directories(self, path: str) -> list[str]:
        return await self._directories.list_directories(self.resolve(path))

    async def enumerate_files(self, path: str) -> list[str]:
        return await self._directories.list_files(self.resolve(path))

    async def iter_children(
        self, path: str, *, depth: int = 1
    ) -> AsyncIterator[ChildEntry]:
        async for child in self._directories.iter_children(
            self.resolve(path), depth=depth
        ):
            yield child

    # -- files --------------------------------------------------------------

    async def file_exists(self, path: str) -> bool:
        return await self._head_token(self._file_key(path)) is not None

    async def delete_file(self, path: str) -> None:
        """Delete a file; a file that is already gone is not an error."""
        await self._call("delete_object", object_key=self._file_key(path))

    async def get_file_size(self, path: str) -> int:
        head = await self._call("head_object", object_key=self._file_key(path))
        return head.size_bytes

    async def get_last_modified(
        self, path: str, *, is_directory: bool = False
    ) -> datetime:
        if is_directory:
            return await self._directories.last_modified(self.resolve(path))
        key = self._file_key(path)
        head = await self._call("head_object", object_key=key)
        if head.last_modified is None:
            raise ObjectNotFoundError("Object has no modification time", path=key)
        return head.last_modified

    async def move_file(self, source: str, destination: str) -> None:
        # Object storage has no rename; a copy plus delete would not be atomic.
        raise NotSupportedError(
            "Moving files is not supported by object storage",
            path=self.resolve(source),
        )

    async def download_to_local(
        self,
        path: str,
        local_path: str | os.PathLike[str],
        *,
        cancel: asyncio.Event | None = None,
    ) -> int:
        return await self._transfers.download_to_file(
            self._file_key(path), local_path, cancel=cancel
        )

    async def download_to_stream(
        self, path: str, sink: Any, *, cancel: asyncio.Event | None = None
    ) -> int:
        return await self._transfers.download(self._file_key(path), sink, cancel=cancel)

    async def upload_from_local(
        self,
        local_path: str | os.PathLike[str],
        path: str,
        *,
        expected_token: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> VersionToken:
        return await self._transfers.upload_from_file(
            local_path, self._file_key(path), if_match=expected_token, cancel=cancel
        )

    async def upload_from_stream(
        self,
        path: str,
        source: UploadSource,
        *,
        expected_token: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> VersionToken:
        return await self._conditional.write_if_match(
            self._file_key(path), expected_token, source, cancel=cancel
        )

    async def begin_read(self, path: str) -> ReadHandle:
        return await self._transfers.open_read(self._file_key(path))

    def begin_write(
        self, path: str, *, expected_token: str | None = None
    ) -> WriteHandle:
        return self._conditional.open_write_if_match(
            self._file_key(path), expected_token
        )

    # -- conditional access -------------------------------------------------

    async def try_get_version_token(self, path: str) -> VersionToken | None:
        return await self._conditional.head(self._file_key(path))

    async def read_if_match(self, path: str, token: str) -> ReadHandle | None:
        """Open ``path`` if it is still at version ``token``, otherwise None."""
        key = self._file_key(path)
        try:
            return await self._conditional.read_if_match(key, token)
        except (PreconditionFailedError, ObjectNotFoundError):
            return None

    async def write_with_token(
        self,
        path: str,
        writer: Callable[[WriteHandle], Awaitable[T]],
        expected_token: str | None = None,
    ) -> tuple[VersionToken, T]:
        """Run ``writer`` against a write handle and commit if the token still matches.

        The object is only replaced when ``writer`` returns normally and the
        stored version is still ``expected_token`` (or unconditionally when it
        is None).

        Raises:
            PreconditionFailedError: If the object changed since ``expected_token``
                was read; ``current_token`` holds the new token.
        """
        handle = self.begin_write(path, expected_token=expected_token)
        async with handle:
            result = await writer(handle)
        assert handle.version_token is not None
        return handle.version_token, result

    # -- lifecycle ----------------------------------------------------------

    async def aclose(self) -> None:
        await self.account.aclose()

    async def __aenter__(self) -> "FileStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def build_file_store(settings: Settings) -> FileStore:
    """Create a store and its account from configuration.

    The caller owns the result and should ``await store.aclose()`` when done.

    Raises:
        StorageBackendNotConfiguredError: If the backend or its credentials are
            invalid.
    """
    if settings.LOG_CONFIGURE:
        setup_logging(settings.LOG_LEVEL)
    account = StoreAccount.from_settings(settings)
    logger.info(
        "file_store_created backend=%s bucket=%s",
        settings.STORAGE_BACKEND,
        account.bucket,
        extra={
            "extra": {
                "backend": settings.STORAGE_BACKEND,
                "bucket": account.bucket,
                "endpoint_url": account.endpoint_url,
                "default_directory": settings.STORE_DEFAULT_DIRECTORY,
            }
        },
    )
    return FileStore.from_settings(account, settings)
