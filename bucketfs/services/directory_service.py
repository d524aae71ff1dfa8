"""Pseudo-directories over a flat key space.

A directory ``/a/b`` exists when the zero-length marker ``a/b/`` exists or when
any key starts with ``a/b/``. Existence checks, enumeration and deletion all go
through this module so that every caller applies the same rule.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator

from bucketfs.common.config import Settings
from bucketfs.domain import SEPARATOR
from bucketfs.domain.errors import (
    DirectoryNotEmptyError,
    FileStoreError,
    ObjectNotFoundError,
)
from bucketfs.domain.models import ChildEntry, TransferResult
from bucketfs.domain.paths import directory_prefix, to_path
from bucketfs.infra.storage.account import StoreAccount
from bucketfs.infra.storage.client import MISSING_CODES
from bucketfs.services.base import BaseService
from bucketfs.services.retry import RetryPolicy

logger = logging.getLogger("bucketfs.store")

DEFAULT_LIST_PAGE_SIZE = 1000
DEFAULT_DELETE_BATCH_SIZE = 1000


class DirectoryService(BaseService):
    """Creates, inspects, enumerates and deletes pseudo-directories."""

    def __init__(
        self,
        account: StoreAccount,
        *,
        retry_policy: RetryPolicy | None = None,
        list_page_size: int = DEFAULT_LIST_PAGE_SIZE,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
    ) -> None:
        super().__init__(account, retry_policy=retry_policy)
        self._list_page_size = list_page_size
        self._delete_batch_size = delete_batch_size

    @classmethod
    def from_settings(
        cls, account: StoreAccount, settings: Settings
    ) -> "DirectoryService":
        return cls(
            account,
            retry_policy=RetryPolicy.from_settings(settings),
            list_page_size=settings.STORE_LIST_PAGE_SIZE,
            delete_batch_size=settings.STORE_DELETE_BATCH_SIZE,
        )

    async def exists(self, path: str) -> bool:
        """Return True if a marker or any descendant exists under ``path``.

        The root directory always exists.
        """
        prefix = directory_prefix(path)
        if not prefix:
            return True
        listing = await self._call("list_objects", prefix=prefix, max_keys=1)
        return bool(listing.entries or listing.common_prefixes)

    async def create(self, path: str) -> None:
        """Put the directory marker; re-creating an existing directory is a no-op."""
        prefix = directory_prefix(path)
        if not prefix:
            return
        await self._call("put_object", object_key=prefix, data=b"")

    async def delete(
        self,
        path: str,
        *,
        recursive: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> TransferResult:
        """Delete a directory.

        Without ``recursive`` only an empty (or marker-only) directory can be
        deleted. With ``recursive`` the prefix is listed page by page and each
        page is removed in ``delete_objects`` batches before the next page is
        listed. The marker is held back and deleted last. A failing batch marks
        its keys as failed and the remaining batches still run. Keys already
        gone count as deleted.

        When ``cancel`` is set, listed keys that were not attempted end up in
        ``pending``; if listing had not finished, ``pending_prefix`` is set too.

        Raises:
            DirectoryNotEmptyError: If ``recursive`` is False and descendants exist.
        """
        prefix = directory_prefix(path)
        if not recursive:
            return await self._delete_marker_only(prefix)

        succeeded: set[str] = set()
        failed: dict[str, str] = {}
        pending: list[str] = []
        marker_seen = False
        page_token: str | None = None
        while True:
            if cancel is not None and cancel.is_set():
                if marker_seen:
                    pending.append(prefix)
                return self._summarize(
                    prefix,
                    succeeded,
                    failed,
                    pending,
                    pending_prefix=prefix,
                    cancelled=True,
                )
            listing = await self._call(
                "list_objects",
                prefix=prefix,
                page_token=page_token,
                max_keys=self._list_page_size,
            )
            keys: list[str] = []
            for entry in listing.entries:
                if entry.key == prefix:
                    marker_seen = True
                else:
                    keys.append(entry.key)
            page_token = listing.next_page_token

            pending = await self._delete_batches(keys, cancel, succeeded, failed)
            if pending:
                if marker_seen:
                    pending.append(prefix)
                return self._summarize(
                    prefix,
                    succeeded,
                    failed,
                    pending,
                    pending_prefix=prefix if page_token else None,
                    cancelled=True,
                )
            if not page_token:
                break

        if marker_seen:
            pending = await self._delete_batches([prefix], cancel, succeeded, failed)
            if pending:
                return self._summarize(
                    prefix, succeeded, failed, pending, cancelled=True
                )
        return self._summarize(prefix, succeeded, failed, [])

    async def _delete_marker_only(self, prefix: str) -> TransferResult:
        listing = await self._call("list_objects", prefix=prefix, max_keys=2)
        descendants = [entry.key for entry in listing.entries if entry.key != prefix]
        if descendants:
            raise DirectoryNotEmptyError(
                "Directory is not empty", path=to_path(prefix)
            )
        if not prefix or len(listing.entries) == len(descendants):
            return TransferResult()
        await self._call("delete_object", object_key=prefix)
        return TransferResult(succeeded=frozenset({prefix}))

    async def _delete_batches(
        self,
        keys: list[str],
        cancel: asyncio.Event | None,
        succeeded: set[str],
        failed: dict[str, str],
    ) -> list[str]:
        """Delete ``keys`` batch by batch; return the keys left when cancelled."""
        for start in range(0, len(keys), self._delete_batch_size):
            if cancel is not None and cancel.is_set():
                return keys[start:]
            batch = keys[start : start + self._delete_batch_size]
            try:
                outcomes = await self._call("delete_objects", object_keys=batch)
            except FileStoreError as exc:
                for key in batch:
                    failed[key] = str(exc)
                continue
            for outcome in outcomes:
                if outcome.ok or outcome.error_code in MISSING_CODES:
                    succeeded.add(outcome.key)
                else:
                    failed[outcome.key] = f"{outcome.error_code}: {outcome.message}"
        return []

    def _summarize(
        self,
        prefix: str,
        succeeded: set[str],
        failed: dict[str, str],
        pending: list[str],
        *,
        pending_prefix: str | None = None,
        cancelled: bool = False,
    ) -> TransferResult:
        result = TransferResult(
            succeeded=frozenset(succeeded),
            failed=failed,
            pending=frozenset(pending),
            pending_prefix=pending_prefix,
            cancelled=cancelled,
        )
        logger.info(
            "directory_deleted prefix=%s succeeded=%s failed=%s pending=%s "
            "unlisted=%s status=%s",
            prefix,
            len(result.succeeded),
            len(result.failed),
            len(result.pending),
            result.pending_prefix is not None,
            result.status.value,
            extra={
                "extra": {
                    "prefix": prefix,
                    "succeeded": len(result.succeeded),
                    "failed": sorted(result.failed),
                    "pending": len(result.pending),
                    "pending_prefix": result.pending_prefix,
                    "cancelled": result.cancelled,
                    "status": result.status.value,
                }
            },
        )
        return result

    async def iter_children(
        self, path: str, *, depth: int = 1
    ) -> AsyncIterator[ChildEntry]:
        """Yield children of ``path`` down to ``depth`` levels, page by page.

        Each call starts a fresh listing. The directory's own marker is never
        yielded.
        """
        if depth < 1:
            raise ValueError("depth must be at least 1")
        async for entry in self._walk(directory_prefix(path), depth):
            yield entry

    async def _walk(self, prefix: str, depth: int) -> AsyncIterator[ChildEntry]:
        page_token: str | None = None
        while True:
            listing = await self._call(
                "list_objects",
                prefix=prefix,
                delimiter=SEPARATOR,
                page_token=page_token,
                max_keys=self._list_page_size,
            )
            for entry in listing.entries:
                if entry.key == prefix:
                    continue
                yield ChildEntry(path=to_path(entry.key), is_directory=False)
            for common_prefix in listing.common_prefixes:
                yield ChildEntry(path=to_path(common_prefix), is_directory=True)
                if depth > 1:
                    async for child in self._walk(common_prefix, depth - 1):
                        yield child
            page_token = listing.next_page_token
            if not page_token:
                return

    async def list_directories(self, path: str) -> list[str]:
        return [
            child.path async for child in self.iter_children(path) if child.is_directory
        ]

    async def list_files(self, path: str) -> list[str]:
        return [
            child.path
            async for child in self.iter_children(path)
            if not child.is_directory
        ]

    async def last_modified(self, path: str) -> datetime:
        """Marker timestamp, or the newest descendant when there is no marker.

        Raises:
            ObjectNotFoundError: If the directory does not exist.
        """
        prefix = directory_prefix(path)
        if prefix:
            try:
                head = await self._call("head_object", object_key=prefix)
            except ObjectNotFoundError:
                pass
            else:
                if head.last_modified is not None:
                    return head.last_modified

        newest: datetime | None = None
        page_token: str | None = None
        while True:
            listing = await self._call(
                "list_objects",
                prefix=prefix,
                page_token=page_token,
                max_keys=self._list_page_size,
            )
            for entry in listing.entries:
                if entry.last_modified is not None and (
                    newest is None or entry.last_modified > newest
                ):
                    newest = entry.last_modified
            page_token = listing.next_page_token
            if not page_token:
                break

        if newest is None:
            raise ObjectNotFoundError("Directory not found", path=to_path(prefix))
        return newest
