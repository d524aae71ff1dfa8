"""Optimistic concurrency on top of version tokens.

The backend only offers single-object conditional operations, so a token
guards exactly one key. Reads and writes that name an expected token either see
that exact version or fail with PreconditionFailedError, which carries the
current token so the caller can re-read and retry. Precondition failures are
never retried here.
"""

from __future__ import annotations

import asyncio

from bucketfs.domain.errors import ObjectNotFoundError
from bucketfs.domain.models import VersionToken
from bucketfs.infra.storage.account import StoreAccount
from bucketfs.services.base import BaseService
from bucketfs.services.retry import RetryPolicy
from bucketfs.services.transfer_service import (
    ReadHandle,
    TransferService,
    UploadSource,
    WriteHandle,
)


class ConditionalService(BaseService):
    def __init__(
        self,
        account: StoreAccount,
        *,
        transfers: TransferService,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(account, retry_policy=retry_policy or transfers.retry_policy)
        self._transfers = transfers

    async def head(self, key: str) -> VersionToken | None:
        """Current token of ``key``; None (never an error) when it is absent."""
        token = await self._head_token(key)
        return VersionToken(token) if token is not None else None

    async def read_if_match(self, key: str, token: str) -> ReadHandle:
        """Open ``key`` for reading only if its token still equals ``token``.

        Raises:
            PreconditionFailedError: If the object changed; ``current_token``
                holds the new token (None if it was deleted).
            ObjectNotFoundError: If the key does not exist.
        """
        return await self._transfers.open_read(key, if_match=token)

    async def open_versioned(self, key: str) -> ReadHandle:
        """Open the current version of ``key`` pinned to its token.

        The returned handle's ``version_token`` can be passed to
        ``write_if_match`` for a read-modify-write cycle.
        """
        token = await self.head(key)
        if token is None:
            raise ObjectNotFoundError(path=key)
        return await self.read_if_match(key, token)

    async def write_if_match(
        self,
        key: str,
        expected_token: str | None,
        payload: UploadSource,
        *,
        cancel: asyncio.Event | None = None,
    ) -> VersionToken:
        """Replace ``key`` with ``payload``.

        With ``expected_token=None`` the write is unconditional (create or
        overwrite). Otherwise it only commits if the stored token still matches.
        The object is replaced as a whole or not at all.

        Raises:
            PreconditionFailedError: If the stored token differs or the object
                no longer exists.
        """
        return await self._transfers.upload(
            key, payload, if_match=expected_token, cancel=cancel
        )

    def open_write_if_match(
        self, key: str, expected_token: str | None
    ) -> WriteHandle:
        return self._transfers.open_write(key, if_match=expected_token)
