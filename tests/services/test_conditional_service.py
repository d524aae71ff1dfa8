"""Tests for ConditionalService."""

from __future__ import annotations

import pytest

from bucketfs.domain.errors import ObjectNotFoundError, PreconditionFailedError
from bucketfs.services.conditional_service import ConditionalService
from bucketfs.services.transfer_service import TransferService
from tests.services.fault_storage import FAST_RETRY


@pytest.fixture()
def conditional(account):
    transfers = TransferService(
        account, retry_policy=FAST_RETRY, part_size=16, chunk_size=4
    )
    return ConditionalService(account, transfers=transfers)


async def _read_all(handle) -> bytes:
    async with handle:
        return b"".join([chunk async for chunk in handle.iter_chunks(8)])


class TestHead:
    @pytest.mark.asyncio
    async def test_absent_key_has_no_token(self, conditional):
        assert await conditional.head("missing") is None

    @pytest.mark.asyncio
    async def test_token_is_stable_across_reads(self, conditional):
        token = await conditional.write_if_match("k", None, b"payload")

        assert await conditional.head("k") == token
        await _read_all(await conditional.read_if_match("k", token))
        assert await conditional.head("k") == token


class TestReadIfMatch:
    @pytest.mark.asyncio
    async def test_reads_matching_version(self, conditional):
        token = await conditional.write_if_match("k", None, b"payload")

        handle = await conditional.read_if_match("k", token)

        assert handle.version_token == token
        assert await _read_all(handle) == b"payload"

    @pytest.mark.asyncio
    async def test_mismatch_carries_current_token(self, conditional):
        old = await conditional.write_if_match("k", None, b"v1")
        new = await conditional.write_if_match("k", None, b"v2")

        with pytest.raises(PreconditionFailedError) as exc_info:
            await conditional.read_if_match("k", old)

        assert exc_info.value.expected_token == old
        assert exc_info.value.current_token == new
        assert exc_info.value.path == "k"

    @pytest.mark.asyncio
    async def test_absent_key(self, conditional):
        with pytest.raises(ObjectNotFoundError):
            await conditional.read_if_match("missing", '"token"')

    @pytest.mark.asyncio
    async def test_open_versioned(self, conditional):
        token = await conditional.write_if_match("k", None, b"payload")

        handle = await conditional.open_versioned("k")

        assert handle.version_token == token
        assert await _read_all(handle) == b"payload"

    @pytest.mark.asyncio
    async def test_open_versioned_absent_key(self, conditional):
        with pytest.raises(ObjectNotFoundError):
            await conditional.open_versioned("missing")


class TestWriteIfMatch:
    @pytest.mark.asyncio
    async def test_compare_and_swap(self, conditional):
        first = await conditional.write_if_match("k", None, b"v1")

        second = await conditional.write_if_match("k", first, b"v2")

        assert second != first
        assert await conditional.head("k") == second

    @pytest.mark.asyncio
    async def test_stale_token_leaves_object_unchanged(
        self, conditional, fault_client
    ):
        first = await conditional.write_if_match("k", None, b"v1")
        second = await conditional.write_if_match("k", first, b"v2")
        puts_before = fault_client.count("put_object")

        with pytest.raises(PreconditionFailedError) as exc_info:
            await conditional.write_if_match("k", first, b"v3")

        assert exc_info.value.current_token == second
        assert fault_client.count("put_object") == puts_before + 1
        assert await _read_all(await conditional.read_if_match("k", second)) == b"v2"

    @pytest.mark.asyncio
    async def test_token_for_deleted_object(self, conditional, memory_client, account):
        token = await conditional.write_if_match("k", None, b"v1")
        await memory_client.delete_object(bucket=account.bucket, object_key="k")

        with pytest.raises(PreconditionFailedError) as exc_info:
            await conditional.write_if_match("k", token, b"v2")

        assert exc_info.value.current_token is None
        assert await conditional.head("k") is None

    @pytest.mark.asyncio
    async def test_stale_multipart_write_is_aborted(
        self, conditional, memory_client
    ):
        first = await conditional.write_if_match("big", None, b"original")
        await conditional.write_if_match("big", first, b"replaced")

        with pytest.raises(PreconditionFailedError):
            await conditional.write_if_match("big", first, b"z" * 50)

        assert len(memory_client.aborted_uploads) == 1
        assert memory_client.uploads == {}
        current = await conditional.head("big")
        assert await _read_all(await conditional.read_if_match("big", current)) == b"replaced"

    @pytest.mark.asyncio
    async def test_write_handle(self, conditional):
        token = await conditional.write_if_match("k", None, b"v1")

        async with conditional.open_write_if_match("k", token) as handle:
            await handle.write(b"v2")

        assert handle.version_token == await conditional.head("k")
