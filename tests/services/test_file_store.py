"""End-to-end tests for the FileStore facade over the in-memory backend."""

from __future__ import annotations

import asyncio
import io
from datetime import datetime

import pytest

from bucketfs.common.config import Settings
from bucketfs.domain.errors import (
    DirectoryNotEmptyError,
    InvalidPathError,
    NotSupportedError,
    ObjectNotFoundError,
    PartialFailureError,
    PreconditionFailedError,
    StorageBackendNotConfiguredError,
)
from bucketfs.domain.models import TransferStatus
from bucketfs.infra.storage.memory_client import InMemoryStorageClient
from bucketfs.services.file_store import STORE_NAME, FileStore, build_file_store


async def _read(store: FileStore, path: str) -> bytes:
    sink = io.BytesIO()
    await store.download_to_stream(path, sink)
    return sink.getvalue()


class TestMetadata:
    def test_identity(self, store):
        assert store.name == STORE_NAME
        assert store.id == "arn:aws:s3:::test-bucket"
        assert store.root_directory == "/"
        assert store.default_directory == "/"
        assert store.is_case_sensitive is True

    def test_path_helpers(self, store):
        assert store.combine("/a", "b", "c.txt") == "/a/b/c.txt"
        assert store.get_file_name("/a/b/c.txt") == "c.txt"
        assert store.get_directory_name("/a/b/c.txt") == "/a/b"
        assert store.is_rooted("/a")
        assert not store.is_rooted("a")

    def test_random_directory_name(self, store):
        first = store.random_directory_name()
        second = store.random_directory_name()

        assert first != second
        assert len(first) == 32
        assert "/" not in first

    def test_with_default_directory(self, store):
        scoped = store.with_default_directory("/jobs/42")

        assert scoped.default_directory == "/jobs/42"
        assert scoped.account is store.account
        assert scoped.resolve("out.csv") == "/jobs/42/out.csv"
        assert scoped.resolve("/abs.csv") == "/abs.csv"
        assert store.default_directory == "/"

    def test_nested_default_directory(self, store):
        scoped = store.with_default_directory("/jobs").with_default_directory("42")

        assert scoped.default_directory == "/jobs/42"


class TestRoundTrip:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, 1, 15, 16, 17, 100])
    async def test_upload_then_download(self, store, size):
        payload = bytes(index % 251 for index in range(size))

        token = await store.upload_from_stream("/data/blob.bin", payload)

        assert await _read(store, "/data/blob.bin") == payload
        assert await store.try_get_version_token("/data/blob.bin") == token
        assert await store.try_get_version_token("/data/blob.bin") == token

    @pytest.mark.asyncio
    async def test_relative_paths_use_default_directory(self, store, memory_client):
        scoped = store.with_default_directory("/work")

        await scoped.upload_from_stream("notes.txt", b"hello")

        assert memory_client.keys("test-bucket") == ["work/notes.txt"]
        assert await _read(store, "/work/notes.txt") == b"hello"

    @pytest.mark.asyncio
    async def test_local_files(self, store, tmp_path):
        source = tmp_path / "in.txt"
        source.write_bytes(b"line\n" * 10)

        await store.upload_from_local(source, "/files/in.txt")
        total = await store.download_to_local("/files/in.txt", tmp_path / "out.txt")

        assert total == 50
        assert (tmp_path / "out.txt").read_bytes() == b"line\n" * 10

    @pytest.mark.asyncio
    async def test_begin_read_and_write(self, store):
        async with store.begin_write("/h.txt") as handle:
            await handle.write(b"handle ")
            await handle.write(b"data")

        async with await store.begin_read("/h.txt") as reader:
            assert await reader.read() == b"handle data"

    @pytest.mark.asyncio
    async def test_large_object_is_streamed(self, store, fault_client):
        async def generate():
            for _ in range(256):
                yield b"0123456789abcdef!"

        await store.upload_from_stream("/big.bin", generate())

        assert await _read(store, "/big.bin") == b"0123456789abcdef!" * 256
        assert max(fault_client.payload_sizes) <= store.transfers.part_size
        assert fault_client.count("put_object") == 0

    @pytest.mark.asyncio
    async def test_download_survives_connection_reset(self, store, fault_client):
        await store.upload_from_stream("/f.bin", b"abcdefghij")
        fault_client.read_failures = 1
        fault_client.fail_read_after = 4

        assert await _read(store, "/f.bin") == b"abcdefghij"
        assert fault_client.count("get_object") == 2


class TestFiles:
    @pytest.mark.asyncio
    async def test_exists_and_size(self, store):
        await store.upload_from_stream("/a/f.txt", b"12345")

        assert await store.file_exists("/a/f.txt")
        assert not await store.file_exists("/a/g.txt")
        assert await store.get_file_size("/a/f.txt") == 5

    @pytest.mark.asyncio
    async def test_directory_is_not_a_file(self, store):
        await store.create_directory("/a")

        assert not await store.file_exists("/a")

    @pytest.mark.asyncio
    async def test_size_of_missing_file(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.get_file_size("/missing")

    @pytest.mark.asyncio
    async def test_delete_file_is_idempotent(self, store):
        await store.upload_from_stream("/a/f.txt", b"x")

        await store.delete_file("/a/f.txt")
        await store.delete_file("/a/f.txt")

        assert not await store.file_exists("/a/f.txt")

    @pytest.mark.asyncio
    async def test_file_paths_reject_directory_form(self, store, fault_client):
        with pytest.raises(InvalidPathError):
            await store.upload_from_stream("/a/", b"x")
        with pytest.raises(InvalidPathError):
            await store.delete_file("/")

        assert fault_client.calls == []

    @pytest.mark.asyncio
    async def test_last_modified(self, store):
        await store.upload_from_stream("/a/f.txt", b"x")

        file_stamp = await store.get_last_modified("/a/f.txt")
        dir_stamp = await store.get_last_modified("/a", is_directory=True)

        assert isinstance(file_stamp, datetime)
        assert dir_stamp == file_stamp

    @pytest.mark.asyncio
    async def test_last_modified_missing(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.get_last_modified("/missing")

    @pytest.mark.asyncio
    async def test_move_is_not_supported(self, store):
        await store.upload_from_stream("/a.txt", b"x")

        with pytest.raises(NotSupportedError):
            await store.move_file("/a.txt", "/b.txt")

        assert await store.file_exists("/a.txt")


class TestDirectories:
    @pytest.mark.asyncio
    async def test_created_directory_and_ancestor_exist(self, store):
        await store.create_directory("/a/b")

        assert await store.directory_exists("/a/b")
        assert await store.directory_exists("/a")

    @pytest.mark.asyncio
    async def test_enumerate(self, store):
        await store.upload_from_stream("/a/1", b"1")
        await store.upload_from_stream("/a/2", b"2")
        await store.upload_from_stream("/a/b/3", b"3")
        await store.create_directory("/a/c")

        assert await store.enumerate_files("/a") == ["/a/1", "/a/2"]
        assert await store.enumerate_directories("/a") == ["/a/b", "/a/c"]
        children = [child.path async for child in store.iter_children("/a", depth=2)]
        assert "/a/b/3" in children

    @pytest.mark.asyncio
    async def test_recursive_delete_completeness(self, store):
        await store.upload_from_stream("/a/1", b"1")
        await store.upload_from_stream("/a/2", b"2")
        await store.upload_from_stream("/a/b/3", b"3")

        result = await store.delete_directory("/a", recursive=True)

        assert result.status is TransferStatus.COMPLETE
        assert await store.enumerate_files("/a") == []
        assert await store.enumerate_directories("/a") == []
        assert not await store.directory_exists("/a")

    @pytest.mark.asyncio
    async def test_non_recursive_delete_guard(self, store):
        await store.upload_from_stream("/a/1", b"1")
        await store.create_directory("/empty")

        with pytest.raises(DirectoryNotEmptyError):
            await store.delete_directory("/a")
        await store.delete_directory("/empty")

        assert await store.file_exists("/a/1")
        assert not await store.directory_exists("/empty")

    @pytest.mark.asyncio
    async def test_partial_batch_reporting(self, store, fault_client):
        await store.upload_from_stream("/a/1", b"1")
        await store.upload_from_stream("/a/2", b"2")
        await store.upload_from_stream("/a/b/3", b"3")
        fault_client.delete_errors["a/2"] = "AccessDenied"

        with pytest.raises(PartialFailureError) as exc_info:
            await store.delete_directory("/a", recursive=True)

        result = exc_info.value.result
        assert result.status is TransferStatus.PARTIAL
        assert set(result.failed) == {"a/2"}
        assert result.succeeded == frozenset({"a/1", "a/b/3"})
        assert await store.enumerate_files("/a") == ["/a/2"]

    @pytest.mark.asyncio
    async def test_cancelled_delete_is_reported(self, store):
        await store.upload_from_stream("/a/1", b"1")
        await store.upload_from_stream("/a/2", b"2")
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(PartialFailureError) as exc_info:
            await store.delete_directory("/a", recursive=True, cancel=cancel)

        result = exc_info.value.result
        assert result.cancelled
        assert result.status is TransferStatus.FAILED
        assert result.pending_prefix == "a/"
        assert await store.enumerate_files("/a") == ["/a/1", "/a/2"]
        assert await store.directory_exists("/a")


class TestConditional:
    @pytest.mark.asyncio
    async def test_stale_token_is_rejected(self, store):
        initial = await store.upload_from_stream("/doc.txt", b"v0")

        def write(payload: bytes):
            async def writer(handle):
                await handle.write(payload)
                return len(payload)

            return writer

        token, written = await store.write_with_token(
            "/doc.txt", write(b"v1"), expected_token=initial
        )
        assert written == 2

        with pytest.raises(PreconditionFailedError) as exc_info:
            await store.write_with_token(
                "/doc.txt", write(b"v2"), expected_token=initial
            )
        assert exc_info.value.current_token == token

        fresh, _ = await store.write_with_token(
            "/doc.txt", write(b"v3"), expected_token=token
        )
        assert fresh != token
        assert await _read(store, "/doc.txt") == b"v3"

    @pytest.mark.asyncio
    async def test_unconditional_write_creates(self, store):
        async def writer(handle):
            await handle.write(b"new")

        token, result = await store.write_with_token("/new.txt", writer)

        assert result is None
        assert await store.try_get_version_token("/new.txt") == token

    @pytest.mark.asyncio
    async def test_failing_writer_leaves_object(self, store):
        initial = await store.upload_from_stream("/doc.txt", b"keep")

        async def writer(handle):
            await handle.write(b"x" * 40)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await store.write_with_token("/doc.txt", writer, expected_token=initial)

        assert await store.try_get_version_token("/doc.txt") == initial
        assert await _read(store, "/doc.txt") == b"keep"

    @pytest.mark.asyncio
    async def test_read_if_match(self, store):
        token = await store.upload_from_stream("/doc.txt", b"v1")

        handle = await store.read_if_match("/doc.txt", token)
        assert handle is not None
        async with handle:
            assert await handle.read() == b"v1"

        await store.upload_from_stream("/doc.txt", b"v2")
        assert await store.read_if_match("/doc.txt", token) is None
        assert await store.read_if_match("/missing.txt", token) is None

    @pytest.mark.asyncio
    async def test_version_token_of_missing_file(self, store):
        assert await store.try_get_version_token("/missing.txt") is None


class TestBuildFileStore:
    @pytest.mark.asyncio
    async def test_memory_backend(self):
        settings = Settings(
            STORAGE_BACKEND="memory",
            STORE_PART_SIZE_BYTES=32,
            STORE_DEFAULT_DIRECTORY="/base",
        )

        async with build_file_store(settings) as store:
            assert isinstance(store.client, InMemoryStorageClient)
            assert store.default_directory == "/base"
            assert store.transfers.part_size == 32
            await store.upload_from_stream("x.txt", b"data")
            assert await store.file_exists("/base/x.txt")

        assert store.client.closed

    def test_missing_credentials(self):
        with pytest.raises(StorageBackendNotConfiguredError):
            build_file_store(Settings(S3_BUCKET="data-bucket"))

    @pytest.mark.asyncio
    async def test_configures_logging_when_asked(self, monkeypatch):
        levels: list[str] = []
        monkeypatch.setattr(
            "bucketfs.services.file_store.setup_logging", levels.append
        )

        async with build_file_store(Settings(STORAGE_BACKEND="memory")):
            pass
        assert levels == []

        settings = Settings(
            STORAGE_BACKEND="memory", LOG_CONFIGURE=True, LOG_LEVEL="DEBUG"
        )
        async with build_file_store(settings):
            pass
        assert levels == ["DEBUG"]
