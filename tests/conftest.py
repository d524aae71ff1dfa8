from __future__ import annotations

import pytest

from bucketfs.infra.storage.account import StoreAccount
from bucketfs.infra.storage.memory_client import InMemoryStorageClient
from bucketfs.services.file_store import FileStore
from tests.services.fault_storage import FAST_RETRY, FaultInjectingClient

TEST_BUCKET = "test-bucket"
# Tiny sizes so multipart uploads and paged listings show up with small payloads
TEST_PART_SIZE = 16
TEST_CHUNK_SIZE = 4


@pytest.fixture()
def memory_client() -> InMemoryStorageClient:
    return InMemoryStorageClient()


@pytest.fixture()
def fault_client(memory_client) -> FaultInjectingClient:
    return FaultInjectingClient(inner=memory_client)


@pytest.fixture()
def account(fault_client) -> StoreAccount:
    return StoreAccount(bucket=TEST_BUCKET, client=fault_client)


@pytest.fixture()
def store(account) -> FileStore:
    return FileStore.for_account(
        account,
        retry_policy=FAST_RETRY,
        part_size=TEST_PART_SIZE,
        chunk_size=TEST_CHUNK_SIZE,
        list_page_size=2,
        delete_batch_size=2,
    )
