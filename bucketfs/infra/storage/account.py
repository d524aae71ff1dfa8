"""Store account: the bucket identity plus the client connection it owns."""

from __future__ import annotations

from dataclasses import dataclass

from bucketfs.common.config import Settings
from bucketfs.domain.errors import StorageBackendNotConfiguredError
from bucketfs.infra.storage.client import ObjectStoreClient
from bucketfs.infra.storage.memory_client import InMemoryStorageClient
from bucketfs.infra.storage.s3_client import S3StorageClient

MEMORY_BUCKET = "bucketfs-memory"


@dataclass(frozen=True)
class StoreAccount:
    """Immutable bucket identity shared read-only by every store operation.

    The account owns the backend client: ``aclose()`` (or leaving an
    ``async with`` block) releases it, after which the account must not be used.
    """

    bucket: str
    client: ObjectStoreClient
    endpoint_url: str | None = None
    region: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoreAccount":
        """Build the account and its backend client from configuration.

        Raises:
            StorageBackendNotConfiguredError: If the backend or its credentials
                are missing or unsupported.
        """
        backend = settings.STORAGE_BACKEND
        if backend == "memory":
            return cls(
                bucket=settings.S3_BUCKET or MEMORY_BUCKET,
                client=InMemoryStorageClient(),
            )
        if backend != "s3":
            raise StorageBackendNotConfiguredError(
                f"Unsupported storage backend: {backend}."
            )
        if not settings.S3_BUCKET:
            raise StorageBackendNotConfiguredError("S3_BUCKET is required")
        if not settings.S3_PROFILE and (
            not settings.S3_ACCESS_KEY_ID or not settings.S3_SECRET_ACCESS_KEY
        ):
            raise StorageBackendNotConfiguredError(
                "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY (or S3_PROFILE) are required"
            )
        return cls(
            bucket=settings.S3_BUCKET,
            client=S3StorageClient(settings=settings),
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "StoreAccount":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
