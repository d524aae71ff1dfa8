"""Fault-injecting wrapper around the in-memory storage client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from bucketfs.infra.storage.client import DeleteOutcome, TransientStorageError
from bucketfs.infra.storage.memory_client import InMemoryStorageClient
from bucketfs.services.retry import RetryPolicy

FAST_RETRY = RetryPolicy(attempts=3, base_seconds=0.0, cap_seconds=0.0, jitter=False)

_WRAPPED = frozenset(
    {
        "list_objects",
        "head_object",
        "put_object",
        "init_multipart_upload",
        "upload_part",
        "complete_multipart_upload",
        "abort_multipart_upload",
        "delete_object",
    }
)


@dataclass
class FaultInjectingClient:
    """Delegates to ``inner`` after optionally failing the call.

    ``transient_failures`` maps an operation name to how many upcoming calls
    fail with TransientStorageError. ``delete_errors`` maps keys to the error
    code ``delete_objects`` reports for them (the key is left in place).
    ``read_failures`` download reads fail once a stream has delivered
    ``fail_read_after`` bytes.
    """

    inner: InMemoryStorageClient
    transient_failures: dict[str, int] = field(default_factory=dict)
    delete_errors: dict[str, str] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    payload_sizes: list[int] = field(default_factory=list)
    delete_batches: list[list[str]] = field(default_factory=list)
    on_call: Callable[[str], None] | None = None
    read_failures: int = 0
    fail_read_after: int = 0
    get_requests: list[tuple[int, str | None]] = field(default_factory=list)

    def fail_next(self, operation: str, times: int = 1) -> None:
        self.transient_failures[operation] = times

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    def _maybe_fail(self, operation: str, object_key: str | None = None) -> None:
        self.calls.append(operation)
        if self.on_call is not None:
            self.on_call(operation)
        remaining = self.transient_failures.get(operation, 0)
        if remaining > 0:
            self.transient_failures[operation] = remaining - 1
            raise TransientStorageError(
                f"Injected {operation} failure", object_key=object_key, code="SlowDown"
            )

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name not in _WRAPPED:
            raise AttributeError(name)
        target = getattr(self.inner, name)

        async def call(**params: Any) -> Any:
            self._maybe_fail(name, params.get("object_key"))
            if "data" in params:
                self.payload_sizes.append(len(params["data"]))
            return await target(**params)

        return call

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        if_match: str | None = None,
        range_start: int = 0,
    ) -> "_FlakyBody":
        self._maybe_fail("get_object", object_key)
        self.get_requests.append((range_start, if_match))
        body = await self.inner.get_object(
            bucket=bucket,
            object_key=object_key,
            if_match=if_match,
            range_start=range_start,
        )
        return _FlakyBody(self, body, object_key)

    async def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> list[DeleteOutcome]:
        self._maybe_fail("delete_objects")
        self.delete_batches.append(list(object_keys))
        allowed = [key for key in object_keys if key not in self.delete_errors]
        deleted = {
            outcome.key: outcome
            for outcome in await self.inner.delete_objects(
                bucket=bucket, object_keys=allowed
            )
        }
        return [
            deleted.get(key)
            or DeleteOutcome(
                key=key, error_code=self.delete_errors[key], message="Injected error"
            )
            for key in object_keys
        ]

    async def aclose(self) -> None:
        await self.inner.aclose()

    def keys(self, bucket: str) -> list[str]:
        return self.inner.keys(bucket)


class _FlakyBody:
    def __init__(self, owner: FaultInjectingClient, inner: Any, object_key: str) -> None:
        self._owner = owner
        self._inner = inner
        self._object_key = object_key
        self._delivered = 0
        self.etag = inner.etag
        self.content_length = inner.content_length

    async def read(self, size: int = -1) -> bytes:
        owner = self._owner
        if owner.read_failures > 0 and self._delivered >= owner.fail_read_after:
            owner.read_failures -= 1
            raise TransientStorageError(
                "Injected connection reset",
                object_key=self._object_key,
                code="RequestTimeout",
            )
        data = await self._inner.read(size)
        self._delivered += len(data)
        return data

    async def aclose(self) -> None:
        await self._inner.aclose()
