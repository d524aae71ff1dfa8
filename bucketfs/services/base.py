from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from bucketfs.domain.errors import (
    BackendUnavailableError,
    FileStoreError,
    ObjectNotFoundError,
    OperationCancelledError,
    PreconditionFailedError,
)
from bucketfs.infra.observability.metrics import BACKEND_LATENCY, BACKEND_REQUESTS
from bucketfs.infra.storage.account import StoreAccount
from bucketfs.infra.storage.client import (
    ObjectMissingError,
    ObjectStoreClient,
    PreconditionMismatchError,
    StorageError,
    TransientStorageError,
)
from bucketfs.services.retry import RetryPolicy

logger = logging.getLogger("bucketfs.store")


def check_cancelled(cancel: asyncio.Event | None, path: str | None = None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled", path=path)


class BaseService:
    """Provides the backend-call guard rails shared by the store services.

    Every backend call goes through ``_call``, which retries transient
    failures, records metrics and maps backend errors onto the public kinds.
    """

    def __init__(
        self, account: StoreAccount, *, retry_policy: RetryPolicy | None = None
    ) -> None:
        self._account = account
        self._retry = retry_policy or RetryPolicy()

    @property
    def account(self) -> StoreAccount:
        return self._account

    @property
    def bucket(self) -> str:
        return self._account.bucket

    @property
    def client(self) -> ObjectStoreClient:
        return self._account.client

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    async def _call(self, operation: str, *, retry: bool = True, **params: Any) -> Any:
        """Invoke ``client.<operation>(bucket=..., **params)``.

        Transient failures are retried per the retry policy and surface as
        BackendUnavailableError once attempts run out. Precondition failures and
        missing objects are never retried.
        """
        path = params.get("object_key", params.get("prefix"))
        method = getattr(self.client, operation)
        attempts = self._retry.attempts if retry else 1

        for attempt in range(1, attempts + 1):
            start = time.perf_counter()
            outcome = "ok"
            try:
                return await method(bucket=self.bucket, **params)
            except TransientStorageError as exc:
                outcome = "transient"
                if attempt >= attempts:
                    logger.error(
                        "backend_unavailable operation=%s key=%s attempts=%s",
                        operation,
                        path,
                        attempt,
                        extra={
                            "extra": {
                                "operation": operation,
                                "key": path,
                                "attempts": attempt,
                                "error": str(exc),
                            }
                        },
                    )
                    raise BackendUnavailableError(
                        f"{operation} failed after {attempt} attempts: {exc}",
                        path=path,
                        attempts=attempt,
                    ) from exc
                delay = self._retry.backoff_seconds(attempt - 1)
                logger.warning(
                    "backend_retry operation=%s key=%s attempt=%s delay_s=%.3f",
                    operation,
                    path,
                    attempt,
                    delay,
                    extra={
                        "extra": {
                            "operation": operation,
                            "key": path,
                            "attempt": attempt,
                            "delay_s": round(delay, 3),
                            "error": str(exc),
                        }
                    },
                )
                await asyncio.sleep(delay)
            except ObjectMissingError as exc:
                outcome = "missing"
                raise ObjectNotFoundError(path=path) from exc
            except PreconditionMismatchError as exc:
                outcome = "precondition_failed"
                raise PreconditionFailedError(path=path) from exc
            except StorageError as exc:
                outcome = "error"
                raise FileStoreError(str(exc), path=path) from exc
            except asyncio.CancelledError:
                outcome = "cancelled"
                raise
            finally:
                BACKEND_REQUESTS.labels(operation, outcome).inc()
                BACKEND_LATENCY.labels(operation).observe(time.perf_counter() - start)

        raise AssertionError("unreachable: retry loop exited without result")

    async def _head_token(self, key: str) -> str | None:
        """Current version token of ``key``, or None when it does not exist."""
        try:
            head = await self._call("head_object", object_key=key)
        except ObjectNotFoundError:
            return None
        return head.etag

    async def _stale(self, key: str, expected: str | None) -> PreconditionFailedError:
        """Build a precondition failure carrying the backend's current token."""
        current = await self._head_token(key)
        return PreconditionFailedError(
            f"Version token mismatch: expected {expected}, current {current}",
            path=key,
            expected_token=expected,
            current_token=current,
        )
