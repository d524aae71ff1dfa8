"""Value objects passed between the store services and their callers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping, NewType

ObjectKey = NewType("ObjectKey", str)
VersionToken = NewType("VersionToken", str)


class TransferStatus(str, enum.Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TransferResult:
    """Itemized outcome of a multi-object operation.

    Attributes:
        succeeded: Keys the backend confirmed as processed.
        failed: Keys that failed, mapped to the backend error message.
        pending: Keys that were listed but never attempted because the operation
            was cancelled.
        pending_prefix: Prefix whose remaining keys were never listed because
            the operation was cancelled, or None when listing finished.
        cancelled: Whether a cancellation signal stopped the operation early.
            A cancelled result is never COMPLETE.
    """

    succeeded: frozenset[str] = frozenset()
    failed: Mapping[str, str] = field(default_factory=dict)
    pending: frozenset[str] = frozenset()
    pending_prefix: str | None = None
    cancelled: bool = False

    @property
    def status(self) -> TransferStatus:
        if not (self.failed or self.pending or self.cancelled):
            return TransferStatus.COMPLETE
        if not self.succeeded:
            return TransferStatus.FAILED
        return TransferStatus.PARTIAL

    @property
    def retryable_keys(self) -> frozenset[str]:
        return frozenset(self.failed) | self.pending


@dataclass(frozen=True, slots=True)
class ChildEntry:
    """Immediate child of a directory, addressed by its rooted path."""

    path: str
    is_directory: bool
