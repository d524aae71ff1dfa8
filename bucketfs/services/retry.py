"""Bounded exponential backoff for single-object backend calls.

Schedule with the defaults (base=0.2s, cap=5s, 4 attempts):
  Attempt 1: immediate
  Attempt 2: 0.2s
  Attempt 3: 0.4s
  Attempt 4: 0.8s
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from bucketfs.common.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a transient backend failure is retried.

    Attributes:
        attempts: Total attempts including the first call.
        base_seconds: Delay before the first retry.
        cap_seconds: Upper bound for any single delay.
        jitter: Add up to 10% random jitter to each delay.
    """

    attempts: int = 4
    base_seconds: float = 0.2
    cap_seconds: float = 5.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            attempts=settings.STORE_RETRY_ATTEMPTS,
            base_seconds=settings.STORE_RETRY_BASE_SECONDS,
            cap_seconds=settings.STORE_RETRY_CAP_SECONDS,
        )

    def backoff_seconds(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0 = first retry)."""
        return compute_backoff_seconds(
            retry_index,
            base_seconds=self.base_seconds,
            cap_seconds=self.cap_seconds,
            jitter=self.jitter,
        )


NO_RETRY = RetryPolicy(attempts=1, jitter=False)


def compute_backoff_seconds(
    retry_index: int,
    base_seconds: float,
    cap_seconds: float,
    jitter: bool = False,
) -> float:
    """Compute base * 2^retry_index, capped at cap_seconds.

    Example:
        >>> compute_backoff_seconds(0, 0.2, 5.0)
        0.2
        >>> compute_backoff_seconds(10, 0.2, 5.0)
        5.0
    """
    if retry_index < 0:
        return 0.0

    delay = min(base_seconds * (2**retry_index), cap_seconds)
    if jitter:
        delay += delay * 0.1 * random.random()
    return delay
