"""Retry policy and cancellable waits"""

import asyncio
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.5  # seconds


class SyncCancelled(Exception):
    """Raised when a pass observes its cancellation signal"""


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff"""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after a failed attempt (1-based): base * 2^(attempt-1)"""
        return self.base_delay * (2 ** (attempt - 1))

    def schedule(self) -> list:
        """All delays a fully failing item would wait through"""
        return [self.delay_for(a) for a in range(1, self.max_attempts)]


def check_cancelled(cancel: Optional[asyncio.Event]):
    if cancel is not None and cancel.is_set():
        raise SyncCancelled()


async def wait_cancellable(delay: float, cancel: Optional[asyncio.Event] = None):
    """Sleep for ``delay`` seconds, waking early with SyncCancelled"""
    if cancel is None:
        await asyncio.sleep(delay)
        return

    check_cancelled(cancel)
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise SyncCancelled()
