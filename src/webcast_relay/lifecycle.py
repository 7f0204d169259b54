"""
Lifecycle Primitives
====================

Small building blocks shared by the relay components.

    - FatalSignal: one-shot latch carrying a component's fatal error
    - FailureWindow: sliding window of failure timestamps
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Optional


Clock = Callable[[], float]


class FatalSignal:
    """
    One-shot fatal error latch.

    The first call to trip() wins; later calls are ignored. Waiters
    receive the recorded error.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._error: Optional[BaseException] = None

    @property
    def tripped(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def trip(self, error: BaseException) -> bool:
        """Record a fatal error. Returns False if already tripped."""
        if self._event.is_set():
            return False
        self._error = error
        self._event.set()
        return True

    async def wait(self) -> BaseException:
        await self._event.wait()
        assert self._error is not None
        return self._error


class FailureWindow:
    """
    Sliding window of failure timestamps.

    Attributes:
        limit: Threshold the caller compares record() against
        window_seconds: Failures older than this are forgotten
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Clock = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._stamps: Deque[float] = deque()

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._stamps)

    def record(self) -> int:
        """Record one failure now and return the count inside the window."""
        now = self._clock()
        self._stamps.append(now)
        self._prune(now)
        return len(self._stamps)

    def reset(self) -> None:
        self._stamps.clear()

    def _prune(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._stamps and self._stamps[0] < horizon:
            self._stamps.popleft()
