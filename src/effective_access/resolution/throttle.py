"""
effective_access.resolution.throttle

Process-wide throttle window for the authorization query service.

Responsibilities:
- Hold a single "blocked until" deadline shared by every caller in the process.
- Let callers wait out an active block before sending a request.
- Extend the block on rate-limit responses and clear it on success.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from functools import lru_cache

from effective_access.observability.logging import get_logger

log = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

_UNBLOCKED = float("-inf")


class ThrottleCoordinator:
    """
    Shared deadline with lock-guarded transitions.

    The deadline only moves forward while blocked (`extend` keeps the later of
    the current and the proposed deadline) and resets to unblocked on `clear`.
    Clock and sleep are injectable so tests can drive time explicitly.
    """

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        max_block_seconds: float = 300.0,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._max_block = max_block_seconds
        self._lock = threading.Lock()
        self._blocked_until = _UNBLOCKED

    @property
    def blocked_until(self) -> float | None:
        with self._lock:
            return None if self._blocked_until == _UNBLOCKED else self._blocked_until

    def remaining(self) -> float:
        with self._lock:
            deadline = self._blocked_until
        return max(0.0, deadline - self._clock())

    @property
    def is_blocked(self) -> bool:
        return self.remaining() > 0

    def extend(self, delay: float) -> float:
        """
        Block all callers for at least `delay` seconds from now.
        Returns the effective deadline.
        """

        delay = min(max(delay, 0.0), self._max_block)
        with self._lock:
            candidate = self._clock() + delay
            if candidate > self._blocked_until:
                self._blocked_until = candidate
                log.warning("throttle_extended", delay_seconds=delay, blocked_until=candidate)
            return self._blocked_until

    def clear(self) -> None:
        with self._lock:
            if self._blocked_until == _UNBLOCKED:
                return
            self._blocked_until = _UNBLOCKED
        log.info("throttle_cleared")

    async def wait_until_clear(self) -> float:
        """
        Sleep until no block is active. Returns the total time waited.
        """

        waited = 0.0
        while True:
            remaining = self.remaining()
            if remaining <= 0:
                return waited
            log.info("throttle_wait", remaining_seconds=remaining)
            await self._sleep(remaining)
            waited += remaining


@lru_cache(maxsize=1)
def get_throttle_coordinator() -> ThrottleCoordinator:
    # One window per process: every identity and every run share the upstream quota.
    return ThrottleCoordinator()


# --- Module Notes -----------------------------------------------------------
# A threading.Lock (not asyncio.Lock) guards the deadline so the coordinator stays
# consistent if clients on different event loops/threads share it. No await ever
# happens while the lock is held.
