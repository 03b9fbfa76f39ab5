"""
effective_access.resolution.retry

Bounded exponential backoff shared by the hierarchy resolver, the direct
membership lookup and the role assignment query client.

Responsibilities:
- Hold the attempt budget and backoff schedule (`RetryPolicy`).
- Build tenacity retry controllers that only retry TransientQueryError.
- Turn an exhausted budget into RetriesExhausted.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from effective_access.domain.errors import RateLimitedError, RetriesExhausted, TransientQueryError
from effective_access.observability.logging import get_logger
from effective_access.settings import Settings

log = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryHook = Callable[[RetryCallState], None]
WaitStrategy = Callable[[RetryCallState], float]


def failure_of(state: RetryCallState) -> BaseException | None:
    if state.outcome is None or not state.outcome.failed:
        return None
    return state.outcome.exception()


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_retry_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.max_backoff_seconds,
        )

    def delay_for(self, attempt: int, *, hint: float | None = None) -> float:
        """
        Delay before retrying after the zero-based `attempt` failed.
        A server hint wins over the exponential schedule but is still capped.
        """

        if hint is not None and hint >= 0:
            return min(hint, self.max_delay)
        return min(self.base_delay * (2**attempt), self.max_delay)

    def backoff(self, state: RetryCallState) -> float:
        # tenacity counts attempts from 1
        return self.delay_for(
            state.attempt_number - 1,
            hint=getattr(failure_of(state), "retry_after", None),
        )

    def retrying(
        self,
        *,
        sleep: Sleep,
        before_sleep: RetryHook | None = None,
        wait: WaitStrategy | None = None,
    ) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait or self.backoff,
            retry=retry_if_exception_type(TransientQueryError),
            sleep=sleep,
            before_sleep=before_sleep,
        )


def exhausted(error: RetryError, operation: str) -> RetriesExhausted:
    last = error.last_attempt
    log.error("upstream_retries_exhausted", operation=operation, attempts=last.attempt_number)
    return RetriesExhausted(operation, attempts=last.attempt_number)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: Sleep,
    operation: str,
) -> T:
    """
    Await `fn()`, retrying TransientQueryError up to `policy.max_attempts` times.
    Any other exception propagates on the first occurrence.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = failure_of(state)
        log.warning(
            "upstream_retry",
            operation=operation,
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=state.next_action.sleep if state.next_action else None,
            throttled=isinstance(exc, RateLimitedError),
        )

    try:
        return await policy.retrying(sleep=sleep, before_sleep=_log_retry)(fn)
    except RetryError as e:
        raise exhausted(e, operation) from e.last_attempt.exception()


# --- Module Notes -----------------------------------------------------------
# RetryError never leaves this module: callers see RetriesExhausted with the last
# upstream failure as `__cause__`.
