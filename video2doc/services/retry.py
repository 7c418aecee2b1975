from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from video2doc.errors import PipelineError

LOGGER = logging.getLogger("video2doc.retry")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_MAX_HINTED_DELAY_SECONDS = 60.0


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay_seconds: float,
    should_retry: Callable[[BaseException], bool],
    sleep: SleepFn = asyncio.sleep,
    operation_name: str = "operation",
    max_hinted_delay_seconds: float = DEFAULT_MAX_HINTED_DELAY_SECONDS,
) -> T:
    """Run ``operation`` with bounded linear backoff.

    After failed attempt ``n`` the next attempt waits ``base_delay_seconds * n``.
    When the exception carries a longer ``retry_after_seconds`` hint (a
    provider's ``Retry-After``), that wait is used instead, capped at
    ``max_hinted_delay_seconds``. The last exception propagates unchanged once
    ``should_retry`` rejects it or ``max_attempts`` calls have been made.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_attempts or not should_retry(exc):
                raise
            delay = _next_delay(
                exc,
                attempt=attempt,
                base_delay_seconds=base_delay_seconds,
                max_hinted_delay_seconds=max_hinted_delay_seconds,
            )
            LOGGER.warning(
                "retrying after failure operation=%s attempt=%s max_attempts=%s "
                "delay_seconds=%s error=%s",
                operation_name,
                attempt,
                max_attempts,
                delay,
                exc.__class__.__name__,
            )
            await sleep(delay)
            attempt += 1


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, PipelineError):
        return exc.retryable
    return isinstance(exc, TimeoutError | ConnectionError)


def _next_delay(
    exc: BaseException,
    *,
    attempt: int,
    base_delay_seconds: float,
    max_hinted_delay_seconds: float,
) -> float:
    delay = max(0.0, base_delay_seconds * attempt)
    hinted = getattr(exc, "retry_after_seconds", None)
    if isinstance(hinted, bool) or not isinstance(hinted, int | float):
        return delay
    if hinted <= delay:
        return delay
    return max(delay, min(float(hinted), max_hinted_delay_seconds))
