from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from loguru import logger

from .types import WorkUnit

T = TypeVar("T")

_RETRYABLE_CODES = frozenset({429, 503})
_RETRYABLE_MARKERS = ("429", "503", "UNAVAILABLE", "overloaded")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3  # total attempts, including the first
    base_delay_s: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Linear backoff before retry number ``attempt`` (1-based)."""
        return self.base_delay_s * attempt


def is_retryable_error(exc: BaseException) -> bool:
    """Transient backend signals: HTTP 429/503, UNAVAILABLE, or overloaded."""
    for attr in ("code", "status_code"):
        code = getattr(exc, attr, None)
        if isinstance(code, int) and code in _RETRYABLE_CODES:
            return True
    status = getattr(exc, "status", None)
    if isinstance(status, str) and status.upper() == "UNAVAILABLE":
        return True
    message = str(exc)
    return any(marker in message for marker in _RETRYABLE_MARKERS)


async def with_retry(
    fn: WorkUnit[T],
    policy: RetryPolicy | None = None,
    *,
    label: str = "call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` retrying transient failures with linear backoff.

    The delay is applied only between attempts. Non-retryable errors and the
    final failed attempt propagate unchanged.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, policy.max_retries)
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_retryable_error(e) or attempt >= attempts:
                raise
            logger.warning(f"[Retry] {label} {attempt}/{attempts} after error: {str(e)[:80]}")
            await sleep(policy.delay_for(attempt))
            attempt += 1


async def run_with_concurrency_limit(
    units: Sequence[WorkUnit[T]],
    limit: int,
    *,
    retry: RetryPolicy | None = None,
    on_unit_done: Callable[[int, int], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[T]:
    """Run ``units`` with at most ``limit`` in flight and return results by index.

    A fixed pool of ``min(limit, len(units))`` workers each claims the next
    unclaimed index and runs that unit (with its own retry loop when ``retry`` is
    given) to completion before claiming another. Results land in a pre-sized
    list, so completion order never affects output order.

    ``on_unit_done(completed, total)`` fires after each unit succeeds;
    ``completed`` counts settled units, not the unit's index.

    When a unit fails permanently no further indices are claimed; units already
    in flight are not cancelled and finish their own retry cycles. The first
    failure is then raised.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    total = len(units)
    if total == 0:
        return []

    results: list[Any] = [None] * total
    cursor = 0
    completed = 0
    failures: list[BaseException] = []

    async def worker() -> None:
        nonlocal cursor, completed
        while not failures and cursor < total:
            index = cursor
            cursor += 1
            unit = units[index]
            try:
                if retry is None:
                    results[index] = await unit()
                else:
                    results[index] = await with_retry(unit, retry, label=f"unit {index + 1}/{total}", sleep=sleep)
            except Exception as e:
                failures.append(e)
                return
            completed += 1
            if on_unit_done is not None:
                on_unit_done(completed, total)

    workers = [asyncio.create_task(worker()) for _ in range(min(limit, total))]
    await asyncio.gather(*workers)

    if failures:
        raise failures[0]
    return results
