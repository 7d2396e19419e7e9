"""Bounded-concurrency executor and retry helper."""
from __future__ import annotations

import asyncio

import pytest

from conftest import no_sleep
from sitecapture_engine.executor import RetryPolicy, is_retryable_error, run_with_concurrency_limit, with_retry


class Unavailable(Exception):
    """Looks like a transient backend error (HTTP 503)."""

    code = 503


def _sleeper(record: list[float]):
    async def sleep(seconds: float) -> None:
        record.append(seconds)

    return sleep


# ═══════════════════════════════════════════════════════════════════════════════
# RETRY CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestIsRetryable:
    @pytest.mark.parametrize(
        "exc",
        [
            Exception("429 Too Many Requests"),
            Exception("503 Service Unavailable"),
            Exception("The model is overloaded. Please try again later."),
            Exception("status: UNAVAILABLE"),
            Unavailable("boom"),
        ],
    )
    def test_transient(self, exc):
        assert is_retryable_error(exc)

    @pytest.mark.parametrize("exc", [ValueError("bad request"), Exception("400 INVALID_ARGUMENT"), Exception("404")])
    def test_permanent(self, exc):
        assert not is_retryable_error(exc)


# ═══════════════════════════════════════════════════════════════════════════════
# WITH RETRY
# ═══════════════════════════════════════════════════════════════════════════════

class TestWithRetry:
    def test_succeeds_after_transient_failures(self):
        attempts = []
        delays: list[float] = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise Exception("503 Service Unavailable")
            return "ok"

        policy = RetryPolicy(max_retries=3, base_delay_s=2.0)
        assert asyncio.run(with_retry(flaky, policy, sleep=_sleeper(delays))) == "ok"
        assert len(attempts) == 3
        # Linear backoff, only between attempts.
        assert delays == [2.0, 4.0]

    def test_exhausted_retries_propagate(self):
        attempts = []
        delays: list[float] = []

        async def always_busy():
            attempts.append(1)
            raise Exception("model overloaded")

        with pytest.raises(Exception, match="overloaded"):
            asyncio.run(with_retry(always_busy, RetryPolicy(max_retries=3, base_delay_s=1.0), sleep=_sleeper(delays)))
        assert len(attempts) == 3
        assert delays == [1.0, 2.0]

    def test_permanent_error_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad request")

        with pytest.raises(ValueError):
            asyncio.run(with_retry(broken, RetryPolicy(max_retries=5), sleep=no_sleep))
        assert len(attempts) == 1

    def test_policy_delay(self):
        assert RetryPolicy(base_delay_s=2.0).delay_for(1) == 2.0
        assert RetryPolicy(base_delay_s=2.0).delay_for(3) == 6.0


# ═══════════════════════════════════════════════════════════════════════════════
# CONCURRENCY LIMIT
# ═══════════════════════════════════════════════════════════════════════════════

class TestRunWithConcurrencyLimit:
    def test_results_follow_input_order(self):
        async def run():
            def unit(i: int):
                async def go():
                    # Later units finish first.
                    await asyncio.sleep(0.001 * (10 - i))
                    return i * 10

                return go

            return await run_with_concurrency_limit([unit(i) for i in range(10)], 3)

        assert asyncio.run(run()) == [i * 10 for i in range(10)]

    def test_in_flight_never_exceeds_limit(self):
        in_flight = 0
        peak = 0

        async def run():
            async def go():
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.001)
                in_flight -= 1
                return True

            return await run_with_concurrency_limit([go] * 12, 4)

        assert asyncio.run(run()) == [True] * 12
        assert peak == 4

    def test_limit_larger_than_work(self):
        async def run():
            async def go():
                return "x"

            return await run_with_concurrency_limit([go, go], 10)

        assert asyncio.run(run()) == ["x", "x"]

    def test_empty_input(self):
        assert asyncio.run(run_with_concurrency_limit([], 3)) == []

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            asyncio.run(run_with_concurrency_limit([], 0))

    def test_completion_counter_not_index(self):
        seen: list[tuple[int, int]] = []

        async def run():
            def unit(i: int):
                async def go():
                    await asyncio.sleep(0.001 * (5 - i))
                    return i

                return go

            return await run_with_concurrency_limit([unit(i) for i in range(5)], 5, on_unit_done=lambda c, t: seen.append((c, t)))

        asyncio.run(run())
        assert seen == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

    def test_unit_retried_in_place(self):
        calls = {"n": 0}
        progress: list[int] = []

        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise Exception("429 Too Many Requests")
            return "done"

        async def steady():
            return "steady"

        result = asyncio.run(
            run_with_concurrency_limit(
                [steady, flaky, steady],
                2,
                retry=RetryPolicy(max_retries=3),
                on_unit_done=lambda c, _t: progress.append(c),
                sleep=no_sleep,
            )
        )
        assert result == ["steady", "done", "steady"]
        assert calls["n"] == 3
        # One progress tick per unit, not per attempt.
        assert progress == [1, 2, 3]

    def test_failure_propagates_after_retries(self):
        calls = {"n": 0}

        async def always_busy():
            calls["n"] += 1
            raise Exception("503 Service Unavailable")

        with pytest.raises(Exception, match="503"):
            asyncio.run(run_with_concurrency_limit([always_busy], 1, retry=RetryPolicy(max_retries=3), sleep=no_sleep))
        assert calls["n"] == 3

    def test_failure_stops_new_claims_but_not_in_flight_units(self):
        started: list[int] = []
        finished: list[int] = []

        async def run():
            def unit(i: int):
                async def go():
                    started.append(i)
                    if i == 0:
                        await asyncio.sleep(0.005)
                        raise ValueError("unit 0 failed")
                    await asyncio.sleep(0.05)
                    finished.append(i)
                    return i

                return go

            return await run_with_concurrency_limit([unit(i) for i in range(6)], 2)

        with pytest.raises(ValueError, match="unit 0"):
            asyncio.run(run())
        # Unit 1 was already in flight and ran to completion; nothing after it was claimed.
        assert started == [0, 1]
        assert finished == [1]
