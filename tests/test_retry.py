"""
Retry policy tests
"""

import asyncio

import pytest

from fund_transfer.errors import CancelledByShutdown, PermanentLedgerError, TransientLedgerError
from fund_transfer.retry import RetryPolicy, run_with_retry

from fakes import FakeClock


def failing_operation(errors, result="ok"):
    """Operation raising the given errors in order, then returning result"""
    remaining = list(errors)
    calls = []

    async def operation():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return result

    return operation, calls


class TestRetryPolicy:

    def test_delays_double_up_to_ceiling(self):
        policy = RetryPolicy(max_attempts=6, base_delay=1.0, multiplier=2.0, max_delay=5.0)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_single_attempt_has_no_delays(self):
        assert list(RetryPolicy(max_attempts=1).delays()) == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRunWithRetry:

    def test_transient_failures_then_success(self):
        clock = FakeClock()
        operation, calls = failing_operation([TransientLedgerError("timeout")] * 3)

        result = asyncio.run(run_with_retry(operation, RetryPolicy(max_attempts=5), clock))

        assert result == "ok"
        assert len(calls) == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]

    def test_permanent_failure_is_not_retried(self):
        clock = FakeClock()
        operation, calls = failing_operation([PermanentLedgerError("malformed")])

        with pytest.raises(PermanentLedgerError):
            asyncio.run(run_with_retry(operation, RetryPolicy(max_attempts=5), clock))

        assert len(calls) == 1
        assert clock.sleeps == []

    def test_gives_up_after_max_attempts(self):
        clock = FakeClock()
        operation, calls = failing_operation([TransientLedgerError("down")] * 10)

        with pytest.raises(TransientLedgerError):
            asyncio.run(run_with_retry(operation, RetryPolicy(max_attempts=5), clock))

        assert len(calls) == 5
        assert len(clock.sleeps) == 4

    def test_stop_during_backoff_cancels(self):
        clock = FakeClock()
        clock.on_sleep = lambda c, event: event.set()
        operation, calls = failing_operation([TransientLedgerError("down")] * 3)

        async def scenario():
            return await run_with_retry(
                operation, RetryPolicy(max_attempts=5), clock, stop_event=asyncio.Event()
            )

        with pytest.raises(CancelledByShutdown):
            asyncio.run(scenario())

        assert len(calls) == 1
