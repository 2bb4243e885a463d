"""Tests for retry and timeout combinators."""

import asyncio

import pytest

from fakes import RecordingSleeper

from labdesk.utils.retry import OperationTimeoutError, RetriesExhaustedError, RetryPolicy, with_retry, with_timeout


class TestRetryPolicy:
    """Tests for retry policy validation and backoff."""

    def test_exponential_backoff(self):
        """Test that delays grow by the multiplier per failed attempt."""
        policy = RetryPolicy(base_delay=0.3, backoff_multiplier=2.0)
        assert policy.delay_for(0) == pytest.approx(0.3)
        assert policy.delay_for(1) == pytest.approx(0.6)
        assert policy.delay_for(2) == pytest.approx(1.2)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError, match="base_delay"):
            RetryPolicy(base_delay=-1)


class TestWithTimeout:
    """Tests for the timeout wrapper."""

    @pytest.mark.asyncio
    async def test_returns_result_within_budget(self):
        async def quick():
            return 42

        assert await with_timeout(quick(), 1.0) == 42

    @pytest.mark.asyncio
    async def test_raises_operation_timeout(self):
        """Test that an overrun raises OperationTimeoutError naming the operation."""
        with pytest.raises(OperationTimeoutError, match="slow lookup timed out"):
            await with_timeout(asyncio.sleep(1), 0.01, "slow lookup")

    @pytest.mark.asyncio
    async def test_none_means_unbounded(self):
        async def quick():
            return "done"

        assert await with_timeout(quick(), None) == "done"


class TestWithRetry:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        """Test that a failing operation is retried with backoff until it succeeds."""
        attempts = []
        sleeper = RecordingSleeper()

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("boom")
            return "ok"

        result = await with_retry(flaky, RetryPolicy(max_attempts=3, base_delay=0.3), sleep=sleeper)

        assert result == "ok"
        assert len(attempts) == 3
        assert sleeper.delays == pytest.approx([0.3, 0.6])

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_error(self):
        sleeper = RecordingSleeper()

        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await with_retry(always_fails, RetryPolicy(max_attempts=2, base_delay=0), sleep=sleeper)

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, ConnectionError)
        # No sleep after the final attempt
        assert len(sleeper.delays) == 1

    @pytest.mark.asyncio
    async def test_attempt_timeout_counts_as_failure(self):
        calls = []

        async def hangs_once():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "late"

        policy = RetryPolicy(max_attempts=2, base_delay=0, attempt_timeout=0.01)
        assert await with_retry(hangs_once, policy, sleep=RecordingSleeper()) == "late"
        assert len(calls) == 2
