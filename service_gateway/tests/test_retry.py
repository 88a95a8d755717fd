"""
Unit tests for the shared retry loop.
"""

import pytest

from shared.retry import RetryConfig, calculate_delay, retry_async


class TestCalculateDelay:
    """Test cases for calculate_delay."""

    def test_linear_schedule(self):
        config = RetryConfig(base_delay=0.1)

        assert [calculate_delay(attempt, config) for attempt in (1, 2, 3)] == pytest.approx([0.1, 0.2, 0.3])

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=1.5)

        assert calculate_delay(5, config) == 1.5


class TestRetryAsync:
    """Test cases for retry_async."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise ConnectionError("down")
            return "ok"

        result = await retry_async(flaky, config=RetryConfig(base_delay=0.0), exceptions=(ConnectionError,))

        assert result == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        calls = []

        async def failing():
            calls.append(1)
            raise ConnectionError(f"attempt {len(calls)}")

        with pytest.raises(ConnectionError, match="attempt 3"):
            await retry_async(failing, config=RetryConfig(base_delay=0.0), exceptions=(ConnectionError,))

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_unlisted_errors_not_retried(self):
        calls = []

        async def broken():
            calls.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_async(broken, config=RetryConfig(base_delay=0.0), exceptions=(ConnectionError,))

        assert len(calls) == 1
