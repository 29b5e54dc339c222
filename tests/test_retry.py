"""Tests for bounded connection retry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from db_integrity.adapters.retry import connect_with_retry
from db_integrity.errors import DatabaseConnectionError


class TestConnectWithRetry:
    """connect_with_retry() retries transient errors with linear backoff."""

    def test_first_attempt_succeeds(self) -> None:
        connect = AsyncMock(return_value="conn")
        sleep = AsyncMock()
        result = asyncio.run(connect_with_retry(connect, sleep=sleep))
        assert result == "conn"
        connect.assert_awaited_once()
        sleep.assert_not_awaited()

    def test_recovers_after_transient_failure(self) -> None:
        connect = AsyncMock(side_effect=[OSError("refused"), "conn"])
        sleep = AsyncMock()
        result = asyncio.run(connect_with_retry(connect, attempts=3, delay=0.5, sleep=sleep))
        assert result == "conn"
        assert connect.await_count == 2
        sleep.assert_awaited_once_with(0.5)

    def test_bounded_attempts(self) -> None:
        """Three attempts, linear backoff between them, none after the last."""
        connect = AsyncMock(side_effect=OSError("refused"))
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            asyncio.run(connect_with_retry(connect, attempts=3, delay=1.0, sleep=sleep))

        assert connect.await_count == 3
        assert delays == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert "after 3 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_non_transient_error_propagates(self) -> None:
        connect = AsyncMock(side_effect=ValueError("bad url"))
        sleep = AsyncMock()
        with pytest.raises(ValueError, match="bad url"):
            asyncio.run(connect_with_retry(connect, retry_on=(OSError,), sleep=sleep))
        connect.assert_awaited_once()

    def test_at_least_one_attempt(self) -> None:
        connect = AsyncMock(side_effect=OSError("refused"))
        with pytest.raises(DatabaseConnectionError):
            asyncio.run(connect_with_retry(connect, attempts=0, sleep=AsyncMock()))
        connect.assert_awaited_once()
