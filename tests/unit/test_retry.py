"""Unit tests for retry with exponential backoff."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docmesh.patterns.backoff import Backoff
from docmesh.patterns.retry import RetryPolicy, retry_with_backoff


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_immediately(self) -> None:
        async def _ok() -> str:
            return "done"

        result = await retry_with_backoff(_ok, RetryPolicy.times(3))
        assert result == "done"

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        call_count = 0

        async def _flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("transient")
            return "recovered"

        policy = RetryPolicy.times(5).with_backoff(Backoff.fixed(timedelta(milliseconds=1)))
        result = await retry_with_backoff(_flaky, policy)
        assert result == "recovered"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_exhausts_retries(self) -> None:
        async def _always_fail() -> None:
            raise RuntimeError("permanent")

        policy = RetryPolicy.times(3).with_backoff(Backoff.fixed(timedelta(milliseconds=1)))
        with pytest.raises(RuntimeError, match="permanent"):
            await retry_with_backoff(_always_fail, policy)

    @pytest.mark.asyncio
    async def test_single_attempt(self) -> None:
        async def _fail() -> None:
            raise RuntimeError("no retries")

        with pytest.raises(RuntimeError, match="no retries"):
            await retry_with_backoff(_fail, RetryPolicy.once())

    @pytest.mark.asyncio
    async def test_passes_arguments(self) -> None:
        async def _add(a: int, b: int = 0) -> int:
            return a + b

        assert await retry_with_backoff(_add, None, 2, b=3) == 5

    @pytest.mark.asyncio
    async def test_predicate_limits_retries(self) -> None:
        call_count = 0

        async def _fail() -> None:
            nonlocal call_count
            call_count += 1
            raise KeyError("fatal")

        policy = RetryPolicy.times(5).retry_when(lambda exc: isinstance(exc, TimeoutError))
        with pytest.raises(KeyError):
            await retry_with_backoff(_fail, policy)
        assert call_count == 1
