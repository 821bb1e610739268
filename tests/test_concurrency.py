"""Tests for branchsync.concurrency.map_limit."""

import asyncio
import random

import pytest

from branchsync.concurrency import CancelToken, MapResult, map_limit, unwrap_results
from branchsync.errors import OperationCancelled


class TestMapLimit:
    async def test_preserves_input_order(self):
        async def slow_echo(x):
            await asyncio.sleep(random.uniform(0, 0.01))
            return x * 10

        results = await map_limit(list(range(20)), 5, slow_echo)
        assert [r.value for r in results] == [x * 10 for x in range(20)]
        assert [r.index for r in results] == list(range(20))

    async def test_failure_is_isolated_to_its_item(self):
        async def fn(x):
            if x == 3:
                raise RuntimeError("boom")
            return x

        results = await map_limit([1, 2, 3, 4, 5], 2, fn)
        assert [r.ok for r in results] == [True, True, False, True, True]
        assert isinstance(results[2].error, RuntimeError)
        assert [r.value for r in results if r.ok] == [1, 2, 4, 5]

    async def test_never_exceeds_limit(self):
        in_flight = 0
        peak = 0

        async def fn(x):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            return x

        await map_limit(range(30), 4, fn)
        assert peak == 4

    async def test_timeout_frees_the_slot(self):
        async def fn(x):
            if x == 0:
                await asyncio.sleep(10)
            return x

        results = await map_limit([0, 1, 2], 1, fn, timeout=0.05)
        assert isinstance(results[0].error, asyncio.TimeoutError)
        assert [r.value for r in results[1:]] == [1, 2]

    async def test_empty_input(self):
        async def fn(x):
            return x

        assert await map_limit([], 3, fn) == []

    async def test_invalid_limit(self):
        async def fn(x):
            return x

        with pytest.raises(ValueError):
            await map_limit([1], 0, fn)

    async def test_cancel_token_stops_unstarted_items(self):
        token = CancelToken()
        started = []

        async def fn(x):
            started.append(x)
            if x == 1:
                token.cancel("newer comparison")
            await asyncio.sleep(0)
            return x

        with pytest.raises(OperationCancelled, match="newer comparison"):
            await map_limit(range(10), 1, fn, cancel_token=token)
        assert started == [0, 1]

    async def test_already_cancelled_token_runs_nothing(self):
        token = CancelToken()
        token.cancel()
        calls = []

        async def fn(x):
            calls.append(x)
            return x

        with pytest.raises(OperationCancelled):
            await map_limit([1, 2], 2, fn, cancel_token=token)
        assert calls == []


class TestUnwrapResults:
    def test_returns_values(self):
        assert unwrap_results([MapResult(0, "a"), MapResult(1, "b")]) == ["a", "b"]

    def test_raises_first_error(self):
        err = KeyError("x")
        with pytest.raises(KeyError):
            unwrap_results([MapResult(0, "a"), MapResult(1, error=err), MapResult(2, error=ValueError())])
