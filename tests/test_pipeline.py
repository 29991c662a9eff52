"""Tests for the bounded-concurrency batch executor."""

import asyncio

import pytest

from apos_static.frontier import Frontier
from apos_static.pipeline import BatchExecutor, PageFailure
from apos_static.urls import canonicalize


class TestBatchExecutor:
    """Tests for BatchExecutor.run()."""

    async def test_every_item_processed_once(self) -> None:
        """Test each item reaches the handler exactly once."""
        seen: list[str] = []

        async def handler(item: str) -> None:
            await asyncio.sleep(0)
            seen.append(item)

        outcome = await BatchExecutor(3).run([f"/{i}" for i in range(10)], handler)

        assert sorted(seen) == sorted(f"/{i}" for i in range(10))
        assert outcome.succeeded == 10
        assert outcome.failed == 0

    async def test_concurrency_bound(self) -> None:
        """Test no more than `concurrency` handlers run at once."""
        in_flight = 0
        peak = 0

        async def handler(item: str) -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await BatchExecutor(2).run([f"/{i}" for i in range(8)], handler)

        assert peak == 2

    async def test_failures_recorded_without_stopping(self) -> None:
        """Test a failing item is recorded and the rest still run."""
        done: list[str] = []

        async def handler(item: str) -> None:
            if item == "/bad":
                raise ValueError("render exploded")
            done.append(item)

        outcome = await BatchExecutor(1).run(["/a", "/bad", "/b"], handler)

        assert done == ["/a", "/b"]
        assert outcome.succeeded == 2
        assert outcome.failed == 1
        assert outcome.failures == [PageFailure(url="/bad", error="render exploded")]

    async def test_message_less_exception_uses_type_name(self) -> None:
        """Test failures always carry a readable message."""

        async def handler(item: str) -> None:
            raise RuntimeError

        outcome = await BatchExecutor(1).run(["/x"], handler)

        assert outcome.failures[0].error == "RuntimeError"

    async def test_empty_batch(self) -> None:
        """Test an empty batch returns an empty outcome without starting workers."""

        async def handler(item: str) -> None:
            raise AssertionError("not called")

        outcome = await BatchExecutor(4).run([], handler)

        assert outcome.succeeded == 0
        assert outcome.failures == []

    def test_invalid_concurrency(self) -> None:
        """Test concurrency below 1 is rejected."""
        with pytest.raises(ValueError):
            BatchExecutor(0)


class TestFrontierConvergence:
    """Tests for the drain/discover/re-enqueue fixpoint over a link graph."""

    GRAPH = {
        "/": ["/a", "/b", "/b/", "/c?page=1"],
        "/a/": ["/", "/b", "/d"],
        "/b/": ["/a/", "/c/?page=1", "/e"],
        "/c/page-1/": ["/c?page=2", "/"],
        "/c/page-2/": ["/c?page=1"],
        "/d/": ["/e/"],
        "/e/": [],
    }

    @pytest.mark.parametrize("concurrency", [1, 2, 5])
    async def test_every_reachable_path_visited_once(self, concurrency: int) -> None:
        """Test convergence is independent of the worker count."""
        frontier = Frontier(["/"])
        executor = BatchExecutor(concurrency)
        visits: dict[str, int] = {}

        async def handler(path: str) -> None:
            identity = canonicalize(path)
            visits[identity] = visits.get(identity, 0) + 1
            await asyncio.sleep(0)
            await frontier.add(self.GRAPH[identity])
            await frontier.mark_processed(path)

        while not frontier.is_empty:
            batch = await frontier.take_batch(concurrency * 2)
            await executor.run(batch, handler)

        assert set(visits) == set(self.GRAPH)
        assert all(count == 1 for count in visits.values())
        assert frontier.processed_count == len(self.GRAPH)
