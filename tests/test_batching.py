"""Tests for bounded-concurrency batch execution."""

from __future__ import annotations

import asyncio

import pytest

from cloudward.engine.batching import partition, run_in_batches


class _Tracker:
    """Worker that records batch rounds and peak concurrency."""

    def __init__(self, fail: set[int] | None = None, delay: float = 0.01) -> None:
        self.fail = fail or set()
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.started: list[int] = []
        self.rounds: list[list[int]] = []
        self._current: list[int] = []

    async def __call__(self, item: int) -> str:
        if self.in_flight == 0:
            self._current = []
            self.rounds.append(self._current)
        self._current.append(item)
        self.started.append(item)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Later items finish first, so result order is not completion order
            await asyncio.sleep(self.delay * (10 - item % 10))
        finally:
            self.in_flight -= 1
        if item in self.fail:
            raise RuntimeError(f"item {item} failed")
        return f"ok-{item}"


def _on_error(item: int, exc: Exception) -> str:
    return f"error-{item}: {exc}"


class TestPartition:
    def test_even_and_remainder(self) -> None:
        assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert partition([], 3) == []

    def test_batch_larger_than_items(self) -> None:
        assert partition([1, 2], 5) == [[1, 2]]

    @pytest.mark.parametrize("size", [0, -1])
    def test_non_positive_size_rejected(self, size: int) -> None:
        with pytest.raises(ValueError, match="batch_size must be positive"):
            partition([1], size)


class TestRunInBatches:
    @pytest.mark.asyncio
    async def test_twelve_items_in_rounds_of_five(self) -> None:
        worker = _Tracker()
        results = await run_in_batches(list(range(12)), 5, worker, _on_error)

        assert [len(r) for r in worker.rounds] == [5, 5, 2]
        assert worker.max_in_flight == 5
        assert results == [f"ok-{i}" for i in range(12)]

    @pytest.mark.asyncio
    async def test_rounds_do_not_overlap(self) -> None:
        worker = _Tracker()
        await run_in_batches(list(range(7)), 3, worker, _on_error)
        assert worker.rounds == [[0, 1, 2], [3, 4, 5], [6]]

    @pytest.mark.asyncio
    async def test_failure_substituted_in_place(self) -> None:
        worker = _Tracker(fail={1, 4})
        results = await run_in_batches([0, 1, 2, 3, 4], 2, worker, _on_error)

        assert results == [
            "ok-0",
            "error-1: item 1 failed",
            "ok-2",
            "ok-3",
            "error-4: item 4 failed",
        ]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_batches(self) -> None:
        worker = _Tracker(fail={0, 1})
        results = await run_in_batches([0, 1, 2], 2, worker, _on_error)
        assert worker.started == [0, 1, 2]
        assert results[2] == "ok-2"

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        worker = _Tracker()
        assert await run_in_batches([], 5, worker, _on_error) == []
        assert worker.started == []

    @pytest.mark.asyncio
    async def test_cancellation_is_not_substituted(self) -> None:
        async def worker(item: int) -> str:
            if item == 1:
                raise asyncio.CancelledError()
            return f"ok-{item}"

        with pytest.raises(asyncio.CancelledError):
            await run_in_batches([0, 1], 2, worker, _on_error)
