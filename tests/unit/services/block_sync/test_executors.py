"""
Unit tests for services.block_sync.executors module.

Tests:
- RoundProgress committed prefix and frontier
- SequentialExecutor ordering and fail-fast
- ParallelExecutor ordering, concurrency bound and failure handling
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from chainsync.services.block_sync.executors import (
    ParallelExecutor,
    RoundProgress,
    SequentialExecutor,
)
from chainsync.services.block_sync.planner import SyncWindow, plan_windows
from chainsync.services.block_sync.syncer import BatchRoundResult


WINDOWS = plan_windows(cursor=0, offset=10, limit=40, head_height=40)


def _result(window: SyncWindow) -> BatchRoundResult:
    return BatchRoundResult(end_cursor=window.to_height, has_blocks=True, blocks=window.size)


class TestRoundProgress:
    """RoundProgress."""

    def test_nothing_committed(self) -> None:
        progress = RoundProgress(WINDOWS)
        assert progress.committed == 0
        assert progress.frontier is None

    def test_prefix_in_order(self) -> None:
        progress = RoundProgress(WINDOWS)
        progress.record(0, _result(WINDOWS[0]))
        progress.record(1, _result(WINDOWS[1]))
        assert progress.committed == 2
        assert progress.frontier == 20

    def test_gap_stops_prefix(self) -> None:
        progress = RoundProgress(WINDOWS)
        progress.record(0, _result(WINDOWS[0]))
        progress.record(2, _result(WINDOWS[2]))
        progress.record(3, _result(WINDOWS[3]))
        assert progress.committed == 1
        assert progress.frontier == 10

    def test_gap_filled_late(self) -> None:
        progress = RoundProgress(WINDOWS)
        for index in (3, 1, 2, 0):
            progress.record(index, _result(WINDOWS[index]))
        assert progress.frontier == 40

    def test_frontier_without_cursor(self) -> None:
        progress = RoundProgress(WINDOWS)
        progress.record(0, BatchRoundResult(end_cursor=None, has_blocks=False))
        assert progress.committed == 1
        assert progress.frontier is None

    def test_index_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            RoundProgress(WINDOWS).record(4, _result(WINDOWS[0]))


class TestSequentialExecutor:
    """SequentialExecutor."""

    async def test_runs_in_order(self) -> None:
        seen: list[SyncWindow] = []

        async def runner(window: SyncWindow) -> BatchRoundResult:
            seen.append(window)
            return _result(window)

        progress = RoundProgress(WINDOWS)
        results = await SequentialExecutor().run(WINDOWS, runner, progress)

        assert seen == WINDOWS
        assert [r.end_cursor for r in results] == [10, 20, 30, 40]
        assert progress.frontier == 40

    async def test_stops_at_first_failure(self) -> None:
        seen: list[SyncWindow] = []

        async def runner(window: SyncWindow) -> BatchRoundResult:
            seen.append(window)
            if window.from_height == 10:
                raise RuntimeError("boom")
            return _result(window)

        progress = RoundProgress(WINDOWS)
        with pytest.raises(RuntimeError, match="boom"):
            await SequentialExecutor().run(WINDOWS, runner, progress)

        assert seen == WINDOWS[:2]
        assert progress.frontier == 10


class TestParallelExecutor:
    """ParallelExecutor."""

    def test_negative_concurrency(self) -> None:
        with pytest.raises(ValueError):
            ParallelExecutor(max_concurrency=-1)

    async def test_results_in_plan_order(self) -> None:
        async def runner(window: SyncWindow) -> BatchRoundResult:
            # later windows finish first
            await asyncio.sleep(0.001 * (40 - window.from_height))
            return _result(window)

        progress = RoundProgress(WINDOWS)
        results = await ParallelExecutor().run(WINDOWS, runner, progress)

        assert [r.end_cursor for r in results] == [10, 20, 30, 40]
        assert progress.frontier == 40

    async def test_unbounded_runs_all_at_once(self) -> None:
        in_flight = 0
        peak = 0

        async def runner(window: SyncWindow) -> BatchRoundResult:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _result(window)

        await ParallelExecutor().run(WINDOWS, runner, RoundProgress(WINDOWS))
        assert peak == len(WINDOWS)

    async def test_concurrency_bound(self) -> None:
        in_flight = 0
        peak = 0

        async def runner(window: SyncWindow) -> BatchRoundResult:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _result(window)

        executor = ParallelExecutor(max_concurrency=2)
        results = await executor.run(WINDOWS, runner, RoundProgress(WINDOWS))

        assert executor.max_concurrency == 2
        assert peak == 2
        assert len(results) == 4

    async def test_failure_lets_other_windows_finish(self) -> None:
        finished: list[int] = []

        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height == 10:
                await asyncio.sleep(0.01)
                raise RuntimeError("persist failed")
            if window.from_height > 10:
                await asyncio.sleep(0.05)
            finished.append(window.from_height)
            return _result(window)

        progress = RoundProgress(WINDOWS)
        with pytest.raises(RuntimeError, match="persist failed"):
            await ParallelExecutor().run(WINDOWS, runner, progress)

        assert sorted(finished) == [0, 20, 30]
        assert progress.frontier == 10

    async def test_slow_earlier_window_extends_frontier(self) -> None:
        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height == 0:
                await asyncio.sleep(0.05)
            elif window.from_height == 10:
                raise RuntimeError("second window failed")
            return _result(window)

        progress = RoundProgress(WINDOWS)
        with pytest.raises(RuntimeError, match="second window failed"):
            await ParallelExecutor().run(WINDOWS, runner, progress)

        assert progress.committed == 1
        assert progress.frontier == 10

    async def test_first_failure_in_plan_order_raised(self) -> None:
        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height == 10:
                await asyncio.sleep(0.02)
                raise RuntimeError("window 1")
            if window.from_height == 30:
                raise ValueError("window 3")
            return _result(window)

        with pytest.raises(RuntimeError, match="window 1"):
            await ParallelExecutor().run(WINDOWS, runner, RoundProgress(WINDOWS))

    async def test_each_failure_logged(self) -> None:
        logger = MagicMock()

        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height in (10, 30):
                raise RuntimeError(f"window at {window.from_height}")
            return _result(window)

        with pytest.raises(RuntimeError):
            await ParallelExecutor(logger=logger).run(WINDOWS, runner, RoundProgress(WINDOWS))

        logged = [c.kwargs["from_height"] for c in logger.error.call_args_list]
        assert logged == [10, 30]

    async def test_cancelled_window_reraised_first(self) -> None:
        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height == 10:
                raise RuntimeError("ordinary failure")
            if window.from_height == 20:
                raise asyncio.CancelledError
            return _result(window)

        with pytest.raises(asyncio.CancelledError):
            await ParallelExecutor().run(WINDOWS, runner, RoundProgress(WINDOWS))

    async def test_committed_window_after_failure_not_in_frontier(self) -> None:
        async def runner(window: SyncWindow) -> BatchRoundResult:
            if window.from_height == 0:
                await asyncio.sleep(0.01)
                raise RuntimeError("first window failed")
            return _result(window)

        progress = RoundProgress(WINDOWS)
        with pytest.raises(RuntimeError):
            await ParallelExecutor().run(WINDOWS, runner, progress)

        assert progress.committed == 0
        assert progress.frontier is None
