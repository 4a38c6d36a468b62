"""Strategies for running the windows of one round.

A round's windows are independent units of work, so they can run
concurrently ([ParallelExecutor][chainsync.services.block_sync.executors.ParallelExecutor],
the default) or one after another
([SequentialExecutor][chainsync.services.block_sync.executors.SequentialExecutor],
for nodes that rate-limit).

Both return results in plan order regardless of completion order, and both
record every committed window in a
[RoundProgress][chainsync.services.block_sync.executors.RoundProgress] so
the caller knows how far the cursor may safely move when a window fails.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from chainsync.core.logger import Logger

from .planner import SyncWindow
from .syncer import BatchRoundResult


WindowRunner = Callable[[SyncWindow], Awaitable[BatchRoundResult]]


class RoundProgress:
    """Tracks which windows of a round have committed.

    Windows may commit out of order in parallel mode. Only the longest run
    of committed windows starting at the first one counts as progress: a
    committed window that follows a failed one does not move the cursor.
    """

    def __init__(self, windows: Sequence[SyncWindow]) -> None:
        self._windows = tuple(windows)
        self._results: dict[int, BatchRoundResult] = {}

    def record(self, index: int, result: BatchRoundResult) -> None:
        """Mark window ``index`` as committed with ``result``."""
        if not 0 <= index < len(self._windows):
            raise IndexError(f"window index {index} out of range")
        self._results[index] = result

    @property
    def committed(self) -> int:
        """Length of the committed prefix of the plan."""
        count = 0
        while count in self._results:
            count += 1
        return count

    @property
    def frontier(self) -> int | None:
        """End cursor of the last window in the committed prefix.

        ``None`` when no prefix window committed or the node reported no
        cursor for it.
        """
        count = self.committed
        if count == 0:
            return None
        return self._results[count - 1].end_cursor


class RoundExecutor(ABC):
    """Runs every window of a round through ``runner``."""

    @abstractmethod
    async def run(
        self,
        windows: Sequence[SyncWindow],
        runner: WindowRunner,
        progress: RoundProgress,
    ) -> list[BatchRoundResult]:
        """Run all windows and return their results in plan order.

        The first failure propagates unchanged; windows that committed
        before it stay recorded in ``progress``.
        """
        ...


class SequentialExecutor(RoundExecutor):
    """Runs windows one at a time and stops at the first failure."""

    async def run(
        self,
        windows: Sequence[SyncWindow],
        runner: WindowRunner,
        progress: RoundProgress,
    ) -> list[BatchRoundResult]:
        results: list[BatchRoundResult] = []
        for index, window in enumerate(windows):
            result = await runner(window)
            progress.record(index, result)
            results.append(result)
        return results


class ParallelExecutor(RoundExecutor):
    """Runs windows concurrently and lets every window finish.

    A failing window does not cancel its siblings: each window commits or
    rolls back on its own, so a slow earlier window that is still writing
    when a later one fails can still extend the committed prefix. Once all
    windows have settled, every failure is logged and the first one in plan
    order is re-raised.

    Args:
        max_concurrency: Windows allowed in flight at once (0 = unbounded).
    """

    def __init__(self, max_concurrency: int = 0, logger: Logger | None = None) -> None:
        if max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {max_concurrency}")
        self._max_concurrency = max_concurrency
        self._logger = logger or Logger("block_sync")

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    async def run(
        self,
        windows: Sequence[SyncWindow],
        runner: WindowRunner,
        progress: RoundProgress,
    ) -> list[BatchRoundResult]:
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None

        async def _run_one(index: int, window: SyncWindow) -> BatchRoundResult:
            if semaphore is None:
                result = await runner(window)
            else:
                async with semaphore:
                    result = await runner(window)
            progress.record(index, result)
            return result

        outcomes = await asyncio.gather(
            *(_run_one(index, window) for index, window in enumerate(windows)),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome

        failures: list[BaseException] = []
        for window, outcome in zip(windows, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self._logger.error(
                    "window_failed",
                    from_height=window.from_height,
                    to_height=window.to_height,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                failures.append(outcome)
        if failures:
            raise failures[0]

        return [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
