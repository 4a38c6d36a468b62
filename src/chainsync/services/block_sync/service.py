"""Block sync service for chainsync.

Pulls blocks from a chain node into the ``block`` table and keeps following
the head. One [run()][chainsync.services.block_sync.BlockSync.run] drives the
[state machine][chainsync.services.block_sync.machine] from ``idle``:

1. Fetch the chain head.
2. Plan a round of windows from the committed cursor up to
   ``min(cursor + limit, head)`` with
   [plan_windows()][chainsync.services.block_sync.planner.plan_windows] and
   run them through the configured
   [RoundExecutor][chainsync.services.block_sync.executors.RoundExecutor].
   Each window is fetched, upserted and handed to the downstream
   ``sync_transactions`` queue in one transaction by
   [RangeSyncer][chainsync.services.block_sync.syncer.RangeSyncer].
3. Repeat rounds while they return blocks.
4. Once caught up, either stop (``watch: false``) or poll the head every
   ``watch_interval`` seconds and sync the gap.

Note:
    The committed cursor lives on the service instance, so when
    [run_forever()][chainsync.core.base_service.BaseService.run_forever]
    restarts the protocol after a failure it resumes where the last
    committed window ended. Any failure is logged and re-raised as a single
    [SyncError][chainsync.core.exceptions.SyncError] whose ``cursor`` is the
    committed cursor.

See Also:
    [BlockSyncConfig][chainsync.services.block_sync.BlockSyncConfig]:
        Node, batching and watch settings.
    [Store][chainsync.core.store.Store]: Block upserts and the job queue.
    [NodeClient][chainsync.node.client.NodeClient]: GraphQL access to the
        chain node.

Examples:
    ```python
    from chainsync.core import Store
    from chainsync.services.block_sync import BlockSync

    store = Store.from_yaml("config/store.yaml")
    sync = BlockSync.from_yaml("config/services/block_sync.yaml", store=store)

    async with store:
        async with sync:
            await sync.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import ClassVar

from chainsync.core.base_service import BaseService
from chainsync.core.exceptions import ConfigurationError, InvalidTransitionError, SyncError
from chainsync.core.store import Store
from chainsync.models.constants import ServiceName
from chainsync.node import NodeClient

from .configs import BlockSyncConfig, SyncJob
from .executors import ParallelExecutor, RoundExecutor, RoundProgress, SequentialExecutor
from .machine import SyncContext, SyncEvent, SyncState, transition
from .planner import plan_windows
from .syncer import BatchRoundResult, RangeSyncer


class BlockSync(BaseService[BlockSyncConfig]):
    """Chain block synchronization service.

    Owns exactly one [SyncContext][chainsync.services.block_sync.machine.SyncContext]
    per run; contexts are never shared between runs or instances.

    See Also:
        [BlockSyncConfig][chainsync.services.block_sync.BlockSyncConfig]:
            Configuration model for this service.
        [SyncJob][chainsync.services.block_sync.SyncJob]: Per-job overrides
            of cursor, offset and watch mode.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.BLOCK_SYNC
    CONFIG_CLASS: ClassVar[type[BlockSyncConfig]] = BlockSyncConfig

    def __init__(
        self,
        store: Store,
        config: BlockSyncConfig | None = None,
        node: NodeClient | None = None,
        job: SyncJob | None = None,
        executor: RoundExecutor | None = None,
    ) -> None:
        super().__init__(store=store, config=config)
        self._node = node or NodeClient(self._config.node)
        self._job = job or SyncJob()
        self._executor = executor or self._default_executor()
        self._syncer = RangeSyncer(self._node, store, self._logger)

        sync = self._config.sync
        self._cursor = self._job.cursor if self._job.cursor is not None else sync.cursor
        self._offset = self._job.offset if self._job.offset is not None else sync.offset
        self._state = SyncState.IDLE

        max_batch = store.config.batch.max_size
        if self._offset > max_batch:
            raise ConfigurationError(
                f"offset ({self._offset}) exceeds the store batch limit ({max_batch}); "
                "every window is written with one insert"
            )

    @property
    def cursor(self) -> int:
        """Committed cursor: every block below it is stored."""
        return self._cursor

    @property
    def state(self) -> SyncState:
        """State of the current (or last) run."""
        return self._state

    def _default_executor(self) -> RoundExecutor:
        sync = self._config.sync
        if sync.sequential:
            return SequentialExecutor()
        return ParallelExecutor(max_concurrency=sync.max_concurrency, logger=self._logger)

    def new_context(self) -> SyncContext:
        """Build the context for a run from the committed cursor and the job."""
        sync = self._config.sync
        return SyncContext(
            cursor=self._cursor,
            offset=self._offset,
            limit=sync.limit,
            watch=self._job.watch if self._job.watch is not None else sync.watch,
        )

    async def __aenter__(self) -> BlockSync:
        await super().__aenter__()
        await self._node.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._node.close()
        await super().__aexit__(exc_type, exc_val, exc_tb)

    # -------------------------------------------------------------------------
    # Main Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Drive the protocol from ``idle`` until it returns to ``idle``.

        In watch mode the protocol never returns to ``idle``; the run ends
        when shutdown is requested.

        Raises:
            SyncError: Wrapping whatever failed, with ``cursor`` set to the
                committed cursor.
        """
        context = self.new_context()
        self._state = SyncState.IDLE
        self._logger.info(
            "sync_started",
            cursor=context.cursor,
            offset=context.offset,
            limit=context.limit,
            watch=context.watch,
        )

        try:
            context = self._advance(SyncEvent.start(), context)
            while self.is_running and self._state is not SyncState.IDLE:
                event = await self._step(context)
                if event is None:
                    break
                context = self._advance(event, context)

        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise

        except Exception as e:  # single failure boundary for the protocol
            self._logger.error(
                "sync_failed",
                state=self._state,
                cursor=self._cursor,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SyncError(
                f"block sync failed in state {self._state}: {e}", cursor=self._cursor
            ) from e

        self._logger.info("sync_stopped", state=self._state, cursor=self._cursor)

    def _advance(self, event: SyncEvent, context: SyncContext) -> SyncContext:
        """Apply ``event`` and publish the new state and cursor."""
        previous = self._state
        self._state, context = transition(self._state, event, context)

        if context.cursor != self._cursor:
            self._cursor = context.cursor
            self.set_gauge("cursor", self._cursor)

        self._logger.info(
            "state_changed",
            from_state=previous,
            to_state=self._state,
            cursor=self._cursor,
        )
        return context

    async def _step(self, context: SyncContext) -> SyncEvent | None:
        """Run the async step of the current state and return its event.

        Returns ``None`` when shutdown interrupted the watch delay.
        """
        state = self._state

        if state in (SyncState.GETTING_LAST_BLOCK, SyncState.RESETTING_LAST_BLOCK):
            head = await self._node.latest_block()
            self.set_gauge("head_height", head.height)
            return SyncEvent.head_fetched(head)

        if state is SyncState.SYNCING_BLOCKS:
            return SyncEvent.round_done(await self._sync_round(context))

        if state is SyncState.CHECKING:
            return SyncEvent.always()

        if state is SyncState.WAITING:
            if await self.wait(self._config.sync.watch_interval):
                return None
            return SyncEvent.timer_elapsed()

        if state is SyncState.SYNCING_MISSING_BLOCKS:
            result = await self._syncer.sync_missing(context.cursor, max_count=context.offset)
            self.inc_counter("blocks_synced", result.blocks)
            return SyncEvent.round_done(result)

        raise InvalidTransitionError(f"state {state} has no step", cursor=self._cursor)

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    async def _sync_round(self, context: SyncContext) -> BatchRoundResult:
        """Plan and execute one round.

        The round result is the result of the last planned window, which by
        construction reaches furthest. If a window fails, the committed
        cursor moves to the end of the committed prefix of the plan before
        the failure propagates.
        """
        windows = plan_windows(context.cursor, context.offset, context.limit, context.head_height)

        if not windows:
            if context.cursor > 0:
                self._logger.info(
                    "all_blocks_synced",
                    cursor=context.cursor,
                    head_height=context.head_height,
                )
                return BatchRoundResult(end_cursor=context.cursor, has_blocks=False)
            return BatchRoundResult(end_cursor=None, has_blocks=False)

        self._logger.info(
            "round_planned",
            windows=len(windows),
            from_height=windows[0].from_height,
            to_height=windows[-1].to_height,
            head_height=context.head_height,
        )

        progress = RoundProgress(windows)
        try:
            results = await self._executor.run(windows, self._syncer.sync_range, progress)
        except BaseException:
            frontier = progress.frontier
            if frontier is not None and frontier > self._cursor:
                self._cursor = frontier
                self.set_gauge("cursor", self._cursor)
            raise

        result = results[-1]
        blocks = sum(r.blocks for r in results)
        self.inc_counter("blocks_synced", blocks)
        self.inc_counter("rounds_completed")
        self._logger.info(
            "round_completed",
            windows=len(results),
            blocks=blocks,
            end_cursor=result.end_cursor,
            has_blocks=result.has_blocks,
        )
        return result
