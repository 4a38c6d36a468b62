"""Fetch, persist and hand off one height range.

[RangeSyncer][chainsync.services.block_sync.syncer.RangeSyncer] is the unit
of work of a sync round. For each window it fetches a page from the node,
then inside a single store transaction upserts the blocks and appends one
``sync_transactions`` job for the downstream transaction stage. A failure in
either write rolls both back, so a job is never visible for blocks that
were not stored.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from chainsync.core.logger import Logger
from chainsync.core.store import Store
from chainsync.models import Block, QueueName
from chainsync.node import NodeClient

from .planner import SyncWindow


@dataclass(frozen=True, slots=True)
class BatchRoundResult:
    """Outcome of one window or one round.

    Attributes:
        end_cursor: Furthest height reported by the node, or ``None`` when
            the node reported no cursor.
        has_blocks: ``False`` once a fetch returns nothing (caught up).
        blocks: Number of blocks persisted. Informational only, ignored by
            equality.
    """

    end_cursor: int | None
    has_blocks: bool
    blocks: int = field(default=0, compare=False)


class RangeSyncer:
    """Runs the fetch, persist and enqueue sequence for height ranges.

    Each call opens its own store transaction, so concurrent calls never
    share a connection.
    """

    def __init__(self, node: NodeClient, store: Store, logger: Logger | None = None) -> None:
        self._node = node
        self._store = store
        self._logger = logger or Logger("block_sync")

    async def sync_range(self, window: SyncWindow) -> BatchRoundResult:
        """Sync one planned window.

        Returns:
            The node's end cursor for the page and whether it held blocks.

        Raises:
            NodeError: If the fetch fails. Nothing is written.
            QueryError: If the upsert or the enqueue fails. Both are rolled
                back.
        """
        return await self._sync(window.from_height, window.size)

    async def sync_missing(self, cursor: int, max_count: int | None = None) -> BatchRoundResult:
        """Sync the blocks between ``cursor`` and a freshly fetched head.

        Used on each watch tick instead of planning a round. At most
        ``max_count`` blocks are requested; a larger gap is left for the
        following ticks. When the head is not ahead of the cursor no blocks
        are requested and the result is ``BatchRoundResult(None, False)``.
        """
        head = await self._node.latest_block()
        if head.height <= cursor:
            self._logger.debug("no_missing_blocks", cursor=cursor, head_height=head.height)
            return BatchRoundResult(end_cursor=None, has_blocks=False)
        gap = head.height - cursor
        if max_count is not None and gap > max_count:
            self._logger.info(
                "missing_blocks_capped", cursor=cursor, head_height=head.height, count=max_count
            )
            gap = max_count
        return await self._sync(cursor, gap)

    async def _sync(self, from_height: int, count: int) -> BatchRoundResult:
        self._logger.debug("range_syncing", from_height=from_height, to_height=from_height + count)

        page = await self._node.fetch_blocks(count, from_height)
        has_blocks = len(page.blocks) > 0
        stored = await self._persist(page.blocks) if has_blocks else 0

        self._logger.info(
            "range_synced",
            from_height=from_height,
            to_height=from_height + count,
            blocks=stored,
            end_cursor=page.end_cursor,
        )
        return BatchRoundResult(end_cursor=page.end_cursor, has_blocks=has_blocks, blocks=stored)

    async def _persist(self, blocks: Sequence[Block]) -> int:
        """Upsert ``blocks`` and enqueue them atomically. Returns the stored count."""
        async with self._store.transaction() as conn:
            persisted = await self._store.insert_blocks(blocks, conn=conn)
            await self._store.push_job(
                QueueName.SYNC_TRANSACTIONS,
                {"blocks": [block.to_payload() for block in persisted]},
                conn=conn,
            )
        return len(persisted)
