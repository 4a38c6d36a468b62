"""Services built on [BaseService][chainsync.core.base_service.BaseService].

Each service implements ``async def run()`` for one cycle of work and is
driven by ``run_forever()`` (or a single ``run()`` with ``--once``).

Attributes:
    BlockSync: Pulls blocks from the chain node into the ``block`` table and
        follows the head in watch mode.
"""

from .block_sync import BlockSync, BlockSyncConfig


__all__ = [
    "BlockSync",
    "BlockSyncConfig",
]
