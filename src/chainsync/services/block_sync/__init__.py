"""Block sync service package.

Re-exports all public symbols::

    from chainsync.services.block_sync import BlockSync, BlockSyncConfig
"""

from .configs import BlockSyncConfig, SyncConfig, SyncJob
from .executors import ParallelExecutor, RoundExecutor, RoundProgress, SequentialExecutor
from .machine import SyncContext, SyncEvent, SyncEventType, SyncState, transition
from .planner import SyncWindow, plan_windows
from .service import BlockSync
from .syncer import BatchRoundResult, RangeSyncer


__all__ = [
    "BatchRoundResult",
    "BlockSync",
    "BlockSyncConfig",
    "ParallelExecutor",
    "RangeSyncer",
    "RoundExecutor",
    "RoundProgress",
    "SequentialExecutor",
    "SyncConfig",
    "SyncContext",
    "SyncEvent",
    "SyncEventType",
    "SyncJob",
    "SyncState",
    "SyncWindow",
    "plan_windows",
    "transition",
]
