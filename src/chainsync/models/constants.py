"""Shared constants for the models layer.

See Also:
    [BaseService][chainsync.core.base_service.BaseService]: Uses
        [ServiceName][chainsync.models.constants.ServiceName] for logging
        and metrics labels.
    [Store.push_job][chainsync.core.store.Store.push_job]: Uses
        [QueueName][chainsync.models.constants.QueueName] as the job topic.
"""

from __future__ import annotations

from enum import StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging, metrics, and the CLI.

    Attributes:
        BLOCK_SYNC: Block synchronization service
            ([BlockSync][chainsync.services.block_sync.BlockSync]).
    """

    BLOCK_SYNC = "block_sync"


class QueueName(StrEnum):
    """Topics of the ``job_queue`` table.

    Attributes:
        SYNC_BLOCKS: Block synchronization jobs (``SyncJob`` payloads).
        SYNC_TRANSACTIONS: Batches of freshly persisted blocks whose
            transactions still have to be indexed downstream.
    """

    SYNC_BLOCKS = "sync_blocks"
    SYNC_TRANSACTIONS = "sync_transactions"
