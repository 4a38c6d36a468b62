"""Shared fixtures for block_sync tests.

Provides an in-memory node that serves blocks up to a movable head and a
store double whose transaction context records how it exited.
"""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainsync.core.store import StoreConfig
from chainsync.models import Block
from chainsync.node import BlockPage
from chainsync.services.block_sync import BlockSyncConfig, SyncConfig


class FakeNode:
    """Serves blocks ``1..head``; ``fetch_blocks(n, h)`` returns heights ``h+1..h+n``."""

    def __init__(self, make_block: Callable[..., Block], head: int) -> None:
        self.head = head
        self._make_block = make_block
        self.latest_block = AsyncMock(side_effect=self._latest_block)
        self.fetch_blocks = AsyncMock(side_effect=self._fetch_blocks)
        self.open = AsyncMock()
        self.close = AsyncMock()

    def _latest_block(self) -> Block:
        return self._make_block(self.head)

    def _fetch_blocks(self, count: int, start_height: int) -> BlockPage:
        heights = range(start_height + 1, min(start_height + count, self.head) + 1)
        blocks = tuple(self._make_block(h) for h in heights)
        return BlockPage(blocks=blocks, end_cursor=blocks[-1].height if blocks else None)


@pytest.fixture
def fake_node(make_block: Callable[..., Block]) -> FakeNode:
    """Node with its head at height 22."""
    return FakeNode(make_block, head=22)


@pytest.fixture
def fake_store() -> MagicMock:
    """Store double.

    Carries a default ``StoreConfig``. ``insert_blocks`` echoes its input,
    ``push_job`` returns job id 1, and ``transaction_exits`` collects the
    exception type (or ``None``) each transaction exited with.
    """
    store = MagicMock()
    store.config = StoreConfig()
    store.transaction_exits = []
    conn = MagicMock(name="conn")

    def _transaction() -> MagicMock:
        tx = MagicMock()
        tx.__aenter__ = AsyncMock(return_value=conn)

        async def _exit(exc_type: Any, exc: Any, tb: Any) -> bool:
            store.transaction_exits.append(exc_type)
            return False

        tx.__aexit__ = AsyncMock(side_effect=_exit)
        return tx

    store.conn = conn
    store.transaction = MagicMock(side_effect=_transaction)
    store.insert_blocks = AsyncMock(side_effect=lambda blocks, conn=None: list(blocks))
    store.push_job = AsyncMock(return_value=1)
    return store


@pytest.fixture
def sync_config() -> BlockSyncConfig:
    """Small batches with watch mode off."""
    return BlockSyncConfig(sync=SyncConfig(cursor=0, offset=10, limit=25, watch=False))
