"""
High-level database interface for blocks and downstream jobs.

Wraps a private [Pool][chainsync.core.pool.Pool] and exposes the two writes
the synchronization protocol needs:

* [insert_blocks()][chainsync.core.store.Store.insert_blocks] -- idempotent
  bulk upsert keyed on block height, returning the persisted rows.
* [push_job()][chainsync.core.store.Store.push_job] -- append a job to the
  ``job_queue`` table for a downstream consumer.

Both accept a caller-supplied connection so they can share one
[transaction()][chainsync.core.store.Store.transaction]: a window's blocks
and its downstream notification commit or roll back together.

Bulk inserts use array parameters with ``unnest`` so a whole window is one
database round-trip.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import asyncpg
from pydantic import BaseModel, Field, field_validator

from chainsync.models import Block, BlockDbParams

from .exceptions import QueryError
from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS = 0.1

_INSERT_BLOCKS_QUERY = """
INSERT INTO block (height, id, da_height, time, transaction_count, data)
SELECT * FROM unnest($1::bigint[], $2::text[], $3::bigint[], $4::text[], $5::int[], $6::jsonb[])
ON CONFLICT (height) DO UPDATE SET
    id = EXCLUDED.id,
    da_height = EXCLUDED.da_height,
    time = EXCLUDED.time,
    transaction_count = EXCLUDED.transaction_count,
    data = EXCLUDED.data
RETURNING height, id, da_height, time, transaction_count, data::text AS data
"""

_PUSH_JOB_QUERY = """
INSERT INTO job_queue (topic, payload, created_at)
VALUES ($1, $2::jsonb, $3)
RETURNING id
"""

_MAX_BLOCK_HEIGHT_QUERY = "SELECT max(height) FROM block"


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class BatchConfig(BaseModel):
    """Maximum number of records per bulk insert.

    One block sync window is persisted with one insert, so
    [BlockSync][chainsync.services.block_sync.BlockSync] refuses an
    ``offset`` above ``max_size``.
    """

    max_size: int = Field(
        default=1000, ge=1, le=100_000, description="Maximum items per batch operation"
    )


class StoreTimeoutsConfig(BaseModel):
    """Timeout settings for store operations (seconds, None = no limit)."""

    query: float | None = Field(default=60.0, description="Query timeout (seconds, None=infinite)")
    batch: float | None = Field(
        default=120.0, description="Batch insert timeout (seconds, None=infinite)"
    )

    @field_validator("query", "batch", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout: None (infinite) or >= 0.1 seconds."""
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the Store database interface."""

    batch: BatchConfig = Field(default_factory=BatchConfig)
    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# Store Class
# ---------------------------------------------------------------------------


class Store:
    """Database facade for block persistence and the downstream job queue.

    Example:
        store = Store.from_yaml("config/store.yaml")

        async with store:
            async with store.transaction() as conn:
                persisted = await store.insert_blocks(blocks, conn=conn)
                await store.push_job(
                    QueueName.SYNC_TRANSACTIONS,
                    {"blocks": [b.to_payload() for b in persisted]},
                    conn=conn,
                )
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        """Initialize the database interface.

        Args:
            pool: Connection pool. Creates a default Pool if not provided.
            config: Batch sizes and timeouts. Uses defaults if not provided.
        """
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @property
    def config(self) -> StoreConfig:
        """The Store configuration (read-only)."""
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        """Read-only access to the underlying pool configuration."""
        return self._pool.config

    @classmethod
    def from_yaml(cls, config_path: str) -> Store:
        """Create a Store from a YAML file with a ``pool`` key and optional store keys."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Store:
        """Create a Store from a dictionary.

        The ``pool`` key builds the Pool; the remaining keys are
        ``StoreConfig`` fields.
        """
        pool = None
        if "pool" in config_dict:
            pool = Pool.from_dict(config_dict["pool"])

        store_config_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_config_dict) if store_config_dict else None

        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    def _validate_batch_size(self, batch: Sequence[Any], operation: str) -> None:
        if len(batch) > self._config.batch.max_size:
            max_size = self._config.batch.max_size
            raise ValueError(f"{operation} batch size ({len(batch)}) exceeds maximum ({max_size})")

    @staticmethod
    def _transpose_to_columns(params: Sequence[tuple[Any, ...]]) -> tuple[list[Any], ...]:
        """Turn row tuples into column lists for ``unnest`` array parameters."""
        if not params:
            return ()
        return tuple(list(col) for col in zip(*params, strict=True))

    @asynccontextmanager
    async def _scope(
        self, conn: asyncpg.Connection[asyncpg.Record] | None
    ) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Yield the caller's connection, or open a dedicated transaction."""
        if conn is not None:
            yield conn
            return
        async with self._pool.transaction() as own:
            yield own

    def transaction(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Return a transaction context manager from the pool.

        Commits on normal exit and rolls back if an exception propagates.
        """
        return self._pool.transaction()

    # -------------------------------------------------------------------------
    # Block Operations
    # -------------------------------------------------------------------------

    async def insert_blocks(
        self,
        records: Sequence[Block],
        *,
        conn: asyncpg.Connection[asyncpg.Record] | None = None,
    ) -> list[Block]:
        """Upsert blocks keyed on height and return the persisted rows.

        Re-inserting an already stored height overwrites it, so replaying
        the same range never duplicates rows. Duplicate heights within
        ``records`` collapse to the last occurrence.

        Args:
            records: Blocks to persist.
            conn: Connection of an enclosing transaction. When omitted the
                insert runs in its own transaction.

        Returns:
            Persisted blocks, ordered by height.

        Raises:
            ValueError: If the batch exceeds the configured maximum size.
            QueryError: If the statement fails.
        """
        if not records:
            return []

        self._validate_batch_size(records, "insert_blocks")

        by_height = {block.height: block for block in records}
        params = [by_height[h].to_db_params() for h in sorted(by_height)]
        columns = self._transpose_to_columns(params)

        try:
            async with self._scope(conn) as c:
                rows = await c.fetch(
                    _INSERT_BLOCKS_QUERY, *columns, timeout=self._config.timeouts.batch
                )
        except asyncpg.PostgresError as e:
            self._logger.error("block_insert_failed", attempted=len(params), error=str(e))
            raise QueryError(f"insert_blocks failed: {e}") from e

        persisted = [Block.from_db_params(BlockDbParams(**dict(row))) for row in rows]
        persisted.sort(key=lambda b: b.height)
        self._logger.debug("block_inserted", count=len(persisted), attempted=len(params))
        return persisted

    async def max_block_height(self) -> int | None:
        """Return the highest persisted block height, or None if the table is empty."""
        result = await self._pool.fetchval(
            _MAX_BLOCK_HEIGHT_QUERY, timeout=self._config.timeouts.query
        )
        return int(result) if result is not None else None

    # -------------------------------------------------------------------------
    # Job Queue Operations
    # -------------------------------------------------------------------------

    async def push_job(
        self,
        topic: str,
        payload: Mapping[str, Any],
        *,
        conn: asyncpg.Connection[asyncpg.Record] | None = None,
    ) -> int:
        """Append a job for a downstream consumer.

        Fire-and-forget: delivery and acknowledgement belong to the
        consumer of ``job_queue``.

        Args:
            topic: Queue topic, e.g. ``QueueName.SYNC_TRANSACTIONS``.
            payload: JSON-compatible job body.
            conn: Connection of an enclosing transaction, so the job only
                becomes visible if that transaction commits.

        Returns:
            Id of the new job row.

        Raises:
            QueryError: If the statement fails.
        """
        try:
            async with self._scope(conn) as c:
                job_id = await c.fetchval(
                    _PUSH_JOB_QUERY,
                    str(topic),
                    dict(payload),
                    int(time.time()),
                    timeout=self._config.timeouts.query,
                )
        except asyncpg.PostgresError as e:
            self._logger.error("job_push_failed", topic=str(topic), error=str(e))
            raise QueryError(f"push_job failed: {e}") from e

        self._logger.debug("job_pushed", topic=str(topic), job_id=job_id)
        return int(job_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect the underlying pool. Idempotent."""
        await self._pool.connect()
        self._logger.debug("session_started")

    async def close(self) -> None:
        """Close the underlying pool. Idempotent."""
        self._logger.debug("session_ending")
        await self._pool.close()

    async def __aenter__(self) -> Store:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        return f"Store(host={db.host}, database={db.database}, connected={self._pool.is_connected})"
