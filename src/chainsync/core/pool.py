"""
Async PostgreSQL connection pool built on asyncpg.

The block sync service only needs two things from the database layer: a
transaction per window (the block upsert and the job insert commit
together) and a single scalar read of the highest stored height for
``--resume``. [Pool][chainsync.core.pool.Pool] provides exactly those on
top of ``asyncpg.Pool``, plus connection retry with backoff and JSON/JSONB
codecs for the ``block.data`` column.

[fetchval()][chainsync.core.pool.Pool.fetchval] is retried when the
connection itself breaks (``InterfaceError``,
``ConnectionDoesNotExistError``); a query that PostgreSQL rejects is raised
on the first attempt.

Examples:
    ```python
    pool = Pool.from_yaml("config/store.yaml")

    async with pool:
        top = await pool.fetchval("SELECT max(height) FROM block")

        async with pool.transaction() as conn:
            await conn.fetch("INSERT INTO block ... RETURNING height", ...)
    ```

See Also:
    [Store][chainsync.core.store.Store]: Block and job facade over this pool.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator  # noqa: TC003
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .exceptions import ConnectionPoolError
from .logger import Logger
from .yaml import load_yaml


_TRANSIENT_ERRORS = (asyncpg.InterfaceError, asyncpg.ConnectionDoesNotExistError)
_CONNECT_ERRORS = (asyncpg.PostgresError, OSError, ConnectionError)


def _json_encode(value: Any) -> str:
    """Encode a JSONB parameter; block payloads that are already text go through as-is."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


async def _init_connection(conn: asyncpg.Connection[asyncpg.Record]) -> None:
    """Install the JSON codecs on every new connection."""
    for type_name in ("jsonb", "json"):
        await conn.set_type_codec(
            type_name,
            encoder=_json_encode,
            decoder=json.loads,
            schema="pg_catalog",
        )


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Where the block database lives and who connects to it.

    ``password`` is never written in YAML: it is looked up in the environment
    variable named by ``password_env`` when the model is built.
    """

    host: str = Field(default="localhost", min_length=1, description="Database hostname")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    database: str = Field(default="chainsync", min_length=1, description="Database name")
    user: str = Field(default="chainsync", min_length=1, description="Database role")
    password_env: str = Field(
        default="DB_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable holding the password",
    )
    password: SecretStr = Field(description="Resolved from password_env")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Fill ``password`` from the environment unless given explicitly."""
        if not isinstance(data, dict) or "password" in data:
            return data
        env_var = data.get("password_env", "DB_PASSWORD")  # pragma: allowlist secret
        secret = os.getenv(env_var)
        if not secret:
            raise ValueError(f"{env_var} environment variable not set")
        return {**data, "password": SecretStr(secret)}


class PoolLimitsConfig(BaseModel):
    """How many connections the pool keeps and how long they live.

    Each in-flight window holds one connection until its transaction ends,
    so ``max_size`` bounds the useful ``sync.max_concurrency``.
    """

    min_size: int = Field(default=2, ge=1, le=100, description="Connections kept open")
    max_size: int = Field(default=20, ge=1, le=200, description="Connection ceiling")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before a reconnect")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Seconds an idle connection survives"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        floor = info.data.get("min_size", 2)
        if v < floor:
            raise ValueError(f"max_size ({v}) must be >= min_size ({floor})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Seconds to wait for a free connection."""

    acquisition: float = Field(default=10.0, ge=0.1, description="Acquire timeout")


class PoolRetryConfig(BaseModel):
    """Backoff between connection attempts and between retried reads.

    The n-th retry (0-based) waits ``initial_delay * 2**n`` with exponential
    backoff and ``initial_delay * (n + 1)`` without, never more than
    ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts before giving up")
    initial_delay: float = Field(default=1.0, ge=0.1, description="First delay (seconds)")
    max_delay: float = Field(default=10.0, ge=0.1, description="Delay ceiling (seconds)")
    exponential_backoff: bool = Field(default=True, description="Double the delay each retry")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        first = info.data.get("initial_delay", 1.0)
        if v < first:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({first})")
        return v


class ServerSettingsConfig(BaseModel):
    """Session parameters applied to every connection.

    ``statement_timeout`` is in milliseconds; ``0`` means no limit.
    """

    application_name: str = Field(default="chainsync", description="Shown in pg_stat_activity")
    timezone: str = Field(default="UTC", description="Session time zone")
    statement_timeout: int = Field(default=300_000, ge=0, description="Per-statement limit (ms)")

    def as_server_settings(self) -> dict[str, str]:
        """The mapping asyncpg expects for ``server_settings``."""
        return {
            "application_name": self.application_name,
            "timezone": self.timezone,
            "statement_timeout": str(self.statement_timeout),
        }


class PoolConfig(BaseModel):
    """Everything [Pool][chainsync.core.pool.Pool] needs, as loaded from ``store.yaml``."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Lazily connected ``asyncpg.Pool`` with retry and transactions.

    Services reach it through [Store][chainsync.core.store.Store]; the pool
    itself knows nothing about blocks or jobs.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected: bool = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        """Build a disconnected pool from a YAML file."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        """Build a disconnected pool from ``PoolConfig`` fields."""
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        factor = 2**attempt if retry.exponential_backoff else attempt + 1
        return float(min(retry.initial_delay * factor, retry.max_delay))

    def _create_pool_kwargs(self) -> dict[str, Any]:
        db = self._config.database
        limits = self._config.limits
        return {
            "host": db.host,
            "port": db.port,
            "database": db.database,
            "user": db.user,
            "password": db.password.get_secret_value(),
            "min_size": limits.min_size,
            "max_size": limits.max_size,
            "max_queries": limits.max_queries,
            "max_inactive_connection_lifetime": limits.max_inactive_connection_lifetime,
            "timeout": self._config.timeouts.acquisition,
            "init": _init_connection,
            "server_settings": self._config.server_settings.as_server_settings(),
        }

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the asyncpg pool, backing off between failed attempts.

        Calling it on a connected pool does nothing.

        Raises:
            ConnectionPoolError: When ``retry.max_attempts`` attempts all fail.
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            db = self._config.database
            attempts = self._config.retry.max_attempts
            self._logger.info(
                "connection_starting", host=db.host, port=db.port, database=db.database
            )

            for attempt in range(attempts):
                try:
                    self._pool = await asyncpg.create_pool(**self._create_pool_kwargs())
                except _CONNECT_ERRORS as e:
                    if attempt + 1 == attempts:
                        self._logger.error("connection_failed", attempts=attempts, error=str(e))
                        raise ConnectionPoolError(
                            f"Failed to connect after {attempts} attempts: {e}"
                        ) from e
                    delay = self._retry_delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    self._is_connected = True
                    self._logger.info("connection_established")
                    return

    async def close(self) -> None:
        """Release every connection. Safe to call more than once."""
        async with self._connection_lock:
            if self._pool is None:
                return
            try:
                await self._pool.close()
                self._logger.info("connection_closed")
            finally:
                self._pool = None
                self._is_connected = False

    # -------------------------------------------------------------------------
    # Connections and Transactions
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection for the duration of an ``async with`` block.

        Raises:
            RuntimeError: Before [connect()][chainsync.core.pool.Pool.connect].
        """
        if not self._is_connected or self._pool is None:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Yield a connection inside an open transaction.

        The transaction commits when the block exits normally and rolls back
        on any exception, ``CancelledError`` included.
        """
        async with self.acquire() as conn, conn.transaction():
            yield conn

    async def fetchval(
        self,
        query: str,
        *args: Any,
        column: int = 0,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        """Return one column of the first row (``None`` when there are no rows).

        A broken connection is retried on a fresh one with the configured
        backoff.

        Raises:
            ConnectionPoolError: When every attempt lost its connection.
        """
        attempts = self._config.retry.max_attempts
        for attempt in range(attempts):
            try:
                async with self.acquire() as conn:
                    return await conn.fetchval(query, *args, column=column, timeout=timeout)
            except _TRANSIENT_ERRORS as e:
                if attempt + 1 == attempts:
                    self._logger.error("query_failed", attempts=attempts, error=str(e))
                    raise ConnectionPoolError(
                        f"fetchval failed after {attempts} attempts: {e}"
                    ) from e
                delay = self._retry_delay(attempt)
                self._logger.warning(
                    "query_retry", attempt=attempt + 1, delay_s=delay, error=str(e)
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        return self._config

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
