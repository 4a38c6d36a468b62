"""
Pytest configuration and shared fixtures for chainsync tests.

Provides:
- Mock fixtures for asyncpg, Pool and Store
- Block payload factories shaped like node GraphQL responses
- Configuration dictionaries for Pool and Store
"""

import logging
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainsync.core.pool import DatabaseConfig, Pool, PoolConfig
from chainsync.core.store import Store
from chainsync.models import Block


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection with a transaction context manager."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=1)

    mock_transaction = MagicMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=conn)
    mock_transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=mock_transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Create a mock asyncpg pool."""
    pool = MagicMock()
    pool.close = AsyncMock()

    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)

    return pool


@pytest.fixture
def mock_pool(
    mock_asyncpg_pool: MagicMock, mock_connection: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> Pool:
    """Create a connected Pool with mocked internals."""
    monkeypatch.setenv("DB_PASSWORD", "test_password")

    config = PoolConfig(
        database=DatabaseConfig(
            host="localhost",
            port=5432,
            database="test_db",
            user="test_user",
        )
    )
    pool = Pool(config=config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True

    pool._mock_connection = mock_connection  # type: ignore[attr-defined]

    return pool


@pytest.fixture
def mock_store(mock_pool: Pool) -> Store:
    """Create a Store backed by the mocked pool."""
    return Store(pool=mock_pool)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def pool_config_dict() -> dict[str, Any]:
    """Sample pool configuration dictionary."""
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "test_db",
            "user": "test_user",
        },
        "limits": {
            "min_size": 2,
            "max_size": 10,
            "max_queries": 1000,
            "max_inactive_connection_lifetime": 60.0,
        },
        "timeouts": {
            "acquisition": 5.0,
        },
        "retry": {
            "max_attempts": 2,
            "initial_delay": 0.5,
            "max_delay": 2.0,
            "exponential_backoff": True,
        },
        "server_settings": {
            "application_name": "test_app",
            "timezone": "UTC",
        },
    }


@pytest.fixture
def store_config_dict(pool_config_dict: dict[str, Any]) -> dict[str, Any]:
    """Sample Store configuration dictionary with an embedded pool."""
    return {
        "pool": pool_config_dict,
        "batch": {"max_size": 500},
        "timeouts": {"query": 30.0, "batch": 90.0},
    }


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def _block_payload(height: int, tx_count: int = 1) -> dict[str, Any]:
    return {
        "id": f"0x{height:064x}",
        "height": str(height),
        "header": {"daHeight": str(height * 2), "time": f"4611686020108779{height:03d}"},
        "transactions": [{"id": f"0xtx{height}_{i}"} for i in range(tx_count)],
    }


@pytest.fixture
def make_block_payload() -> Callable[..., dict[str, Any]]:
    """Factory for node GraphQL block objects: ``make_block_payload(height, tx_count=1)``."""
    return _block_payload


@pytest.fixture
def make_block() -> Callable[..., Block]:
    """Factory for Blocks: ``make_block(height, tx_count=1)``."""

    def _make(height: int, tx_count: int = 1) -> Block:
        return Block.from_node(_block_payload(height, tx_count))

    return _make


@pytest.fixture
def block_payload() -> dict[str, Any]:
    """A single node block object at height 42."""
    return _block_payload(42, tx_count=2)


@pytest.fixture
def sample_block(block_payload: dict[str, Any]) -> Block:
    """A Block built from ``block_payload``."""
    return Block.from_node(block_payload)
