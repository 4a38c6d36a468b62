"""Core layer: infrastructure shared by every chainsync service.

Depends only on ``chainsync.models`` and is depended upon by
``chainsync.services``.

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][chainsync.core.pool.Pool].
    Store: Database facade for block upserts and the downstream job queue.
        Services use [Store][chainsync.core.store.Store], never
        [Pool][chainsync.core.pool.Pool] directly.
    BaseService: Abstract generic base class with lifecycle management,
        factory methods and Prometheus metrics integration.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.

Examples:
    ```python
    from chainsync.core import Store

    store = Store.from_yaml("config/store.yaml")
    async with store:
        await store.insert_blocks(blocks)
    ```
"""

from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .exceptions import (
    ChainsyncError,
    ConfigurationError,
    ConnectionPoolError,
    DatabaseError,
    InvalidTransitionError,
    NodeError,
    NodeResponseError,
    NodeTimeoutError,
    QueryError,
    SyncError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .store import (
    BatchConfig,
    Store,
    StoreConfig,
    StoreTimeoutsConfig,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BaseService",
    "BaseServiceConfig",
    "BatchConfig",
    "ChainsyncError",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "DatabaseConfig",
    "DatabaseError",
    "InvalidTransitionError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "NodeError",
    "NodeResponseError",
    "NodeTimeoutError",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "QueryError",
    "ServerSettingsConfig",
    "Store",
    "StoreConfig",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "SyncError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
