r"""chainsync -- block synchronization for a blockchain indexer.

Pulls blocks from a chain node's GraphQL API in bounded batches, upserts
them into PostgreSQL, and keeps following the chain head. Every stored batch
is handed to a downstream transaction-sync stage through the ``job_queue``
table.

Imports flow strictly downward:

```text
              services         Block sync protocol and driver
             /   |   \
          core  node  utils    Infrastructure, node access, helpers
             \   |   /
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from chainsync import BlockSync``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("chainsync")

__all__ = [
    "BaseService",
    "Block",
    "BlockSync",
    "BlockSyncConfig",
    "Logger",
    "NodeClient",
    "NodeConfig",
    "Pool",
    "PoolConfig",
    "Store",
    "StoreConfig",
    "SyncJob",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("chainsync.core", "BaseService"),
    "Logger": ("chainsync.core", "Logger"),
    "Pool": ("chainsync.core", "Pool"),
    "PoolConfig": ("chainsync.core", "PoolConfig"),
    "Store": ("chainsync.core", "Store"),
    "StoreConfig": ("chainsync.core", "StoreConfig"),
    "Block": ("chainsync.models", "Block"),
    "NodeClient": ("chainsync.node", "NodeClient"),
    "NodeConfig": ("chainsync.node", "NodeConfig"),
    "BlockSync": ("chainsync.services.block_sync", "BlockSync"),
    "BlockSyncConfig": ("chainsync.services.block_sync", "BlockSyncConfig"),
    "SyncJob": ("chainsync.services.block_sync", "SyncJob"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'chainsync' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
