"""chainsync exception hierarchy.

Typed exceptions separate transient failures (pool exhausted, node timeout)
from permanent ones (bad SQL, malformed node payload) and give the block
synchronization protocol a single wrapper for everything that escapes it.

Exception hierarchy:

```text
ChainsyncError (base -- never raised directly)
├── ConfigurationError        -- config validation, missing keys, bad YAML
├── DatabaseError             -- pool/store failures
│   ├── ConnectionPoolError   -- transient: pool exhausted, network blip
│   └── QueryError            -- permanent: bad SQL, constraint violation
├── NodeError                 -- chain node unreachable or misbehaving
│   ├── NodeTimeoutError      -- request timed out
│   └── NodeResponseError     -- HTTP error, GraphQL errors, malformed data
└── SyncError                 -- block synchronization attempt failed
    └── InvalidTransitionError
```

See Also:
    [Pool][chainsync.core.pool.Pool]: Raises
        [ConnectionPoolError][chainsync.core.exceptions.ConnectionPoolError].
    [Store][chainsync.core.store.Store]: Raises
        [QueryError][chainsync.core.exceptions.QueryError].
    [NodeClient][chainsync.node.client.NodeClient]: Raises
        [NodeError][chainsync.core.exceptions.NodeError] subclasses.
    [BlockSync][chainsync.services.block_sync.BlockSync]: Raises
        [SyncError][chainsync.core.exceptions.SyncError].
"""

from __future__ import annotations


class ChainsyncError(Exception):
    """Base exception for all chainsync errors. Never raised directly."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ChainsyncError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(ChainsyncError):
    """Base for all database-related errors."""


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation, data integrity.

    Raised after the enclosing transaction has been rolled back. Callers
    should NOT retry -- the statement itself is wrong.
    """


# ---------------------------------------------------------------------------
# Chain node
# ---------------------------------------------------------------------------


class NodeError(ChainsyncError):
    """Base for all chain node errors."""


class NodeTimeoutError(NodeError):
    """The node did not answer within the configured timeout."""


class NodeResponseError(NodeError):
    """The node answered with an HTTP error, GraphQL errors, or malformed data."""


# ---------------------------------------------------------------------------
# Synchronization protocol
# ---------------------------------------------------------------------------


class SyncError(ChainsyncError):
    """A block synchronization attempt failed.

    The underlying failure is attached as ``__cause__``.

    Attributes:
        cursor: Height up to which blocks were durably committed when the
            attempt failed, or ``None`` if unknown.
    """

    def __init__(self, message: str, *, cursor: int | None = None) -> None:
        super().__init__(message)
        self.cursor = cursor


class InvalidTransitionError(SyncError):
    """The state machine received an event its current state does not accept."""
