"""Chain node access over GraphQL.

Attributes:
    NodeClient: Async GraphQL client for head discovery and block pages.
    NodeConfig: Endpoint, timeouts and response size limit.
    BlockPage: One page of blocks plus the node's end cursor.
"""

from .client import BlockPage, NodeClient, NodeConfig


__all__ = [
    "BlockPage",
    "NodeClient",
    "NodeConfig",
]
