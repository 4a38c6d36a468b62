"""
Async GraphQL client for the chain node.

[NodeClient][chainsync.node.client.NodeClient] answers the two questions the
block sync protocol asks a node: what is the current head
([latest_block()][chainsync.node.client.NodeClient.latest_block]), and which
blocks follow a given height
([fetch_blocks()][chainsync.node.client.NodeClient.fetch_blocks]).

Transport and payload failures are translated into the
[NodeError][chainsync.core.exceptions.NodeError] family so callers never
see raw ``aiohttp`` exceptions:

* ``TimeoutError`` becomes
  [NodeTimeoutError][chainsync.core.exceptions.NodeTimeoutError].
* HTTP errors, GraphQL ``errors`` and malformed bodies become
  [NodeResponseError][chainsync.core.exceptions.NodeResponseError].
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

import aiohttp
from pydantic import BaseModel, Field

from chainsync.core.exceptions import NodeError, NodeResponseError, NodeTimeoutError
from chainsync.core.logger import Logger
from chainsync.models import Block
from chainsync.utils.http import read_bounded_json

from .queries import BLOCKS_QUERY, LATEST_BLOCK_QUERY


class NodeConfig(BaseModel):
    """Connection settings for the node GraphQL endpoint."""

    url: str = Field(
        default="http://localhost:4000/v1/graphql",
        min_length=1,
        description="GraphQL endpoint URL",
    )
    timeout: float = Field(
        default=30.0,
        ge=0.1,
        le=300.0,
        description="Total request timeout in seconds",
    )
    connect_timeout: float = Field(
        default=10.0,
        ge=0.1,
        le=60.0,
        description="Connection establishment timeout in seconds",
    )
    max_response_size: int = Field(
        default=50 * 1024 * 1024,
        ge=1024,
        description="Maximum response body size in bytes",
    )


@dataclass(frozen=True, slots=True)
class BlockPage:
    """One page of blocks returned by the node.

    Attributes:
        blocks: Blocks in ascending height order.
        end_cursor: Height cursor reported by the node for the last block of
            the page, or ``None`` when the page is empty.
    """

    blocks: tuple[Block, ...] = ()
    end_cursor: int | None = None


class NodeClient:
    """GraphQL client sharing one ``aiohttp.ClientSession`` across requests.

    Example:
        async with NodeClient(NodeConfig(url="http://node:4000/v1/graphql")) as node:
            head = await node.latest_block()
            page = await node.fetch_blocks(10, head.height - 10)
    """

    def __init__(
        self,
        config: NodeConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Endpoint settings. Uses defaults if not provided.
            session: Externally managed session. When omitted the client
                creates its own on [open()][chainsync.node.client.NodeClient.open]
                and closes it on [close()][chainsync.node.client.NodeClient.close].
        """
        self._config = config or NodeConfig()
        self._session = session
        self._owns_session = session is None
        self._logger = Logger("node")

    @property
    def config(self) -> NodeConfig:
        """The node configuration (read-only)."""
        return self._config

    async def open(self) -> None:
        """Create the HTTP session if none was supplied. Idempotent."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this client created it. Idempotent."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def latest_block(self) -> Block:
        """Return the current chain head.

        Raises:
            NodeTimeoutError: If the request times out.
            NodeResponseError: If the request fails or the payload is malformed.
        """
        data = await self._query(LATEST_BLOCK_QUERY)
        try:
            head = Block.from_node(data["chain"]["latestBlock"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise NodeResponseError(f"malformed latestBlock payload: {e}") from e

        self._logger.debug("head_fetched", height=head.height)
        return head

    async def fetch_blocks(self, count: int, start_height: int) -> BlockPage:
        """Return up to ``count`` blocks following ``start_height``.

        The node pages blocks by height cursor, so ``start_height`` is sent as
        the ``after`` cursor. Null entries in the page are dropped.

        Args:
            count: Maximum number of blocks. ``count <= 0`` returns an empty
                page without a request.
            start_height: Height cursor the page starts after.

        Raises:
            NodeTimeoutError: If the request times out.
            NodeResponseError: If the request fails or the payload is malformed.
        """
        if count <= 0:
            return BlockPage()

        data = await self._query(BLOCKS_QUERY, {"first": count, "after": str(start_height)})
        try:
            connection = data["blocks"]
            blocks = tuple(Block.from_node(node) for node in connection["nodes"] if node)
            raw_cursor = (connection.get("pageInfo") or {}).get("endCursor")
            end_cursor = int(raw_cursor) if raw_cursor is not None else None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise NodeResponseError(f"malformed blocks payload: {e}") from e

        self._logger.debug(
            "blocks_fetched",
            start_height=start_height,
            requested=count,
            received=len(blocks),
            end_cursor=end_cursor,
        )
        return BlockPage(blocks=blocks, end_cursor=end_cursor)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _query(
        self, query: str, variables: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """POST a GraphQL document and return its ``data`` object."""
        if self._session is None:
            raise NodeError("NodeClient is not open")

        timeout = aiohttp.ClientTimeout(
            total=self._config.timeout,
            connect=min(self._config.connect_timeout, self._config.timeout),
            sock_read=self._config.timeout,
        )
        body = {"query": query, "variables": dict(variables or {})}

        try:
            async with self._session.post(self._config.url, json=body, timeout=timeout) as resp:
                resp.raise_for_status()
                payload = await read_bounded_json(resp, self._config.max_response_size)
        except TimeoutError as e:
            raise NodeTimeoutError(f"node request timed out after {self._config.timeout}s") from e
        except aiohttp.ClientError as e:
            raise NodeResponseError(f"node request failed: {e}") from e
        except ValueError as e:
            raise NodeResponseError(f"invalid node response: {e}") from e

        if not isinstance(payload, dict):
            raise NodeResponseError(f"expected a JSON object, got {type(payload).__name__}")

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in errors
            )
            raise NodeResponseError(f"GraphQL errors: {messages}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise NodeResponseError("GraphQL response has no data object")
        return data
