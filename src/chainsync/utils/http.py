"""HTTP helpers for node responses.

Node pages carry full block payloads, so response bodies are read with a
hard size limit before JSON parsing.

See Also:
    [NodeClient][chainsync.node.client.NodeClient]: GraphQL client that uses
        [read_bounded_json][chainsync.utils.http.read_bounded_json].
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp


async def _read_bounded(response: aiohttp.ClientResponse, max_size: int) -> bytes:
    """Read a whole response body, failing once it exceeds ``max_size`` bytes.

    Reads in a loop because with chunked transfer-encoding a single
    ``content.read(n)`` may return less than is available.

    Raises:
        ValueError: If the body exceeds *max_size*.
    """
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await response.content.read(max_size + 1 - total)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise ValueError(f"Response body too large: >{max_size} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


async def read_bounded_json(response: aiohttp.ClientResponse, max_size: int) -> Any:
    """Read and parse a JSON response body with size enforcement.

    Args:
        response: An aiohttp response whose body has not yet been consumed.
        max_size: Maximum allowed body size in bytes.

    Returns:
        The parsed JSON value.

    Raises:
        ValueError: If the body exceeds *max_size*.
        json.JSONDecodeError: If the body is not valid JSON.
    """
    body = await _read_bounded(response, max_size)
    return json.loads(body)
