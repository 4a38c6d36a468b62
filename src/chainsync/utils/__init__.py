"""Stateless helpers with no dependency on other chainsync layers.

Attributes:
    read_bounded_json: Parse an aiohttp response body as JSON with a size cap.
"""

from .http import read_bounded_json


__all__ = ["read_bounded_json"]
