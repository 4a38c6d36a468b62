"""
Immutable chain block as reported by the node.

A [Block][chainsync.models.block.Block] carries the few fields the
synchronization protocol relies on (``height`` above all) plus the raw node
payload, which is stored verbatim in the ``data`` JSONB column so the
downstream transaction stage can read whatever it needs without a second
node round-trip.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from ._validation import (
    deep_freeze,
    thaw,
    validate_height,
    validate_mapping,
    validate_str_no_null,
    validate_str_not_empty,
)


class BlockDbParams(NamedTuple):
    """Positional parameters for the ``block`` table upsert.

    ``data`` is pre-serialized JSON so the asyncpg JSONB codec passes it
    through untouched.
    """

    height: int
    id: str
    da_height: int
    time: str
    transaction_count: int
    data: str


@dataclass(frozen=True, slots=True)
class Block:
    """A single chain block.

    Attributes:
        id: Block id (hex string as returned by the node).
        height: Block height, the coordinate every sync cursor refers to.
        da_height: Data-availability layer height recorded in the header.
        time: Raw block timestamp as returned by the node (TAI64 string).
        transaction_ids: Ids of the transactions included in the block.
        data: Complete raw node payload, deeply frozen.

    Examples:
        ```python
        block = Block.from_node(
            {"id": "0xabc", "height": "42", "header": {"daHeight": "7"}}
        )
        block.height          # 42
        block.to_db_params()  # BlockDbParams(height=42, id='0xabc', ...)
        ```
    """

    id: str
    height: int
    da_height: int = 0
    time: str = ""
    transaction_ids: tuple[str, ...] = ()
    data: Mapping[str, Any] = field(default_factory=dict)
    _json_data: str = field(default="", init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_str_not_empty(self.id, "id")
        validate_height(self.height, "height")
        validate_height(self.da_height, "da_height")
        validate_str_no_null(self.time, "time")
        for tx_id in self.transaction_ids:
            validate_str_not_empty(tx_id, "transaction_ids")
        validate_mapping(self.data, "data")

        plain = thaw(self.data)
        object.__setattr__(self, "transaction_ids", tuple(self.transaction_ids))
        object.__setattr__(self, "_json_data", json.dumps(plain, sort_keys=True))
        object.__setattr__(self, "data", deep_freeze(plain))

    @classmethod
    def from_node(cls, payload: Mapping[str, Any]) -> Block:
        """Build a block from a node GraphQL ``Block`` object.

        Heights arrive as strings (``U32``/``U64`` scalars) and are
        converted to ``int``.

        Raises:
            KeyError: If ``id`` or ``height`` is missing.
            TypeError, ValueError: If a field has the wrong shape.
        """
        header = payload.get("header") or {}
        transactions = payload.get("transactions") or []
        return cls(
            id=payload["id"],
            height=int(payload["height"]),
            da_height=int(header.get("daHeight") or 0),
            time=str(header.get("time") or ""),
            transaction_ids=tuple(tx["id"] for tx in transactions),
            data=payload,
        )

    def to_db_params(self) -> BlockDbParams:
        """Return the row for the ``block`` table in column order."""
        return BlockDbParams(
            height=self.height,
            id=self.id,
            da_height=self.da_height,
            time=self.time,
            transaction_count=len(self.transaction_ids),
            data=self._json_data,
        )

    @classmethod
    def from_db_params(cls, params: BlockDbParams) -> Block:
        """Rebuild a block from a persisted row (``data`` as JSON text).

        Transaction ids are not a column; they are read back from the raw
        payload.
        """
        data = json.loads(params.data)
        transactions = data.get("transactions") or []
        return cls(
            id=params.id,
            height=params.height,
            da_height=params.da_height,
            time=params.time,
            transaction_ids=tuple(tx["id"] for tx in transactions),
            data=data,
        )

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready representation used in downstream job payloads."""
        return {
            "id": self.id,
            "height": self.height,
            "da_height": self.da_height,
            "time": self.time,
            "transaction_ids": list(self.transaction_ids),
            "data": thaw(self.data),
        }
