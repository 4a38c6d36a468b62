"""
Unit tests for models.block module.

Tests:
- Block construction and validation
- from_node() parsing of node GraphQL payloads
- to_db_params() / from_db_params() row conversion
- to_payload() downstream job representation
- Immutability of the block and its raw payload
"""

import dataclasses
import json
from collections.abc import Callable
from typing import Any

import pytest

from chainsync.models import Block, BlockDbParams


class TestConstruction:
    """Block.__post_init__ validation."""

    def test_minimal(self) -> None:
        block = Block(id="0x01", height=0)
        assert block.da_height == 0
        assert block.time == ""
        assert block.transaction_ids == ()
        assert dict(block.data) == {}

    def test_empty_id(self) -> None:
        with pytest.raises(ValueError, match="id"):
            Block(id="", height=1)

    def test_negative_height(self) -> None:
        with pytest.raises(ValueError, match="height"):
            Block(id="0x01", height=-1)

    def test_bool_height_rejected(self) -> None:
        with pytest.raises(TypeError):
            Block(id="0x01", height=True)

    def test_string_height_rejected(self) -> None:
        with pytest.raises(TypeError):
            Block(id="0x01", height="5")  # type: ignore[arg-type]

    def test_null_byte_in_time(self) -> None:
        with pytest.raises(ValueError, match="null"):
            Block(id="0x01", height=1, time="12\x00")

    def test_data_must_be_mapping(self) -> None:
        with pytest.raises(TypeError, match="data"):
            Block(id="0x01", height=1, data=[1, 2])  # type: ignore[arg-type]

    def test_transaction_ids_list_becomes_tuple(self) -> None:
        block = Block(id="0x01", height=1, transaction_ids=["a", "b"])  # type: ignore[arg-type]
        assert block.transaction_ids == ("a", "b")


class TestFromNode:
    """Block.from_node()."""

    def test_parses_fields(self, block_payload: dict[str, Any]) -> None:
        block = Block.from_node(block_payload)
        assert block.height == 42
        assert block.id == block_payload["id"]
        assert block.da_height == 84
        assert block.time == block_payload["header"]["time"]
        assert block.transaction_ids == ("0xtx42_0", "0xtx42_1")

    def test_keeps_raw_payload(self, block_payload: dict[str, Any]) -> None:
        block = Block.from_node(block_payload)
        assert block.data["header"]["daHeight"] == "84"

    def test_missing_header_and_transactions(self) -> None:
        block = Block.from_node({"id": "0xff", "height": "3"})
        assert block.da_height == 0
        assert block.transaction_ids == ()

    def test_missing_height(self) -> None:
        with pytest.raises(KeyError):
            Block.from_node({"id": "0xff"})

    def test_non_numeric_height(self) -> None:
        with pytest.raises(ValueError):
            Block.from_node({"id": "0xff", "height": "abc"})


class TestDbParams:
    """to_db_params() and from_db_params()."""

    def test_column_order(self, sample_block: Block) -> None:
        params = sample_block.to_db_params()
        assert isinstance(params, BlockDbParams)
        assert params[:5] == (42, sample_block.id, 84, sample_block.time, 2)

    def test_data_is_json_text(self, sample_block: Block, block_payload: dict[str, Any]) -> None:
        assert json.loads(sample_block.to_db_params().data) == block_payload

    def test_restores_block(self, sample_block: Block) -> None:
        restored = Block.from_db_params(sample_block.to_db_params())
        assert restored == sample_block
        assert restored.transaction_ids == sample_block.transaction_ids

    def test_transaction_ids_from_payload(self) -> None:
        params = BlockDbParams(
            height=9,
            id="0x09",
            da_height=1,
            time="t",
            transaction_count=1,
            data=json.dumps({"transactions": [{"id": "0xaa"}]}),
        )
        assert Block.from_db_params(params).transaction_ids == ("0xaa",)


class TestPayload:
    """to_payload()."""

    def test_json_ready(self, make_block: Callable[..., Block]) -> None:
        payload = make_block(7, tx_count=1).to_payload()
        assert payload["height"] == 7
        assert payload["da_height"] == 14
        assert payload["transaction_ids"] == ["0xtx7_0"]
        assert isinstance(payload["data"], dict)
        json.dumps(payload)


class TestImmutability:
    """Frozen dataclass and deep-frozen data."""

    def test_frozen(self, sample_block: Block) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            sample_block.height = 1  # type: ignore[misc]

    def test_data_is_read_only(self, sample_block: Block) -> None:
        with pytest.raises(TypeError):
            sample_block.data["height"] = "1"  # type: ignore[index]

    def test_source_payload_mutation_does_not_leak(self, block_payload: dict[str, Any]) -> None:
        block = Block.from_node(block_payload)
        block_payload["header"]["daHeight"] = "0"
        assert block.data["header"]["daHeight"] == "84"
