"""Tests for Result construction, access and Arrow conversion."""

from __future__ import annotations

import json
import uuid
from datetime import date
from decimal import Decimal

import pyarrow as pa
import pytest

from clickhouse_http.result import QueryStatistics, Result
from clickhouse_http.types import TypeRegistry

_PAYLOAD = {
    "meta": [
        {"name": "id", "type": "UInt64"},
        {"name": "name", "type": "Nullable(String)"},
        {"name": "tags", "type": "Array(String)"},
    ],
    "data": [
        ["1", "alice", ["a", "b"]],
        ["2", None, []],
        ["3", "carol", ["c"]],
    ],
    "rows": 3,
    "statistics": {"elapsed": 0.0125, "rows_read": 3, "bytes_read": 96},
}


@pytest.fixture
def result(registry: TypeRegistry) -> Result:
    """A three-row result decoded through the registry."""
    return Result.from_json_compact(_PAYLOAD, registry=registry)


class TestResult:
    """Construction and row access."""

    def test_metadata(self, result: Result) -> None:
        """Columns, types and statistics come from the payload."""
        assert result.columns == ("id", "name", "tags")
        assert result.column_types == {"id": "UInt64", "name": "Nullable(String)", "tags": "Array(String)"}
        assert result.statistics == QueryStatistics(elapsed=0.0125, rows_read=3, bytes_read=96)
        assert result.rows_read == 3
        assert result.bytes_read == 96

    def test_values_deserialized(self, result: Result) -> None:
        """Wire values are converted through the column codecs."""
        assert result[0] == {"id": 1, "name": "alice", "tags": ["a", "b"]}
        assert result[1]["name"] is None

    def test_sequence_protocol(self, result: Result) -> None:
        """Results are sized, indexable, sliceable and repeatedly iterable."""
        assert len(result) == 3
        assert result[-1]["id"] == 3
        assert [r["id"] for r in result[1:]] == [2, 3]
        assert [r["id"] for r in result] == [r["id"] for r in result]

    def test_rows_read_only(self, result: Result) -> None:
        """Rows cannot be modified."""
        with pytest.raises(TypeError):
            result[0]["id"] = 9  # type: ignore[index]

    def test_first_last_column(self, result: Result) -> None:
        """Convenience accessors."""
        assert result.first() == result[0]
        assert result.last() == result[2]
        assert result.column("id") == [1, 2, 3]

    def test_unknown_column(self, result: Result) -> None:
        """Asking for a missing column names the available ones."""
        with pytest.raises(ValueError, match="Unknown column 'nope'"):
            result.column("nope")

    def test_empty(self) -> None:
        """The empty result has no rows or columns."""
        empty = Result.empty()
        assert empty.is_empty
        assert empty.first() is None
        assert empty.last() is None
        assert len(empty) == 0
        assert empty.columns == ()

    def test_from_json_objects(self, registry: TypeRegistry) -> None:
        """The JSON format (rows as objects) is accepted too."""
        payload = json.dumps(
            {"meta": [{"name": "d", "type": "Date"}], "data": [{"d": "2024-05-01"}], "statistics": {}}
        )
        result = Result.from_json(payload, registry=registry)
        assert result.column("d") == [date(2024, 5, 1)]

    def test_raw_values(self, registry: TypeRegistry) -> None:
        """deserialize=False keeps JSON values unchanged."""
        result = Result.from_json_compact(_PAYLOAD, registry=registry, deserialize=False)
        assert result.column("id") == ["1", "2", "3"]
        assert result.codecs is None

    def test_mismatched_meta(self) -> None:
        """Column and type counts must agree."""
        with pytest.raises(ValueError, match="2 column names but 1 column types"):
            Result(["a", "b"], ["UInt8"], [])

    def test_short_row(self, registry: TypeRegistry) -> None:
        """Rows must have one value per column."""
        with pytest.raises(ValueError, match="Row 0 has 1 values, expected 2"):
            Result(["a", "b"], ["UInt8", "UInt8"], [[1]], registry=registry)

    def test_repr(self, result: Result) -> None:
        """repr summarizes columns and row count."""
        assert repr(result) == "<Result columns=['id', 'name', 'tags'] rows=3>"


class TestToArrow:
    """Conversion to pyarrow tables."""

    def test_basic_types(self, result: Result) -> None:
        """Column types map to Arrow types."""
        table = result.to_arrow()
        assert table.column_names == ["id", "name", "tags"]
        assert table.schema.field("id").type == pa.uint64()
        assert table.schema.field("name").type == pa.string()
        assert table.schema.field("tags").type == pa.list_(pa.string())
        assert table.column("name").to_pylist() == ["alice", None, "carol"]

    def test_decimal_uuid_enum(self, registry: TypeRegistry) -> None:
        """Decimals keep precision; UUIDs and enums become strings."""
        ident = uuid.uuid4()
        result = Result(
            ["price", "id", "state"],
            ["Decimal(10, 2)", "UUID", "Enum8('on' = 1, 'off' = 0)"],
            [["12.50", str(ident), "on"]],
            registry=registry,
        )
        table = result.to_arrow()
        assert table.schema.field("price").type == pa.decimal128(10, 2)
        assert table.column("price").to_pylist() == [Decimal("12.50")]
        assert table.column("id").to_pylist() == [str(ident)]
        assert table.column("state").to_pylist() == ["on"]

    def test_named_tuple_struct(self, registry: TypeRegistry) -> None:
        """Named tuples become structs with the element names."""
        result = Result(["t"], ["Tuple(a UInt8, b String)"], [[[1, "x"]]], registry=registry)
        table = result.to_arrow()
        assert table.schema.field("t").type == pa.struct([pa.field("a", pa.uint8()), pa.field("b", pa.string())])
        assert table.column("t").to_pylist() == [{"a": 1, "b": "x"}]

    def test_map(self, registry: TypeRegistry) -> None:
        """Maps become Arrow maps."""
        result = Result(["m"], ["Map(String, UInt32)"], [[{"k": 1}]], registry=registry)
        table = result.to_arrow()
        assert table.schema.field("m").type == pa.map_(pa.string(), pa.uint32())
        assert table.column("m").to_pylist() == [[("k", 1)]]
