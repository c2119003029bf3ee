# -*- coding: utf-8 -*-
"""Unit tests for the format implementations and their codec helpers."""

import datetime as _dt
import json
from pathlib import Path

import fastavro
import pandas as pd
import pyarrow as pa
import pyarrow.csv as pacsv
import pyarrow.parquet as papq
import pytest

from pandata.data._io import _pyarrow_to_avro_type, _avro_to_pyarrow_schema
from pandata.data.args import Args
from pandata.data.exceptions import (
    DestinationNotWritableError,
    MalformedInputError,
    SourceNotReadableError,
    UnrepresentableValueError,
)
from pandata.data.formats import AvroFormat, CsvFormat, JsonFormat, ParquetFormat, TsvFormat
from pandata.data.lazy import LazyTable

ALL_FORMATS = [CsvFormat(), TsvFormat(), JsonFormat(), ParquetFormat(), AvroFormat()]

# --- Fixtures --- #

@pytest.fixture
def sample_df():
    """Provides a sample Pandas DataFrame for testing."""
    return pd.DataFrame({
        'col_int': pd.Series([1, 2, None, 4], dtype=pd.Int64Dtype()),
        'col_float': [1.1, 2.2, 3.3, None],
        'col_str': ['a', None, 'c', 'd'],
        'col_bool': pd.Series([True, False, True, None], dtype=pd.BooleanDtype()),
    })


@pytest.fixture
def sample_table(sample_df):
    """Provides a sample PyArrow Table derived from the DataFrame."""
    return pa.Table.from_pandas(sample_df, preserve_index=False)


@pytest.fixture
def empty_table():
    """Provides an empty PyArrow Table with a defined schema."""
    schema = pa.schema([
        pa.field('id', pa.int64()),
        pa.field('value', pa.string())
    ])
    empty_arrays = [pa.array([], type=field.type) for field in schema]
    return pa.Table.from_arrays(empty_arrays, schema=schema)


# --- Helper Functions --- #

def write(fmt, table: pa.Table, path: Path, args: Args = None):
    fmt.write(str(path), args or Args(), LazyTable.from_table(table))


def read(fmt, path: Path, args: Args = None) -> pa.Table:
    return fmt.read(str(path), args or Args()).collect()


def assert_table_equal_pandas(table1: pa.Table, table2: pa.Table):
    """Asserts two tables are equal using Pandas conversion for robustness."""
    df1 = table1.to_pandas(types_mapper=pd.ArrowDtype)
    df2 = table2.to_pandas(types_mapper=pd.ArrowDtype)
    pd.testing.assert_frame_equal(df1.sort_index(axis=1), df2.sort_index(axis=1), check_dtype=True)


# --- Round trips per format --- #

@pytest.mark.parametrize("fmt", ALL_FORMATS, ids=lambda f: f.canonical_name)
def test_write_then_read(tmp_path, sample_table, fmt):
    """Each format reads back what it wrote, nulls included."""
    file_path = tmp_path / f"sample.{fmt.canonical_name}"
    write(fmt, sample_table, file_path)
    assert_table_equal_pandas(sample_table, read(fmt, file_path))


@pytest.mark.parametrize("fmt", [CsvFormat(), ParquetFormat(), AvroFormat()], ids=lambda f: f.canonical_name)
def test_write_empty_table(tmp_path, empty_table, fmt):
    file_path = tmp_path / f"empty.{fmt.canonical_name}"
    write(fmt, empty_table, file_path)

    read_back = read(fmt, file_path)
    assert read_back.num_rows == 0
    assert read_back.schema.names == empty_table.schema.names


def test_read_empty_json(tmp_path):
    file_path = tmp_path / "empty.json"
    file_path.touch()
    assert read(JsonFormat(), file_path).num_rows == 0


# --- Delimited text --- #

def test_read_csv_written_by_pyarrow(tmp_path, sample_table):
    file_path = tmp_path / "pyarrow.csv"
    pacsv.write_csv(sample_table, file_path)
    read_back = read(CsvFormat(), file_path)
    assert read_back.schema.equals(sample_table.schema, check_metadata=False)


def test_separator_override_roundtrip(tmp_path):
    table = pa.table({"id": [1, 2], "text": ["a, b and c", "plain"]})
    file_path = tmp_path / "semi.csv"
    args = Args({"separator": [";"]})

    write(CsvFormat(), table, file_path, args)
    assert ";" in file_path.read_text().splitlines()[0]

    read_back = read(CsvFormat(), file_path, args)
    assert read_back.column("text").to_pylist() == ["a, b and c", "plain"]


def test_embedded_comma_roundtrip_with_default_quoting(tmp_path):
    table = pa.table({"text": ["comma, value", 'quote "here"', "utf8 café"]})
    file_path = tmp_path / "default.csv"
    write(CsvFormat(), table, file_path)
    assert read(CsvFormat(), file_path).equals(table)


def test_quote_char_override_on_read(tmp_path):
    file_path = tmp_path / "single.csv"
    file_path.write_text("id,text\n1,'a,b'\n2,'c'\n")
    read_back = read(CsvFormat(), file_path, Args({"quote-char": ["'"]}))
    assert read_back.column("text").to_pylist() == ["a,b", "c"]


def test_tsv_defaults_to_tab(tmp_path):
    table = pa.table({"a": [1, 2], "b": ["x,y", "z"]})
    file_path = tmp_path / "data.tsv"
    write(TsvFormat(), table, file_path)
    assert file_path.read_text().splitlines()[0].count("\t") == 1
    assert read(TsvFormat(), file_path).equals(table)


def test_tsv_separator_override_on_read(tmp_path):
    file_path = tmp_path / "data.tsv"
    file_path.write_text("a|b\n1|x\n")
    read_back = read(TsvFormat(), file_path, Args({"separator": ["|"]}))
    assert read_back.column_names == ["a", "b"]


def test_csv_empty_field_is_null_and_quoted_empty_is_string(tmp_path):
    src = tmp_path / "nulls.csv"
    src.write_text('id,name\n1,\n2,""\n3,x\n')
    dst = tmp_path / "nulls.parquet"

    ParquetFormat().write(str(dst), Args(), CsvFormat().read(str(src), Args()))

    names = papq.read_table(dst).column("name").to_pylist()
    assert names == [None, "", "x"]


def test_csv_preserves_row_order(tmp_path):
    table = pa.table({"id": pa.array(range(100_000), type=pa.int64())})
    src = tmp_path / "ordered.csv"
    write(CsvFormat(), table, src)
    dst = tmp_path / "ordered.tsv"
    TsvFormat().write(str(dst), Args(), CsvFormat().read(str(src), Args()))
    assert read(TsvFormat(), dst).column("id").to_pylist() == list(range(100_000))


def test_csv_rejects_nested_columns_before_creating_file(tmp_path):
    table = pa.table({"tags": pa.array([["a"], ["b", "c"]])})
    file_path = tmp_path / "nested.csv"
    with pytest.raises(UnrepresentableValueError) as excinfo:
        write(CsvFormat(), table, file_path)
    assert excinfo.value.column == "tags"
    assert not file_path.exists()


def test_csv_rejects_binary_that_is_not_utf8(tmp_path):
    table = pa.table({"b": pa.array([b"\xff\xfe"], type=pa.binary())})
    with pytest.raises(UnrepresentableValueError):
        write(CsvFormat(), table, tmp_path / "raw.csv")


def test_csv_writes_utf8_binary_as_text(tmp_path):
    table = pa.table({"b": pa.array([b"hello"], type=pa.binary())})
    file_path = tmp_path / "text.csv"
    write(CsvFormat(), table, file_path)
    assert read(CsvFormat(), file_path).column("b").to_pylist() == ["hello"]


def test_malformed_csv_row(tmp_path):
    file_path = tmp_path / "bad.csv"
    file_path.write_text("a,b\n1,2\n3,4,5\n")
    with pytest.raises(MalformedInputError):
        read(CsvFormat(), file_path)


# --- JSON --- #

def test_json_writes_one_record_per_line(tmp_path):
    table = pa.table({"id": [1, 2], "name": ["a", None]})
    file_path = tmp_path / "out.json"
    write(JsonFormat(), table, file_path)
    lines = file_path.read_text().splitlines()
    assert [json.loads(line) for line in lines] == [{"id": 1, "name": "a"}, {"id": 2, "name": None}]


def test_json_array_read_option(tmp_path):
    file_path = tmp_path / "array.json"
    file_path.write_text(json.dumps([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]))
    read_back = read(JsonFormat(), file_path, Args({"json-format": ["array"]}))
    assert read_back.column("name").to_pylist() == ["a", "b"]


def test_json_array_rejects_non_array(tmp_path):
    file_path = tmp_path / "object.json"
    file_path.write_text('{"id": 1}')
    with pytest.raises(MalformedInputError):
        read(JsonFormat(), file_path, Args({"json-format": ["array"]}))


def test_json_writes_dates_as_iso_strings(tmp_path):
    table = pa.table({"day": pa.array([_dt.date(2024, 1, 2)], type=pa.date32())})
    file_path = tmp_path / "dates.json"
    write(JsonFormat(), table, file_path)
    assert json.loads(file_path.read_text()) == {"day": "2024-01-02"}


def test_json_rejects_binary_columns(tmp_path):
    table = pa.table({"blob": pa.array([b"\x00\x01"], type=pa.binary())})
    with pytest.raises(UnrepresentableValueError) as excinfo:
        write(JsonFormat(), table, tmp_path / "blob.json")
    assert excinfo.value.column == "blob"


def test_malformed_json_lines(tmp_path):
    file_path = tmp_path / "bad.json"
    file_path.write_text('{"a": 1}\n{"a": \n')
    with pytest.raises(MalformedInputError):
        read(JsonFormat(), file_path)


# --- Parquet --- #

def test_parquet_compression_option(tmp_path, sample_table):
    file_path = tmp_path / "snappy.parquet"
    write(ParquetFormat(), sample_table, file_path, Args({"compression": ["snappy"]}))
    metadata = papq.ParquetFile(file_path).metadata
    assert metadata.row_group(0).column(0).compression == "SNAPPY"


def test_parquet_defaults_to_zstd(tmp_path, sample_table):
    file_path = tmp_path / "zstd.parquet"
    write(ParquetFormat(), sample_table, file_path)
    metadata = papq.ParquetFile(file_path).metadata
    assert metadata.row_group(0).column(0).compression == "ZSTD"


def test_invalid_parquet_file(tmp_path):
    file_path = tmp_path / "bad.parquet"
    file_path.write_bytes(b"this is not parquet")
    with pytest.raises(MalformedInputError):
        read(ParquetFormat(), file_path)


# --- Avro --- #

def test_avro_default_record_name(tmp_path, sample_table):
    file_path = tmp_path / "named.avro"
    write(AvroFormat(), sample_table, file_path)
    with open(file_path, "rb") as fo:
        assert fastavro.reader(fo).writer_schema["name"] == "pandata"


@pytest.mark.parametrize("name,expected", [("events", "events"), ("", "pandata")])
def test_avro_name_option(tmp_path, sample_table, name, expected):
    file_path = tmp_path / "named.avro"
    write(AvroFormat(), sample_table, file_path, Args({"name": [name]}))
    with open(file_path, "rb") as fo:
        assert fastavro.reader(fo).writer_schema["name"] == expected


def test_avro_codec_option(tmp_path, sample_table):
    file_path = tmp_path / "deflate.avro"
    write(AvroFormat(), sample_table, file_path, Args({"codec": ["deflate"]}))
    with open(file_path, "rb") as fo:
        assert fo.read(4) == b"Obj\x01"
    assert_table_equal_pandas(sample_table, read(AvroFormat(), file_path))


def test_avro_timestamps_and_dates(tmp_path):
    stamps = [_dt.datetime(2024, 1, 2, 3, 4, 5), None]
    days = [_dt.date(1999, 12, 31), _dt.date(2020, 2, 29)]
    table = pa.table({
        "ts": pa.array(stamps, type=pa.timestamp("us")),
        "day": pa.array(days, type=pa.date32()),
    })
    file_path = tmp_path / "temporal.avro"
    write(AvroFormat(), table, file_path)

    read_back = read(AvroFormat(), file_path)
    assert read_back.schema.field("ts").type == pa.timestamp("us", tz="UTC")
    got = [v.replace(tzinfo=None) if v else None for v in read_back.column("ts").to_pylist()]
    assert got == stamps
    assert read_back.column("day").to_pylist() == days


def test_avro_rejects_unsupported_type(tmp_path):
    table = pa.table({"span": pa.array([_dt.timedelta(seconds=1)], type=pa.duration("s"))})
    file_path = tmp_path / "span.avro"
    with pytest.raises(UnrepresentableValueError) as excinfo:
        write(AvroFormat(), table, file_path)
    assert excinfo.value.column == "span"
    assert not file_path.exists()


def test_avro_map_fields_survive_avro_to_avro(tmp_path):
    schema = {
        "type": "record",
        "name": "source",
        "fields": [
            {"name": "m", "type": {"type": "map", "values": "long"}},
            {"name": "tags", "type": {"type": "array", "items": {"type": "map", "values": "string"}}},
        ],
    }
    records = [
        {"m": {"a": 1, "b": 2}, "tags": [{"k": "v"}]},
        {"m": {}, "tags": []},
    ]
    src = tmp_path / "maps.avro"
    with open(src, "wb") as fo:
        fastavro.writer(fo, fastavro.parse_schema(schema), records)

    dst = tmp_path / "copy.avro"
    AvroFormat().write(str(dst), Args(), AvroFormat().read(str(src), Args()))

    with open(dst, "rb") as fo:
        assert list(fastavro.reader(fo)) == records
    read_back = read(AvroFormat(), dst)
    assert pa.types.is_map(read_back.schema.field("m").type)
    assert read_back.column("m").to_pylist() == [[("a", 1), ("b", 2)], []]


def test_avro_struct_named_like_the_record(tmp_path):
    table = pa.table({
        "pandata": pa.array([{"x": 1, "inner": {"y": "a"}}, None]),
        "x": pa.array([10, 20]),
    })
    file_path = tmp_path / "clash.avro"
    write(AvroFormat(), table, file_path)
    assert read(AvroFormat(), file_path).to_pylist() == table.to_pylist()


def test_invalid_avro_header(tmp_path):
    file_path = tmp_path / "bad.avro"
    file_path.write_bytes(b"definitely not avro")
    with pytest.raises(MalformedInputError):
        AvroFormat().read(str(file_path), Args())


def test_pyarrow_to_avro_type_basic():
    assert _pyarrow_to_avro_type(pa.int64()) == ["null", "long"]
    assert _pyarrow_to_avro_type(pa.int32()) == ["null", "int"]
    assert _pyarrow_to_avro_type(pa.string()) == ["null", "string"]
    assert _pyarrow_to_avro_type(pa.float64()) == ["null", "double"]
    assert _pyarrow_to_avro_type(pa.bool_()) == ["null", "boolean"]
    assert _pyarrow_to_avro_type(pa.null()) == "null"
    assert _pyarrow_to_avro_type(pa.date32()) == ["null", {"type": "int", "logicalType": "date"}]


def test_avro_to_pyarrow_schema_requires_record():
    with pytest.raises(ValueError, match="record"):
        _avro_to_pyarrow_schema({"type": "array", "items": "long"})


def test_avro_to_pyarrow_schema_nullability():
    schema = _avro_to_pyarrow_schema({
        "type": "record",
        "name": "r",
        "fields": [
            {"name": "a", "type": "long"},
            {"name": "b", "type": ["null", "string"]},
        ],
    })
    assert schema.field("a").type == pa.int64() and not schema.field("a").nullable
    assert schema.field("b").type == pa.string() and schema.field("b").nullable


# --- Errors shared by every format --- #

@pytest.mark.parametrize("fmt", ALL_FORMATS, ids=lambda f: f.canonical_name)
def test_missing_source(tmp_path, fmt):
    with pytest.raises(SourceNotReadableError) as excinfo:
        fmt.read(str(tmp_path / f"missing.{fmt.canonical_name}"), Args())
    assert "missing" in str(excinfo.value)


@pytest.mark.parametrize("fmt", ALL_FORMATS, ids=lambda f: f.canonical_name)
def test_unwritable_destination(tmp_path, sample_table, fmt):
    file_path = tmp_path / "no-such-dir" / f"out.{fmt.canonical_name}"
    with pytest.raises(DestinationNotWritableError):
        write(fmt, sample_table, file_path)


@pytest.mark.parametrize("fmt", ALL_FORMATS, ids=lambda f: f.canonical_name)
def test_read_does_not_touch_source(tmp_path, sample_table, fmt):
    file_path = tmp_path / f"keep.{fmt.canonical_name}"
    write(fmt, sample_table, file_path)
    before = file_path.read_bytes()
    read(fmt, file_path)
    assert file_path.read_bytes() == before


def test_read_options_are_declared():
    assert set(CsvFormat().read_options()) == {"separator", "quote-char"}
    assert set(TsvFormat().read_options()) == {"separator", "quote-char"}
    assert set(JsonFormat().read_options()) == {"json-format"}
    assert set(ParquetFormat().read_options()) == {"compression"}
    assert set(AvroFormat().read_options()) == {"name", "codec"}
