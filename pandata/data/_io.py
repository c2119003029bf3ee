"""
Internal codec helpers - kept separate so the public format classes stay thin.

Every reader returns a `LazyTable`; every writer consumes one. Codec and OS
exceptions are translated into the `ReadError` / `WriteError` families here,
always chained to the original so its positional details are kept.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import stat
from decimal import Decimal
from json import JSONDecodeError
from typing import Any, Callable, Dict, Iterator, Optional

import fastavro
from fastavro.schema import SchemaParseException
import pyarrow as pa
import pyarrow.csv as pacsv
import pyarrow.dataset as ds
import pyarrow.json as pajson
import pyarrow.parquet as papq

from .exceptions import (
    DestinationNotWritableError,
    MalformedInputError,
    SourceNotReadableError,
    UnrepresentableValueError,
    WriteError,
)
from .lazy import LazyTable

logger = logging.getLogger(__name__)

CSV_BLOCK_SIZE = 64 * 1024 * 1024  # 64MB keeps type inference to one block for most files
CSV_WRITE_BATCH_SIZE = 1 << 16
CHUNK_SIZE = 10000  # Avro records per record batch
DEFAULT_AVRO_NAME = "pandata"


# --------------------------------------------------------------------------- #
# Shared helpers
# --------------------------------------------------------------------------- #
def _stat_source(path: str) -> os.stat_result:
    """Stat *path*, turning OS failures into `SourceNotReadableError`."""
    try:
        return os.stat(path)
    except OSError as exc:
        raise SourceNotReadableError(
            f"Cannot open {path}: {exc.strerror or exc}", path
        ) from exc


def _is_regular(st: os.stat_result) -> bool:
    # pipes and character devices (/dev/stdin) cannot be rescanned lazily
    return stat.S_ISREG(st.st_mode)


def _open_failed(path: str, exc: OSError) -> DestinationNotWritableError:
    return DestinationNotWritableError(
        f"Cannot write {path}: {exc.strerror or exc}", path
    )


def _find_field(schema: pa.Schema, predicate: Callable[[pa.DataType], bool]) -> Optional[pa.Field]:
    """Return the first (possibly nested) field whose type matches *predicate*."""
    def walk(field: pa.Field) -> Optional[pa.Field]:
        if predicate(field.type):
            return field
        t = field.type
        if pa.types.is_struct(t):
            for i in range(t.num_fields):
                hit = walk(t.field(i))
                if hit is not None:
                    return hit
        elif pa.types.is_list(t) or pa.types.is_large_list(t):
            return walk(t.value_field)
        return None

    for field in schema:
        hit = walk(field)
        if hit is not None:
            return hit
    return None


def _is_nested(pa_type: pa.DataType) -> bool:
    return (
        pa.types.is_list(pa_type)
        or pa.types.is_large_list(pa_type)
        or pa.types.is_struct(pa_type)
        or pa.types.is_map(pa_type)
    )


def _is_binary(pa_type: pa.DataType) -> bool:
    return (
        pa.types.is_binary(pa_type)
        or pa.types.is_large_binary(pa_type)
        or pa.types.is_fixed_size_binary(pa_type)
    )


# --------------------------------------------------------------------------- #
# Delimited text (CSV / TSV)
# --------------------------------------------------------------------------- #
def _csv_options(delimiter: str, quote_char: str):
    parse_options = pacsv.ParseOptions(delimiter=delimiter, quote_char=quote_char)
    # Unquoted empty fields are null, quoted "" stays an empty string
    convert_options = pacsv.ConvertOptions(
        null_values=[""],
        strings_can_be_null=True,
        quoted_strings_can_be_null=False,
    )
    read_options = pacsv.ReadOptions(block_size=CSV_BLOCK_SIZE)
    return parse_options, convert_options, read_options


def read_delimited(path: str, *, delimiter: str, quote_char: str) -> LazyTable:
    st = _stat_source(path)
    parse_options, convert_options, read_options = _csv_options(delimiter, quote_char)
    logger.debug("Reading delimited text %s (delimiter=%r, quote_char=%r)", path, delimiter, quote_char)
    try:
        if not _is_regular(st):
            table = pacsv.read_csv(
                path,
                read_options=read_options,
                parse_options=parse_options,
                convert_options=convert_options,
            )
            return LazyTable.from_table(table, source=path)
        file_format = ds.CsvFileFormat(
            parse_options=parse_options,
            convert_options=convert_options,
            read_options=read_options,
        )
        return LazyTable.from_dataset(ds.dataset(path, format=file_format), source=path)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc}", path) from exc
    except (pa.ArrowInvalid, ValueError) as exc:
        raise MalformedInputError(f"Malformed delimited text in {path}: {exc}", path) from exc


def write_delimited(data: LazyTable, path: str, *, delimiter: str) -> None:
    complex_field = _find_field(data.schema, _is_nested)
    if complex_field is not None:
        raise UnrepresentableValueError(
            f"Column {complex_field.name!r} has type {complex_field.type}, "
            "which cannot be represented in delimited text",
            path, column=complex_field.name, type_=complex_field.type,
        )

    write_options = pacsv.WriteOptions(
        include_header=True,
        batch_size=CSV_WRITE_BATCH_SIZE,
        delimiter=delimiter,
        quoting_style="needed",
    )
    try:
        writer = pacsv.CSVWriter(path, data.schema, write_options=write_options)
    except OSError as exc:
        raise _open_failed(path, exc) from exc

    # one batch at a time, in the order the table yields them
    with writer:
        for batch in data.to_batches():
            try:
                writer.write_batch(batch)
            except (pa.ArrowInvalid, pa.ArrowNotImplementedError) as exc:
                raise UnrepresentableValueError(
                    f"Cannot write {path} as delimited text: {exc}", path
                ) from exc
            except OSError as exc:
                raise _open_failed(path, exc) from exc


# --------------------------------------------------------------------------- #
# Line-delimited JSON
# --------------------------------------------------------------------------- #
def read_json_lines(path: str) -> LazyTable:
    st = _stat_source(path)
    if _is_regular(st) and st.st_size == 0:
        # pyarrow cannot infer a schema from nothing
        return LazyTable.from_table(pa.Table.from_arrays([], names=[]), source=path)
    try:
        if not _is_regular(st):
            return LazyTable.from_table(pajson.read_json(path), source=path)
        file_format = ds.JsonFileFormat(read_options=pajson.ReadOptions(block_size=CSV_BLOCK_SIZE))
        return LazyTable.from_dataset(ds.dataset(path, format=file_format), source=path)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc}", path) from exc
    except (pa.ArrowInvalid, ValueError) as exc:
        raise MalformedInputError(f"Malformed JSON lines in {path}: {exc}", path) from exc


def read_json_array(path: str) -> LazyTable:
    """Read a file holding one top-level JSON array of objects."""
    _stat_source(path)
    try:
        with open(path, "r", encoding="utf-8") as fo:
            records = json.load(fo)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc.strerror or exc}", path) from exc
    except (JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInputError(f"Malformed JSON in {path}: {exc}", path) from exc

    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise MalformedInputError(f"{path} does not hold a JSON array of objects", path)
    try:
        table = pa.Table.from_pylist(records)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as exc:
        raise MalformedInputError(f"Inconsistent records in {path}: {exc}", path) from exc
    return LazyTable.from_table(table, source=path)


def _json_default(value: Any) -> Any:
    if isinstance(value, (_dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, (Decimal, _dt.timedelta)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_json_lines(data: LazyTable, path: str) -> None:
    binary_field = _find_field(data.schema, _is_binary)
    if binary_field is not None:
        raise UnrepresentableValueError(
            f"Column {binary_field.name!r} has binary type {binary_field.type}, "
            "which has no JSON encoding",
            path, column=binary_field.name, type_=binary_field.type,
        )
    try:
        fo = open(path, "w", encoding="utf-8")
    except OSError as exc:
        raise _open_failed(path, exc) from exc

    with fo:
        for batch in data.to_batches():
            for record in batch.to_pylist():
                try:
                    line = json.dumps(record, default=_json_default, ensure_ascii=False)
                except TypeError as exc:
                    raise UnrepresentableValueError(
                        f"Cannot encode record as JSON: {exc}", path
                    ) from exc
                fo.write(line + "\n")


# --------------------------------------------------------------------------- #
# Parquet
# --------------------------------------------------------------------------- #
def read_parquet(path: str) -> LazyTable:
    st = _stat_source(path)
    try:
        if not _is_regular(st):
            return LazyTable.from_table(papq.read_table(path), source=path)
        return LazyTable.from_dataset(ds.dataset(path, format="parquet"), source=path)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc}", path) from exc
    except (pa.ArrowInvalid, ValueError) as exc:
        raise MalformedInputError(f"Invalid Parquet file {path}: {exc}", path) from exc


def write_parquet(data: LazyTable, path: str, *, compression: str = "zstd") -> None:
    # the Parquet encoder wants contiguous columns, not fragmented batches
    table = data.collect().combine_chunks()
    parquet_kwargs = {
        "compression": compression,  # zstd: ~30% smaller + ~1.2x write
        "use_dictionary": True,
        "write_statistics": True,
        "data_page_size": 512 * 1024,
        "version": "2.6",
    }
    try:
        papq.write_table(table, path, **parquet_kwargs)
    except pa.ArrowNotImplementedError as exc:
        raise UnrepresentableValueError(f"Cannot write {path} as Parquet: {exc}", path) from exc
    except OSError as exc:
        raise _open_failed(path, exc) from exc
    except (pa.ArrowInvalid, ValueError) as exc:
        raise WriteError(f"Cannot write {path} as Parquet: {exc}", path) from exc


# --------------------------------------------------------------------------- #
# Avro
# --------------------------------------------------------------------------- #
def read_avro(path: str) -> LazyTable:
    """Parse the Avro header now; stream the records when the table is consumed."""
    st = _stat_source(path)
    try:
        with open(path, "rb") as fo:
            reader = _avro_reader(fo, path)
            if not _is_regular(st):
                # a pipe can only be read once
                return LazyTable.from_table(_avro_records_to_table(reader, path), source=path)
            pa_schema = _avro_schema_of(reader, path)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc.strerror or exc}", path) from exc

    return LazyTable(pa_schema, lambda: _iter_avro_batches(path, pa_schema), source=path)


def _avro_reader(fo, path: str):
    try:
        return fastavro.reader(fo)
    except (ValueError, EOFError, StopIteration) as exc:
        raise MalformedInputError(f"Invalid Avro header in {path}: {exc}", path) from exc


def _avro_schema_of(reader, path: str) -> pa.Schema:
    try:
        return _avro_to_pyarrow_schema(reader.writer_schema)
    except ValueError as exc:
        raise MalformedInputError(f"Unsupported Avro schema in {path}: {exc}", path) from exc


def _avro_records_to_table(reader, path: str) -> pa.Table:
    pa_schema = _avro_schema_of(reader, path)
    batches = list(_avro_batches_from_reader(reader, pa_schema, path))
    return pa.Table.from_batches(batches, schema=pa_schema)


def _iter_avro_batches(path: str, pa_schema: pa.Schema) -> Iterator[pa.RecordBatch]:
    try:
        with open(path, "rb") as fo:
            reader = _avro_reader(fo, path)
            yield from _avro_batches_from_reader(reader, pa_schema, path)
    except OSError as exc:
        raise SourceNotReadableError(f"Cannot open {path}: {exc.strerror or exc}", path) from exc


def _avro_batches_from_reader(reader, pa_schema: pa.Schema, path: str) -> Iterator[pa.RecordBatch]:
    map_fields = [f for f in pa_schema if _find_field(pa.schema([f]), pa.types.is_map) is not None]
    records_chunk = []
    try:
        for record in reader:
            for field in map_fields:
                record[field.name] = _maps_as_pairs(record.get(field.name), field.type)
            records_chunk.append(record)
            if len(records_chunk) == CHUNK_SIZE:
                yield pa.RecordBatch.from_pylist(records_chunk, schema=pa_schema)
                records_chunk = []
        if records_chunk:
            yield pa.RecordBatch.from_pylist(records_chunk, schema=pa_schema)
    except (ValueError, EOFError, TypeError) as exc:
        raise MalformedInputError(f"Invalid Avro data in {path}: {exc}", path) from exc


def _maps_as_pairs(value: Any, pa_type: pa.DataType) -> Any:
    """Turn fastavro's map dicts into the ``(key, value)`` pair lists pyarrow builds maps from."""
    if value is None:
        return None
    if pa.types.is_map(pa_type):
        return [(k, _maps_as_pairs(v, pa_type.item_type)) for k, v in value.items()]
    if pa.types.is_list(pa_type) or pa.types.is_large_list(pa_type):
        return [_maps_as_pairs(v, pa_type.value_type) for v in value]
    if pa.types.is_struct(pa_type):
        return {
            child.name: _maps_as_pairs(value.get(child.name), child.type)
            for child in (pa_type.field(i) for i in range(pa_type.num_fields))
        }
    return value


def write_avro(data: LazyTable, path: str, *, name: str = DEFAULT_AVRO_NAME, codec: str = "null") -> None:
    # Build the schema first: an unrepresentable column fails before the file is touched
    record_name = name or DEFAULT_AVRO_NAME
    avro_schema = {
        "type": "record",
        "name": record_name,
        "fields": [
            {
                "name": field.name,
                "type": _pyarrow_to_avro_type(field.type, f"{record_name}_{field.name}",
                                              column=field.name, path=path),
            }
            for field in data.schema
        ],
    }
    try:
        parsed_schema = fastavro.parse_schema(avro_schema)
    except SchemaParseException as exc:
        raise UnrepresentableValueError(f"Cannot build an Avro schema for {path}: {exc}", path) from exc

    table = _avro_ready(data.collect().combine_chunks())

    # For wide tables (many columns), use smaller batches
    optimal_batch_size = min(1 << 16, max(1000, 1000000 // max(1, len(table.schema))))

    map_fields = [f for f in table.schema if _find_field(pa.schema([f]), pa.types.is_map) is not None]

    def record_generator():
        for batch in table.to_batches(max_chunksize=optimal_batch_size):
            for record in batch.to_pylist():
                for field in map_fields:
                    record[field.name] = _maps_as_dicts(record[field.name], field.type)
                yield record

    try:
        fo = open(path, "wb")
    except OSError as exc:
        raise _open_failed(path, exc) from exc

    with fo:
        try:
            fastavro.writer(fo, parsed_schema, record_generator(), codec=codec)
        except (TypeError, ValueError, OverflowError) as exc:
            raise UnrepresentableValueError(f"Cannot encode {path} as Avro: {exc}", path) from exc
        except OSError as exc:
            raise _open_failed(path, exc) from exc


def _maps_as_dicts(value: Any, pa_type: pa.DataType) -> Any:
    """Turn the ``(key, value)`` pair lists pyarrow yields for maps back into dicts."""
    if value is None:
        return None
    if pa.types.is_map(pa_type):
        return {k: _maps_as_dicts(v, pa_type.item_type) for k, v in value}
    if pa.types.is_list(pa_type) or pa.types.is_large_list(pa_type):
        return [_maps_as_dicts(v, pa_type.value_type) for v in value]
    if pa.types.is_struct(pa_type):
        return {
            child.name: _maps_as_dicts(value.get(child.name), child.type)
            for child in (pa_type.field(i) for i in range(pa_type.num_fields))
        }
    return value


def _avro_ready(table: pa.Table) -> pa.Table:
    """Cast top-level temporal columns to the microsecond values fastavro encodes.

    Naive timestamps are pinned to UTC; fastavro would otherwise read them as local time.
    """
    for i, field in enumerate(table.schema):
        if pa.types.is_timestamp(field.type):
            target = pa.timestamp("us", tz=field.type.tz or "UTC")
        elif pa.types.is_time(field.type):
            target = pa.time64("us")
        else:
            continue
        if field.type != target:
            column = table.column(i).cast(target, safe=False)
            table = table.set_column(i, field.name, column)
    return table


def _pyarrow_to_avro_type(pa_type: pa.DataType, field_path: str = "", *,
                          column: Optional[str] = None, path: Optional[str] = None):
    """Convert a PyArrow type to an Avro type, as a nullable union."""
    if pa.types.is_null(pa_type):
        return "null"
    return ["null", _avro_base_type(pa_type, field_path, column or field_path, path)]


def _avro_base_type(pa_type: pa.DataType, field_path: str, column: str, path: Optional[str]):
    if pa.types.is_boolean(pa_type):
        return "boolean"
    if (pa.types.is_int8(pa_type) or pa.types.is_int16(pa_type) or pa.types.is_int32(pa_type)
            or pa.types.is_uint8(pa_type) or pa.types.is_uint16(pa_type)):
        return "int"
    if pa.types.is_int64(pa_type) or pa.types.is_uint32(pa_type):
        return "long"
    if pa.types.is_float32(pa_type):
        return "float"
    if pa.types.is_float64(pa_type):
        return "double"
    if pa.types.is_string(pa_type) or pa.types.is_large_string(pa_type):
        return "string"
    if _is_binary(pa_type):
        return "bytes"
    if pa.types.is_date(pa_type):
        return {"type": "int", "logicalType": "date"}
    if pa.types.is_timestamp(pa_type):
        return {"type": "long", "logicalType": "timestamp-micros"}
    if pa.types.is_time(pa_type):
        return {"type": "long", "logicalType": "time-micros"}
    if pa.types.is_decimal128(pa_type):
        return {
            "type": "bytes",
            "logicalType": "decimal",
            "precision": pa_type.precision,
            "scale": pa_type.scale,
        }
    if pa.types.is_list(pa_type) or pa.types.is_large_list(pa_type):
        return {
            "type": "array",
            "items": _pyarrow_to_avro_type(pa_type.value_type, field_path + "_item",
                                           column=column, path=path),
        }
    if pa.types.is_map(pa_type) and (pa.types.is_string(pa_type.key_type)
                                     or pa.types.is_large_string(pa_type.key_type)):
        return {
            "type": "map",
            "values": _pyarrow_to_avro_type(pa_type.item_type, field_path + "_value",
                                            column=column, path=path),
        }
    if pa.types.is_struct(pa_type):
        fields = []
        for i in range(pa_type.num_fields):
            child = pa_type.field(i)
            nested_path = f"{field_path}_{child.name}"
            fields.append({
                "name": child.name,
                "type": _pyarrow_to_avro_type(child.type, nested_path, column=column, path=path),
            })
        # field_path carries the top-level record name, so nested names never collide with it
        return {"type": "record", "name": field_path or "record", "fields": fields}

    raise UnrepresentableValueError(
        f"Column {column!r} has type {pa_type}, which has no Avro encoding",
        path, column=column, type_=pa_type,
    )


def _avro_to_pyarrow_schema(avro_schema: Dict) -> pa.Schema:
    """Convert Avro schema (dict) to PyArrow schema."""
    if not isinstance(avro_schema, dict) or avro_schema.get("type") != "record" or "fields" not in avro_schema:
        raise ValueError("Avro schema must be a record type with fields")
    return pa.schema([_avro_field_to_pyarrow(field) for field in avro_schema["fields"]])


def _avro_type_to_pyarrow(avro_type: Any) -> pa.DataType:
    """Convert a single Avro type definition to a PyArrow DataType."""
    # Handle union types (often ["null", type])
    if isinstance(avro_type, list):
        non_null_types = [t for t in avro_type if t != "null"]
        if len(non_null_types) == 1:
            return _avro_type_to_pyarrow(non_null_types[0])
        if not non_null_types:
            return pa.null()
        logger.warning("Avro union with multiple non-null types %s not fully supported. Defaulting to string.",
                       non_null_types)
        return pa.string()

    if isinstance(avro_type, dict) and "logicalType" in avro_type:
        logical_type = avro_type.get("logicalType")
        base_type = avro_type.get("type")
        if logical_type == "date" and base_type == "int":
            return pa.date32()
        if logical_type == "timestamp-micros" and base_type == "long":
            return pa.timestamp("us", tz="UTC")
        if logical_type == "timestamp-millis" and base_type == "long":
            return pa.timestamp("ms", tz="UTC")
        if logical_type == "time-micros" and base_type == "long":
            return pa.time64("us")
        if logical_type == "time-millis" and base_type == "int":
            return pa.time32("ms")
        if logical_type == "decimal" and base_type in ("bytes", "fixed"):
            precision = avro_type.get("precision")
            scale = avro_type.get("scale", 0)
            if precision is not None:
                return pa.decimal128(precision, scale)
        # Fallback to the base physical type if logical type is unknown/unhandled
        if isinstance(base_type, str) and base_type in ("record", "array", "map", "enum", "fixed"):
            return _avro_type_to_pyarrow({k: v for k, v in avro_type.items() if k != "logicalType"})
        return _avro_type_to_pyarrow(base_type)

    if isinstance(avro_type, dict):
        kind = avro_type.get("type")
        if kind == "record":
            return pa.struct([_avro_field_to_pyarrow(f) for f in avro_type.get("fields", [])])
        if kind == "array":
            return pa.list_(_avro_type_to_pyarrow(avro_type.get("items")))
        if kind == "map":
            return pa.map_(pa.string(), _avro_type_to_pyarrow(avro_type.get("values")))
        if kind == "enum":
            return pa.string()
        if kind == "fixed":
            return pa.binary()
        return _avro_type_to_pyarrow(kind)

    primitives = {
        "null": pa.null(),
        "boolean": pa.bool_(),
        "int": pa.int32(),
        "long": pa.int64(),
        "float": pa.float32(),
        "double": pa.float64(),
        "bytes": pa.binary(),
        "string": pa.string(),
    }
    if isinstance(avro_type, str) and avro_type in primitives:
        return primitives[avro_type]

    logger.warning("Unsupported Avro type %r. Defaulting to string.", avro_type)
    return pa.string()


def _avro_field_to_pyarrow(avro_field: Dict) -> pa.Field:
    """Convert an Avro field definition to a PyArrow Field."""
    field_type = avro_field["type"]
    nullable = field_type == "null" or (isinstance(field_type, list) and "null" in field_type)
    return pa.field(avro_field["name"], _avro_type_to_pyarrow(field_type), nullable=nullable)
