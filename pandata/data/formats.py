"""
Format definitions for pandata data handling.

A `Format` turns a file into a `LazyTable` and a `LazyTable` back into a file.
Implementations are stateless: every call opens, uses and closes its own
file handles, so one instance can serve concurrent conversions.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from . import _io as _io
from .args import Args, FormatOptions
from .lazy import LazyTable

logger = logging.getLogger(__name__)

__all__ = ["Format", "CsvFormat", "TsvFormat", "JsonFormat", "ParquetFormat", "AvroFormat"]


class Format(ABC):
    """Capability every pluggable encoding implements."""

    #: extra names (usually file extensions) that resolve to this format
    aliases: tuple[str, ...] = ()

    @property
    @abstractmethod
    def canonical_name(self) -> str:
        """Lowercase registry key, also the default file extension."""

    def read_options(self) -> FormatOptions:
        """Option keys this format's reader and writer understand."""
        return FormatOptions()

    @abstractmethod
    def read(self, path: str, args: Args) -> LazyTable:
        """Open *path* and return a lazy table. Unrecognized keys in *args* are ignored."""

    @abstractmethod
    def write(self, path: str, args: Args, data: LazyTable) -> None:
        """Create or truncate *path* and serialize *data* into it."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _char(args: Args, key: str, default: str) -> str:
    value = args.get_char(key)
    if value is None:
        return default
    # one byte in, one character out; latin-1 maps bytes 0-255 one to one
    return value.decode("latin-1")


class _DelimitedFormat(Format):
    default_separator = ","

    def read_options(self) -> FormatOptions:
        return FormatOptions.from_keys(["separator", "quote-char"])

    def read(self, path: str, args: Args) -> LazyTable:
        return _io.read_delimited(
            path,
            delimiter=_char(args, "separator", self.default_separator),
            quote_char=_char(args, "quote-char", '"'),
        )

    def write(self, path: str, args: Args, data: LazyTable) -> None:
        _io.write_delimited(data, path, delimiter=_char(args, "separator", self.default_separator))


class CsvFormat(_DelimitedFormat):
    canonical_name = "csv"


class TsvFormat(_DelimitedFormat):
    canonical_name = "tsv"
    default_separator = "\t"


class JsonFormat(Format):
    """Line-delimited JSON: one object per line."""

    canonical_name = "json"
    aliases = ("jsonl", "ndjson")

    def read_options(self) -> FormatOptions:
        return FormatOptions("json-format")

    def read(self, path: str, args: Args) -> LazyTable:
        json_format = (args.get_str("json-format") or "lines").lower()
        if json_format == "array":
            return _io.read_json_array(path)
        if json_format != "lines":
            logger.warning("Unknown json-format %r, reading %s as JSON lines", json_format, path)
        return _io.read_json_lines(path)

    def write(self, path: str, args: Args, data: LazyTable) -> None:
        _io.write_json_lines(data, path)


class ParquetFormat(Format):
    canonical_name = "parquet"
    aliases = ("pq",)

    def read_options(self) -> FormatOptions:
        return FormatOptions("compression")

    def read(self, path: str, args: Args) -> LazyTable:
        return _io.read_parquet(path)

    def write(self, path: str, args: Args, data: LazyTable) -> None:
        _io.write_parquet(data, path, compression=args.get_str("compression") or "zstd")


class AvroFormat(Format):
    canonical_name = "avro"

    def read_options(self) -> FormatOptions:
        return FormatOptions("name", "codec")

    def read(self, path: str, args: Args) -> LazyTable:
        return _io.read_avro(path)

    def write(self, path: str, args: Args, data: LazyTable) -> None:
        _io.write_avro(
            data,
            path,
            name=args.get_str("name") or _io.DEFAULT_AVRO_NAME,
            codec=args.get_str("codec") or "null",
        )
