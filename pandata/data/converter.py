"""
pandata.data.converter
======================

Format registry and the one-shot conversion pipeline.

Public API
----------
• Pandata()                                    - empty registry
• build_pandata() → Pandata                    - registry with csv, tsv, json, parquet, avro
• Pandata.convert(src, dst, src_fmt, dst_fmt)  - read once, write once
• parse_format(explicit, path) → str | None    - explicit name, else file extension

Example
-------

>>> from pandata import build_pandata, parse_format
>>> pandata = build_pandata()
>>> pandata.convert("events.csv", "events.parquet",
...                 parse_format(None, "events.csv"), parse_format(None, "events.parquet"))
"""
from __future__ import annotations

import logging
from os import PathLike
from pathlib import PurePath
from typing import Optional, Union

from .args import Args
from .exceptions import UnknownFormatError
from .formats import AvroFormat, CsvFormat, Format, JsonFormat, ParquetFormat, TsvFormat

__all__ = ["Pandata", "build_pandata", "parse_format"]

logger = logging.getLogger(__name__)

PathType = Union[str, PathLike]


class Pandata:
    """Name → `Format` registry that drives conversions.

    Registration happens up front; lookups during a conversion never mutate
    the registry. Name matching is case-insensitive and also honours each
    format's aliases.
    """

    def __init__(self):
        self._formats: dict[str, Format] = {}
        self._aliases: dict[str, str] = {}

    def add_format(self, format: Format) -> None:
        """Register *format* under its canonical name; the last registration wins."""
        name = format.canonical_name.lower()
        if name in self._formats:
            logger.debug("Replacing format %r (%r -> %r)", name, self._formats[name], format)
            self._aliases = {a: n for a, n in self._aliases.items() if n != name}
        self._formats[name] = format
        for alias in format.aliases:
            self._aliases[alias.lower()] = name

    def get_format(self, name: str, side: Optional[str] = None) -> Format:
        key = name.lower()
        key = key if key in self._formats else self._aliases.get(key, key)
        try:
            return self._formats[key]
        except KeyError:
            raise UnknownFormatError(name, side) from None

    def formats(self) -> list[Format]:
        return [self._formats[name] for name in sorted(self._formats)]

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return key in self._formats or key in self._aliases

    def convert(
        self,
        from_path: PathType,
        to_path: PathType,
        from_format: str,
        to_format: str,
        *,
        read_args: Optional[Args] = None,
        write_args: Optional[Args] = None,
    ) -> None:
        """Convert *from_path* into *to_path*.

        Both format names are resolved before any file is touched. The source
        is read once into a lazy table and the destination writer forces it.
        Errors from either side propagate unchanged; a failed write may leave
        a partial destination file behind.

        Raises:
            UnknownFormatError: If either format name is not registered.
            ReadError: If the source cannot be opened or parsed.
            WriteError: If the destination cannot be written or a value cannot be encoded.
        """
        reader = self.get_format(from_format, side="source")
        writer = self.get_format(to_format, side="destination")
        read_args = read_args if read_args is not None else Args()
        write_args = write_args if write_args is not None else Args()

        for fmt, args, side in ((reader, read_args, "read"), (writer, write_args, "write")):
            ignored = fmt.read_options().unknown(args)
            if ignored:
                logger.warning("Format %r ignores %s options: %s",
                               fmt.canonical_name, side, ", ".join(sorted(ignored)))

        src, dst = str(from_path), str(to_path)
        logger.info("Converting %s (%s) -> %s (%s)", src, reader.canonical_name, dst, writer.canonical_name)
        data = reader.read(src, read_args)
        writer.write(dst, write_args, data)


def build_pandata() -> Pandata:
    """Return a registry holding every built-in format."""
    pandata = Pandata()
    for fmt in (CsvFormat(), JsonFormat(), ParquetFormat(), TsvFormat(), AvroFormat()):
        pandata.add_format(fmt)
    return pandata


def parse_format(format: Optional[str], path: PathType) -> Optional[str]:
    """Pick a format name: *format* when given, else the extension of *path*.

    No case folding happens here; the registry compares names case-insensitively.
    Returns None when there is neither an explicit name nor an extension.
    """
    if format is not None:
        return format
    suffix = PurePath(path).suffix
    return suffix[1:] or None
