"""
pandata.data
============

Format registry, format implementations and the intermediate table.
"""

from .args import Args, FormatOptions
from .converter import Pandata, build_pandata, parse_format
from .exceptions import (
    DestinationNotWritableError,
    MalformedInputError,
    PandataError,
    ReadError,
    ResolutionError,
    SourceNotReadableError,
    UnknownFormatError,
    UnrepresentableValueError,
    WriteError,
)
from .formats import AvroFormat, CsvFormat, Format, JsonFormat, ParquetFormat, TsvFormat
from .lazy import LazyTable

__all__ = [
    "Args", "FormatOptions", "Format", "LazyTable",
    "CsvFormat", "TsvFormat", "JsonFormat", "ParquetFormat", "AvroFormat",
    "Pandata", "build_pandata", "parse_format",
    "PandataError", "UnknownFormatError", "ResolutionError",
    "ReadError", "SourceNotReadableError", "MalformedInputError",
    "WriteError", "DestinationNotWritableError", "UnrepresentableValueError",
]
