"""
pandata
=======

Convert tabular files between CSV, TSV, JSON lines, Parquet and Avro through one
shared, lazily evaluated PyArrow table.
"""

from .data.args import Args, FormatOptions
from .data.converter import Pandata, build_pandata, parse_format
from .data.formats import Format

__all__ = ["Args", "FormatOptions", "Format", "Pandata", "build_pandata", "parse_format"]
