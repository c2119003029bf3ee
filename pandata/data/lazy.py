"""
The intermediate table handed from a reader to a writer.

A `LazyTable` is a plan, not data: building one only records where the
batches will come from. Nothing is scanned until a writer calls
`to_batches()`, `to_reader()` or `collect()`, so errors hidden in the body of
a source file surface at write time, as `MalformedInputError`.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, Optional

import pyarrow as pa
import pyarrow.dataset as ds

from .exceptions import MalformedInputError, ReadError

logger = logging.getLogger(__name__)

BatchFactory = Callable[[], Iterable[pa.RecordBatch]]


class LazyTable:
    """Deferred, typed, named-column table backed by PyArrow."""

    def __init__(self, schema: pa.Schema, batches: BatchFactory, *, source: Optional[str] = None):
        self._schema = schema
        self._batches = batches
        self.source = source

    @classmethod
    def from_dataset(cls, dataset: ds.Dataset, *, source: Optional[str] = None,
                     use_threads: bool = True) -> "LazyTable":
        # Dataset.to_batches yields in fragment/row order even when decoding uses threads
        return cls(dataset.schema,
                   lambda: dataset.to_batches(use_threads=use_threads),
                   source=source)

    @classmethod
    def from_table(cls, table: pa.Table, *, source: Optional[str] = None) -> "LazyTable":
        return cls(table.schema, table.to_batches, source=source)

    @property
    def schema(self) -> pa.Schema:
        return self._schema

    @property
    def column_names(self) -> list[str]:
        return self._schema.names

    # ---------- execution ----------

    def to_batches(self) -> Iterator[pa.RecordBatch]:
        """Execute the plan, yielding record batches in source order."""
        logger.debug("Materializing %s", self.source or "in-memory table")
        try:
            for batch in self._batches():
                yield batch
        except ReadError:
            raise
        except (pa.ArrowInvalid, pa.ArrowTypeError, ValueError) as exc:
            raise MalformedInputError(
                f"Malformed input in {self.source or 'table'}: {exc}", self.source
            ) from exc

    def to_reader(self) -> pa.RecordBatchReader:
        return pa.RecordBatchReader.from_batches(self._schema, self.to_batches())

    def collect(self) -> pa.Table:
        """Materialize into a single `pyarrow.Table`."""
        return pa.Table.from_batches(list(self.to_batches()), schema=self._schema)

    def __repr__(self) -> str:
        return f"LazyTable(source={self.source!r}, columns={self.column_names!r})"
