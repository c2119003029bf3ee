"""
exceptions.py  ── Custom exceptions for the pandata.data module
"""
from __future__ import annotations

from typing import Optional


class PandataError(RuntimeError):
    """Base class for every error raised by a conversion."""


class UnknownFormatError(PandataError):
    """Raised when a format name has no registered implementation."""

    def __init__(self, name: str, side: Optional[str] = None):
        self.name = name
        self.side = side
        if side == "source":
            message = f"No reader for format: {name}"
        elif side == "destination":
            message = f"No writer for format: {name}"
        else:
            message = f"No such format: {name}"
        super().__init__(message)


class ResolutionError(PandataError):
    """Raised when neither an explicit format nor a usable file extension is available."""


class ReadError(PandataError):
    """Raised when a source file cannot be turned into a table."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class SourceNotReadableError(ReadError):
    """The source path cannot be opened."""


class MalformedInputError(ReadError):
    """The source bytes do not follow the format's grammar."""


class WriteError(PandataError):
    """Raised when a table cannot be written to the destination."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class DestinationNotWritableError(WriteError):
    """The destination path cannot be created or written."""


class UnrepresentableValueError(WriteError):
    """The destination format has no encoding for a column's type."""

    def __init__(self, message: str, path: Optional[str] = None, *,
                 column: Optional[str] = None, type_: Optional[object] = None):
        self.column = column
        self.type = type_
        super().__init__(message, path)
