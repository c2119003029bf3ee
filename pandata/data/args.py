"""
Option plumbing between callers and format implementations.

`Args` is the multi-valued, read-only bag of ``key -> [values]`` handed to a
format's read or write call. `FormatOptions` is the advisory set of keys a
format declares it understands.
"""
from __future__ import annotations

import re
from typing import Iterable, Iterator, Mapping, Optional, Sequence

# signed base-10, ASCII digits only; no whitespace or underscores
_INT_RE = re.compile(r"[+-]?[0-9]+")


class Args:
    """Ordered, multi-valued named parameters for a single read or write call.

    Every accessor returns ``None`` instead of raising: a missing key, an empty
    value list and an unparsable integer all read as absence.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, Sequence[str]]] = None):
        self._values: dict[str, tuple[str, ...]] = {
            key: tuple(vals) for key, vals in (values or {}).items()
        }

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "Args":
        """Build from ``(key, value)`` pairs, keeping per-key insertion order."""
        grouped: dict[str, list[str]] = {}
        for key, value in pairs:
            grouped.setdefault(key, []).append(value)
        return cls(grouped)

    @classmethod
    def parse(cls, items: Iterable[str]) -> "Args":
        """Build from ``KEY=VALUE`` strings as given on the command line."""
        pairs = []
        for item in items:
            key, sep, value = item.partition("=")
            if not sep or not key:
                raise ValueError(f"Expected KEY=VALUE, got {item!r}")
            pairs.append((key.strip(), value))
        return cls.from_pairs(pairs)

    # ---------- typed accessors ----------

    def get_list(self, key: str) -> Optional[tuple[str, ...]]:
        return self._values.get(key)

    def get_str(self, key: str) -> Optional[str]:
        values = self._values.get(key)
        if not values:
            return None
        return values[0]

    def get_int(self, key: str) -> Optional[int]:
        value = self.get_str(key)
        if value is None:
            return None
        if not _INT_RE.fullmatch(value):
            return None
        number = int(value)
        if not -(1 << 63) <= number < (1 << 63):
            return None
        return number

    def get_char(self, key: str) -> Optional[bytes]:
        """First byte of the value's UTF-8 encoding."""
        value = self.get_str(key)
        if not value:
            return None
        return value.encode("utf-8")[:1]

    # ---------- mapping-ish helpers ----------

    def keys(self) -> list[str]:
        return list(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Args):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        values = {key: list(vals) for key, vals in self._values.items()}
        return f"Args({values!r})"


class FormatOptions:
    """The set of option keys a format declares. Advisory, never enforced."""

    __slots__ = ("_keys",)

    def __init__(self, *keys: str):
        self._keys = frozenset(keys)

    @classmethod
    def from_keys(cls, keys: Iterable[str]) -> "FormatOptions":
        return cls(*keys)

    def unknown(self, args: Args) -> set[str]:
        """Keys carried by *args* that this descriptor does not declare."""
        return {key for key in args if key not in self._keys}

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FormatOptions):
            return NotImplemented
        return self._keys == other._keys

    def __repr__(self) -> str:
        return f"FormatOptions({', '.join(repr(k) for k in sorted(self._keys))})"
