"""Header model.

A :class:`HeaderSet` is a read-only mapping from field name to a scalar
:data:`HeaderValue`. It represents both the *reference* header (the frame being
reduced) and each *candidate* (an indexed calibration frame).

Canonical text
--------------
String comparison (``eq``) works on a canonical textual form so that values
arriving as text and values arriving as numbers compare the same way:

* ``str``  -> as-is
* ``bool`` -> ``T`` / ``F`` (FITS convention)
* ``int``  -> decimal
* ``float`` -> 15 significant digits (``10.0`` -> ``"10"``, ``0.1`` -> ``"0.1"``)

Numeric comparison parses the canonical text with :func:`float`.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Iterator, Mapping, Union

from calindex.errors import MissingField, NotNumeric


HeaderValue = Union[str, int, float]
HeaderLike = Mapping[str, Any]


def format_value(value: Any) -> str:
    """Return the canonical textual form of a header value."""

    if isinstance(value, bool):
        return "T" if value else "F"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format(value, ".15g")
    return str(value)


def parse_number(value: Any, *, field: str | None = None) -> float:
    """Parse a header value as a float.

    Raises
    ------
    NotNumeric
        If the value (or its canonical text) is not a finite-or-infinite
        number. ``NaN`` is rejected because it never compares equal.
    """

    if isinstance(value, bool):
        raise NotNumeric(value, field=field)
    if isinstance(value, (int, float)):
        out = float(value)
    else:
        try:
            out = float(str(value).strip())
        except ValueError:
            raise NotNumeric(value, field=field) from None
    if math.isnan(out):
        raise NotNumeric(value, field=field)
    return out


def coerce_value(text: str) -> HeaderValue:
    """Turn raw text into int, float or str (in that order of preference)."""

    s = str(text).strip()
    try:
        return int(s)
    except ValueError:
        pass
    try:
        f = float(s)
    except ValueError:
        return str(text)
    if math.isnan(f):
        return str(text)
    return f


class HeaderSet(Mapping[str, HeaderValue]):
    """Immutable mapping of header fields.

    ``side`` names the role of the header (``reference`` or ``candidate``) and
    is attached to :class:`MissingField` errors raised by lookups.
    """

    __slots__ = ("_data", "side")

    def __init__(self, data: HeaderLike | Iterable[tuple[str, Any]] | None = None, *, side: str = "candidate"):
        items = dict(data or {})
        for k, v in items.items():
            if not isinstance(k, str):
                raise TypeError(f"Header field names must be str, got {type(k).__name__}")
            if v is None:
                raise TypeError(f"Header field {k!r} has no value")
        self._data: dict[str, HeaderValue] = items
        self.side = side

    @classmethod
    def coerce(cls, header: "HeaderSet | HeaderLike", *, side: str = "candidate") -> "HeaderSet":
        """Return ``header`` as a HeaderSet tagged with ``side``.

        ``None`` values in plain mappings are dropped (treated as absent).
        """

        if isinstance(header, HeaderSet):
            if header.side == side:
                return header
            return cls(header._data, side=side)
        return cls({str(k): v for k, v in header.items() if v is not None}, side=side)

    @classmethod
    def from_pairs(cls, pairs: Iterable[str], *, side: str = "reference") -> "HeaderSet":
        """Build a header from ``KEY=VALUE`` strings (values are coerced)."""

        data: dict[str, HeaderValue] = {}
        for item in pairs:
            key, sep, raw = str(item).partition("=")
            key = key.strip()
            if not sep or not key:
                raise ValueError(f"Expected KEY=VALUE, got {item!r}")
            data[key] = coerce_value(raw)
        return cls(data, side=side)

    # Mapping protocol
    def __getitem__(self, key: str) -> HeaderValue:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"HeaderSet({self._data!r}, side={self.side!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HeaderSet):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    # Typed lookups
    def value(self, name: str) -> HeaderValue:
        try:
            return self._data[name]
        except KeyError:
            raise MissingField(name, side=self.side) from None

    def text(self, name: str) -> str:
        return format_value(self.value(name))

    def number(self, name: str) -> float:
        return parse_number(self.value(name), field=name)

    def project(self, names: Iterable[str]) -> "HeaderSet":
        """Return a header restricted to ``names`` (all must be present)."""

        return HeaderSet({n: self.value(n) for n in names}, side=self.side)

    def to_dict(self) -> dict[str, HeaderValue]:
        return dict(self._data)
