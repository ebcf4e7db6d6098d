"""Index records and the record arena.

An :class:`IndexRecord` is one processed calibration frame: its name (the
identifier handed back to the pipeline, usually a file name), its projected
header, an insertion sequence number and its ``ORACTIME`` timestamp.

Records are owned by a :class:`RecordArena` and addressed by sequence number;
:class:`~calindex.index.catalogue.CalibrationIndex` objects hold only those
integer handles, so filtering the same history repeatedly never copies header
data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from calindex.errors import InvalidRecord, NotNumeric
from calindex.headers import HeaderLike, HeaderSet, parse_number


TIME_KEY = "ORACTIME"


def record_time(header: HeaderSet | Mapping[str, Any]) -> float:
    """Return the numeric ``ORACTIME`` of a header or raise InvalidRecord."""

    if TIME_KEY not in header:
        raise InvalidRecord(f"index records need a {TIME_KEY} field")
    try:
        return parse_number(header[TIME_KEY], field=TIME_KEY)
    except NotNumeric as e:
        raise InvalidRecord(f"{TIME_KEY} is not numeric: {header[TIME_KEY]!r}") from e


@dataclass(frozen=True)
class IndexRecord:
    """One indexed calibration frame (immutable)."""

    name: str
    header: HeaderSet
    seq: int
    oractime: float

    @classmethod
    def build(cls, name: str, header: HeaderSet | HeaderLike, seq: int) -> "IndexRecord":
        name = str(name).strip()
        if not name or any(c.isspace() for c in name):
            raise InvalidRecord(f"invalid record name {name!r}")
        if name.startswith("#"):
            raise InvalidRecord(f"record name {name!r} would read back as a comment line")
        h = HeaderSet.coerce(header, side="candidate")
        return cls(name=name, header=h, seq=int(seq), oractime=record_time(h))

    def __getitem__(self, key: str):
        return self.header[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.header.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "seq": self.seq, "header": self.header.to_dict()}


class RecordArena:
    """Append-only owner of index records, addressed by sequence number."""

    def __init__(self) -> None:
        self._records: list[IndexRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[IndexRecord]:
        return iter(self._records)

    def __getitem__(self, seq: int) -> IndexRecord:
        if seq < 0:
            raise IndexError(seq)
        return self._records[seq]

    @property
    def next_seq(self) -> int:
        return len(self._records)

    def add(self, name: str, header: HeaderSet | HeaderLike) -> int:
        """Store a new record and return its handle (sequence number)."""

        rec = IndexRecord.build(name, header, self.next_seq)
        self._records.append(rec)
        return rec.seq

    def adopt(self, record: IndexRecord) -> int:
        """Store an existing record under a fresh sequence number."""

        rec = IndexRecord(record.name, record.header, self.next_seq, record.oractime)
        self._records.append(rec)
        return rec.seq
