"""Append-only calibration index.

Contract
--------
* ``append``/``add`` never reject duplicates: two identical headers are two
  distinct calibration frames.
* ``select(ruleset, reference)`` returns the records satisfying every rule,
  in insertion order.
* An evaluation error (missing field, non-numeric value) disqualifies only the
  offending candidate; the query carries on with the rest.

The query is a linear scan. Record counts per run are small (tens to low
thousands) compared with how often selections happen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from calindex.headers import HeaderLike, HeaderSet
from calindex.index.records import IndexRecord, RecordArena
from calindex.rules.evaluate import RuleFailure, check
from calindex.rules.model import RuleSet


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryReport:
    """Outcome of one index scan."""

    matched: list[IndexRecord]
    rejected: list[tuple[IndexRecord, RuleFailure]] = field(default_factory=list)

    @property
    def n_pool(self) -> int:
        return len(self.matched) + len(self.rejected)

    @property
    def errors(self) -> list[tuple[IndexRecord, RuleFailure]]:
        """Rejections caused by evaluation errors rather than a false rule."""

        return [(r, f) for r, f in self.rejected if f.error is not None]


class CalibrationIndex:
    """Ordered catalogue of index records for one calibration type."""

    def __init__(self, kind: str = "", *, arena: RecordArena | None = None, records: Iterable[IndexRecord] = ()):
        self.kind = kind
        self.arena = arena if arena is not None else RecordArena()
        self._handles: list[int] = []
        for rec in records:
            self.append(rec)

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[IndexRecord]:
        arena = self.arena
        return (arena[h] for h in self._handles)

    def __repr__(self) -> str:
        return f"CalibrationIndex(kind={self.kind!r}, n={len(self)})"

    @property
    def records(self) -> list[IndexRecord]:
        return list(self)

    def append(self, record: IndexRecord) -> IndexRecord:
        """Add an existing record (re-stamped with the arena's next sequence)."""

        h = self.arena.adopt(record)
        self._handles.append(h)
        return self.arena[h]

    def add(self, name: str, header: HeaderSet | HeaderLike) -> IndexRecord:
        """Create and add a record from a name and header."""

        h = self.arena.add(name, header)
        self._handles.append(h)
        rec = self.arena[h]
        log.debug("index[%s] += %s (seq=%d, ORACTIME=%s)", self.kind, rec.name, rec.seq, rec.oractime)
        return rec

    def get(self, name: str) -> IndexRecord | None:
        """Latest record with the given name, if any."""

        for h in reversed(self._handles):
            rec = self.arena[h]
            if rec.name == name:
                return rec
        return None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def names(self) -> list[str]:
        seen: dict[str, None] = {}
        for rec in self:
            seen.setdefault(rec.name, None)
        return list(seen)

    def scan(self, ruleset: RuleSet, reference: HeaderSet | HeaderLike) -> QueryReport:
        """Evaluate every record and report matches and rejections."""

        ref = HeaderSet.coerce(reference, side="reference")
        matched: list[IndexRecord] = []
        rejected: list[tuple[IndexRecord, RuleFailure]] = []
        for rec in self:
            failure = check(ruleset, ref, rec.header)
            if failure is None:
                matched.append(rec)
                continue
            rejected.append((rec, failure))
            log.debug("%s not a suitable %s: %s", rec.name, self.kind or "calibration", failure.describe())
        return QueryReport(matched=matched, rejected=rejected)

    def select(self, ruleset: RuleSet, reference: HeaderSet | HeaderLike) -> list[IndexRecord]:
        """Records matching ``ruleset`` against ``reference``, in insertion order."""

        return self.scan(ruleset, reference).matched
