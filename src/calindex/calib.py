"""Calibration facade.

:class:`Calibrations` ties one instrument's configuration to its rule sets,
indices and stores, and implements the lookup protocol reduction steps use::

    cal = Calibrations.from_config_file("calindex.yaml")
    flat = cal.get("flat", frame_header)             # raises if nothing fits
    dark = cal.get("dark", frame_header, required=False)
    cal.add("flat", "flat_20240101_0042", reduced_flat_header)

Lookup order for ``get``:

1. a current calibration (set with :meth:`Calibrations.set`, e.g. from the
   command line) is returned if it still verifies against the frame;
2. if it does not verify and was set with ``noupdate=True`` the lookup fails:
   an explicit override is never silently replaced;
3. otherwise the index is searched with the type's time policy;
4. with no match, ``default()`` is consulted, then ``required`` decides between
   ``None`` and :class:`~calindex.errors.NoSuitableCalibration`.

Rule sets, indices and stores are created lazily and cached per type. All
indices share one record arena.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from calindex.config import find_file, load_config, rules_search_path
from calindex.errors import IndexNotFound, InvalidRecord, MissingField, NoSuitableCalibration, ReadOnlyIndex, RulesNotFound
from calindex.headers import HeaderLike, HeaderSet
from calindex.index.catalogue import CalibrationIndex
from calindex.index.records import IndexRecord, RecordArena
from calindex.index.store import IndexStore, JsonIndexStore, TextIndexStore, index_columns
from calindex.log import timer
from calindex.rules.evaluate import check
from calindex.rules.model import RuleSet
from calindex.rules.parser import load_rules
from calindex.schema import CalIndexConfig
from calindex.selector import SelectionResult, Selector, TimePolicy


log = logging.getLogger(__name__)


class Calibrations:
    """Per-instrument calibration lookup."""

    def __init__(
        self,
        config: CalIndexConfig,
        *,
        stores: Mapping[str, IndexStore] | None = None,
        arena: RecordArena | None = None,
    ):
        self.config = config
        self.arena = arena if arena is not None else RecordArena()
        self._stores: dict[str, IndexStore] = dict(stores or {})
        self._rules: dict[str, RuleSet] = {}
        self._indices: dict[str, CalibrationIndex] = {}
        self._current: dict[str, str] = {}
        self._noupdate: dict[str, bool] = {}

    @classmethod
    def from_config_file(cls, path: str | Path) -> "Calibrations":
        return cls(load_config(path))

    def __repr__(self) -> str:
        return f"Calibrations(instrument={self.config.instrument!r}, types={self.kinds()!r})"

    # ------------------------------------------------------------ setup

    def kinds(self) -> list[str]:
        return list(self.config.types)

    def policy(self, kind: str) -> TimePolicy:
        return self.config.type_config(kind).policy

    def search_path(self) -> list[Path]:
        return rules_search_path(self.config)

    def rules(self, kind: str) -> RuleSet:
        """Rule set for ``kind`` (loaded once)."""

        rs = self._rules.get(kind)
        if rs is not None:
            return rs

        explicit = self.config.type_config(kind).rules
        if explicit:
            path: Path | None = Path(explicit)
            if not path.is_file():
                raise RulesNotFound(f"{kind} rules file {path} does not exist")
        else:
            dirs = self.search_path()
            path = find_file(f"rules.{kind}", dirs)
            if path is None:
                raise RulesNotFound(
                    f"{kind} rules file could not be located (rules.{kind} in {', '.join(str(d) for d in dirs)})"
                )
        rs = load_rules(path, name=kind)
        log.info("Loaded %s rules from %s (%d rules)", kind, path, len(rs))
        self._rules[kind] = rs
        return rs

    def _index_filename(self, kind: str) -> str:
        suffix = ".json" if self.config.index_format == "json" else ""
        return f"index.{kind}{suffix}"

    def _index_path(self, kind: str) -> Path:
        tc = self.config.type_config(kind)
        if tc.index:
            return Path(tc.index)

        fname = self._index_filename(kind)
        out = Path(self.config.output_dir) / fname
        if tc.mode == "dynamic":
            return out

        # static/copy: the file comes from the search path (output_dir excluded
        # for copy mode, since that is the destination).
        dirs = self.search_path()
        if tc.mode == "copy":
            if out.exists():
                return out
            dirs = [d for d in dirs if d.resolve() != out.parent.resolve()]
        static = find_file(fname, dirs)
        if static is None:
            raise IndexNotFound(f"{kind} index file could not be located ({fname} in {', '.join(str(d) for d in dirs)})")
        if tc.mode == "static":
            return static
        out.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(static, out)
        log.info("Copied %s index %s -> %s", kind, static, out)
        return out

    def store(self, kind: str) -> IndexStore:
        st = self._stores.get(kind)
        if st is not None:
            return st
        path = self._index_path(kind)
        columns = self.rules(kind).columns
        if self.config.index_format == "json":
            st = JsonIndexStore(path, columns, kind=kind, lock_timeout=self.config.lock_timeout_s)
        else:
            st = TextIndexStore(path, columns, lock_timeout=self.config.lock_timeout_s)
        self._stores[kind] = st
        return st

    def index(self, kind: str) -> CalibrationIndex:
        """In-memory index for ``kind`` (a snapshot of the store at first use)."""

        idx = self._indices.get(kind)
        if idx is not None:
            return idx
        with timer(f"load {kind} index", log):
            records = self.store(kind).load()
            idx = CalibrationIndex(kind, arena=self.arena, records=records)
        log.debug("Loaded %s index: %d records", kind, len(idx))
        self._indices[kind] = idx
        return idx

    def reload(self, kind: str | None = None) -> None:
        """Drop cached indices so the next access re-reads the stores."""

        if kind is None:
            self._indices.clear()
        else:
            self._indices.pop(kind, None)

    # ---------------------------------------------------------- current

    def set(self, kind: str, name: str | None, *, noupdate: bool = False) -> None:
        """Set the current calibration for ``kind``.

        With ``noupdate=True`` the value is an override: automatic selection
        never replaces it.
        """

        if noupdate:
            self._noupdate[kind] = True
        elif self._noupdate.get(kind) and kind in self._current:
            log.debug("Not updating %s: override %s in effect", kind, self._current[kind])
            return
        if name is None:
            self._current.pop(kind, None)
        else:
            self._current[kind] = str(name)

    def current(self, kind: str) -> str | None:
        return self._current.get(kind)

    def noupdate(self, kind: str) -> bool:
        return bool(self._noupdate.get(kind))

    # ------------------------------------------------------------ query

    def verify(self, kind: str, name: str | None, reference: HeaderSet | HeaderLike) -> bool:
        """True iff ``name`` is indexed and its record satisfies the rules."""

        if not name:
            return False
        rec = self.index(kind).get(name)
        if rec is None:
            log.warning("%s is unknown to the %s index and may not be used as calibration", name, kind)
            return False
        failure = check(self.rules(kind), reference, rec.header)
        if failure is not None:
            log.warning("%s not a suitable %s: %s", name, kind, failure.describe())
            return False
        return True

    def select(
        self,
        kind: str,
        reference: HeaderSet | HeaderLike,
        *,
        policy: TimePolicy | str | None = None,
    ) -> SelectionResult:
        sel = Selector(self.index(kind), self.policy(kind))
        return sel.select(self.rules(kind), reference, policy=policy)

    def get(
        self,
        kind: str,
        reference: HeaderSet | HeaderLike,
        *,
        required: bool = True,
        default: Callable[[], str | None] | None = None,
    ) -> str | None:
        """Name of the calibration to use for ``reference``."""

        name = self.current(kind)
        if name is not None:
            if self.verify(kind, name, reference):
                return name
            if self.noupdate(kind):
                raise NoSuitableCalibration(f"Override {kind} {name} is not suitable! Giving up", kind=kind)

        result = self.select(kind, reference)
        if result.record is not None:
            self.set(kind, result.record.name)
            return result.record.name

        if default is not None:
            fallback = default()
            if fallback is None:
                raise NoSuitableCalibration(f"No suitable {kind} found from default callback", kind=kind)
            log.info("Using default %s %s", kind, fallback)
            return fallback
        if not required:
            return None
        raise NoSuitableCalibration(f"No suitable {kind} frame was found in the index", kind=kind)

    def entry(
        self,
        kind: str,
        reference: HeaderSet | HeaderLike,
        columns: str | Sequence[str],
    ) -> Any:
        """Value(s) from the best record's index row.

        A single column name returns its value; a sequence returns a dict.
        """

        result = self.select(kind, reference)
        rec = result.record
        if rec is None:
            raise NoSuitableCalibration(f"No suitable {kind} value found in index", kind=kind)
        if isinstance(columns, str):
            return rec.header.value(columns)
        return {c: rec.header.value(c) for c in columns}

    # ----------------------------------------------------------- update

    def add(self, kind: str, name: str, header: HeaderSet | HeaderLike) -> IndexRecord:
        """Index a newly reduced calibration frame and persist it."""

        if self.config.type_config(kind).mode == "static" and not self.config.type_config(kind).index:
            raise ReadOnlyIndex(f"The {kind} index is static (read-only)")

        columns = index_columns(self.rules(kind).columns)
        h = HeaderSet.coerce(header, side="candidate")
        try:
            projected = h.project(columns)
        except MissingField as e:
            raise InvalidRecord(f"Rules file specifies entry {e.field} unknown to the {name} header") from e

        idx = self.index(kind)
        rec = IndexRecord.build(name, projected, idx.arena.next_seq)
        self.store(kind).append(rec)
        rec = idx.append(rec)
        log.info("Added %s to %s index", name, kind)
        return rec
