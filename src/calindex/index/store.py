"""Persistent index stores.

The core engine works on an in-memory :class:`~calindex.index.catalogue.CalibrationIndex`;
stores move records between that model and durable storage::

    records = store.load()      # snapshot at startup
    store.append(record)        # after each calibration frame is reduced
    store.store(records)        # full rewrite (conversion / compaction)

Two formats are provided.

Text (``index.<type>``)
-----------------------
Whitespace separated columns, one frame per line::

    #OBSTYPE DETECXS ORACTIME
    arc_20240101_0012 ARC 50 53000.412
    arc_20240101_0031 ARC 50 53000.498

The first ``#`` line names the columns (rule fields in file order, plus
``ORACTIME``); each row starts with the record name. Values with whitespace or
quotes are shell-quoted. Other ``#`` lines and blank lines are ignored.

JSON (``index.<type>.json``)
----------------------------
A pydantic-validated document (schema ``calindex.index.v1``) keeping values
typed.

Writers hold :func:`~calindex.index.lock.index_lock` while touching the file.
"""

from __future__ import annotations

import json
import logging
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError

from calindex.errors import IndexFormatError, InvalidRecord, MissingField
from calindex.headers import coerce_value, format_value
from calindex.index.lock import index_lock
from calindex.index.records import TIME_KEY, IndexRecord
from calindex.io.atomic import append_line, atomic_write_text


log = logging.getLogger(__name__)


class IndexStore(Protocol):
    """Load/store interface injected into the calibration facade."""

    path: Path

    def load(self) -> list[IndexRecord]: ...

    def store(self, records: Sequence[IndexRecord]) -> None: ...

    def append(self, record: IndexRecord) -> None: ...


def index_columns(columns: Sequence[str]) -> list[str]:
    """Rule columns in order, with ``ORACTIME`` appended when absent."""

    out: list[str] = []
    for c in columns:
        if c not in out:
            out.append(c)
    if TIME_KEY not in out:
        out.append(TIME_KEY)
    return out


def _quote(text: str) -> str:
    if text == "":
        return "''"
    if any(c.isspace() for c in text) or any(c in text for c in "'\"\\#"):
        return shlex.quote(text)
    return text


# ------------------------------------------------------------------ text


class TextIndexStore:
    """ORAC-style whitespace separated column index."""

    def __init__(self, path: str | Path, columns: Sequence[str] | None = None, *, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.columns = index_columns(columns) if columns is not None else None
        self.lock_timeout = float(lock_timeout)

    def __repr__(self) -> str:
        return f"TextIndexStore({str(self.path)!r})"

    def read_columns(self) -> list[str] | None:
        """Columns declared in the file header, or None if the file is absent/empty."""

        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                s = line.strip()
                if not s:
                    continue
                if s.startswith("#"):
                    cols = s[1:].split()
                    return cols or None
                return None
        return None

    def load(self) -> list[IndexRecord]:
        if not self.path.exists():
            log.debug("No index file %s yet", self.path)
            return []

        columns: list[str] | None = None
        records: list[IndexRecord] = []
        text = self.path.read_text(encoding="utf-8")
        for lineno, line in enumerate(text.splitlines(), start=1):
            s = line.strip()
            if not s:
                continue
            if s.startswith("#"):
                if columns is None and not records:
                    columns = s[1:].split()
                continue
            if columns is None:
                raise IndexFormatError(f"{self.path}:{lineno}: data before the '#COLUMNS' header line")
            try:
                parts = shlex.split(s, comments=False, posix=True)
            except ValueError as e:
                raise IndexFormatError(f"{self.path}:{lineno}: {e}") from e
            if len(parts) != len(columns) + 1:
                raise IndexFormatError(
                    f"{self.path}:{lineno}: expected {len(columns) + 1} fields "
                    f"(name + {len(columns)} columns), got {len(parts)}"
                )
            name, values = parts[0], parts[1:]
            # values stay as written; only the timestamp is numeric
            header = {c: coerce_value(v) if c == TIME_KEY else v for c, v in zip(columns, values)}
            try:
                records.append(IndexRecord.build(name, header, len(records)))
            except InvalidRecord as e:
                raise IndexFormatError(f"{self.path}:{lineno}: {e}") from e

        log.debug("Loaded %d records from %s", len(records), self.path)
        return records

    def _columns_for(self, records: Sequence[IndexRecord]) -> list[str]:
        if self.columns is not None:
            return list(self.columns)
        seen: list[str] = []
        for rec in records:
            for k in rec.header:
                if k not in seen:
                    seen.append(k)
        return index_columns(seen)

    @staticmethod
    def _row(record: IndexRecord, columns: Sequence[str]) -> str:
        try:
            values = [_quote(record.header.text(c)) for c in columns]
        except MissingField as e:
            raise InvalidRecord(f"record {record.name!r} lacks index column {e.field!r}") from e
        return " ".join([record.name, *values])

    def store(self, records: Sequence[IndexRecord]) -> None:
        columns = self._columns_for(records)
        lines = ["#" + " ".join(columns)]
        lines.extend(self._row(r, columns) for r in records)
        with index_lock(self.path, timeout=self.lock_timeout):
            atomic_write_text(self.path, "\n".join(lines) + "\n")
        log.info("Wrote %d records to %s", len(records), self.path)

    def append(self, record: IndexRecord) -> None:
        with index_lock(self.path, timeout=self.lock_timeout):
            columns = self.read_columns()
            if columns is None:
                columns = self._columns_for([record])
                atomic_write_text(self.path, "#" + " ".join(columns) + "\n")
            elif self.columns is not None and list(self.columns) != columns:
                log.warning(
                    "Index %s columns %s differ from rule columns %s; writing file columns",
                    self.path,
                    columns,
                    self.columns,
                )
            append_line(self.path, self._row(record, columns))
        log.debug("Appended %s to %s", record.name, self.path)


# ------------------------------------------------------------------ json


SCHEMA_ID = "calindex.index.v1"

HeaderScalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class IndexEntryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    header: Dict[str, HeaderScalar]


class IndexDocument(BaseModel):
    """Top-level JSON index document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    schema_id: str = Field(default=SCHEMA_ID, alias="schema")
    kind: str = ""
    columns: List[str] = Field(default_factory=list)
    updated_utc: str = ""
    records: List[IndexEntryModel] = Field(default_factory=list)

    @staticmethod
    def now_utc_iso() -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_json_text(self, *, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent, by_alias=True)


class JsonIndexStore:
    """Typed JSON index document."""

    def __init__(
        self,
        path: str | Path,
        columns: Sequence[str] | None = None,
        *,
        kind: str = "",
        lock_timeout: float = 10.0,
    ):
        self.path = Path(path)
        self.columns = index_columns(columns) if columns is not None else None
        self.kind = kind
        self.lock_timeout = float(lock_timeout)

    def __repr__(self) -> str:
        return f"JsonIndexStore({str(self.path)!r})"

    def _read(self) -> IndexDocument | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise IndexFormatError(f"Failed to read index JSON: {self.path}: {e}") from e
        try:
            doc = IndexDocument.model_validate(payload)
        except ValidationError as e:
            raise IndexFormatError(f"Invalid index JSON: {self.path}: {e}") from e
        if doc.schema_id != SCHEMA_ID:
            raise IndexFormatError(f"Unsupported index schema {doc.schema_id!r} in {self.path} (expected {SCHEMA_ID!r})")
        return doc

    def load(self) -> list[IndexRecord]:
        doc = self._read()
        if doc is None:
            return []
        records: list[IndexRecord] = []
        for entry in doc.records:
            try:
                records.append(IndexRecord.build(entry.name, entry.header, len(records)))
            except InvalidRecord as e:
                raise IndexFormatError(f"{self.path}: record {entry.name!r}: {e}") from e
        return records

    def _entry(self, record: IndexRecord) -> IndexEntryModel:
        header = record.header.to_dict()
        if self.columns is not None:
            missing = [c for c in self.columns if c not in header]
            if missing:
                raise InvalidRecord(f"record {record.name!r} lacks index columns {missing}")
        return IndexEntryModel(name=record.name, header=header)

    def _write(self, doc: IndexDocument) -> None:
        doc.updated_utc = IndexDocument.now_utc_iso()
        atomic_write_text(self.path, doc.to_json_text())

    def store(self, records: Sequence[IndexRecord]) -> None:
        doc = IndexDocument(
            kind=self.kind,
            columns=list(self.columns or []),
            records=[self._entry(r) for r in records],
        )
        with index_lock(self.path, timeout=self.lock_timeout):
            self._write(doc)
        log.info("Wrote %d records to %s", len(records), self.path)

    def append(self, record: IndexRecord) -> None:
        entry = self._entry(record)
        with index_lock(self.path, timeout=self.lock_timeout):
            doc = self._read() or IndexDocument(kind=self.kind, columns=list(self.columns or []))
            doc.records.append(entry)
            self._write(doc)
        log.debug("Appended %s to %s", record.name, self.path)


def format_row(record: IndexRecord, columns: Sequence[str]) -> list[str]:
    """Column values as text (missing values shown as empty strings)."""

    return [format_value(record.header[c]) if c in record.header else "" for c in columns]
