"""Calibration index: records, the append-only catalogue and its stores."""

from __future__ import annotations

from .catalogue import CalibrationIndex, QueryReport
from .lock import index_lock
from .records import TIME_KEY, IndexRecord, RecordArena
from .store import IndexStore, JsonIndexStore, TextIndexStore

__all__ = [
    "TIME_KEY",
    "CalibrationIndex",
    "IndexRecord",
    "IndexStore",
    "JsonIndexStore",
    "QueryReport",
    "RecordArena",
    "TextIndexStore",
    "index_lock",
]
