"""Rule-driven calibration selection.

A reduction step asks "which calibration frame should I use for this
frame?". The answer comes from a per-type rules file (``rules.<type>``)
evaluated against an append-only index of processed calibrations
(``index.<type>``), with a time policy breaking ties.
"""

from __future__ import annotations

from calindex.calib import Calibrations
from calindex.errors import (
    CalIndexError,
    MalformedRule,
    MissingField,
    NoSuitableCalibration,
    NotNumeric,
)
from calindex.headers import HeaderSet
from calindex.index import CalibrationIndex, IndexRecord
from calindex.rules import Rule, RuleSet, load_rules, parse_rules
from calindex.selector import SelectionResult, Selector, TimePolicy, select_best
from calindex.version import __version__

__all__ = [
    "CalIndexError",
    "CalibrationIndex",
    "Calibrations",
    "HeaderSet",
    "IndexRecord",
    "MalformedRule",
    "MissingField",
    "NoSuitableCalibration",
    "NotNumeric",
    "Rule",
    "RuleSet",
    "SelectionResult",
    "Selector",
    "TimePolicy",
    "__version__",
    "load_rules",
    "parse_rules",
    "select_best",
]
