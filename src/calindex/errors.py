"""Error taxonomy for calibration selection.

Parse-time errors (:class:`MalformedRule`) are fatal to loading a rule set.
Evaluation-time errors (:class:`MissingField`, :class:`NotNumeric`) are local
to one candidate: index queries catch them and treat the candidate as
non-matching.

"No suitable calibration" is *not* an error for the selector; it is only
raised (as :class:`NoSuitableCalibration`) by the
:class:`~calindex.calib.Calibrations` facade when the caller demands a match.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class CalIndexError(Exception):
    """Base class for all calindex errors."""


class MalformedRule(CalIndexError, ValueError):
    """Raised when a rule file line cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        lineno: int | None = None,
        line: str | None = None,
    ):
        self.path = str(path) if path is not None else None
        self.lineno = lineno
        self.line = line
        loc = self.path or "<rules>"
        if lineno is not None:
            loc += f":{lineno}"
        base = f"{loc}: {message}"
        if line is not None:
            base += f" | line: {line.strip()!r}"
        super().__init__(base)


class EvaluationError(CalIndexError):
    """Base class for errors raised while evaluating one rule."""


class MissingField(EvaluationError, LookupError):
    """A rule references a header field absent from reference or candidate."""

    def __init__(self, field: str, *, side: str = "candidate"):
        self.field = field
        self.side = side
        super().__init__(f"{side} header has no field {field!r}")

    def __str__(self) -> str:
        # LookupError would otherwise repr() the message like KeyError does.
        return str(self.args[0])


class NotNumeric(EvaluationError, ValueError):
    """A numeric operator was applied to a value that is not a number."""

    def __init__(self, value: Any, *, field: str | None = None, reason: str | None = None):
        self.value = value
        self.field = field
        msg = reason or f"value {value!r} is not numeric"
        if field:
            msg += f" (field {field!r})"
        super().__init__(msg)


class InvalidRecord(CalIndexError, ValueError):
    """An index record violates the record contract (e.g. no ORACTIME)."""


class IndexFormatError(CalIndexError, ValueError):
    """A persisted index file is corrupt or has an unexpected layout."""


class IndexLockTimeout(CalIndexError, TimeoutError):
    """The lock guarding a persisted index could not be acquired in time."""


class RulesNotFound(CalIndexError, FileNotFoundError):
    """No rules file for a calibration type exists on the search path."""


class IndexNotFound(CalIndexError, FileNotFoundError):
    """A static (or copy-mode) index file is not on the search path."""


class ReadOnlyIndex(CalIndexError):
    """Attempt to append to a static index."""


class ConfigError(CalIndexError, ValueError):
    """Invalid calindex configuration."""


class NoSuitableCalibration(CalIndexError, LookupError):
    """Raised by the calibration facade when a required match is absent."""

    def __init__(self, message: str, *, kind: str | None = None):
        self.kind = kind
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])
