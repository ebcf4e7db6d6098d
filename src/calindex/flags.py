"""Selection diagnostics.

A selection reports anything noteworthy as a list of flag dicts::

    {"code": "NO_MATCH", "severity": "WARN", "message": "...", "hint": "...", "kind": "flat"}

``code``, ``severity``, ``message`` and ``hint`` are always present; extra keys
(``kind``, ``names``, ``candidates``) carry context for reports.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable


NO_MATCH = "NO_MATCH"
ONLY_LATER_MATCHES = "ONLY_LATER_MATCHES"
MULTIPLE_BEST = "MULTIPLE_BEST"
CANDIDATE_REJECTED_ERROR = "CANDIDATE_REJECTED_ERROR"


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @classmethod
    def parse(cls, value: "Severity | str | None") -> "Severity":
        """Unknown or empty values read as INFO; ``WARNING``/``FATAL`` etc. are folded in."""

        if isinstance(value, cls):
            return value
        s = str(value or "").strip().upper()
        s = {"WARNING": "WARN", "FAIL": "ERROR", "FATAL": "ERROR", "CRITICAL": "ERROR"}.get(s, s)
        try:
            return cls(s)
        except ValueError:
            return cls.INFO


_RANK = {Severity.INFO: 1, Severity.WARN: 2, Severity.ERROR: 3}


def make_flag(code: str, severity: Severity | str, message: str, hint: str = "", **extra: Any) -> dict[str, Any]:
    flag: dict[str, Any] = {
        "code": code,
        "severity": Severity.parse(severity).value,
        "message": message.strip(),
        "hint": (hint or "").strip(),
    }
    flag.update({k: v for k, v in extra.items() if v is not None})
    return flag


def max_severity(flags: Iterable[dict[str, Any]]) -> str:
    """Highest severity in ``flags`` (``INFO`` for an empty list)."""

    sev = max((Severity.parse(f.get("severity")) for f in flags), key=lambda s: s.rank, default=Severity.INFO)
    return sev.value


def has_code(flags: Iterable[dict[str, Any]], code: str) -> bool:
    return any(f.get("code") == code for f in flags)
