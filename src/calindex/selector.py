"""Calibration selection.

Matching is strict: a candidate either satisfies every rule of the type's
rule set or it is out. Among the matches one record is chosen by the type's
time policy:

``before`` (default)
    most recent calibration taken at or before the reference ``ORACTIME``.
    Matches taken later than the reference are never chosen; if only such
    matches exist the result is "no match".
``nearest``
    smallest ``|ORACTIME - reference ORACTIME|`` in either direction.
``latest``
    time is ignored; the latest-appended match wins. Used for types whose
    rules already encode closeness (tolerance windows such as
    ``abs(ROW_NUMBER - $Hdr{'ROW_NUMBER'}) < 3``).

Ties are broken by insertion order (latest appended wins), so repeated
queries always return the same record.

"No match" is a legitimate outcome, represented by ``record is None`` on
:class:`SelectionResult` (and ``None`` from :meth:`Selector.select_best`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from calindex.flags import (
    CANDIDATE_REJECTED_ERROR,
    MULTIPLE_BEST,
    NO_MATCH,
    ONLY_LATER_MATCHES,
    Severity,
    make_flag,
)
from calindex.headers import HeaderLike, HeaderSet
from calindex.index.catalogue import CalibrationIndex
from calindex.index.records import TIME_KEY, IndexRecord
from calindex.rules.model import RuleSet


log = logging.getLogger(__name__)


class TimePolicy(str, Enum):
    BEFORE = "before"
    NEAREST = "nearest"
    LATEST = "latest"

    @classmethod
    def parse(cls, value: "TimePolicy | str | int | None") -> "TimePolicy":
        """Accept enum values plus a few historical spellings.

        ``-1`` / ``recent`` -> before, ``0`` / ``abs`` -> nearest,
        ``insertion`` -> latest.
        """

        if value is None:
            return cls.BEFORE
        if isinstance(value, cls):
            return value
        s = str(value).strip().lower()
        aliases = {
            "-1": cls.BEFORE,
            "recent": cls.BEFORE,
            "0": cls.NEAREST,
            "abs": cls.NEAREST,
            "insertion": cls.LATEST,
        }
        if s in aliases:
            return aliases[s]
        try:
            return cls(s)
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown time policy {value!r} (choose from {choices})") from None


@dataclass(frozen=True)
class SelectionResult:
    record: IndexRecord | None
    policy: TimePolicy
    n_pool: int
    n_matched: int
    n_eligible: int
    dt: float | None = None
    tie_n: int | None = None
    warnings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.record is not None

    @property
    def name(self) -> str | None:
        return self.record.name if self.record is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "policy": self.policy.value,
            "n_pool": self.n_pool,
            "n_matched": self.n_matched,
            "n_eligible": self.n_eligible,
            "dt": self.dt,
            "tie_n": self.tie_n,
            "record": self.record.to_dict() if self.record is not None else None,
            "warnings": list(self.warnings),
        }


def _reference_time(reference: HeaderSet) -> float:
    # MissingField / NotNumeric here concern the reference, not a candidate,
    # so they propagate to the caller.
    return reference.number(TIME_KEY)


def _score(rec: IndexRecord, policy: TimePolicy, t_ref: float | None) -> tuple[float, int]:
    if policy is TimePolicy.LATEST:
        return (0.0, -rec.seq)
    assert t_ref is not None
    if policy is TimePolicy.BEFORE:
        return (t_ref - rec.oractime, -rec.seq)
    return (abs(rec.oractime - t_ref), -rec.seq)


def choose(
    matched: list[IndexRecord],
    policy: TimePolicy,
    t_ref: float | None,
) -> tuple[IndexRecord | None, list[IndexRecord], list[IndexRecord]]:
    """Apply the tie-break policy.

    Returns ``(best, eligible, tied)`` where ``tied`` lists every eligible
    record sharing the best primary score (best first).
    """

    if policy is TimePolicy.BEFORE:
        assert t_ref is not None
        eligible = [r for r in matched if r.oractime <= t_ref]
    else:
        eligible = list(matched)
    if not eligible:
        return None, eligible, []

    scored = sorted(((_score(r, policy, t_ref), r) for r in eligible), key=lambda x: x[0])
    best_score, best = scored[0]
    if policy is TimePolicy.LATEST:
        tied = [best]
    else:
        tied = [r for s, r in scored if s[0] == best_score[0]]
    return best, eligible, tied


class Selector:
    """Pick the single best calibration record from an index."""

    def __init__(self, index: CalibrationIndex, policy: TimePolicy | str = TimePolicy.BEFORE):
        self.index = index
        self.policy = TimePolicy.parse(policy)

    def select(
        self,
        ruleset: RuleSet,
        reference: HeaderSet | HeaderLike,
        *,
        policy: TimePolicy | str | None = None,
    ) -> SelectionResult:
        """Select with diagnostics.

        Raises
        ------
        MissingField, NotNumeric
            If the policy needs the reference ``ORACTIME`` and it is absent or
            not numeric.
        """

        pol = TimePolicy.parse(policy) if policy is not None else self.policy
        ref = HeaderSet.coerce(reference, side="reference")
        kind = self.index.kind or ruleset.name or "calibration"
        t_ref = _reference_time(ref) if pol is not TimePolicy.LATEST else None

        report = self.index.scan(ruleset, ref)
        warns: list[dict[str, Any]] = []

        errors = report.errors
        if errors:
            warns.append(
                make_flag(
                    CANDIDATE_REJECTED_ERROR,
                    Severity.WARN,
                    f"{len(errors)} {kind} candidate(s) could not be evaluated and were skipped.",
                    "Check the index columns against the rules file.",
                    kind=kind,
                    candidates=[{"name": r.name, "error": str(f.error)} for r, f in errors[:10]],
                )
            )
            log.warning("%d %s candidate(s) skipped: %s", len(errors), kind, errors[0][1].describe())

        best, eligible, tied = choose(report.matched, pol, t_ref)

        if best is None:
            if report.matched:
                warns.append(
                    make_flag(
                        ONLY_LATER_MATCHES,
                        Severity.WARN,
                        f"All {len(report.matched)} matching {kind} frame(s) were taken after the reference frame.",
                        "Use the 'nearest' policy if later calibrations are acceptable.",
                        kind=kind,
                        names=[r.name for r in report.matched[:10]],
                    )
                )
            warns.append(
                make_flag(
                    NO_MATCH,
                    Severity.WARN,
                    f"No suitable {kind} in index ({report.n_pool} candidates).",
                    kind=kind,
                )
            )
            log.info("No suitable %s among %d candidates", kind, report.n_pool)
            return SelectionResult(
                record=None,
                policy=pol,
                n_pool=report.n_pool,
                n_matched=len(report.matched),
                n_eligible=len(eligible),
                warnings=warns,
            )

        tie_n: int | None = None
        if len(tied) > 1:
            tie_n = len(tied)
            warns.append(
                make_flag(
                    MULTIPLE_BEST,
                    Severity.INFO,
                    f"Multiple equally-good {kind} candidates; selected the latest appended.",
                    kind=kind,
                    tied_names=[r.name for r in tied],
                )
            )

        dt = best.oractime - t_ref if t_ref is not None else None
        log.info(
            "Selected %s %s (policy=%s, matched %d/%d%s)",
            kind,
            best.name,
            pol.value,
            len(report.matched),
            report.n_pool,
            f", dt={dt:+g}" if dt is not None else "",
        )
        return SelectionResult(
            record=best,
            policy=pol,
            n_pool=report.n_pool,
            n_matched=len(report.matched),
            n_eligible=len(eligible),
            dt=dt,
            tie_n=tie_n,
            warnings=warns,
        )

    def select_best(
        self,
        ruleset: RuleSet,
        reference: HeaderSet | HeaderLike,
        *,
        policy: TimePolicy | str | None = None,
    ) -> IndexRecord | None:
        """Best matching record, or ``None`` when nothing is suitable."""

        return self.select(ruleset, reference, policy=policy).record


def select_best(
    index: CalibrationIndex,
    ruleset: RuleSet,
    reference: HeaderSet | HeaderLike,
    *,
    policy: TimePolicy | str = TimePolicy.BEFORE,
) -> IndexRecord | None:
    """Functional shortcut for ``Selector(index, policy).select_best(...)``."""

    return Selector(index, policy).select_best(ruleset, reference)
