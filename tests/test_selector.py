from __future__ import annotations

import pytest

from calindex.errors import MissingField, NotNumeric
from calindex.flags import has_code, max_severity
from calindex.index import CalibrationIndex
from calindex.rules import parse_rules
from calindex.selector import Selector, TimePolicy, choose, select_best


RULES = parse_rules("OBSTYPE eq 'DARK'\nEXP_TIME == $Hdr{EXP_TIME}\nORACTIME\n", name="dark")


def _index(*times, kind="dark", **extra):
    idx = CalibrationIndex(kind)
    for i, t in enumerate(times):
        h = {"OBSTYPE": "DARK", "EXP_TIME": 10, "ORACTIME": t}
        h.update(extra)
        idx.add(f"dark{i}_{t}", h)
    return idx


def _ref(t, **kw):
    h = {"EXP_TIME": 10, "ORACTIME": t}
    h.update(kw)
    return h


@pytest.mark.parametrize("policy", [TimePolicy.BEFORE, TimePolicy.NEAREST])
def test_policies_agree_on_simple_cases(policy):
    idx = _index(90, 95, 110)
    assert select_best(idx, RULES, _ref(100), policy=policy).oractime == 95

    idx = _index(90, 95)
    assert select_best(idx, RULES, _ref(92), policy=policy).oractime == 90


def test_policies_disagree_when_later_is_closer():
    idx = _index(90, 102)
    assert select_best(idx, RULES, _ref(100), policy="before").oractime == 90
    assert select_best(idx, RULES, _ref(100), policy="nearest").oractime == 102


def test_latest_policy_ignores_time():
    idx = _index(102, 90)
    assert select_best(idx, RULES, _ref(100), policy="latest").oractime == 90
    # no reference time needed at all
    assert select_best(idx, RULES, {"EXP_TIME": 10}, policy="latest").oractime == 90


def test_before_never_chooses_later_frames():
    idx = _index(110, 120)
    sel = Selector(idx, "before")
    res = sel.select(RULES, _ref(100))
    assert res.record is None
    assert not res.found
    assert res.n_matched == 2
    assert res.n_eligible == 0
    assert has_code(res.warnings, "ONLY_LATER_MATCHES")
    assert has_code(res.warnings, "NO_MATCH")


def test_ties_go_to_the_latest_appended():
    idx = _index(95, 95, 95)
    res = Selector(idx, "before").select(RULES, _ref(100))
    assert res.record is not None
    assert res.record.seq == 2
    assert res.tie_n == 3
    assert has_code(res.warnings, "MULTIPLE_BEST")
    assert max_severity(res.warnings) == "INFO"

    # repeated queries return the same record
    again = Selector(idx, "before").select(RULES, _ref(100))
    assert again.record is res.record


def test_nearest_tie_between_sides_is_latest_appended():
    idx = _index(98, 102)
    assert select_best(idx, RULES, _ref(100), policy="nearest").oractime == 102
    idx = _index(102, 98)
    assert select_best(idx, RULES, _ref(100), policy="nearest").oractime == 98


def test_no_match_is_not_an_error():
    idx = _index(90, 95)
    res = Selector(idx).select(RULES, _ref(100, EXP_TIME=30))
    assert res.record is None
    assert res.name is None
    assert res.n_pool == 2
    assert res.n_matched == 0
    assert has_code(res.warnings, "NO_MATCH")
    assert not has_code(res.warnings, "ONLY_LATER_MATCHES")


def test_empty_index_selects_nothing():
    assert select_best(CalibrationIndex("dark"), RULES, _ref(100)) is None


def test_reference_time_problems_propagate():
    idx = _index(90)
    with pytest.raises(MissingField):
        Selector(idx, "before").select(RULES, {"EXP_TIME": 10})
    with pytest.raises(NotNumeric):
        Selector(idx, "nearest").select(RULES, _ref("noon"))


def test_candidate_errors_are_flagged_and_skipped():
    idx = _index(90)
    idx.add("broken", {"OBSTYPE": "DARK", "EXP_TIME": "ten", "ORACTIME": 95})
    res = Selector(idx).select(RULES, _ref(100))
    assert res.record is not None and res.record.name == "dark0_90"
    assert has_code(res.warnings, "CANDIDATE_REJECTED_ERROR")
    flag = next(f for f in res.warnings if f["code"] == "CANDIDATE_REJECTED_ERROR")
    assert flag["severity"] == "WARN"
    assert flag["candidates"][0]["name"] == "broken"


def test_selection_result_carries_dt_and_policy():
    res = Selector(_index(90, 95), "nearest").select(RULES, _ref(100))
    assert res.policy is TimePolicy.NEAREST
    assert res.dt == -5.0
    assert res.name == "dark1_95"

    res = Selector(_index(90, 95), "nearest").select(RULES, _ref(100), policy="before")
    assert res.policy is TimePolicy.BEFORE


def test_choose_reports_eligible_and_tied():
    idx = _index(90, 95, 95, 110)
    best, eligible, tied = choose(list(idx), TimePolicy.BEFORE, 100.0)
    assert best is not None and best.seq == 2
    assert [r.oractime for r in eligible] == [90, 95, 95]
    assert [r.seq for r in tied] == [2, 1]


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, TimePolicy.BEFORE),
        ("before", TimePolicy.BEFORE),
        ("-1", TimePolicy.BEFORE),
        (-1, TimePolicy.BEFORE),
        ("NEAREST", TimePolicy.NEAREST),
        ("abs", TimePolicy.NEAREST),
        (0, TimePolicy.NEAREST),
        ("insertion", TimePolicy.LATEST),
        (TimePolicy.LATEST, TimePolicy.LATEST),
    ],
)
def test_time_policy_parse(raw, expected):
    assert TimePolicy.parse(raw) is expected


def test_time_policy_parse_rejects_unknown():
    with pytest.raises(ValueError):
        TimePolicy.parse("soonest")
