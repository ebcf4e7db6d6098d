from __future__ import annotations

import pytest

from calindex.errors import MissingField, NotNumeric
from calindex.headers import HeaderSet, coerce_value, format_value, parse_number


def test_canonical_text_forms():
    assert format_value("ARC") == "ARC"
    assert format_value(50) == "50"
    assert format_value(10.0) == "10"
    assert format_value(0.1) == "0.1"
    assert format_value(True) == "T"
    assert format_value(False) == "F"


def test_parse_number_accepts_text_and_numbers():
    assert parse_number("10") == 10.0
    assert parse_number(" 2.5 ") == 2.5
    assert parse_number(7) == 7.0
    assert parse_number("1e-3") == pytest.approx(0.001)


@pytest.mark.parametrize("bad", ["10a", "", "ARC", True, "nan"])
def test_parse_number_rejects_non_numbers(bad):
    with pytest.raises(NotNumeric):
        parse_number(bad, field="EXP_TIME")


def test_coerce_value_prefers_int_then_float():
    assert coerce_value("42") == 42 and isinstance(coerce_value("42"), int)
    assert coerce_value("4.5") == 4.5
    assert coerce_value("ARC") == "ARC"
    # NaN never compares equal, keep it as text
    assert coerce_value("nan") == "nan"


def test_missing_field_names_the_side():
    ref = HeaderSet({"OBSTYPE": "ARC"}, side="reference")
    with pytest.raises(MissingField) as ei:
        ref.value("DETECXS")
    assert ei.value.field == "DETECXS"
    assert ei.value.side == "reference"
    assert "reference" in str(ei.value)


def test_coerce_drops_none_and_retags_side():
    h = HeaderSet.coerce({"A": 1, "B": None})
    assert "B" not in h
    assert h.side == "candidate"

    ref = HeaderSet.coerce(h, side="reference")
    assert ref.side == "reference"
    assert ref == {"A": 1}


def test_none_value_is_rejected_by_constructor():
    with pytest.raises(TypeError):
        HeaderSet({"A": None})


def test_from_pairs_coerces_values():
    h = HeaderSet.from_pairs(["OBSTYPE=ARC", "DETECXS=50", "ORACTIME=53000.5", "OBJECT=M 31"])
    assert h.side == "reference"
    assert h["OBSTYPE"] == "ARC"
    assert h["DETECXS"] == 50
    assert h["ORACTIME"] == 53000.5
    assert h["OBJECT"] == "M 31"

    with pytest.raises(ValueError):
        HeaderSet.from_pairs(["no-equals-sign"])


def test_typed_lookups_and_projection():
    h = HeaderSet({"EXP_TIME": "10", "READMODE": "NDSTARE", "ORACTIME": 100})
    assert h.number("EXP_TIME") == 10.0
    assert h.text("ORACTIME") == "100"

    p = h.project(["READMODE", "ORACTIME"])
    assert list(p) == ["READMODE", "ORACTIME"]
    with pytest.raises(MissingField):
        h.project(["FILTER"])


def test_headerset_is_a_read_only_mapping():
    h = HeaderSet({"A": 1})
    with pytest.raises(TypeError):
        h["A"] = 2  # type: ignore[index]
    with pytest.raises(TypeError):
        hash(h)
    assert h.to_dict() == {"A": 1}
