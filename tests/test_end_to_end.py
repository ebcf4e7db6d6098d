from __future__ import annotations

from pathlib import Path

import pytest

from calindex import CalibrationIndex, Calibrations, Selector, parse_rules
from calindex.config import config_from_dict


pytestmark = pytest.mark.smoke


def test_arc_rules_pick_the_arc_record():
    rules = parse_rules("OBSTYPE eq 'ARC'\nDETECXS <= $Hdr{DETECXS}\n", name="arc")
    idx = CalibrationIndex("arc")
    first = idx.add("arc1", {"OBSTYPE": "ARC", "DETECXS": 50, "ORACTIME": 1})
    idx.add("flat1", {"OBSTYPE": "FLAT", "DETECXS": 50, "ORACTIME": 2})

    reference = {"DETECXS": 100}
    assert idx.select(rules, reference) == [first]
    assert Selector(idx, "latest").select_best(rules, reference) is first


def test_cgs4_packaged_rules_round_trip(tmp_path: Path):
    cal = Calibrations(config_from_dict({"instrument": "CGS4", "output_dir": "work"}, base_dir=tmp_path))

    arc = {
        "OBSTYPE": "ARC",
        "GRATING": "40_lpmm",
        "GORDER": 1,
        "GLAMBDA": 2.2,
        "SLITNAME": "2pix",
        "DETECXS": 256,
        "ROW_NUMBER": 120,
    }
    cal.add("arc", "arc_0010", dict(arc, ORACTIME=53000.10))
    cal.add("arc", "arc_0020", dict(arc, ROW_NUMBER=140, ORACTIME=53000.20))
    cal.add("arc", "arc_0030", dict(arc, ROW_NUMBER=121, ORACTIME=53000.30))
    cal.add("arc", "arc_0040", dict(arc, GLAMBDA=2.3, ORACTIME=53000.40))

    frame = dict(arc, OBSTYPE="OBJECT", ROW_NUMBER=119, ORACTIME=53000.25)
    frame["GLAMBDA"] = "2.2000"  # header values may arrive as text
    # arcs use the "latest" policy: the ROW_NUMBER window already encodes closeness
    assert cal.get("arc", frame) == "arc_0030"

    index_file = tmp_path / "work" / "index.arc"
    header = index_file.read_text(encoding="utf-8").splitlines()[0]
    assert header == "#OBSTYPE GRATING GORDER GLAMBDA SLITNAME DETECXS ROW_NUMBER ORACTIME"

    fresh = Calibrations(cal.config)
    assert [r.name for r in fresh.index("arc")] == ["arc_0010", "arc_0020", "arc_0030", "arc_0040"]
    assert fresh.get("arc", frame) == "arc_0030"
