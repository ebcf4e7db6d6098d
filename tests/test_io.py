from __future__ import annotations

import json
from pathlib import Path

import pytest

from calindex.io import append_line, atomic_write_json, atomic_write_text
from calindex.io.atomic import replacing
from calindex.selector import TimePolicy


def test_atomic_write_replaces_without_leftovers(tmp_path: Path):
    target = tmp_path / "sub" / "index.flat"
    atomic_write_text(target, "#COL\n")
    atomic_write_text(target, "#OBSTYPE\nflat_1 FLAT\n")
    assert target.read_text(encoding="utf-8") == "#OBSTYPE\nflat_1 FLAT\n"
    assert [p.name for p in target.parent.iterdir()] == ["index.flat"]


def test_failed_rewrite_keeps_original(tmp_path: Path):
    target = tmp_path / "index.flat"
    target.write_text("old\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        with replacing(target) as f:
            f.write("half")
            raise RuntimeError("interrupted")
    assert target.read_text(encoding="utf-8") == "old\n"
    assert [p.name for p in tmp_path.iterdir()] == ["index.flat"]


def test_json_report_and_append(tmp_path: Path):
    out = atomic_write_json(tmp_path / "r.json", {"policy": TimePolicy.NEAREST, "dir": tmp_path})
    assert json.loads(out.read_text(encoding="utf-8")) == {"policy": "nearest", "dir": str(tmp_path)}

    with pytest.raises(TypeError):
        atomic_write_json(tmp_path / "bad.json", {"x": object()})
    assert not (tmp_path / "bad.json").exists()

    log = tmp_path / "index.arc"
    append_line(log, "#OBSTYPE")
    append_line(log, "arc_1 ARC\n")
    assert log.read_text(encoding="utf-8") == "#OBSTYPE\narc_1 ARC\n"
