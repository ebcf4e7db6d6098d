from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from calindex.cli import main


ARC_RULES = "OBSTYPE eq 'ARC'\nDETECXS <= $Hdr{DETECXS}\nORACTIME\n"


@pytest.fixture
def cfg_path(tmp_path: Path) -> Path:
    (tmp_path / "rules.arc").write_text(ARC_RULES, encoding="utf-8")
    p = tmp_path / "calindex.yaml"
    p.write_text(
        yaml.safe_dump({"rules_path": ".", "output_dir": "work", "types": {"arc": {"policy": "before"}}}),
        encoding="utf-8",
    )
    return p


def _add(cfg_path: Path, name: str, *pairs: str) -> int:
    argv = ["add", "--config", str(cfg_path), "--type", "arc", "--name", name]
    for kv in pairs:
        argv += ["--header", kv]
    return main(argv)


def test_version(capsys: pytest.CaptureFixture[str]):
    assert main(["version"]) == 0
    out = capsys.readouterr().out
    assert "calindex" in out
    assert "pydantic" in out


def test_check_rules(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    good = tmp_path / "rules.arc"
    good.write_text(ARC_RULES, encoding="utf-8")
    assert main(["check-rules", str(good)]) == 0
    out = capsys.readouterr().out
    assert "3 rules" in out
    assert "OBSTYPE" in out

    bad = tmp_path / "rules.flat"
    bad.write_text("OBSTYPE eq\n", encoding="utf-8")
    assert main(["check-rules", str(good), str(bad)]) == 1

    assert main(["check-rules", str(tmp_path / "rules.none")]) == 2


def test_add_select_and_show(cfg_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    assert _add(cfg_path, "arc_0012", "OBSTYPE=ARC", "DETECXS=50", "ORACTIME=53000.4") == 0
    assert _add(cfg_path, "arc_0031", "OBSTYPE=ARC", "DETECXS=80", "ORACTIME=53000.5") == 0
    assert (tmp_path / "work" / "index.arc").is_file()
    capsys.readouterr()

    report = tmp_path / "select.json"
    rc = main(
        [
            "select",
            "--config",
            str(cfg_path),
            "--type",
            "arc",
            "--header",
            "DETECXS=60",
            "--header",
            "ORACTIME=53001",
            "--report",
            str(report),
        ]
    )
    assert rc == 0
    assert "arc_0012" in capsys.readouterr().out
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["kind"] == "arc"
    assert payload["name"] == "arc_0012"
    assert payload["policy"] == "before"

    assert main(["show-index", "--config", str(cfg_path), "--type", "arc"]) == 0
    out = capsys.readouterr().out
    assert "arc_0012" in out and "arc_0031" in out


def test_select_from_header_file(cfg_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    assert _add(cfg_path, "arc_0012", "OBSTYPE=ARC", "DETECXS=50", "ORACTIME=100") == 0
    hdr = tmp_path / "frame.json"
    hdr.write_text(json.dumps({"DETECXS": 50, "ORACTIME": 90}), encoding="utf-8")
    capsys.readouterr()

    argv = ["select", "--config", str(cfg_path), "--type", "arc", "--header-file", str(hdr)]
    # only a later arc exists
    assert main(argv) == 1
    assert "ONLY_LATER_MATCHES" in capsys.readouterr().out

    assert main(argv + ["--policy", "nearest"]) == 0
    assert "arc_0012" in capsys.readouterr().out


def test_select_errors(cfg_path: Path):
    base = ["select", "--config", str(cfg_path), "--header", "DETECXS=60", "--header", "ORACTIME=1"]
    assert main(base + ["--type", "arc", "--policy", "soonest"]) == 2
    assert main(base + ["--type", "bias"]) == 2
    # reference without ORACTIME cannot be placed in time
    assert main(["select", "--config", str(cfg_path), "--type", "arc", "--header", "DETECXS=60"]) == 2


def test_add_with_missing_column_fails(cfg_path: Path):
    assert _add(cfg_path, "arc_bad", "OBSTYPE=ARC", "ORACTIME=1") == 2
