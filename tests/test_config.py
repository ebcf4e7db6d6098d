from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from calindex.config import RULES_PATH_ENV, config_from_dict, find_file, load_config, rules_search_path, write_config
from calindex.errors import ConfigError
from calindex.instrument_db import CalibTypeSpec, get_instrument, load_instrument_db
from calindex.schema import schema_validate
from calindex.selector import TimePolicy


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def test_instrument_table_is_packaged():
    db = load_instrument_db()
    assert {"UFTI", "CGS4", "ISAAC"} <= set(db)
    ufti = get_instrument("ufti")
    assert ufti is not None
    assert ufti.types["mask"].mode == "copy"
    assert ufti.types["mask"].policy is TimePolicy.NEAREST
    assert (ufti.rules_dir / "rules.flat").is_file()
    assert get_instrument(None) is None
    assert get_instrument("NOSUCH") is None


def test_load_config_resolves_relative_paths(tmp_path: Path):
    cfg_path = _write_yaml(
        tmp_path / "calindex.yaml",
        {
            "instrument": "ufti",
            "output_dir": "work",
            "rules_path": "myrules",
            "types": {"flat": {"policy": "nearest"}, "dark": {"rules": "special/rules.dark"}},
        },
    )
    cfg = load_config(cfg_path)

    assert cfg.instrument == "UFTI"
    assert Path(cfg.output_dir) == (tmp_path / "work").resolve()
    assert [Path(p) for p in cfg.rules_path] == [(tmp_path / "myrules").resolve()]
    assert cfg.config_path == str(cfg_path.resolve())

    # config entries win over the packaged table, other defaults are kept
    assert cfg.types["flat"].policy is TimePolicy.NEAREST
    assert cfg.types["mask"].mode == "copy"
    assert Path(cfg.types["dark"].rules or "") == (tmp_path / "special" / "rules.dark").resolve()
    assert cfg.types["dark"].policy is TimePolicy.BEFORE


def test_unknown_type_defaults(tmp_path: Path):
    cfg = config_from_dict({}, base_dir=tmp_path)
    assert cfg.types == {}
    tc = cfg.type_config("bias")
    assert tc.policy is TimePolicy.BEFORE
    assert tc.mode == "dynamic"
    assert Path(cfg.output_dir) == tmp_path.resolve()


@pytest.mark.parametrize(
    "raw",
    [
        {"output_dir": "w", "colour": "blue"},
        {"types": {"flat": {"policy": "soonest"}}},
        {"types": {"flat": {"mode": "sometimes"}}},
        {"index_format": "xml"},
        {"lock_timeout_s": -1},
    ],
)
def test_invalid_configs_raise(tmp_path: Path, raw: dict):
    with pytest.raises(ConfigError):
        config_from_dict(raw, base_dir=tmp_path)


def test_bad_yaml_is_a_config_error(tmp_path: Path):
    p = tmp_path / "bad.yaml"
    p.write_text("types: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)

    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)


def test_schema_validate_report():
    rep = schema_validate({"types": {"flat": {"policy": "before", "bogus": 1}}})
    assert not rep.ok
    assert rep.errors[0].code == "UNKNOWN_KEY"
    assert "bogus" in rep.errors[0].message

    rep = schema_validate({})
    assert rep.ok
    assert [w.code for w in rep.warnings] == ["NO_TYPES"]


def test_write_config_round_trip(tmp_path: Path):
    cfg = config_from_dict({"instrument": "CGS4", "output_dir": "out"}, base_dir=tmp_path)
    p = write_config(cfg, tmp_path / "saved.yaml")
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    assert raw["types"]["arc"]["policy"] == "latest"
    assert "config_path" not in raw

    again = load_config(p)
    assert again.types["arc"].policy is TimePolicy.LATEST
    assert again.output_dir == cfg.output_dir


def test_rules_search_path_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    env_dir = tmp_path / "env"
    extra = tmp_path / "extra"
    for d in (env_dir, extra):
        d.mkdir()
    monkeypatch.setenv(RULES_PATH_ENV, str(env_dir))

    cfg = config_from_dict({"instrument": "UFTI", "rules_path": [str(extra)], "output_dir": "work"}, base_dir=tmp_path)
    dirs = rules_search_path(cfg)
    assert dirs[0] == env_dir
    assert dirs[1] == extra.resolve()
    assert dirs[2] == Path(cfg.output_dir)
    assert dirs[-1] == get_instrument("UFTI").rules_dir

    # packaged rules are found last; a local copy shadows them
    assert find_file("rules.flat", dirs) == get_instrument("UFTI").rules_dir / "rules.flat"
    (extra / "rules.flat").write_text("ORACTIME\n", encoding="utf-8")
    assert find_file("rules.flat", dirs) == extra.resolve() / "rules.flat"
    assert find_file("rules.nothing", dirs) is None


def test_instrument_type_defaults_reject_unknown_mode():
    spec = CalibTypeSpec.from_yaml("arc", {"policy": "latest", "mode": "COPY"})
    assert spec.mode == "copy" and spec.policy is TimePolicy.LATEST
    assert CalibTypeSpec.from_yaml("dark", None).policy is TimePolicy.BEFORE
    with pytest.raises(ConfigError):
        CalibTypeSpec.from_yaml("flat", {"mode": "shared"})
