from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from calindex.errors import ConfigError
from calindex.instrument_db import get_instrument
from calindex.schema import CalIndexConfig


log = logging.getLogger(__name__)

RULES_PATH_ENV = "CALINDEX_RULES_PATH"


def _norm_path_str(p: str) -> str:
    """Normalize a path string for cross-platform YAML.

    Configs are written with forward slashes; Python accepts them on Windows
    while POSIX treats backslashes as literal characters.
    """
    return str(p).replace("\\", "/")


def resolve_path(p: str | Path, *, base_dir: Path) -> Path:
    pp = Path(_norm_path_str(str(p))).expanduser()
    return pp if pp.is_absolute() else (base_dir / pp).resolve()


def _merge_instrument_defaults(raw: dict[str, Any]) -> dict[str, Any]:
    """Fill ``types`` from the packaged instrument table.

    Per-type keys given in the config win over the table.
    """

    spec = get_instrument(raw.get("instrument"))
    if spec is None:
        if raw.get("instrument"):
            log.warning("Instrument %r is not in the packaged table; no default types", raw.get("instrument"))
        return raw

    types = dict(raw.get("types") or {})
    for kind, ts in spec.types.items():
        base = {"policy": ts.policy.value, "mode": ts.mode}
        given = types.get(kind)
        if isinstance(given, Mapping):
            base.update(given)
        types[kind] = base
    out = dict(raw)
    out["instrument"] = spec.name
    out["types"] = types
    return out


def config_from_dict(raw: Mapping[str, Any], *, base_dir: str | Path | None = None) -> CalIndexConfig:
    """Validate a config mapping and resolve its relative paths.

    Relative paths resolve against ``base_dir`` (the config file directory),
    defaulting to the current directory.
    """

    base = Path(base_dir).expanduser().resolve() if base_dir is not None else Path.cwd()
    cfg = _merge_instrument_defaults(dict(raw or {}))

    if cfg.get("output_dir") is not None:
        cfg["output_dir"] = str(resolve_path(cfg["output_dir"], base_dir=base))
    else:
        cfg["output_dir"] = str(base)

    rp = cfg.get("rules_path")
    if isinstance(rp, (str, Path)):
        rp = [rp]
    if isinstance(rp, list):
        cfg["rules_path"] = [str(resolve_path(x, base_dir=base)) for x in rp]

    types = cfg.get("types")
    if isinstance(types, dict):
        fixed: dict[str, Any] = {}
        for kind, tc in types.items():
            if isinstance(tc, Mapping):
                tc = dict(tc)
                for key in ("rules", "index"):
                    if tc.get(key):
                        tc[key] = str(resolve_path(tc[key], base_dir=base))
            elif tc is None:
                tc = {}
            fixed[str(kind)] = tc
        cfg["types"] = fixed

    try:
        return CalIndexConfig.model_validate(cfg)
    except ValidationError as e:
        raise ConfigError(f"Invalid calindex configuration: {e}") from e


def load_config(cfg_path: str | Path) -> CalIndexConfig:
    """Load a YAML config file.

    ``output_dir``, ``rules_path`` and per-type ``rules``/``index`` paths are
    resolved relative to the config file directory.
    """

    cfg_path = Path(cfg_path).expanduser().resolve()
    try:
        raw = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config {cfg_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config {cfg_path} must be a mapping, got {type(raw).__name__}")

    cfg = config_from_dict(raw, base_dir=cfg_path.parent)
    cfg.config_path = str(cfg_path)
    return cfg


def write_config(cfg: CalIndexConfig | Mapping[str, Any], out_path: str | Path) -> Path:
    if isinstance(cfg, CalIndexConfig):
        data = cfg.model_dump(mode="json", exclude={"config_path"})
    else:
        data = dict(cfg)
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(_normalize_paths(data), f, sort_keys=False, allow_unicode=True)
    return out_path


def _normalize_paths(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _normalize_paths(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_normalize_paths(v) for v in obj]
    if isinstance(obj, str):
        return obj.replace("\\", "/")
    return obj


def rules_search_path(cfg: CalIndexConfig) -> list[Path]:
    """Directories searched for ``rules.<type>`` and static ``index.<type>``.

    Order (first match wins):
      1) ``$CALINDEX_RULES_PATH`` entries
      2) ``rules_path`` from the config
      3) ``output_dir``
      4) packaged rules for the configured instrument
    """

    dirs: list[Path] = []
    env = os.environ.get(RULES_PATH_ENV, "")
    for part in env.split(os.pathsep):
        if part.strip():
            dirs.append(Path(part.strip()).expanduser())
    dirs.extend(Path(p) for p in cfg.rules_path)
    dirs.append(Path(cfg.output_dir))
    spec = get_instrument(cfg.instrument)
    if spec is not None:
        dirs.append(spec.rules_dir)

    seen: set[str] = set()
    out: list[Path] = []
    for d in dirs:
        key = str(d)
        if key in seen:
            continue
        seen.add(key)
        out.append(d)
    return out


def find_file(name: str, search_path: list[Path]) -> Path | None:
    """Return the first ``dir/name`` that exists on the search path."""

    for d in search_path:
        p = d / name
        if p.is_file():
            return p
    return None
