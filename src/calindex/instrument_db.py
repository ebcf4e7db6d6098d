from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml

from calindex.errors import ConfigError
from calindex.selector import TimePolicy


INDEX_MODES = ("dynamic", "static", "copy")


def resource_path(*parts: str) -> Path:
    return Path(__file__).resolve().parent / "resources" / Path(*parts)


@dataclass(frozen=True)
class CalibTypeSpec:
    """Defaults for one calibration kind of an instrument."""

    kind: str
    policy: TimePolicy = TimePolicy.BEFORE
    mode: str = "dynamic"
    notes: str = ""

    @classmethod
    def from_yaml(cls, kind: str, raw: dict | None) -> "CalibTypeSpec":
        raw = raw or {}
        mode = str(raw.get("mode", "dynamic")).lower()
        if mode not in INDEX_MODES:
            raise ConfigError(f"{kind}: unknown index mode {mode!r} (expected one of {', '.join(INDEX_MODES)})")
        return cls(kind=kind, policy=TimePolicy.parse(raw.get("policy")), mode=mode, notes=str(raw.get("notes", "")))


@dataclass(frozen=True)
class InstrumentSpec:
    name: str
    title: str = ""
    types: dict[str, CalibTypeSpec] = field(default_factory=dict)

    @property
    def rules_dir(self) -> Path:
        """Packaged rules for this instrument (``resources/rules/<name>``)."""
        return resource_path("rules", self.name.lower())


@lru_cache(maxsize=1)
def load_instrument_db() -> dict[str, InstrumentSpec]:
    """Instrument table shipped in ``resources/instruments.yaml``, keyed by upper-case name."""

    with resource_path("instruments.yaml").open(encoding="utf-8") as f:
        table = yaml.safe_load(f) or {}

    db: dict[str, InstrumentSpec] = {}
    for name, body in table.items():
        body = body or {}
        key = str(name).upper()
        types = {str(k): CalibTypeSpec.from_yaml(str(k), v) for k, v in (body.get("types") or {}).items()}
        db[key] = InstrumentSpec(name=key, title=str(body.get("title", key)), types=types)
    return db


def get_instrument(name: str | None) -> InstrumentSpec | None:
    if not name:
        return None
    return load_instrument_db().get(name.strip().upper())
