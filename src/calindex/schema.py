"""Pydantic schema for calindex configuration files.

Notes
-----
- Unknown keys are errors (``extra="forbid"``): a typo in a policy name must
  not silently fall back to a default.
- ``schema_validate()`` returns a small report object (ok/errors/warnings)
  for the CLI; :func:`calindex.config.config_from_dict` raises instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from calindex.selector import TimePolicy


IndexMode = Literal["dynamic", "static", "copy"]
IndexFormat = Literal["text", "json"]


# ---------------------------- report objects ----------------------------


@dataclass(frozen=True)
class SchemaIssue:
    code: str
    message: str
    hint: str = ""


@dataclass(frozen=True)
class SchemaReport:
    ok: bool
    errors: List[SchemaIssue]
    warnings: List[SchemaIssue]


# ------------------------------ pydantic ------------------------------


class CalibTypeConfig(BaseModel):
    """Per calibration type settings.

    mode:
      - dynamic: index file lives in ``output_dir``
      - static: index file is found on the rules search path (read-only)
      - copy: static index copied into ``output_dir`` on first use
    """

    model_config = ConfigDict(extra="forbid")

    policy: TimePolicy = TimePolicy.BEFORE
    mode: IndexMode = "dynamic"
    rules: Optional[str] = None
    index: Optional[str] = None

    @field_validator("policy", mode="before")
    @classmethod
    def _parse_policy(cls, v: Any) -> TimePolicy:
        return TimePolicy.parse(v)


class CalIndexConfig(BaseModel):
    """Top-level configuration."""

    model_config = ConfigDict(extra="forbid")

    instrument: Optional[str] = None
    output_dir: str = "."
    rules_path: List[str] = Field(default_factory=list)
    index_format: IndexFormat = "text"
    lock_timeout_s: float = Field(default=10.0, ge=0.0)
    types: Dict[str, CalibTypeConfig] = Field(default_factory=dict)

    # Filled in by the loader.
    config_path: Optional[str] = None

    @field_validator("rules_path", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def type_config(self, kind: str) -> CalibTypeConfig:
        return self.types.get(kind) or CalibTypeConfig()


def schema_validate(cfg: Dict[str, Any]) -> SchemaReport:
    """Validate a config dict against the schema."""

    try:
        CalIndexConfig.model_validate(cfg)
    except ValidationError as e:
        errors: List[SchemaIssue] = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", ()))
            code = "UNKNOWN_KEY" if err.get("type") == "extra_forbidden" else "SCHEMA"
            errors.append(
                SchemaIssue(
                    code=code,
                    message=f"{loc}: {err.get('msg', '')}",
                    hint="Remove/rename unknown keys" if code == "UNKNOWN_KEY" else "Check config types/sections",
                )
            )
        return SchemaReport(ok=False, errors=errors, warnings=[])

    warnings: List[SchemaIssue] = []
    if not cfg.get("types") and not cfg.get("instrument"):
        warnings.append(
            SchemaIssue(
                code="NO_TYPES",
                message="Neither 'instrument' nor 'types' is set; every calibration type uses defaults.",
            )
        )
    return SchemaReport(ok=True, errors=[], warnings=warnings)
