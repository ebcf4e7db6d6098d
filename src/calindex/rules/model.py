"""Rule and RuleSet types.

The right-hand side of a rule is a tagged variant:

* :class:`Literal` - a constant from the rule file (``OBSTYPE eq 'ARC'``)
* :class:`ReferenceField` - a value taken from the reference header
  (``DETECXS <= $Hdr{DETECXS}``)
* :class:`Expression` - a compiled boolean expression (``;`` rules)

Presence-only rules carry no right-hand side.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Sequence, Union

from calindex.rules.expr import Node, references


class Operator(str, Enum):
    PRESENCE = "presence"
    EQ = "eq"
    NUM_EQ = "=="
    LE = "<="
    GE = ">="
    LT = "<"
    GT = ">"
    EXPR = "expr"

    @property
    def is_numeric(self) -> bool:
        return self in _NUMERIC_OPS

    @property
    def token(self) -> str:
        """Operator token as written in a rule file."""

        if self is Operator.EXPR:
            return ";"
        if self is Operator.PRESENCE:
            return ""
        return self.value


_NUMERIC_OPS = frozenset({Operator.NUM_EQ, Operator.LE, Operator.GE, Operator.LT, Operator.GT})


@dataclass(frozen=True)
class Literal:
    value: str
    quoted: bool = False

    def to_text(self) -> str:
        if not self.quoted:
            return self.value
        q = '"' if "'" in self.value else "'"
        return f"{q}{self.value}{q}"


@dataclass(frozen=True)
class ReferenceField:
    name: str

    def to_text(self) -> str:
        return f"$Hdr{{{self.name}}}"


@dataclass(frozen=True)
class Expression:
    text: str
    tree: Node = field(compare=False, repr=False)

    @property
    def reference_fields(self) -> tuple[str, ...]:
        return references(self.tree)

    def to_text(self) -> str:
        return self.text


Rhs = Union[Literal, ReferenceField, Expression]


@dataclass(frozen=True)
class Rule:
    """One parsed rule line."""

    field: str
    operator: Operator
    rhs: Rhs | None = None
    lineno: int | None = None

    def __post_init__(self) -> None:
        if self.operator is Operator.PRESENCE:
            if self.rhs is not None:
                raise ValueError("presence-only rules have no right-hand side")
        elif self.operator is Operator.EXPR:
            if not isinstance(self.rhs, Expression):
                raise ValueError("expr rules need an Expression right-hand side")
        elif not isinstance(self.rhs, (Literal, ReferenceField)):
            raise ValueError(f"{self.operator.value} rules need a literal or $Hdr{{}} right-hand side")

    @property
    def is_presence_only(self) -> bool:
        return self.operator is Operator.PRESENCE

    def to_text(self) -> str:
        if self.rhs is None:
            return self.field
        return f"{self.field} {self.operator.token} {self.rhs.to_text()}"

    def __str__(self) -> str:
        return self.to_text()


@dataclass(frozen=True)
class RuleSet:
    """Ordered, conjunctive set of rules for one calibration type."""

    rules: tuple[Rule, ...] = ()
    name: str | None = None
    path: Path | None = None

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def columns(self) -> tuple[str, ...]:
        """Distinct rule fields in file order (the index projection)."""

        seen: dict[str, None] = {}
        for r in self.rules:
            seen.setdefault(r.field, None)
        return tuple(seen)

    @property
    def reference_fields(self) -> tuple[str, ...]:
        """Reference-header fields the rules read through ``$Hdr{...}``."""

        seen: dict[str, None] = {}
        for r in self.rules:
            if isinstance(r.rhs, ReferenceField):
                seen.setdefault(r.rhs.name, None)
            elif isinstance(r.rhs, Expression):
                for n in r.rhs.reference_fields:
                    seen.setdefault(n, None)
        return tuple(seen)

    def to_text(self) -> str:
        return "".join(r.to_text() + "\n" for r in self.rules)

    @classmethod
    def of(cls, rules: Sequence[Rule], *, name: str | None = None) -> "RuleSet":
        return cls(rules=tuple(rules), name=name)
