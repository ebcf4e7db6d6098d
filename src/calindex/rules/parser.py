"""Rule-file parser.

Rule files (``rules.<type>``) are line oriented::

    # comment
    OBSTYPE eq 'ARC'
    DETECXS <= $Hdr{DETECXS}
    ROW_NUMBER ; abs(ROW_NUMBER - $Hdr{'ROW_NUMBER'}) < 3
    ORACTIME

Each non-blank, non-comment line is ``field [operator rhs]``. A bare field is
a presence-only rule. ``;`` introduces an expression, compiled with
:mod:`calindex.rules.expr`. Any syntax error raises
:class:`~calindex.errors.MalformedRule` naming the file and line: a rule set
is never loaded with a rule silently skipped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from calindex.errors import MalformedRule
from calindex.rules.expr import ExpressionSyntaxError, compile_expression
from calindex.rules.model import Expression, Literal, Operator, ReferenceField, Rule, RuleSet


log = logging.getLogger(__name__)

_FIELD = r"[A-Za-z_][\w\-]*(?:\.[\w\-]+)*"
_FIELD_RE = re.compile(_FIELD)
# "eq" needs a separator after it so that a field like "equinox" is never
# read as an operator.
_OP_RE = re.compile(r"(<=|>=|==|<|>|;|eq(?=\s|['\"$]|$))")
_REF_RE = re.compile(r"""\$Hdr\{\s*(?:'(?P<sq>[^']*)'|"(?P<dq>[^"]*)"|(?P<bare>[^'"\s}]+))\s*\}""")

_OPERATORS = {
    "eq": Operator.EQ,
    "==": Operator.NUM_EQ,
    "<=": Operator.LE,
    ">=": Operator.GE,
    "<": Operator.LT,
    ">": Operator.GT,
    ";": Operator.EXPR,
}


def strip_comment(line: str) -> str:
    """Remove a ``#`` comment that is not inside a quoted string."""

    quote: str | None = None
    for i, c in enumerate(line):
        if quote:
            if c == quote:
                quote = None
        elif c in "'\"":
            quote = c
        elif c == "#":
            return line[:i]
    return line


def _parse_value(text: str) -> Literal | ReferenceField:
    """Parse the right-hand side of a relational rule."""

    s = text.strip()
    if not s:
        raise ValueError("missing right-hand side")

    if s.startswith("$"):
        m = _REF_RE.fullmatch(s)
        if not m:
            raise ValueError(f"malformed reference token {s!r}")
        name = m.group("sq") if m.group("sq") is not None else m.group("dq") or m.group("bare")
        name = (name or "").strip()
        if not name or not _FIELD_RE.fullmatch(name):
            raise ValueError(f"invalid field name in reference token {s!r}")
        return ReferenceField(name)

    if s[0] in "'\"":
        q = s[0]
        if len(s) < 2 or s[-1] != q or q in s[1:-1]:
            raise ValueError(f"unterminated or malformed quoted literal {s!r}")
        return Literal(s[1:-1], quoted=True)

    if any(c.isspace() for c in s):
        raise ValueError(f"unquoted literal contains whitespace: {s!r}")
    if any(c in "'\"" for c in s):
        raise ValueError(f"stray quote in literal {s!r}")
    return Literal(s)


def parse_rule(line: str, *, lineno: int | None = None, path: str | Path | None = None) -> Rule | None:
    """Parse one rule line. Returns ``None`` for blank/comment lines."""

    body = strip_comment(line).strip()
    if not body:
        return None

    m = _FIELD_RE.match(body)
    if not m:
        raise MalformedRule("line does not start with a field name", path=path, lineno=lineno, line=line)
    field = m.group(0)
    rest = body[m.end() :]

    if not rest.strip():
        return Rule(field, Operator.PRESENCE, None, lineno=lineno)

    rest_s = rest.lstrip()
    om = _OP_RE.match(rest_s)
    if not om:
        raise MalformedRule(f"unknown operator after field {field!r}", path=path, lineno=lineno, line=line)
    op = _OPERATORS[om.group(1)]
    rhs_text = rest_s[om.end() :].strip()

    if not rhs_text:
        raise MalformedRule(f"operator {om.group(1)!r} has no right-hand side", path=path, lineno=lineno, line=line)

    if op is Operator.EXPR:
        try:
            tree = compile_expression(rhs_text, names=(field,))
        except ExpressionSyntaxError as e:
            raise MalformedRule(f"invalid expression: {e}", path=path, lineno=lineno, line=line) from e
        return Rule(field, op, Expression(rhs_text, tree), lineno=lineno)

    try:
        rhs = _parse_value(rhs_text)
    except ValueError as e:
        raise MalformedRule(str(e), path=path, lineno=lineno, line=line) from e
    return Rule(field, op, rhs, lineno=lineno)


def parse_rules(text: str, *, name: str | None = None, path: str | Path | None = None) -> RuleSet:
    """Parse rule-file text into a :class:`RuleSet`.

    Both ``\\n`` and ``\\r\\n`` line endings are accepted; a leading UTF-8 BOM is
    ignored.
    """

    if text.startswith("\ufeff"):
        text = text[1:]
    rules: list[Rule] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        r = parse_rule(line, lineno=lineno, path=path)
        if r is not None:
            rules.append(r)
    return RuleSet(rules=tuple(rules), name=name, path=Path(path) if path is not None else None)


def rules_name_from_path(path: str | Path) -> str:
    """``rules.flat`` -> ``flat``; other names are returned without suffix."""

    p = Path(path)
    if p.name.startswith("rules.") and len(p.name) > len("rules."):
        return p.name[len("rules.") :]
    return p.stem


def load_rules(path: str | Path, *, name: str | None = None) -> RuleSet:
    """Read and parse a rules file."""

    p = Path(path)
    text = p.read_text(encoding="utf-8")
    rs = parse_rules(text, name=name or rules_name_from_path(p), path=p)
    log.debug("Loaded %d rules from %s (columns: %s)", len(rs), p, ", ".join(rs.columns))
    return rs
