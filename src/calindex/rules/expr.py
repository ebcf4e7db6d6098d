"""Restricted expression language for ``;`` rules.

Rule files may carry a free-form condition after ``;``::

    ROW_NUMBER ; abs(ROW_NUMBER - $Hdr{'ROW_NUMBER'}) < 3

The condition is compiled once (at rule-parse time) into a small AST and
evaluated without any general-purpose interpreter. Supported syntax:

* numbers (``3``, ``2.5``, ``1e-3``) and quoted strings (``'ARC'``, ``"ARC"``)
* bare identifiers - candidate header fields (dotted names allowed)
* ``$Hdr{NAME}`` / ``$Hdr{'NAME'}`` - reference header fields
* ``abs(x)``
* unary ``-`` ``+`` ``!``
* ``* /``, ``+ -``, ``< <= > >=``, ``== != eq ne``, ``&&``, ``||``
* parentheses

Precedence follows the usual C/Perl order (listed above from tightest to
loosest). ``&&`` and ``||`` short-circuit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

from calindex.errors import NotNumeric
from calindex.headers import format_value, parse_number


class ExpressionSyntaxError(ValueError):
    """Raised when an expression cannot be compiled."""

    def __init__(self, message: str, *, text: str, pos: int):
        self.text = text
        self.pos = pos
        super().__init__(f"{message} at column {pos + 1} in {text!r}")


# ----------------------------------------------------------------- AST


@dataclass(frozen=True)
class Num:
    value: float


@dataclass(frozen=True)
class Str:
    value: str


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class Ref:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    func: str
    arg: "Node"


Node = Union[Num, Str, Name, Ref, Unary, Binary, Call]


# ------------------------------------------------------------ tokenizer


_REF_RE = re.compile(r"""\$Hdr\{\s*(?:'([^']*)'|"([^"]*)"|([A-Za-z_][\w.\-]*))\s*\}""")
_NUM_RE = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*")
_OPS = ("<=", ">=", "==", "!=", "&&", "||", "<", ">", "+", "-", "*", "/", "!", "(", ")")
_WORD_OPS = frozenset({"eq", "ne"})
_FUNCS = frozenset({"abs"})


@dataclass(frozen=True)
class _Tok:
    kind: str  # num|str|name|ref|op|end
    value: Any
    pos: int


def _tokenize(text: str, extra_names: Iterable[str] = ()) -> list[_Tok]:
    # Field names that are not plain identifiers (e.g. DATE-OBS) are matched
    # verbatim, longest first.
    literal_names = sorted({n for n in extra_names if n and not _IDENT_RE.fullmatch(n)}, key=len, reverse=True)

    toks: list[_Tok] = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c.isspace():
            i += 1
            continue

        if c == "$":
            m = _REF_RE.match(text, i)
            if not m:
                raise ExpressionSyntaxError("malformed $Hdr{...} reference", text=text, pos=i)
            name = next(g for g in m.groups() if g is not None)
            if not name:
                raise ExpressionSyntaxError("empty $Hdr{} reference", text=text, pos=i)
            toks.append(_Tok("ref", name, i))
            i = m.end()
            continue

        if c in "'\"":
            j = text.find(c, i + 1)
            if j < 0:
                raise ExpressionSyntaxError("unterminated string", text=text, pos=i)
            toks.append(_Tok("str", text[i + 1 : j], i))
            i = j + 1
            continue

        m = _NUM_RE.match(text, i)
        if m and (c.isdigit() or c == "."):
            toks.append(_Tok("num", float(m.group(0)), i))
            i = m.end()
            continue

        matched = False
        for lit in literal_names:
            end = i + len(lit)
            if text.startswith(lit, i) and (end >= n or not (text[end].isalnum() or text[end] in "_.-")):
                toks.append(_Tok("name", lit, i))
                i = end
                matched = True
                break
        if matched:
            continue

        m = _IDENT_RE.match(text, i)
        if m:
            word = m.group(0)
            if word in _WORD_OPS:
                toks.append(_Tok("op", word, i))
            else:
                toks.append(_Tok("name", word, i))
            i = m.end()
            continue

        for op in _OPS:
            if text.startswith(op, i):
                toks.append(_Tok("op", op, i))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"unexpected character {c!r}", text=text, pos=i)

    toks.append(_Tok("end", None, n))
    return toks


# --------------------------------------------------------------- parser


class _Parser:
    def __init__(self, text: str, toks: list[_Tok]):
        self.text = text
        self.toks = toks
        self.i = 0

    def peek(self) -> _Tok:
        return self.toks[self.i]

    def take(self) -> _Tok:
        t = self.toks[self.i]
        self.i += 1
        return t

    def accept(self, *ops: str) -> str | None:
        t = self.peek()
        if t.kind == "op" and t.value in ops:
            self.i += 1
            return t.value
        return None

    def expect(self, op: str) -> None:
        if self.accept(op) is None:
            t = self.peek()
            raise ExpressionSyntaxError(f"expected {op!r}", text=self.text, pos=t.pos)

    def parse(self) -> Node:
        node = self.or_expr()
        t = self.peek()
        if t.kind != "end":
            raise ExpressionSyntaxError(f"unexpected token {t.value!r}", text=self.text, pos=t.pos)
        return node

    def or_expr(self) -> Node:
        node = self.and_expr()
        while self.accept("||"):
            node = Binary("||", node, self.and_expr())
        return node

    def and_expr(self) -> Node:
        node = self.eq_expr()
        while self.accept("&&"):
            node = Binary("&&", node, self.eq_expr())
        return node

    def eq_expr(self) -> Node:
        node = self.rel_expr()
        op = self.accept("==", "!=", "eq", "ne")
        if op:
            node = Binary(op, node, self.rel_expr())
        return node

    def rel_expr(self) -> Node:
        node = self.add_expr()
        op = self.accept("<=", ">=", "<", ">")
        if op:
            node = Binary(op, node, self.add_expr())
        return node

    def add_expr(self) -> Node:
        node = self.mul_expr()
        while True:
            op = self.accept("+", "-")
            if not op:
                return node
            node = Binary(op, node, self.mul_expr())

    def mul_expr(self) -> Node:
        node = self.unary()
        while True:
            op = self.accept("*", "/")
            if not op:
                return node
            node = Binary(op, node, self.unary())

    def unary(self) -> Node:
        op = self.accept("-", "+", "!")
        if op:
            return Unary(op, self.unary())
        return self.primary()

    def primary(self) -> Node:
        t = self.take()
        if t.kind == "num":
            return Num(t.value)
        if t.kind == "str":
            return Str(t.value)
        if t.kind == "ref":
            return Ref(t.value)
        if t.kind == "name":
            if t.value in _FUNCS:
                self.expect("(")
                arg = self.or_expr()
                self.expect(")")
                return Call(t.value, arg)
            return Name(t.value)
        if t.kind == "op" and t.value == "(":
            node = self.or_expr()
            self.expect(")")
            return node
        what = "end of expression" if t.kind == "end" else repr(t.value)
        raise ExpressionSyntaxError(f"unexpected {what}", text=self.text, pos=t.pos)


def compile_expression(text: str, *, names: Iterable[str] = ()) -> Node:
    """Compile expression text into an AST.

    ``names`` lists header field names that should be recognised as single
    identifiers even when they contain characters such as ``-``.
    """

    if not text or not text.strip():
        raise ExpressionSyntaxError("empty expression", text=text or "", pos=0)
    tokens = _tokenize(text, names)
    try:
        return _Parser(text, tokens).parse()
    except RecursionError:
        raise ExpressionSyntaxError("expression nested too deeply", text=text, pos=0) from None


# ----------------------------------------------------------- evaluation


Value = Union[float, str, bool, int]
Resolver = Callable[[str], Any]


def truthy(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v)
    return s not in ("", "0")


def _num(v: Any) -> float:
    if isinstance(v, bool):
        return 1.0 if v else 0.0
    return parse_number(v)


def _text(v: Any) -> str:
    if isinstance(v, bool):
        return "1" if v else ""
    return format_value(v)


def evaluate_expression(node: Node, *, name: Resolver, ref: Resolver) -> Value:
    """Evaluate a compiled expression.

    ``name`` resolves bare identifiers (candidate fields) and ``ref`` resolves
    ``$Hdr{...}`` references (reference fields). Resolvers raise
    :class:`~calindex.errors.MissingField` for absent fields; arithmetic on
    non-numbers raises :class:`~calindex.errors.NotNumeric`.
    """

    if isinstance(node, Num):
        return node.value
    if isinstance(node, Str):
        return node.value
    if isinstance(node, Name):
        return name(node.name)
    if isinstance(node, Ref):
        return ref(node.name)
    if isinstance(node, Call):
        # only abs() compiles
        return abs(_num(evaluate_expression(node.arg, name=name, ref=ref)))
    if isinstance(node, Unary):
        v = evaluate_expression(node.operand, name=name, ref=ref)
        if node.op == "!":
            return not truthy(v)
        x = _num(v)
        return -x if node.op == "-" else x

    op = node.op
    if op == "&&":
        left = evaluate_expression(node.left, name=name, ref=ref)
        return truthy(left) and truthy(evaluate_expression(node.right, name=name, ref=ref))
    if op == "||":
        left = evaluate_expression(node.left, name=name, ref=ref)
        return truthy(left) or truthy(evaluate_expression(node.right, name=name, ref=ref))

    a = evaluate_expression(node.left, name=name, ref=ref)
    b = evaluate_expression(node.right, name=name, ref=ref)
    if op == "eq":
        return _text(a) == _text(b)
    if op == "ne":
        return _text(a) != _text(b)

    x, y = _num(a), _num(b)
    if op == "+":
        return x + y
    if op == "-":
        return x - y
    if op == "*":
        return x * y
    if op == "/":
        if y == 0:
            raise NotNumeric(b, reason="division by zero")
        return x / y
    if op == "<":
        return x < y
    if op == "<=":
        return x <= y
    if op == ">":
        return x > y
    if op == ">=":
        return x >= y
    if op == "==":
        return x == y
    if op == "!=":
        return x != y
    raise AssertionError(f"unknown operator {op!r}")


def _walk(node: Node):
    yield node
    if isinstance(node, Unary):
        yield from _walk(node.operand)
    elif isinstance(node, Binary):
        yield from _walk(node.left)
        yield from _walk(node.right)
    elif isinstance(node, Call):
        yield from _walk(node.arg)


def references(node: Node) -> tuple[str, ...]:
    """Reference-header fields used by an expression, in order of appearance."""

    seen: dict[str, None] = {}
    for n in _walk(node):
        if isinstance(n, Ref):
            seen.setdefault(n.name, None)
    return tuple(seen)


def names(node: Node) -> tuple[str, ...]:
    """Candidate-header fields used by an expression, in order of appearance."""

    seen: dict[str, None] = {}
    for n in _walk(node):
        if isinstance(n, Name):
            seen.setdefault(n.name, None)
    return tuple(seen)
