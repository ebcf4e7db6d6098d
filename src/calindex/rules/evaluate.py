"""Predicate evaluation.

``evaluate(rule, reference, candidate)`` returns True/False or raises an
:class:`~calindex.errors.EvaluationError` subclass. A rule set matches a
candidate iff every rule evaluates True; evaluation has no side effects, so
rule order only affects which failure is reported first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal as TLiteral

from calindex.errors import EvaluationError, MissingField, NotNumeric
from calindex.headers import HeaderLike, HeaderSet, format_value, parse_number
from calindex.rules.expr import evaluate_expression, truthy
from calindex.rules.model import Expression, Literal, Operator, ReferenceField, Rule, RuleSet


FailureReason = TLiteral["false", "missing_field", "not_numeric"]


def _rhs_value(rule: Rule, reference: HeaderSet):
    rhs = rule.rhs
    if isinstance(rhs, ReferenceField):
        return reference.value(rhs.name)
    assert isinstance(rhs, Literal)
    return rhs.value


def evaluate(rule: Rule, reference: HeaderSet | HeaderLike, candidate: HeaderSet | HeaderLike) -> bool:
    """Evaluate one rule for a (reference, candidate) pair.

    Raises
    ------
    MissingField
        A field used by the rule is absent from the candidate or reference.
    NotNumeric
        A numeric comparison or arithmetic saw a non-numeric value.
    """

    ref = HeaderSet.coerce(reference, side="reference")
    cand = HeaderSet.coerce(candidate, side="candidate")
    op = rule.operator

    if op is Operator.PRESENCE:
        return rule.field in cand

    if op is Operator.EXPR:
        rhs = rule.rhs
        assert isinstance(rhs, Expression)
        # The rule's own field must exist even if the expression ignores it.
        cand.value(rule.field)
        result = evaluate_expression(rhs.tree, name=cand.value, ref=ref.value)
        return truthy(result)

    if op is Operator.EQ:
        left = cand.text(rule.field)
        right = _rhs_value(rule, ref)
        return left == format_value(right)

    x = cand.number(rule.field)
    ref_name = rule.rhs.name if isinstance(rule.rhs, ReferenceField) else None
    y = parse_number(_rhs_value(rule, ref), field=ref_name)
    if op is Operator.NUM_EQ:
        return x == y
    if op is Operator.LE:
        return x <= y
    if op is Operator.GE:
        return x >= y
    if op is Operator.LT:
        return x < y
    if op is Operator.GT:
        return x > y
    raise AssertionError(f"unhandled operator {op!r}")


@dataclass(frozen=True)
class RuleFailure:
    """First rule that disqualified a candidate."""

    rule: Rule
    reason: FailureReason
    error: EvaluationError | None = None

    def describe(self) -> str:
        if self.error is not None:
            return f"{self.rule}: {self.error}"
        return f"failed {self.rule}"


def check(ruleset: RuleSet, reference: HeaderSet | HeaderLike, candidate: HeaderSet | HeaderLike) -> RuleFailure | None:
    """Return the first failing rule, or ``None`` if every rule holds."""

    ref = HeaderSet.coerce(reference, side="reference")
    cand = HeaderSet.coerce(candidate, side="candidate")
    for rule in ruleset:
        try:
            ok = evaluate(rule, ref, cand)
        except MissingField as e:
            return RuleFailure(rule, "missing_field", e)
        except NotNumeric as e:
            return RuleFailure(rule, "not_numeric", e)
        if not ok:
            return RuleFailure(rule, "false")
    return None


def matches(ruleset: RuleSet, reference: HeaderSet | HeaderLike, candidate: HeaderSet | HeaderLike) -> bool:
    """True iff every rule in ``ruleset`` holds for the candidate."""

    return check(ruleset, reference, candidate) is None
