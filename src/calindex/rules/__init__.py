"""Calibration rule language.

* :mod:`calindex.rules.model` - Rule / RuleSet types
* :mod:`calindex.rules.parser` - rule-file parser
* :mod:`calindex.rules.expr` - restricted expression compiler/evaluator
* :mod:`calindex.rules.evaluate` - predicate evaluation
"""

from __future__ import annotations

from .evaluate import RuleFailure, check, evaluate, matches
from .model import Expression, Literal, Operator, ReferenceField, Rule, RuleSet
from .parser import load_rules, parse_rule, parse_rules

__all__ = [
    "Expression",
    "Literal",
    "Operator",
    "ReferenceField",
    "Rule",
    "RuleFailure",
    "RuleSet",
    "check",
    "evaluate",
    "load_rules",
    "matches",
    "parse_rule",
    "parse_rules",
]
