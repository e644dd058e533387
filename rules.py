"""
Badge rule evaluation.

A badge is earned when every one of its rules holds for the user's snapshot.
Field lookups never raise: a missing path simply makes the rule false. Numeric
operators coerce both sides to float; anything that is not a number or a
numeric string becomes NaN, and every comparison with NaN is false. A stored
rule that no longer validates is logged and counts as false.
"""

import logging
import math
import re
from collections.abc import Mapping, Sequence
from typing import Any, Callable, Dict, Iterable, Union

from pydantic import ValidationError as PydanticValidationError

from schemas import Rule

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()
NAN = float("nan")

# plain decimal notation only: no underscores, hex, inf or nan
_DECIMAL = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def resolve_field(data: Mapping, path: str) -> Any:
    value: Any = data
    for key in path.split("."):
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        elif _is_sequence(value) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return MISSING
    return value


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return NAN
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not _DECIMAL.fullmatch(text):
            return NAN
        number = float(text)
        return number if math.isfinite(number) else NAN
    return NAN


def strict_equals(left: Any, right: Any) -> bool:
    """Type-sensitive equality: no bool/number or number/string crossover."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


def _equals(field: Any, rule: Rule) -> bool:
    return strict_equals(field, rule.value)


def _greater_than(field: Any, rule: Rule) -> bool:
    return to_number(field) > to_number(rule.value)


def _less_than(field: Any, rule: Rule) -> bool:
    return to_number(field) < to_number(rule.value)


def _contains(field: Any, rule: Rule) -> bool:
    return _is_sequence(field) and any(strict_equals(member, rule.value) for member in field)


def _between(field: Any, rule: Rule) -> bool:
    number = to_number(field)
    # value is the lower bound, value2 the upper; reversed bounds match nothing
    return number >= to_number(rule.value) and number <= to_number(rule.value2)


OPERATORS: Dict[str, Callable[[Any, Rule], bool]] = {
    "equals": _equals,
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": _contains,
    "between": _between,
}


def evaluate_rule(snapshot: Mapping, rule: Union[Rule, Mapping]) -> bool:
    if not isinstance(rule, Rule):
        try:
            rule = Rule.model_validate(rule)
        except PydanticValidationError as e:
            logger.warning("Skipping malformed rule %r: %s", rule, e)
            return False
    return OPERATORS[rule.operator](resolve_field(snapshot, rule.field), rule)


def evaluate(snapshot: Mapping, rules: Iterable[Union[Rule, Mapping]]) -> bool:
    """True only if every rule holds; stops at the first failing rule."""
    for rule in rules:
        if not evaluate_rule(snapshot, rule):
            return False
    return True
