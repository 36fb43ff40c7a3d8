"""
Comparison operators for policy targets and rules.

The catalog is closed: each ``Operator`` member is bound to a pure predicate
``(actual, expected) -> bool``. Attribute values are strings, so every
predicate compares string forms unless it coerces explicitly.
"""
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..models import stringify_value


class Operator(Enum):
    """Comparison operators for policy targets and rules."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    REGEX = "regex"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"

    @classmethod
    def parse(cls, name: Any) -> Optional["Operator"]:
        """Resolve an operator name or alias; ``None`` if unknown."""
        if isinstance(name, Operator):
            return name
        if name is None:
            return None
        key = str(name).strip()
        key = OPERATOR_ALIASES.get(key.lower(), key.lower())
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def is_unary(self) -> bool:
        return self in (Operator.EXISTS, Operator.NOT_EXISTS)

    def apply(self, actual: Any, expected: Any = None) -> bool:
        """Evaluate the predicate bound to this operator."""
        return _PREDICATES[self](actual, expected)


OPERATOR_ALIASES: Dict[str, str] = {
    "eq": "equals",
    "==": "equals",
    "ne": "not_equals",
    "!=": "not_equals",
    "gt": "greater_than",
    ">": "greater_than",
    "lt": "less_than",
    "<": "less_than",
    "matches": "regex",
}


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(stringify_value(value).strip())
    except ValueError:
        return None
    if number != number:  # NaN
        return None
    return number


def _items(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set)):
        return [stringify_value(item).strip() for item in value]
    return [item.strip() for item in stringify_value(value).split(",")]


def _equals(actual: Any, expected: Any) -> bool:
    return stringify_value(actual) == stringify_value(expected)


def _greater_than(actual: Any, expected: Any) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None:
        return False
    return left > right


def _less_than(actual: Any, expected: Any) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None:
        return False
    return left < right


def _contains(actual: Any, expected: Any) -> bool:
    return stringify_value(expected) in stringify_value(actual)


def _in(actual: Any, expected: Any) -> bool:
    return stringify_value(actual).strip() in _items(expected)


def _regex(actual: Any, expected: Any) -> bool:
    try:
        pattern = re.compile(stringify_value(expected))
    except re.error:
        return False
    return pattern.search(stringify_value(actual)) is not None


def _exists(actual: Any, expected: Any = None) -> bool:
    return actual is not None and stringify_value(actual) != ""


_PREDICATES: Dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQUALS: _equals,
    Operator.NOT_EQUALS: lambda a, b: not _equals(a, b),
    Operator.GREATER_THAN: _greater_than,
    Operator.LESS_THAN: _less_than,
    Operator.CONTAINS: _contains,
    Operator.NOT_CONTAINS: lambda a, b: not _contains(a, b),
    Operator.IN: _in,
    Operator.NOT_IN: lambda a, b: not _in(a, b),
    Operator.REGEX: _regex,
    Operator.EXISTS: _exists,
    Operator.NOT_EXISTS: lambda a, b=None: not _exists(a),
}


def evaluate_operator(name: Any, actual: Any, expected: Any = None) -> Optional[bool]:
    """
    Evaluate ``actual {name} expected``.

    Returns ``None`` when the operator name is unknown so callers can log it
    and treat the condition as failed.
    """
    operator = Operator.parse(name)
    if operator is None:
        return None
    return operator.apply(actual, expected)
