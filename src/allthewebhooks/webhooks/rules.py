"""Attribute conditions attached to a target.

A condition maps an attribute name to either a bare value (equality) or
an operator mapping::

    {"block.type": ["DIAMOND_ORE", "EMERALD_ORE"],
     "damage.amount": {"greater-than": 5}}

Equality is case-insensitive on the string form; a list means any-of.
Numeric operators treat unparseable values as 0.
"""

from typing import Any, Mapping

OPERATORS = frozenset({
    "equals",
    "not",
    "greater-than",
    "less-than",
    "greater-than-or-equal",
    "less-than-or-equal",
})


def validate_conditions(conditions: Mapping[str, Any]) -> None:
    """Reject operator mappings using unknown operators.

    Raises:
        ValueError: On an unknown operator or empty attribute name.
    """
    for field, condition in conditions.items():
        if not field:
            raise ValueError("Condition attribute name must not be empty")
        if isinstance(condition, Mapping):
            unknown = sorted(str(op) for op in condition if str(op).lower() not in OPERATORS)
            if unknown:
                raise ValueError(
                    f"Unknown condition operator(s) for '{field}': {', '.join(unknown)}"
                )


def evaluate(conditions: Mapping[str, Any], attributes: Mapping[str, Any]) -> bool:
    """Check whether every condition holds for the event attributes."""
    if not conditions:
        return True
    for field, condition in conditions.items():
        if not _evaluate_condition(attributes.get(field), condition):
            return False
    return True


def _evaluate_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, Mapping):
        return all(
            _evaluate_operator(value, str(operator).lower(), expected)
            for operator, expected in condition.items()
        )
    return _evaluate_operator(value, "equals", condition)


def _evaluate_operator(value: Any, operator: str, expected: Any) -> bool:
    if operator == "equals":
        return _matches_equals(value, expected)
    if operator == "not":
        return not _matches_equals(value, expected)
    if operator == "greater-than":
        return _to_number(value) > _to_number(expected)
    if operator == "less-than":
        return _to_number(value) < _to_number(expected)
    if operator == "greater-than-or-equal":
        return _to_number(value) >= _to_number(expected)
    if operator == "less-than-or-equal":
        return _to_number(value) <= _to_number(expected)
    return False


def _matches_equals(value: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return any(_matches_equals(value, item) for item in expected)
    if value is None:
        return expected is None
    if expected is None:
        return False
    return _as_text(value).casefold() == _as_text(expected).casefold()


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    try:
        return float(str(value))
    except ValueError:
        return 0.0
