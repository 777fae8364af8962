"""Evaluate step conditions against a workflow context.

A condition is either a single rule ``{"field", "operator", "value"}`` or a
group ``{"rules": [...], "combinator": "and" | "or"}``; groups nest.
Fields use dot notation into the context (``trigger_data.amount``).
An unknown operator, or a comparison that raises, evaluates to ``False``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional

from ledgerly.utils.helpers import dig

logger = logging.getLogger(__name__)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return value is False


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _text(value: Any) -> str:
    return "" if value is None else str(value)


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, b: a == b,
    "not_equals": lambda a, b: a != b,
    "greater_than": lambda a, b: float(a) > float(b),
    "less_than": lambda a, b: float(a) < float(b),
    "greater_than_or_equals": lambda a, b: float(a) >= float(b),
    "less_than_or_equals": lambda a, b: float(a) <= float(b),
    "contains": lambda a, b: _text(b) in _text(a),
    "not_contains": lambda a, b: _text(b) not in _text(a),
    "starts_with": lambda a, b: _text(a).startswith(_text(b)),
    "ends_with": lambda a, b: _text(a).endswith(_text(b)),
    "is_empty": lambda a, _b: _blank(a),
    "is_not_empty": lambda a, _b: not _blank(a),
    "in": lambda a, b: a in _as_list(b),
    "not_in": lambda a, b: a not in _as_list(b),
    "matches": lambda a, b: re.search(_text(b), _text(a)) is not None,
}


class ConditionEvaluator:
    def __init__(self, conditions: Optional[Mapping[str, Any]], context: Optional[Mapping[str, Any]]):
        self.conditions = dict(conditions or {})
        self.context = dict(context or {})

    def evaluate(self) -> bool:
        if not self.conditions:
            return True
        if self.conditions.get("rules"):
            return self._evaluate_group(self.conditions)
        if self.conditions.get("field"):
            return self._evaluate_single(self.conditions)
        return True

    def _evaluate_group(self, group: Mapping[str, Any]) -> bool:
        rules = group.get("rules") or []
        if not rules:
            return True
        results = [
            self._evaluate_group(rule) if rule.get("rules") else self._evaluate_single(rule) for rule in rules
        ]
        if str(group.get("combinator") or "and").lower() == "or":
            return any(results)
        return all(results)

    def _evaluate_single(self, condition: Mapping[str, Any]) -> bool:
        field = condition.get("field")
        operator = condition.get("operator")
        if not field or not operator:
            return True
        return self.compare(self.field_value(field), operator, condition.get("value"))

    def field_value(self, field: str) -> Any:
        return dig(self.context, str(field))

    @staticmethod
    def compare(actual: Any, operator: str, expected: Any) -> bool:
        comparator = OPERATORS.get(str(operator))
        if comparator is None:
            logger.warning("Unknown condition operator %r", operator)
            return False
        try:
            return bool(comparator(actual, expected))
        except (TypeError, ValueError, re.error) as exc:
            logger.warning("Condition comparison failed (%s %s %r): %s", actual, operator, expected, exc)
            return False
