"""Condition Evaluator

Evaluates a single comparison of a value found at a dot-separated key path
against a literal. Used by condition and switch nodes to pick a branch.

Rules:
- Key paths walk nested dicts and lists ("user.tags.0"). A missing segment
  resolves to MISSING.
- MISSING compares false for every operator except "!=", which is true.
- Literals are coerced to the field's type where that is unambiguous
  ("100" vs 150 compares numerically, "true" vs True compares as booleans).
- Evaluation never raises and never mutates the input.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for an unresolvable key path."""

    _instance: Optional["_Missing"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

OPERATORS = ("==", "===", "!=", ">", "<", ">=", "<=", "contains")

# Named spellings accepted in stored workflows
OPERATOR_ALIASES = {
    "equals": "==",
    "strictEquals": "===",
    "notEquals": "!=",
    "greaterThan": ">",
    "lessThan": "<",
    "greaterThanOrEqual": ">=",
    "lessThanOrEqual": "<=",
}

_ORDERING_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


def resolve_key_path(data: Any, key_path: str) -> Any:
    """Resolve a dot-separated key path against nested maps and sequences.

    Args:
        data: Nested mapping / sequence structure
        key_path: Path such as "query.utm_source" or "items.0.sku"

    Returns:
        The resolved value, or MISSING if any segment is absent
    """
    if not isinstance(key_path, str) or not key_path.strip():
        return MISSING

    current = data
    for segment in key_path.strip().split("."):
        if segment == "":
            return MISSING
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value.strip())
    except (ValueError, AttributeError):
        return None


def _coerce_pair(left: Any, right: Any) -> Tuple[Any, Any]:
    """Coerce a literal against a resolved value where the intent is unambiguous."""
    if _is_number(left) and isinstance(right, str):
        number = _to_number(right)
        if number is not None:
            return left, number
    elif isinstance(left, str) and _is_number(right):
        number = _to_number(left)
        if number is not None:
            return number, right
    elif isinstance(left, bool) and isinstance(right, str):
        lowered = right.strip().lower()
        if lowered in ("true", "false"):
            return left, lowered == "true"
    elif isinstance(left, str) and isinstance(right, bool):
        lowered = left.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true", right
    return left, right


def _equals(left: Any, right: Any) -> bool:
    left, right = _coerce_pair(left, right)
    # bool is an int subclass; keep True != 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _contains(container: Any, literal: Any) -> bool:
    if isinstance(container, str):
        return str(literal) in container
    if isinstance(container, Mapping):
        return literal in container
    if isinstance(container, (list, tuple, set, frozenset)):
        return any(_equals(item, literal) for item in container)
    return False


def evaluate(data: Any, key_path: str, op: str, literal: Any) -> bool:
    """Evaluate `<value at key_path> <op> <literal>`.

    Args:
        data: Input data (never mutated)
        key_path: Dot-separated key path
        op: One of OPERATORS or a name in OPERATOR_ALIASES
        literal: Value to compare against

    Returns:
        Boolean result; False for unknown operators or type mismatches
    """
    op = OPERATOR_ALIASES.get(op, op)
    value = resolve_key_path(data, key_path)

    if value is MISSING:
        return op == "!="

    try:
        if op in ("==", "==="):
            return _equals(value, literal)
        if op == "!=":
            return not _equals(value, literal)
        if op == "contains":
            return _contains(value, literal)
        if op in _ORDERING_OPS:
            left, right = _coerce_pair(value, literal)
            if isinstance(left, bool) or isinstance(right, bool):
                return False
            if left is None or right is None:
                return False
            return bool(_ORDERING_OPS[op](left, right))
    except TypeError:
        return False

    logger.warning(f"Unknown condition operator '{op}', evaluating to false")
    return False


@dataclass
class Condition:
    """A configured condition: keyPath, operator, value."""

    key_path: str
    operator: str = "=="
    value: Any = None

    @classmethod
    def from_config(cls, config: Any) -> Optional["Condition"]:
        """Build from node config ({key|keyPath, operator, value}).

        Returns None when no usable condition is configured.
        """
        if not isinstance(config, Mapping):
            return None
        key_path = config.get("keyPath", config.get("key"))
        if not isinstance(key_path, str) or not key_path.strip():
            return None
        return cls(
            key_path=key_path.strip(),
            operator=config.get("operator") or "==",
            value=config.get("value"),
        )

    def evaluate(self, data: Any) -> bool:
        return evaluate(data, self.key_path, self.operator, self.value)

    def resolve(self, data: Any) -> Any:
        """Return the value at key_path, or None when missing."""
        value = resolve_key_path(data, self.key_path)
        return None if value is MISSING else value
