"""
connections/filter.py

Field predicate filter over raw (unmapped) upstream records.

Comparison rules:
  - both sides numeric  → compared as numbers ("120S" delays count as 120)
  - otherwise           → compared as strings
  - missing delay field → treated as 0
  - missing other field → record dropped

Usage:
    check_operator(">=")                                 # raises on unknown
    kept = filter_records(raw.data, "departureDelay", ">=", "60")
"""

from __future__ import annotations

import logging
import operator as _op
from typing import Any, Callable, Iterable, Mapping

from .errors import InvalidFilterOperator
from .models import DELAY_KEYS, parse_delay

logger = logging.getLogger(__name__)

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=":  _op.eq,
    "!=": _op.ne,
    "<":  _op.lt,
    "<=": _op.le,
    ">":  _op.gt,
    ">=": _op.ge,
}


def check_operator(operator: str) -> Callable[[Any, Any], bool]:
    """Return the comparison for ``operator`` or raise InvalidFilterOperator."""
    try:
        return OPERATORS[operator]
    except KeyError:
        raise InvalidFilterOperator(operator) from None


def _as_number(key: str, value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        if key in DELAY_KEYS:
            return float(parse_delay(value))
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def matches(
    entry: Mapping[str, Any],
    key: str,
    compare: Callable[[Any, Any], bool],
    value: Any,
) -> bool:
    """Evaluate one predicate against one raw record."""
    if key in entry:
        field_value = entry[key]
    elif key in DELAY_KEYS:
        field_value = 0
    else:
        return False

    left = _as_number(key, field_value)
    right = _as_number(key, value)
    if left is not None and right is not None:
        return compare(left, right)
    return compare(str(field_value), str(value))


def normalise_delays(entry: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a raw record, filling absent delay fields with 0."""
    out = dict(entry)
    for key in DELAY_KEYS:
        out.setdefault(key, 0)
    return out


def filter_records(
    records: Iterable[Mapping[str, Any]],
    key: str,
    operator: str,
    value: Any,
) -> list[dict[str, Any]]:
    """
    Keep the records for which ``record[key] <operator> value`` holds.

    Relative order is preserved. Returned records are copies with delay
    fields defaulted to 0; the input is never modified.

    Raises:
        InvalidFilterOperator: ``operator`` is not one of = != < <= > >=.
    """
    compare = check_operator(operator)
    kept = [
        normalise_delays(entry)
        for entry in records
        if matches(entry, key, compare, value)
    ]
    logger.debug("Filter %s %s %r kept %d records", key, operator, value, len(kept))
    return kept
