"""Value-kind classification and structural comparison of field values.

Field values inside a content snapshot are arbitrary JSON-like data.  This
module closes them over a small set of kinds (``ValueKind``) so that change
classification and array diffing can ``match`` on the kind instead of
probing types ad hoc.

Equality is structural: two objects with the same keys in a different
order are equal, arrays compare element-wise in order, and ``True`` is
never equal to ``1`` (booleans are their own kind).  NaN equals NaN so an
unchanged field holding NaN is never reported as modified.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .models import ChangeType


class _Missing:
    """Marker for a field that is absent (as opposed to ``None``)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class ValueKind(str, Enum):
    """Closed set of field value kinds."""

    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"


def kind_of(value: Any) -> ValueKind:
    """Classify *value* into a ``ValueKind``.

    ``MISSING`` classifies as ``NULL``.

    Raises:
        TypeError: If *value* is not JSON-like (e.g. a set or arbitrary
            object).
    """
    match value:
        case None | _Missing():
            return ValueKind.NULL
        case bool():
            return ValueKind.BOOLEAN
        case int() | float() | Decimal():
            return ValueKind.NUMBER
        case str():
            return ValueKind.STRING
        case datetime() | date():
            return ValueKind.DATE
        case Mapping():
            return ValueKind.OBJECT
        case list() | tuple():
            return ValueKind.ARRAY
        case _:
            raise TypeError(
                f"Unsupported field value type: {type(value).__name__}"
            )


def values_equal(a: Any, b: Any) -> bool:
    """Return ``True`` if *a* and *b* are structurally equal."""
    if a is MISSING or b is MISSING:
        return a is b

    kind = kind_of(a)
    if kind is not kind_of(b):
        return False

    match kind:
        case ValueKind.ARRAY:
            return len(a) == len(b) and all(
                values_equal(x, y) for x, y in zip(a, b)
            )
        case ValueKind.OBJECT:
            if a.keys() != b.keys():
                return False
            return all(values_equal(a[k], b[k]) for k in a)
        case ValueKind.NUMBER:
            if math.isnan(a) and math.isnan(b):
                return True
            return a == b
        case _:
            return a == b


def classify_change(old: Any, new: Any) -> ChangeType:
    """Describe how a modified field changed from *old* to *new*.

    Objects whose key sets differ are ``object_structure`` changes; same
    keys with different values are ``object_content``.
    """
    old_kind = kind_of(old)
    if old_kind is not kind_of(new):
        return ChangeType.TYPE_CHANGE

    match old_kind:
        case ValueKind.ARRAY:
            if len(old) != len(new):
                return ChangeType.ARRAY_RESIZE
            return ChangeType.ARRAY_CONTENT
        case ValueKind.OBJECT:
            if old.keys() != new.keys():
                return ChangeType.OBJECT_STRUCTURE
            return ChangeType.OBJECT_CONTENT
        case _:
            return ChangeType.VALUE_CHANGE


# ---------------------------------------------------------------------------
# Array element diffing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArrayDifferences:
    """Element-level differences between two arrays.

    Attributes:
        added: Elements of the new array not present in the old one.
        removed: Elements of the old array not present in the new one.
        modified: New-array elements whose value differs from the old
            element at the same index.
    """

    added: list[Any] = field(default_factory=list)
    removed: list[Any] = field(default_factory=list)
    modified: list[Any] = field(default_factory=list)


def _contains(items: Sequence[Any], value: Any) -> bool:
    return any(values_equal(item, value) for item in items)


def _as_list(value: Any) -> list[Any]:
    if kind_of(value) is ValueKind.ARRAY:
        return list(value)
    return []


def array_differences(old: Any, new: Any) -> ArrayDifferences:
    """Compute element-level differences; non-arrays count as empty."""
    old_items = _as_list(old)
    new_items = _as_list(new)
    return ArrayDifferences(
        added=[x for x in new_items if not _contains(old_items, x)],
        removed=[x for x in old_items if not _contains(new_items, x)],
        modified=[
            item
            for index, item in enumerate(new_items)
            if index < len(old_items)
            and not values_equal(item, old_items[index])
        ],
    )


def arrays_conflict(
    local_diff: ArrayDifferences, remote_diff: ArrayDifferences
) -> bool:
    """Return ``True`` if both sides modified a shared array element."""
    return any(_contains(remote_diff.modified, x) for x in local_diff.modified)
