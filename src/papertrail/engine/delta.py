"""Delta engine - structural differences between snapshots."""

import json
import math
from collections.abc import Mapping
from datetime import date, time
from decimal import Decimal, InvalidOperation
from difflib import SequenceMatcher
from enum import Enum
from typing import Any

from pydantic_core import to_jsonable_python

from papertrail.models import DeltaEntry, DeltaKind


def diff(
    previous: Mapping[str, Any],
    current: Mapping[str, Any],
    strict: bool = True,
) -> list[DeltaEntry]:
    """
    Compute the ordered delta between two snapshots.

    Entries follow the key order of ``current``, then keys only present in
    ``previous``. Sequence values are compared item by item and reported as
    ``A`` entries wrapping the item-level change.
    """
    delta: list[DeltaEntry] = []
    _diff_mapping((), previous, current, strict, delta)
    return delta


def _diff_mapping(
    path: tuple[Any, ...],
    lhs: Mapping[str, Any],
    rhs: Mapping[str, Any],
    strict: bool,
    out: list[DeltaEntry],
) -> None:
    for key, value in rhs.items():
        if key not in lhs:
            out.append(DeltaEntry(DeltaKind.NEW, path + (key,), rhs=value))
        else:
            _diff_value(path + (key,), lhs[key], value, strict, out)
    for key, value in lhs.items():
        if key not in rhs:
            out.append(DeltaEntry(DeltaKind.DELETED, path + (key,), lhs=value))


def _diff_value(
    path: tuple[Any, ...],
    lhs: Any,
    rhs: Any,
    strict: bool,
    out: list[DeltaEntry],
) -> None:
    if isinstance(lhs, Mapping) and isinstance(rhs, Mapping):
        _diff_mapping(path, lhs, rhs, strict, out)
    elif _is_sequence(lhs) and _is_sequence(rhs):
        _diff_sequence(path, lhs, rhs, strict, out)
    elif not values_equal(lhs, rhs, strict):
        out.append(DeltaEntry(DeltaKind.EDITED, path, lhs=lhs, rhs=rhs))


def _diff_sequence(
    path: tuple[Any, ...],
    lhs: Any,
    rhs: Any,
    strict: bool,
    out: list[DeltaEntry],
) -> None:
    for index in range(max(len(lhs), len(rhs))):
        if index >= len(lhs):
            item = DeltaEntry(DeltaKind.NEW, rhs=rhs[index])
        elif index >= len(rhs):
            item = DeltaEntry(DeltaKind.DELETED, lhs=lhs[index])
        else:
            left, right = lhs[index], rhs[index]
            if (isinstance(left, Mapping) and isinstance(right, Mapping)) or (
                _is_sequence(left) and _is_sequence(right)
            ):
                _diff_value(path + (index,), left, right, strict, out)
                continue
            if values_equal(left, right, strict):
                continue
            item = DeltaEntry(DeltaKind.EDITED, lhs=left, rhs=right)
        out.append(DeltaEntry(DeltaKind.ARRAY, path, index=index, item=item))


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return Decimal(int(value))
    if _is_number(value):
        if _is_nan(value):
            return None
        return Decimal(str(value))
    if isinstance(value, str) and value.strip():
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def values_equal(lhs: Any, rhs: Any, strict: bool = True) -> bool:
    """Compare two scalar values under strict or loose equality."""
    if _is_nan(lhs) and _is_nan(rhs):
        return True
    if _is_number(lhs) and _is_number(rhs):
        return lhs == rhs
    if type(lhs) is type(rhs) and lhs == rhs:
        return True
    if strict:
        return False

    if lhs is None or rhs is None:
        return lhs is None and rhs is None
    left, right = _as_number(lhs), _as_number(rhs)
    if left is not None and right is not None:
        return left == right
    if isinstance(lhs, str) or isinstance(rhs, str):
        return diff_to_string(lhs) == diff_to_string(rhs)
    return lhs == rhs


def diff_to_string(value: Any) -> str:
    """Human-readable form of a value used for character diffs."""
    if value is None:
        return ""
    if value is True:
        return "1"
    if value is False:
        return "0"
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return diff_to_string(value.value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if _is_number(value):
        return str(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    return json.dumps(to_jsonable_python(value, fallback=str), separators=(",", ":"))


def char_diff(old: str, new: str) -> list[dict[str, Any]]:
    """Character-level diff of two strings as unchanged/removed/added parts."""
    if not old and not new:
        return []

    parts: list[dict[str, Any]] = []
    matcher = SequenceMatcher(None, old, new, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            parts.append({"count": i2 - i1, "value": old[i1:i2]})
            continue
        if i2 > i1:
            parts.append({"count": i2 - i1, "value": old[i1:i2], "removed": True})
        if j2 > j1:
            parts.append({"count": j2 - j1, "value": new[j1:j2], "added": True})
    return parts


def apply_char_diff(old: str, parts: list[dict[str, Any]]) -> str:
    """Rebuild the new string from ``old`` and a character diff."""
    source = "".join(part["value"] for part in parts if not part.get("added"))
    if source != old:
        raise ValueError("Character diff does not apply to the given string")
    return "".join(part["value"] for part in parts if not part.get("removed"))
