"""
Typed accessors for the loosely-shaped config and meta maps carried by nodes.

Node config, node meta and integration config arrive as free-form JSON
objects. Rather than probing them ad hoc, every reader goes through these
helpers so each lookup states the type it expects and what it falls back to.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence


def as_mapping(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def as_str(value: Any, default: str = "") -> str:
    """Return strings as-is and numbers in their decimal form; anything else is ``default``."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return str(value)
    return default


def as_optional_str(value: Any) -> Optional[str]:
    """Return the stripped string when it is non-blank, otherwise None."""

    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    number = as_float(value)
    if number is None:
        return default
    return int(number)


def as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    return default


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def first_str(source: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    """Return the first non-blank string stored under any of ``keys``."""

    for key in keys:
        candidate = as_optional_str(source.get(key))
        if candidate is not None:
            return candidate
    return None


def first_present(source: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in source and source[key] is not None:
            return source[key]
    return None


def get_path(value: Any, path: Sequence[str]) -> Any:
    """
    Walk ``path`` through nested mappings (and lists, for numeric segments).

    Returns None as soon as a segment cannot be followed.
    """

    current = value
    for segment in path:
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


__all__ = [
    "as_bool",
    "as_float",
    "as_int",
    "as_list",
    "as_mapping",
    "as_optional_str",
    "as_str",
    "first_present",
    "first_str",
    "get_path",
    "is_blank",
]
