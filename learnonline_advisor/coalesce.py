"""
Accessor chains for loosely shaped gateway records.

Legacy records name the same field several ways (``author.name``,
``authorName``, ``owner``...). A chain is an ordered list of accessor
functions; :func:`coalesce` returns the first value that is present.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

Accessor = Callable[[Any], Any]


def path(*keys: str) -> Accessor:
    """Return an accessor that walks nested mappings, yielding None on any gap."""

    def _get(record: Any) -> Any:
        value = record
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return _get


def chain(*dotted: str) -> list[Accessor]:
    """Build an accessor chain from dotted names, e.g. ``chain("author.name", "owner")``."""
    return [path(*name.split(".")) for name in dotted]


def coalesce(
    record: Any,
    accessors: Sequence[Accessor],
    default: Any = None,
    *,
    skip_empty: bool = False,
) -> Any:
    """Try each accessor in order and return the first defined value.

    Args:
        record: The raw record (anything; non-mappings yield the default).
        accessors: Ordered accessor functions.
        default: Returned when no accessor yields a value.
        skip_empty: Also treat empty strings as missing.
    """
    for accessor in accessors:
        value = accessor(record)
        if value is None:
            continue
        if skip_empty and value == "":
            continue
        return value
    return default
