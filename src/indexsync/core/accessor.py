"""Dotted property paths over objects and mappings."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def read_path(obj: Any, path: str) -> Any:
    """Read a dotted property path (``author.name``) from an object.

    Mapping keys and attributes are both accepted at every step. A None value
    part-way through short-circuits to None.

    Raises:
        AttributeError: If a step of the path does not exist.
    """
    value = obj
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            if part not in value:
                raise AttributeError(f"Key '{part}' not found while reading '{path}'")
            value = value[part]
        else:
            value = getattr(value, part)
    return value
