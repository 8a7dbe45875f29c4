"""Document Transformer — Domain objects to indexable documents.

Field selection follows the index ``properties`` configuration::

    properties:
      title: ~                              # read attribute "title"
      author: { property_path: author.name } # read a dotted path
      comments:                              # nested object / list of objects
        properties:
          body: ~
          date: ~

With no properties configured the object is introspected (pydantic models,
dataclasses, SQLAlchemy mapped columns, mappings, then public instance
attributes) and fields are emitted in name order.

Serialization groups work the way serializer annotations do: a model may
declare ``__serializer_groups__ = {"field": ["search", ...]}``; fields without
a declaration belong to the ``Default`` group. When groups are configured,
only fields sharing one of them are kept.
"""

from __future__ import annotations

import dataclasses
import datetime
import uuid
from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel

from indexsync.core.accessor import read_path
from indexsync.exceptions import TransformError
from indexsync.models.operation import Document

DEFAULT_GROUP = "Default"
MAX_DEPTH = 8


class DocumentTransformer:
    """Builds a flat or nested document from a domain object.

    Args:
        properties: Field configuration (name → options). Empty means introspect.
        groups: Serialization groups to include. Empty means every field.
        serialize_null: Keep None-valued fields as explicit nulls.
    """

    def __init__(
        self,
        properties: Mapping[str, Any] | Iterable[str] | None = None,
        *,
        groups: Iterable[str] | None = None,
        serialize_null: bool = False,
    ) -> None:
        self._properties = _normalize_properties(properties)
        self._groups = frozenset(groups or ())
        self._serialize_null = serialize_null

    def transform(self, source: Any) -> Document:
        """Build the document for ``source``.

        Raises:
            TransformError: If a property cannot be read or a value cannot be
                represented in a document.
        """
        try:
            return self._build(source, self._properties, depth=0)
        except TransformError:
            raise
        except Exception as e:
            raise TransformError(f"Cannot transform {type(source).__name__}: {e}") from e

    def _build(self, source: Any, properties: dict[str, dict[str, Any]], depth: int) -> Document:
        if depth > MAX_DEPTH:
            raise TransformError(f"Object graph deeper than {MAX_DEPTH} levels (circular reference?)")

        fields = properties or {name: {} for name in introspect(source)}
        declared = getattr(type(source), "__serializer_groups__", None) or {}

        document: Document = {}
        for name, options in fields.items():
            if not self._in_groups(declared, name):
                continue

            path = options.get("property_path")
            if path is False:
                continue
            path = path or name
            try:
                value = read_path(source, path)
            except AttributeError as e:
                raise TransformError(f"Cannot read property '{path}' of {type(source).__name__}: {e}") from e

            nested = _normalize_properties(options.get("properties"))
            if nested and value is not None:
                value = self._build_nested(value, nested, depth + 1)
            else:
                value = self._normalize(value, depth + 1)

            if value is None and not self._serialize_null:
                continue
            document[name] = value
        return document

    def _build_nested(self, value: Any, properties: dict[str, dict[str, Any]], depth: int) -> Any:
        if _is_collection(value):
            return [self._build(item, properties, depth) for item in value]
        return self._build(value, properties, depth)

    def _in_groups(self, declared: Mapping[str, Iterable[str]], name: str) -> bool:
        if not self._groups:
            return True
        return not self._groups.isdisjoint(declared.get(name, (DEFAULT_GROUP,)))

    def _normalize(self, value: Any, depth: int) -> Any:
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, Enum):
            return self._normalize(value.value, depth)
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, (Decimal, uuid.UUID)):
            return str(value)
        if isinstance(value, (bytes, bytearray)):
            raise TransformError("Binary values cannot be indexed")
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json", exclude_none=not self._serialize_null)
        if isinstance(value, Mapping):
            mapped = {str(k): self._normalize(v, depth + 1) for k, v in value.items()}
            if not self._serialize_null:
                mapped = {k: v for k, v in mapped.items() if v is not None}
            return mapped
        if isinstance(value, (set, frozenset)):
            items = [self._normalize(v, depth + 1) for v in value]
            try:
                return sorted(items)
            except TypeError:
                return items
        if _is_collection(value):
            return [self._normalize(v, depth + 1) for v in value]
        # Any other object becomes a nested document of its own fields.
        return self._build(value, {}, depth)


def introspect(source: Any) -> list[str]:
    """Names of the indexable fields of ``source``, sorted."""
    if isinstance(source, BaseModel):
        names: Iterable[str] = type(source).model_fields
    elif dataclasses.is_dataclass(source) and not isinstance(source, type):
        names = (f.name for f in dataclasses.fields(source))
    elif hasattr(type(source), "__mapper__"):
        names = (attr.key for attr in type(source).__mapper__.column_attrs)
    elif isinstance(source, Mapping):
        names = (str(k) for k in source)
    elif hasattr(source, "__dict__"):
        names = vars(source)
    else:
        raise TransformError(f"Cannot introspect fields of {type(source).__name__}")
    return sorted(name for name in names if not name.startswith("_"))


def _normalize_properties(properties: Any) -> dict[str, dict[str, Any]]:
    if not properties:
        return {}
    if isinstance(properties, Mapping):
        return {str(name): dict(options or {}) for name, options in properties.items()}
    return {str(name): {} for name in properties}


def _is_collection(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, bytearray, Mapping))
