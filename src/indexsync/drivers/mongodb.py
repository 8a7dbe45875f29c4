"""MongoDB driver — Documents and change-stream events.

Objects are either plain documents (``dict`` with ``_id``) or ODM instances
exposing the identifier as an attribute. A unit-of-work is a sequence of
change-stream events as produced by ``collection.watch(full_document="updateLookup")``.

Documents taken from change events remember the collection they came from
(the event's ``ns.coll``), which is how an index bound to ``collection`` picks
its own documents out of a database-wide stream. An index that maps neither a
model nor a collection receives every document.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from indexsync.drivers.base import PersistenceDriver
from indexsync.models.operation import OperationKind

logger = logging.getLogger(__name__)

_EVENT_KINDS = {
    "insert": OperationKind.INSERT,
    "update": OperationKind.UPDATE,
    "replace": OperationKind.UPDATE,
    "delete": OperationKind.DELETE,
}


class ChangeDocument(dict):
    """A document read from a change event, tagged with its source collection."""

    def __init__(self, document: Mapping[str, Any], collection: str | None = None) -> None:
        super().__init__(document)
        self.collection = collection


class MongoDriver(PersistenceDriver):
    """Driver for MongoDB documents.

    Args:
        identifier: Name of the primary key field.
        collection: Collection whose documents belong to this index.
    """

    def __init__(self, identifier: str = "id", collection: str | None = None) -> None:
        super().__init__(identifier=identifier)
        self.collection = collection

    @property
    def name(self) -> str:
        return "mongodb"

    def resolve_identity(self, obj: Any) -> Any:
        """Identifier of a document; ``id`` falls back to MongoDB's ``_id``."""
        candidates = [self.identifier]
        if self.identifier == "id":
            candidates.append("_id")
        for key in candidates:
            value = obj.get(key) if isinstance(obj, Mapping) else getattr(obj, key, None)
            if value is not None:
                return value
        return None

    def iterate_managed_objects(self, unit: Iterable[Mapping[str, Any]]) -> Iterator[tuple[OperationKind, Any]]:
        for change in unit:
            operation = change.get("operationType")
            kind = _EVENT_KINDS.get(operation or "")
            if kind is None:
                logger.debug("Ignoring change event of type %s", operation)
                continue
            collection = (change.get("ns") or {}).get("coll")
            if kind is OperationKind.DELETE:
                yield kind, ChangeDocument(change.get("documentKey") or {}, collection)
                continue
            document = change.get("fullDocument")
            if document is None:
                logger.warning(
                    "Change event %s for %s has no fullDocument; open the stream with full_document='updateLookup'",
                    operation,
                    change.get("documentKey"),
                )
                continue
            yield kind, ChangeDocument(document, collection)

    def handles(self, obj: Any, model: type | None) -> bool:
        if isinstance(obj, Mapping):
            if self.collection is not None:
                return getattr(obj, "collection", None) == self.collection
            return model is None
        return super().handles(obj, model)
