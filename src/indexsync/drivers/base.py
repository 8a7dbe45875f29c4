"""Base persistence driver — Abstract interface for persistence backends.

A driver answers two questions for the pipeline:
  1. What is the primary key of this object?
  2. Which objects did this unit-of-work insert, update or delete?

The pipeline itself never touches the persistence library.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

from indexsync.models.operation import OperationKind


class PersistenceDriver(ABC):
    """Abstract base class for persistence drivers.

    Args:
        identifier: Name of the primary key attribute.
    """

    def __init__(self, identifier: str = "id") -> None:
        self.identifier = identifier

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique driver name (e.g., 'orm', 'mongodb')."""

    @abstractmethod
    def resolve_identity(self, obj: Any) -> Any:
        """Return the raw primary key value of ``obj`` (None when unassigned)."""

    @abstractmethod
    def iterate_managed_objects(self, unit: Any) -> Iterator[tuple[OperationKind, Any]]:
        """Yield ``(kind, object)`` for every change tracked by ``unit``.

        Args:
            unit: The driver's notion of a unit-of-work (a session, a list of
                change events, ...).
        """

    def handles(self, obj: Any, model: type | None) -> bool:
        """Whether ``obj`` belongs to an index mapped to ``model``."""
        return model is None or isinstance(obj, model)
