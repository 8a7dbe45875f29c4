"""Pending operations and batches.

A ``PendingOperation`` is what the change collector keeps per document
identity during one unit-of-work. At flush time the collector hands out an
immutable ``Batch`` of them, in first-seen identity order.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Document = dict[str, Any]
"""Indexable projection of a domain object (field name → value)."""


class OperationKind(str, Enum):
    """Kind of index mutation a persistence event maps to."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class PendingOperation(BaseModel):
    """One index mutation waiting for the next flush."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(min_length=1, description="Document identifier in the index")
    kind: OperationKind = Field(description="Index mutation to apply")
    source: Any = Field(default=None, description="Domain object for insert/update, None for delete")
    document: Document | None = Field(
        default=None,
        description="Snapshot of the document, when it was built before the flush",
    )

    @property
    def needs_document(self) -> bool:
        return self.kind is not OperationKind.DELETE


class Batch(BaseModel):
    """Immutable ordered sequence of pending operations."""

    model_config = ConfigDict(frozen=True)

    operations: tuple[PendingOperation, ...] = Field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.operations)

    def __bool__(self) -> bool:
        return bool(self.operations)

    @property
    def identities(self) -> list[str]:
        return [op.identity for op in self.operations]

    def chunks(self, size: int) -> Iterator[Batch]:
        """Split the batch into consecutive batches of at most ``size`` operations."""
        if size < 1:
            raise ValueError("Chunk size must be at least 1")
        for start in range(0, len(self.operations), size):
            yield Batch(operations=self.operations[start : start + size])
