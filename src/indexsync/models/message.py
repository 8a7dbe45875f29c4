"""Batch messages — Serialized batches for deferred indexing.

When messaging is enabled the listener does not talk to the search backend
itself; it publishes one ``BatchMessage`` per flush and a consumer applies it
later with the index writer.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from indexsync.models.operation import Batch, Document, OperationKind, PendingOperation


class MessageOperation(BaseModel):
    """Serialized form of a pending operation (the domain object is dropped)."""

    kind: OperationKind
    identity: str
    document: Document | None = None


class BatchMessage(BaseModel):
    """One flushed batch, ready to travel over a message channel."""

    index: str = Field(description="Index name the batch belongs to")
    operations: list[MessageOperation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_batch(cls, index: str, batch: Batch) -> BatchMessage:
        return cls(
            index=index,
            operations=[
                MessageOperation(kind=op.kind, identity=op.identity, document=op.document)
                for op in batch.operations
            ],
        )

    def to_batch(self) -> Batch:
        return Batch(
            operations=tuple(
                PendingOperation(identity=op.identity, kind=op.kind, document=op.document)
                for op in self.operations
            )
        )
