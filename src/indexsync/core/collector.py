"""Change Collector — Pending index operations for one unit-of-work.

The collector is keyed by document identity. Recording the same identity
again replaces the earlier operation in place, so a unit-of-work that touches
an entity many times produces a single index operation:

  insert → update   collapses to insert (latest source)
  insert → delete   collapses to delete
  update → delete   collapses to delete
  anything else     the later operation wins

No I/O happens here. One collector belongs to exactly one unit-of-work and
is not shared between threads or tasks.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from indexsync.exceptions import IdentityError
from indexsync.models.operation import Batch, Document, OperationKind, PendingOperation


class ChangeCollector:
    """Accumulates pending operations, deduplicated by identity."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingOperation] = {}

    def record(
        self,
        identity: str,
        kind: OperationKind,
        source: Any = None,
        document: Document | None = None,
    ) -> PendingOperation:
        """Register or overwrite the pending operation for ``identity``.

        Returns:
            The operation now held for this identity.

        Raises:
            IdentityError: If ``identity`` is empty.
        """
        if not identity:
            raise IdentityError("Cannot record an operation without an identity")

        previous = self._pending.get(identity)
        if previous is not None and previous.kind is OperationKind.INSERT and kind is OperationKind.UPDATE:
            kind = OperationKind.INSERT

        operation = PendingOperation(identity=identity, kind=kind, source=source, document=document)
        # Existing keys keep their position: replaced in place, not moved to the end.
        self._pending[identity] = operation
        return operation

    def attach_snapshot(self, identity: str, document: Document) -> None:
        """Store a pre-built document on the pending operation for ``identity``."""
        operation = self._pending.get(identity)
        if operation is None or not operation.needs_document:
            return
        self._pending[identity] = operation.model_copy(update={"document": document})

    def drain(self) -> Batch:
        """Return every pending operation and start a new, empty window."""
        pending, self._pending = self._pending, {}
        return Batch(operations=tuple(pending.values()))

    def discard(self) -> None:
        self._pending = {}

    def get(self, identity: str) -> PendingOperation | None:
        return self._pending.get(identity)

    def pending(self) -> Iterator[PendingOperation]:
        """Iterate over a copy of the pending operations."""
        return iter(list(self._pending.values()))

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, identity: object) -> bool:
        return identity in self._pending
