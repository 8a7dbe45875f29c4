"""Write results and flush reports."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from indexsync.models.operation import OperationKind


class FailureStage(str, Enum):
    """Pipeline stage where a document was lost."""

    IDENTITY = "identity"
    INDEXABLE = "indexable"
    TRANSFORM = "transform"
    WRITE = "write"
    TRANSPORT = "transport"
    CHANNEL = "channel"


class WriteResult(BaseModel):
    """Outcome of one document in a bulk submission."""

    identity: str = Field(description="Document identifier")
    kind: OperationKind = Field(description="Submitted operation kind")
    ok: bool = Field(description="Whether the backend applied the operation")
    status: int | None = Field(default=None, description="Backend status code for this item")
    error: str | None = Field(default=None, description="Failure reason reported by the backend")
    stage: FailureStage | None = Field(default=None, description="Failure stage (write or transport)")


class SyncFailure(BaseModel):
    """A document that did not reach the index."""

    identity: str | None = Field(default=None, description="Document identifier, if it could be resolved")
    kind: OperationKind | None = Field(default=None, description="Operation kind")
    stage: FailureStage = Field(description="Stage that failed")
    reason: str = Field(description="Human-readable failure reason")


class FlushReport(BaseModel):
    """What one flush did for one index."""

    index: str = Field(description="Index name")
    submitted: int = Field(default=0, description="Operations handed to the writer or channel")
    published: bool = Field(default=False, description="Batch was published for deferred indexing")
    results: list[WriteResult] = Field(default_factory=list, description="Per-document write results")
    failures: list[SyncFailure] = Field(default_factory=list, description="Every document that was lost")

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures
