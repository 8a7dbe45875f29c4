"""Data models for the synchronization pipeline."""

from indexsync.models.message import BatchMessage, MessageOperation
from indexsync.models.operation import Batch, Document, OperationKind, PendingOperation
from indexsync.models.result import FailureStage, FlushReport, SyncFailure, WriteResult

__all__ = [
    "Batch",
    "BatchMessage",
    "Document",
    "FailureStage",
    "FlushReport",
    "MessageOperation",
    "OperationKind",
    "PendingOperation",
    "SyncFailure",
    "WriteResult",
]
