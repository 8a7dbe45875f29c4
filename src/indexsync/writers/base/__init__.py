"""Base writer interface — Abstract classes for index writers."""

from indexsync.writers.base.registry import WriterRegistry
from indexsync.writers.base.writer import IndexWriter

__all__ = ["IndexWriter", "WriterRegistry"]
