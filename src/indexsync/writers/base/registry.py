"""Writer Registry — Manages registration and retrieval of index writers.

Writer classes are registered by type (``opensearch``, ``http``); instances
are created per configured client and shared by every index writing through
that client.
"""

from __future__ import annotations

import logging
from typing import Any

from indexsync.writers.base.writer import IndexWriter, WriterHealth

logger = logging.getLogger(__name__)


class WriterNotFoundError(Exception):
    """Raised when a requested writer is not registered."""


class WriterRegistry:
    """Registry for managing index writer instances.

    Example:
        >>> registry = WriterRegistry()
        >>> registry.register("opensearch", OpenSearchWriter)
        >>> await registry.initialize_writer("default", "opensearch", hosts=[...])
        >>> writer = registry.get("default")
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[IndexWriter]] = {}
        self._instances: dict[str, IndexWriter] = {}

    def register(self, writer_type: str, writer_class: type[IndexWriter]) -> None:
        """Register a writer class under a type name."""
        if writer_type in self._classes:
            logger.warning("Overwriting existing writer registration: %s", writer_type)
        self._classes[writer_type] = writer_class
        logger.info("Registered writer: %s", writer_type)

    async def initialize_writer(self, name: str, writer_type: str | None = None, **kwargs: Any) -> IndexWriter:
        """Create and initialize a writer instance.

        Args:
            name: Instance name (usually the client name).
            writer_type: Registered writer type. Defaults to ``name``.
            **kwargs: Configuration parameters passed to the writer constructor.

        Raises:
            WriterNotFoundError: If no writer is registered under this type.
        """
        writer_type = writer_type or name
        if writer_type not in self._classes:
            raise WriterNotFoundError(
                f"No writer registered with name '{writer_type}'. "
                f"Available writers: {list(self._classes.keys())}"
            )

        writer = self._classes[writer_type](**kwargs)
        await writer.initialize()
        self._instances[name] = writer
        logger.info("Initialized writer: %s (%s)", name, writer_type)
        return writer

    def add(self, name: str, writer: IndexWriter) -> None:
        """Register an already initialized writer instance."""
        self._instances[name] = writer

    def get(self, name: str) -> IndexWriter:
        """Get an initialized writer instance by name.

        Raises:
            WriterNotFoundError: If the writer is not initialized.
        """
        if name not in self._instances:
            raise WriterNotFoundError(
                f"Writer '{name}' is not initialized. "
                f"Call initialize_writer() first."
            )
        return self._instances[name]

    def __contains__(self, name: object) -> bool:
        return name in self._instances

    async def health_check_all(self) -> dict[str, WriterHealth]:
        """Run health checks on all initialized writers."""
        results: dict[str, WriterHealth] = {}
        for name, writer in self._instances.items():
            try:
                results[name] = await writer.health_check()
            except Exception as e:
                results[name] = WriterHealth(
                    status="unhealthy",
                    message=str(e),
                )
        return results

    async def shutdown_all(self) -> None:
        """Gracefully shut down all initialized writers."""
        for name, writer in self._instances.items():
            try:
                await writer.shutdown()
                logger.info("Shut down writer: %s", name)
            except Exception:
                logger.warning("Error shutting down writer: %s", name, exc_info=True)
        self._instances.clear()

    @property
    def registered_writers(self) -> list[str]:
        """List all registered writer types."""
        return list(self._classes.keys())

    @property
    def active_writers(self) -> list[str]:
        """List all initialized writer names."""
        return list(self._instances.keys())
