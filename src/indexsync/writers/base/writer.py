"""Base index writer — Abstract interface for all bulk writers.

Every search backend must implement this interface to receive batches.
The writer is responsible for:
  1. Partitioning a batch into bulk requests of ``batch_size`` operations
  2. Submitting each bulk request
  3. Mapping the backend response back to one result per identity
  4. Reporting health status

The write is not atomic: each identity succeeds or fails on its own.
Retries are left to the backend client library.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from indexsync.exceptions import TransportError, WriteError
from indexsync.models.operation import Batch, PendingOperation
from indexsync.models.result import FailureStage, WriteResult

logger = logging.getLogger(__name__)


class WriterHealth(BaseModel):
    """Health status of an index writer."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of last health check in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of last health check")
    message: str | None = Field(default=None, description="Additional health message")


CLUSTER_STATUS = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}


def cluster_health(health: Mapping[str, Any], latency_ms: int) -> WriterHealth:
    """Translate an Elasticsearch-style ``_cluster/health`` body."""
    return WriterHealth(
        status=CLUSTER_STATUS.get(health.get("status", "red"), "unhealthy"),
        latency_ms=latency_ms,
        last_check=datetime.now(UTC).isoformat(),
        message=(
            f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}, "
            f"Unassigned shards: {health.get('unassigned_shards', 0)}"
        ),
    )


class IndexWriter(ABC):
    """Abstract base class for index writers.

    All writers must implement:
      - initialize() / shutdown(): client lifecycle
      - submit(): send one bulk request and map the response
      - health_check(): report writer health status

    Writers are shared by every unit-of-work that writes through the same
    client, so they must not keep per-batch state.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique writer name (e.g., 'opensearch', 'http')."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the writer (connections, pools, etc.)."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Close connections and release resources."""

    @abstractmethod
    async def submit(
        self,
        index: str,
        operations: Sequence[PendingOperation],
        refresh: str | None = None,
    ) -> list[WriteResult]:
        """Send one bulk request.

        Args:
            index: Backend index name.
            operations: Operations for this request; insert/update carry documents.
            refresh: Optional refresh policy (``true``, ``wait_for``, ``false``).

        Returns:
            One result per operation, in submission order.

        Raises:
            TransportError: If the backend cannot be reached.
            WriteError: If the backend rejects the request as a whole.
        """

    @abstractmethod
    async def health_check(self) -> WriterHealth:
        """Check the health of the search backend."""

    async def write(
        self,
        index: str,
        batch: Batch,
        *,
        batch_size: int = 100,
        refresh: str | None = None,
    ) -> list[WriteResult]:
        """Write a whole batch, one bulk request per ``batch_size`` operations.

        A request that fails as a whole marks only its own operations as
        failed; later requests are still submitted.

        Returns:
            One result per operation, in batch order.
        """
        results: list[WriteResult] = []
        for chunk in batch.chunks(batch_size):
            try:
                results.extend(await self.submit(index, chunk.operations, refresh=refresh))
            except TransportError as e:
                logger.warning("Bulk request to %s failed, backend unreachable: %s", index, e)
                results.extend(_failed(chunk.operations, str(e), FailureStage.TRANSPORT))
            except WriteError as e:
                logger.warning("Bulk request to %s rejected: %s", index, e)
                results.extend(_failed(chunk.operations, str(e), FailureStage.WRITE, e.status))
        return results


def _failed(
    operations: Sequence[PendingOperation],
    reason: str,
    stage: FailureStage,
    status: int | None = None,
) -> list[WriteResult]:
    return [
        WriteResult(identity=op.identity, kind=op.kind, ok=False, status=status, error=reason, stage=stage)
        for op in operations
    ]
