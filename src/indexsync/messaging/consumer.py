"""Batch consumer — Applies published batches with the index writer.

Runs wherever the application chooses (a worker process, a background
task). Failures are logged per identity; the message is not re-queued.
A message that cannot be decoded or applied is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from indexsync.exceptions import ChannelError, ConfigurationError
from indexsync.models.message import BatchMessage
from indexsync.models.result import FailureStage, WriteResult
from indexsync.observability.logging import get_error_channel

if TYPE_CHECKING:
    from indexsync.core.manager import SyncManager
    from indexsync.messaging.channel import BatchChannel

logger = logging.getLogger(__name__)


class BatchConsumer:
    """Receives batch messages and writes them.

    Args:
        manager: Initialized sync manager providing writers and index settings.
        channel: Channel to consume; defaults to the manager's channel.
    """

    def __init__(self, manager: SyncManager, channel: BatchChannel | None = None) -> None:
        channel = channel or manager.channel
        if channel is None:
            raise ValueError("BatchConsumer needs a channel; enable messaging or pass one explicitly")
        self._manager = manager
        self._channel = channel

    async def handle(self, message: BatchMessage) -> list[WriteResult]:
        """Write one message's batch and report failures."""
        pipeline = self._manager.pipeline(message.index)
        try:
            writer = self._manager.writer_for(message.index)
            results = await writer.write(
                pipeline.index_name,
                message.to_batch(),
                batch_size=pipeline.batch_size,
                refresh=pipeline.refresh,
            )
        except Exception as e:
            logger.exception("Writing batch for %s failed", pipeline.index_name)
            results = [
                WriteResult(identity=op.identity, kind=op.kind, ok=False, error=str(e), stage=FailureStage.WRITE)
                for op in message.operations
            ]

        error_channel = get_error_channel(pipeline.listener.logger, index=pipeline.index_name)
        failed = [r for r in results if not r.ok]
        if error_channel is not None:
            for result in failed:
                error_channel.warning(
                    "index_sync_failed",
                    identity=result.identity,
                    kind=result.kind.value,
                    stage=(result.stage.value if result.stage else "write"),
                    reason=result.error,
                )
        logger.info(
            "Applied batch for %s: %d operations, %d failed",
            pipeline.index_name,
            len(results),
            len(failed),
        )
        return results

    async def consume_one(self, timeout: float | None = None) -> list[WriteResult] | None:
        """Receive and apply a single message; None if none arrived in time."""
        message = await self._channel.receive(timeout)
        if message is None:
            return None
        return await self.handle(message)

    async def run(self, stop: asyncio.Event | None = None, poll_timeout: float = 1.0) -> None:
        """Consume until ``stop`` is set."""
        stop = stop or asyncio.Event()
        logger.info("Consuming batches from %s channel", self._channel.name)
        while not stop.is_set():
            try:
                await self.consume_one(timeout=poll_timeout)
            except ChannelError:
                logger.warning("Channel receive failed, retrying", exc_info=True)
                await asyncio.sleep(poll_timeout)
            except ConfigurationError:
                logger.error("Dropping batch for an index that is not configured", exc_info=True)
            except Exception:
                logger.exception("Dropping batch that could not be processed")
