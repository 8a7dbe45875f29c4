"""Batch channels — FIFO transport for deferred index batches.

The producer side (the listener) publishes one ``BatchMessage`` per flush;
the consumer side receives them in order and applies them with the writer.
Delivery order is FIFO per channel; nothing is reconciled if a message is
never consumed.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from indexsync.exceptions import ChannelError, ConfigurationError
from indexsync.models.message import BatchMessage

if TYPE_CHECKING:
    from indexsync.config.settings import MessagingSettings

logger = logging.getLogger(__name__)


class BatchChannel(ABC):
    """Abstract FIFO channel carrying batch messages."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel backend name (e.g., 'memory', 'redis')."""

    async def initialize(self) -> None:
        """Open connections. No-op by default."""

    async def shutdown(self) -> None:
        """Close connections. No-op by default."""

    @abstractmethod
    async def publish(self, message: BatchMessage) -> None:
        """Append a message to the channel.

        Raises:
            ChannelError: If the message cannot be published.
        """

    @abstractmethod
    async def receive(self, timeout: float | None = None) -> BatchMessage | None:
        """Take the oldest message, waiting up to ``timeout`` seconds.

        Returns:
            The message, or None if the channel stayed empty.
        """


class MemoryChannel(BatchChannel):
    """In-process channel on an ``asyncio.Queue`` (tests, single-process apps)."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    @property
    def name(self) -> str:
        return "memory"

    async def publish(self, message: BatchMessage) -> None:
        try:
            self._queue.put_nowait(message.model_dump_json())
        except asyncio.QueueFull as e:
            raise ChannelError("Memory channel is full") from e

    async def receive(self, timeout: float | None = None) -> BatchMessage | None:
        try:
            if timeout is None:
                payload = await self._queue.get()
            else:
                payload = await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None
        return BatchMessage.model_validate_json(payload)

    def qsize(self) -> int:
        return self._queue.qsize()


class RedisChannel(BatchChannel):
    """Channel on a Redis list: LPUSH to publish, BRPOP to receive.

    Args:
        redis_url: Redis connection URL.
        queue: Name of the Redis list.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue: str = "indexsync:batches") -> None:
        self._redis_url = redis_url
        self._queue = queue
        self._client: Any = None

    @property
    def name(self) -> str:
        return "redis"

    async def initialize(self) -> None:
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ConfigurationError("redis package is required.  Install with: pip install indexsync[redis]") from e

        self._client = aioredis.from_url(self._redis_url, decode_responses=True)
        try:
            await self._client.ping()
        except Exception as e:
            raise ChannelError(f"Failed to connect to Redis at {self._redis_url}: {e}") from e
        logger.info("Connected to Redis batch channel at %s (queue: %s)", self._redis_url, self._queue)

    async def shutdown(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def publish(self, message: BatchMessage) -> None:
        if not self._client:
            raise ChannelError("Redis channel not initialized.")
        try:
            await self._client.lpush(self._queue, message.model_dump_json())
        except Exception as e:
            raise ChannelError(f"Failed to publish batch for {message.index}: {e}") from e

    async def receive(self, timeout: float | None = None) -> BatchMessage | None:
        if not self._client:
            raise ChannelError("Redis channel not initialized.")
        try:
            item = await self._client.brpop([self._queue], timeout=timeout or 0)
        except Exception as e:
            raise ChannelError(f"Failed to receive from {self._queue}: {e}") from e
        if item is None:
            return None
        _, payload = item
        return BatchMessage.model_validate_json(payload)


def create_channel(settings: MessagingSettings) -> BatchChannel:
    """Create the channel configured in ``settings``."""
    if settings.backend == "redis":
        return RedisChannel(settings.redis_url, settings.queue)
    return MemoryChannel()
