"""Sync Manager — Builds per-index pipelines from settings and hands out units of work.

The manager owns what is shared across requests (writers, the batch channel,
drivers, transformers); every unit-of-work gets fresh listeners with their own
change collectors, so concurrent units of work never see each other's
pending operations.

Usage::

    manager = SyncManager(settings)
    await manager.initialize()

    async with manager.unit_of_work() as uow:
        uow.on_before_insert(article)
        uow.on_before_flush()
        reports = await uow.on_after_flush()
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from indexsync.config.settings import ListenerSettings, Settings
from indexsync.core.accessor import read_path
from indexsync.core.identity import IdentityResolver
from indexsync.core.listener import IndexablePredicate, IndexListener
from indexsync.core.transformer import DocumentTransformer
from indexsync.drivers import get_driver
from indexsync.drivers.base import PersistenceDriver
from indexsync.exceptions import ConfigurationError
from indexsync.messaging.channel import BatchChannel, create_channel
from indexsync.models.operation import OperationKind
from indexsync.models.result import FlushReport
from indexsync.writers.base.registry import WriterRegistry
from indexsync.writers.base.writer import IndexWriter
from indexsync.writers.http.writer import HttpBulkWriter
from indexsync.writers.opensearch.writer import OpenSearchWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexPipeline:
    """Everything needed to build a listener for one configured index."""

    name: str
    index_name: str
    client: str
    driver: PersistenceDriver
    resolver: IdentityResolver
    transformer: DocumentTransformer
    model: type | None
    indexable: IndexablePredicate | None
    listener: ListenerSettings
    batch_size: int
    refresh: str | None


class UnitOfWork:
    """Fans lifecycle events out to the listeners of every synced index.

    Each listener ignores objects that are not of its mapped type.
    """

    def __init__(self, listeners: Sequence[IndexListener]) -> None:
        self._listeners = list(listeners)

    @property
    def listeners(self) -> list[IndexListener]:
        return list(self._listeners)

    def listener(self, index: str) -> IndexListener:
        for listener in self._listeners:
            if listener.index == index:
                return listener
        raise KeyError(index)

    def on_before_insert(self, obj: Any) -> None:
        for listener in self._listeners:
            listener.on_before_insert(obj)

    def on_before_update(self, obj: Any) -> None:
        for listener in self._listeners:
            listener.on_before_update(obj)

    def on_before_delete(self, obj: Any) -> None:
        for listener in self._listeners:
            listener.on_before_delete(obj)

    def observe(self, changes: Iterable[tuple[OperationKind, Any]]) -> None:
        """Dispatch ``(kind, object)`` pairs, as yielded by a driver."""
        handlers = {
            OperationKind.INSERT: self.on_before_insert,
            OperationKind.UPDATE: self.on_before_update,
            OperationKind.DELETE: self.on_before_delete,
        }
        for kind, obj in changes:
            handlers[kind](obj)

    def on_before_flush(self) -> None:
        for listener in self._listeners:
            listener.on_before_flush()

    async def on_after_flush(self) -> list[FlushReport]:
        return list(await asyncio.gather(*(listener.on_after_flush() for listener in self._listeners)))

    async def flush_pending(self) -> list[FlushReport]:
        return list(await asyncio.gather(*(listener.flush_pending() for listener in self._listeners)))

    def discard(self) -> None:
        for listener in self._listeners:
            listener.discard()


class SyncManager:
    """Entry point wiring settings, writers and listeners together.

    Attributes:
        settings: Application configuration.
        writer_registry: Registry of index writers, one instance per client.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        registry: WriterRegistry | None = None,
        channel: BatchChannel | None = None,
    ) -> None:
        self.settings = settings
        self.writer_registry = registry or _default_registry()
        self._channel = channel
        self._owns_channel = False
        self._pipelines: dict[str, IndexPipeline] = {
            name: self._build_pipeline(name) for name in settings.synced_indexes
        }

    @property
    def pipelines(self) -> dict[str, IndexPipeline]:
        return dict(self._pipelines)

    @property
    def channel(self) -> BatchChannel | None:
        return self._channel

    async def initialize(self) -> None:
        """Initialize the writers of every client in use, and the channel."""
        for client_name in dict.fromkeys(p.client for p in self._pipelines.values()):
            if client_name in self.writer_registry:
                continue
            client = self.settings.clients[client_name]
            await self.writer_registry.initialize_writer(
                client_name,
                client.writer,
                hosts=client.hosts,
                username=client.username,
                password=client.password,
                api_key=client.api_key,
                timeout=client.timeout,
                verify_certs=client.verify_certs,
                headers=client.headers,
                **client.extra,
            )

        if self.settings.messaging.enabled and self._channel is None:
            self._channel = create_channel(self.settings.messaging)
            self._owns_channel = True
        if self._channel is not None:
            await self._channel.initialize()

        logger.info("IndexSync initialized for indexes: %s", ", ".join(self._pipelines) or "(none)")

    async def shutdown(self) -> None:
        """Gracefully shut down writers and the channel."""
        await self.writer_registry.shutdown_all()
        if self._channel is not None:
            await self._channel.shutdown()
            if self._owns_channel:
                self._channel = None
        logger.info("IndexSync shut down")

    def pipeline(self, index: str) -> IndexPipeline:
        """Pipeline by configuration key or backend index name."""
        if index in self._pipelines:
            return self._pipelines[index]
        for pipeline in self._pipelines.values():
            if pipeline.index_name == index:
                return pipeline
        raise ConfigurationError(f"Index '{index}' is not bound to a persistence layer.")

    def writer_for(self, index: str) -> IndexWriter:
        return self.writer_registry.get(self.pipeline(index).client)

    def new_unit_of_work(self) -> UnitOfWork:
        """Create a unit-of-work with fresh, empty collectors."""
        return UnitOfWork([self._build_listener(p) for p in self._pipelines.values()])

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        """Scope a unit-of-work; anything not flushed is discarded on exit."""
        uow = self.new_unit_of_work()
        try:
            yield uow
        finally:
            uow.discard()

    # ──────────────────────────────────────────────────────────────────────
    # Construction
    # ──────────────────────────────────────────────────────────────────────

    def _build_listener(self, pipeline: IndexPipeline) -> IndexListener:
        use_channel = self.settings.messaging.enabled and self._channel is not None
        return IndexListener(
            pipeline.index_name,
            driver=pipeline.driver,
            resolver=pipeline.resolver,
            transformer=pipeline.transformer,
            writer=None if use_channel else self.writer_registry.get(pipeline.client),
            channel=self._channel if use_channel else None,
            model=pipeline.model,
            settings=pipeline.listener,
            indexable=pipeline.indexable,
            batch_size=pipeline.batch_size,
            refresh=pipeline.refresh,
        )

    def _build_pipeline(self, name: str) -> IndexPipeline:
        index = self.settings.get_index(name)
        persistence = index.persistence
        assert persistence is not None

        driver_name = persistence.driver if "driver" in persistence.model_fields_set else self.settings.default_manager
        options: dict[str, Any] = {}
        if persistence.collection is not None:
            if driver_name != "mongodb":
                raise ConfigurationError(f"Index '{name}' sets a collection, which only the mongodb driver supports.")
            options["collection"] = persistence.collection
        driver = get_driver(driver_name, identifier=persistence.identifier, **options)
        client_name, _ = self.settings.client_for(name)

        return IndexPipeline(
            name=name,
            index_name=self.settings.index_name(name),
            client=client_name,
            driver=driver,
            resolver=IdentityResolver(driver, index.identity.path),
            transformer=DocumentTransformer(
                index.properties,
                groups=index.serializer.groups,
                serialize_null=index.serializer.serialize_null,
            ),
            model=_import_object(persistence.model) if persistence.model else None,
            indexable=_indexable_predicate(index.indexable_callback),
            listener=persistence.listener,
            batch_size=persistence.persister.batch_size,
            refresh=persistence.persister.refresh,
        )


def _default_registry() -> WriterRegistry:
    registry = WriterRegistry()
    registry.register("opensearch", OpenSearchWriter)
    registry.register("http", HttpBulkWriter)
    return registry


def _import_object(path: str) -> Any:
    """Import ``package.module:attr`` or ``package.module.attr``."""
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ConfigurationError(f"'{path}' is not an importable object path")
    try:
        module = importlib.import_module(module_name)
        return read_path(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot import '{path}': {e}") from e


def _indexable_predicate(callback: str | None) -> IndexablePredicate | None:
    """Build the indexable check from configuration.

    ``module:function`` is imported and called with the object; anything else
    is a property path on the object, called if it resolves to a method.
    """
    if not callback:
        return None
    if ":" in callback:
        fn = _import_object(callback)
        if not callable(fn):
            raise ConfigurationError(f"Indexable callback '{callback}' is not callable")
        return fn

    def predicate(obj: Any) -> bool:
        value = read_path(obj, callback)
        return bool(value() if callable(value) else value)

    return predicate
