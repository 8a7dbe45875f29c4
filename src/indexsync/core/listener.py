"""Index Listener — Routes persistence lifecycle events into index writes.

One listener serves one index within one unit-of-work:

  on_before_insert / on_before_update / on_before_delete
      → identity resolved, operation recorded in the change collector
  on_before_flush
      → parked inserts get their identity; documents are snapshotted
        unless ``defer`` is enabled
  on_after_flush
      → collector drained, documents built, batch written (or published)

Indexing runs after the persistence transaction committed. Nothing raised
below the flush boundary escapes ``on_after_flush``: every lost document is
logged through the error channel and listed in the returned ``FlushReport``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from indexsync.config.settings import ListenerSettings
from indexsync.core.collector import ChangeCollector
from indexsync.exceptions import ChannelError, IdentityError, TransformError
from indexsync.models.message import BatchMessage
from indexsync.models.operation import Batch, OperationKind
from indexsync.models.result import FailureStage, FlushReport, SyncFailure
from indexsync.observability.logging import get_error_channel

if TYPE_CHECKING:
    from indexsync.core.identity import IdentityResolver
    from indexsync.core.transformer import DocumentTransformer
    from indexsync.drivers.base import PersistenceDriver
    from indexsync.messaging.channel import BatchChannel
    from indexsync.writers.base.writer import IndexWriter

logger = logging.getLogger(__name__)

IndexablePredicate = Callable[[Any], bool]


class IndexListener:
    """Lifecycle listener for one index.

    Args:
        index: Backend index name.
        driver: Persistence driver for the mapped model.
        resolver: Identity resolver.
        transformer: Document transformer.
        writer: Index writer used when no channel is given.
        channel: Batch channel for deferred indexing; takes precedence over ``writer``.
        model: Mapped model class (None accepts every object the driver handles).
        settings: Listener toggles and error channel.
        indexable: Optional predicate deciding whether an object belongs in the index.
        batch_size: Operations per bulk request.
        refresh: Refresh policy forwarded to the writer.
    """

    def __init__(
        self,
        index: str,
        *,
        driver: PersistenceDriver,
        resolver: IdentityResolver,
        transformer: DocumentTransformer,
        writer: IndexWriter | None = None,
        channel: BatchChannel | None = None,
        model: type | None = None,
        settings: ListenerSettings | None = None,
        indexable: IndexablePredicate | None = None,
        batch_size: int = 100,
        refresh: str | None = None,
    ) -> None:
        if writer is None and channel is None:
            raise ValueError("IndexListener needs a writer or a channel")
        self.index = index
        self._driver = driver
        self._resolver = resolver
        self._transformer = transformer
        self._writer = writer
        self._channel = channel
        self._model = model
        self._settings = settings or ListenerSettings()
        self._indexable = indexable
        self._batch_size = batch_size
        self._refresh = refresh
        self._error_channel = get_error_channel(self._settings.logger, index=index)

        self._collector = ChangeCollector()
        self._parked: dict[int, Any] = {}
        self._failures: list[SyncFailure] = []

    @property
    def collector(self) -> ChangeCollector:
        return self._collector

    @property
    def parked(self) -> list[Any]:
        """Inserted objects still waiting for their identity."""
        return list(self._parked.values())

    def handles(self, obj: Any) -> bool:
        return self._driver.handles(obj, self._model)

    # ──────────────────────────────────────────────────────────────────────
    # Lifecycle events
    # ──────────────────────────────────────────────────────────────────────

    def on_before_insert(self, obj: Any) -> None:
        if not self._accepts(OperationKind.INSERT, obj):
            return
        indexable = self._check_indexable(obj, OperationKind.INSERT)
        if not indexable:
            return
        try:
            identity = self._resolver.resolve(obj)
        except IdentityError:
            # Database-generated key: retried once the flush assigned it.
            self._parked[id(obj)] = obj
            return
        self._collector.record(identity, OperationKind.INSERT, obj)

    def on_before_update(self, obj: Any) -> None:
        if not self._accepts(OperationKind.UPDATE, obj):
            return
        if id(obj) in self._parked:
            # Still waiting for its identity; indexed as an insert once it has one.
            return
        identity = self._resolve(obj, OperationKind.UPDATE)
        if identity is None:
            return
        indexable = self._check_indexable(obj, OperationKind.UPDATE, identity)
        if indexable is None:
            return
        if indexable:
            self._collector.record(identity, OperationKind.UPDATE, obj)
        else:
            self._collector.record(identity, OperationKind.DELETE)

    def on_before_delete(self, obj: Any) -> None:
        if not self._accepts(OperationKind.DELETE, obj):
            return
        if self._parked.pop(id(obj), None) is not None:
            # Never reached the database with an identity, so never indexed.
            return
        identity = self._resolve(obj, OperationKind.DELETE)
        if identity is not None:
            self._collector.record(identity, OperationKind.DELETE)

    def on_before_flush(self) -> None:
        """Resolve parked identities and snapshot pending documents."""
        if not self._settings.enabled or not self._settings.flush:
            return
        self._resolve_parked(final=False)
        if self._settings.defer:
            return
        for op in self._collector.pending():
            if not op.needs_document or op.document is not None:
                continue
            try:
                self._collector.attach_snapshot(op.identity, self._transformer.transform(op.source))
            except TransformError as e:
                # Retried at drain time, where a second failure is reported.
                logger.debug("Snapshot of %s/%s failed: %s", self.index, op.identity, e)

    async def on_after_flush(self) -> FlushReport:
        """Write everything collected since the last flush."""
        if not self._settings.enabled or not self._settings.flush:
            return FlushReport(index=self.index)
        return await self.flush_pending()

    async def flush_pending(self) -> FlushReport:
        """Drain the collector and write (or publish) the batch.

        Runs regardless of the ``flush`` toggle, for applications that write
        at a point of their own choosing (e.g. at the end of a request).
        """
        self._resolve_parked(final=True)
        batch = self._collector.drain()
        failures, self._failures = self._failures, []
        report = FlushReport(index=self.index, failures=failures)

        ready = self._build_documents(batch, report)
        if ready:
            report.submitted = len(ready)
            if self._channel is not None:
                await self._publish(ready, report)
            else:
                await self._write(ready, report)

        return self._finish(report)

    def discard(self) -> None:
        """Forget everything collected (the unit-of-work was rolled back)."""
        self._collector.discard()
        self._parked.clear()
        self._failures.clear()

    # ──────────────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────────────

    def _accepts(self, kind: OperationKind, obj: Any) -> bool:
        return self._settings.enabled and getattr(self._settings, kind.value) and self.handles(obj)

    def _resolve(self, obj: Any, kind: OperationKind) -> str | None:
        try:
            return self._resolver.resolve(obj)
        except IdentityError as e:
            self._failures.append(SyncFailure(kind=kind, stage=FailureStage.IDENTITY, reason=str(e)))
            return None

    def _check_indexable(self, obj: Any, kind: OperationKind, identity: str | None = None) -> bool | None:
        """Evaluate the indexable predicate; None means the check itself failed."""
        if self._indexable is None:
            return True
        try:
            return bool(self._indexable(obj))
        except Exception as e:
            self._failures.append(
                SyncFailure(identity=identity, kind=kind, stage=FailureStage.INDEXABLE, reason=str(e))
            )
            return None

    def _resolve_parked(self, *, final: bool) -> None:
        for key, obj in list(self._parked.items()):
            try:
                identity = self._resolver.resolve(obj)
            except IdentityError as e:
                if final:
                    del self._parked[key]
                    self._failures.append(
                        SyncFailure(kind=OperationKind.INSERT, stage=FailureStage.IDENTITY, reason=str(e))
                    )
                continue
            del self._parked[key]
            self._collector.record(identity, OperationKind.INSERT, obj)

    def _build_documents(self, batch: Batch, report: FlushReport) -> Batch:
        ready = []
        for op in batch.operations:
            if not op.needs_document or op.document is not None:
                ready.append(op)
                continue
            try:
                document = self._transformer.transform(op.source)
            except TransformError as e:
                report.failures.append(
                    SyncFailure(identity=op.identity, kind=op.kind, stage=FailureStage.TRANSFORM, reason=str(e))
                )
                continue
            ready.append(op.model_copy(update={"document": document}))
        return Batch(operations=tuple(ready))

    async def _write(self, batch: Batch, report: FlushReport) -> None:
        assert self._writer is not None
        try:
            results = await self._writer.write(self.index, batch, batch_size=self._batch_size, refresh=self._refresh)
        except Exception as e:
            logger.exception("Writer %s failed on %s", self._writer.name, self.index)
            report.failures.extend(
                SyncFailure(identity=op.identity, kind=op.kind, stage=FailureStage.WRITE, reason=str(e))
                for op in batch.operations
            )
            return
        report.results.extend(results)
        for result in results:
            if not result.ok:
                report.failures.append(
                    SyncFailure(
                        identity=result.identity,
                        kind=result.kind,
                        stage=result.stage or FailureStage.WRITE,
                        reason=result.error or "unknown error",
                    )
                )

    async def _publish(self, batch: Batch, report: FlushReport) -> None:
        assert self._channel is not None
        try:
            await self._channel.publish(BatchMessage.from_batch(self.index, batch))
        except ChannelError as e:
            report.failures.extend(
                SyncFailure(identity=op.identity, kind=op.kind, stage=FailureStage.CHANNEL, reason=str(e))
                for op in batch.operations
            )
            return
        report.published = True

    def _finish(self, report: FlushReport) -> FlushReport:
        if self._error_channel is not None:
            for failure in report.failures:
                self._error_channel.warning(
                    "index_sync_failed",
                    identity=failure.identity,
                    kind=failure.kind.value if failure.kind else None,
                    stage=failure.stage.value,
                    reason=failure.reason,
                )
        if report.submitted or report.failures:
            logger.info(
                "Flushed %s: %d submitted, %d succeeded, %d failed%s",
                self.index,
                report.submitted,
                report.succeeded,
                report.failed,
                " (published)" if report.published else "",
            )
        return report
