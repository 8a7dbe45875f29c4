"""Tests for the index listener."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
import structlog
from conftest import RecordingWriter
from sample_models import Article, Comment, Status

from indexsync.config.settings import ListenerSettings
from indexsync.core.identity import IdentityResolver
from indexsync.core.listener import IndexListener
from indexsync.core.transformer import DocumentTransformer
from indexsync.drivers.mongodb import MongoDriver
from indexsync.exceptions import ChannelError
from indexsync.messaging.channel import BatchChannel, MemoryChannel
from indexsync.models.operation import OperationKind
from indexsync.models.result import FailureStage


def make_listener(
    writer: RecordingWriter | None = None,
    *,
    channel: BatchChannel | None = None,
    settings: ListenerSettings | None = None,
    indexable: Callable[[Any], bool] | None = None,
    properties: Any = ("title",),
    model: type | None = Article,
    batch_size: int = 100,
) -> IndexListener:
    driver = MongoDriver()
    return IndexListener(
        "articles",
        driver=driver,
        resolver=IdentityResolver(driver),
        transformer=DocumentTransformer(properties),
        writer=writer,
        channel=channel,
        model=model,
        settings=settings,
        indexable=indexable,
        batch_size=batch_size,
        refresh="wait_for",
    )


# ══════════════════════════════════════════════════════════════════════════════
# Event routing
# ══════════════════════════════════════════════════════════════════════════════


class TestEventRouting:
    async def test_insert_is_written_on_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_insert(Article(id=1, title="Solar"))
        listener.on_before_flush()
        report = await listener.on_after_flush()

        assert report.ok
        assert report.submitted == 1
        assert report.succeeded == 1
        index, ops, refresh = writer.requests[0]
        assert index == "articles"
        assert refresh == "wait_for"
        assert ops[0].kind is OperationKind.INSERT
        assert ops[0].identity == "1"
        assert ops[0].document == {"title": "Solar"}

    async def test_update_and_delete(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_update(Article(id=1, title="Updated"))
        listener.on_before_delete(Article(id=2, title="Gone"))
        await listener.on_after_flush()

        kinds = [(op.identity, op.kind, op.document) for op in writer.operations]
        assert kinds == [
            ("1", OperationKind.UPDATE, {"title": "Updated"}),
            ("2", OperationKind.DELETE, None),
        ]

    async def test_unmapped_type_is_ignored(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_insert(Comment(id=1, body="Nice"))
        report = await listener.on_after_flush()

        assert report.submitted == 0
        assert writer.requests == []

    async def test_disabled_delete_kind(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, settings=ListenerSettings(delete=False))
        listener.on_before_delete(Article(id=1, title="T"))

        assert len(listener.collector) == 0
        await listener.on_after_flush()
        assert writer.requests == []

    async def test_disabled_listener_records_nothing(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, settings=ListenerSettings(enabled=False))
        listener.on_before_insert(Article(id=1, title="T"))
        listener.on_before_update(Article(id=2, title="T"))

        assert len(listener.collector) == 0
        assert (await listener.on_after_flush()).submitted == 0

    async def test_repeated_mutations_collapse(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=1, title="v1")
        listener.on_before_insert(article)
        article.title = "v2"
        listener.on_before_update(article)
        await listener.on_after_flush()

        (op,) = writer.operations
        assert op.kind is OperationKind.INSERT
        assert op.document == {"title": "v2"}

    async def test_insert_then_delete_writes_delete_only(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=1, title="T")
        listener.on_before_insert(article)
        listener.on_before_delete(article)
        await listener.on_after_flush()

        assert [op.kind for op in writer.operations] == [OperationKind.DELETE]


# ══════════════════════════════════════════════════════════════════════════════
# Snapshots and defer
# ══════════════════════════════════════════════════════════════════════════════


class TestSnapshots:
    async def test_snapshot_taken_before_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=1, title="flushed state")
        listener.on_before_update(article)
        listener.on_before_flush()
        article.title = "mutated after flush"
        await listener.on_after_flush()

        assert writer.operations[0].document == {"title": "flushed state"}

    async def test_defer_builds_at_drain(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, settings=ListenerSettings(defer=True))
        article = Article(id=1, title="flushed state")
        listener.on_before_update(article)
        listener.on_before_flush()
        assert listener.collector.get("1").document is None

        article.title = "state at drain"
        await listener.on_after_flush()
        assert writer.operations[0].document == {"title": "state at drain"}

    async def test_documents_not_cached_across_flushes(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=1, title="first")
        listener.on_before_update(article)
        listener.on_before_flush()
        await listener.on_after_flush()

        article.title = "second"
        listener.on_before_update(article)
        listener.on_before_flush()
        await listener.on_after_flush()

        assert [op.document["title"] for op in writer.operations] == ["first", "second"]


# ══════════════════════════════════════════════════════════════════════════════
# Deferred identity
# ══════════════════════════════════════════════════════════════════════════════


class TestDeferredIdentity:
    async def test_generated_key_resolved_before_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=None, title="New")
        listener.on_before_insert(article)
        assert listener.parked == [article]
        assert len(listener.collector) == 0

        article.id = 7
        listener.on_before_flush()
        assert listener.parked == []
        await listener.on_after_flush()

        assert writer.operations[0].identity == "7"
        assert writer.operations[0].document == {"title": "New"}

    async def test_generated_key_resolved_after_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=None, title="New")
        listener.on_before_insert(article)
        listener.on_before_flush()
        article.id = 8
        await listener.on_after_flush()

        assert writer.operations[0].identity == "8"

    async def test_never_assigned_key_is_reported(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_insert(Article(id=None, title="New"))
        report = await listener.on_after_flush()

        assert writer.requests == []
        assert len(report.failures) == 1
        assert report.failures[0].stage is FailureStage.IDENTITY
        assert listener.parked == []

    async def test_parked_object_deleted_before_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=None, title="New")
        listener.on_before_insert(article)
        listener.on_before_delete(article)
        report = await listener.on_after_flush()

        assert report.ok
        assert writer.requests == []

    async def test_parked_object_updated_before_flush(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        article = Article(id=None, title="Draft")
        listener.on_before_insert(article)
        article.title = "Final"
        listener.on_before_update(article)
        article.id = 11
        report = await listener.on_after_flush()

        assert report.ok
        assert report.failures == []
        assert [(op.identity, op.kind) for op in writer.operations] == [("11", OperationKind.INSERT)]
        assert writer.operations[0].document == {"title": "Final"}

    async def test_update_without_identity_is_reported(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_update(Article(id=None, title="T"))
        report = await listener.on_after_flush()

        assert report.failures[0].stage is FailureStage.IDENTITY
        assert report.failures[0].kind is OperationKind.UPDATE


# ══════════════════════════════════════════════════════════════════════════════
# Indexable predicate
# ══════════════════════════════════════════════════════════════════════════════


class TestIndexable:
    async def test_unpublished_update_becomes_delete(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, indexable=lambda a: a.is_published())
        listener.on_before_update(Article(id=1, title="T", status=Status.DRAFT))
        await listener.on_after_flush()

        assert [(op.identity, op.kind) for op in writer.operations] == [("1", OperationKind.DELETE)]

    async def test_unpublished_insert_is_skipped(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, indexable=lambda a: a.is_published())
        listener.on_before_insert(Article(id=1, title="T", status=Status.DRAFT))
        report = await listener.on_after_flush()

        assert report.ok
        assert writer.requests == []

    async def test_failing_predicate_is_reported(self, writer: RecordingWriter) -> None:
        def explode(obj: Any) -> bool:
            raise RuntimeError("boom")

        listener = make_listener(writer, indexable=explode)
        listener.on_before_update(Article(id=1, title="T"))
        report = await listener.on_after_flush()

        assert writer.requests == []
        assert report.failures[0].stage is FailureStage.INDEXABLE
        assert report.failures[0].identity == "1"


# ══════════════════════════════════════════════════════════════════════════════
# Partial failures
# ══════════════════════════════════════════════════════════════════════════════


class TestPartialFailures:
    async def test_transform_failure_excludes_one_document(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, model=None)
        listener.on_before_insert({"_id": "1", "title": "first"})
        listener.on_before_insert({"_id": "2"})
        listener.on_before_insert({"_id": "3", "title": "third"})
        report = await listener.on_after_flush()

        assert [op.identity for op in writer.operations] == ["1", "3"]
        assert report.succeeded == 2
        assert len(report.failures) == 1
        assert report.failures[0].identity == "2"
        assert report.failures[0].stage is FailureStage.TRANSFORM

    async def test_write_failure_is_per_document(self) -> None:
        writer = RecordingWriter(fail_ids=["2"])
        listener = make_listener(writer)
        for i in (1, 2, 3):
            listener.on_before_insert(Article(id=i, title=f"T{i}"))
        report = await listener.on_after_flush()

        assert [r.ok for r in report.results] == [True, False, True]
        assert [(f.identity, f.stage) for f in report.failures] == [("2", FailureStage.WRITE)]

    async def test_unreachable_backend_does_not_raise(self) -> None:
        writer = RecordingWriter(unreachable=True)
        listener = make_listener(writer)
        listener.on_before_insert(Article(id=1, title="T"))
        listener.on_before_insert(Article(id=2, title="T"))
        report = await listener.on_after_flush()

        assert report.succeeded == 0
        assert {f.stage for f in report.failures} == {FailureStage.TRANSPORT}
        assert len(report.failures) == 2

    async def test_unexpected_writer_error_does_not_raise(self, writer: RecordingWriter) -> None:
        writer.write = AsyncMock(side_effect=RuntimeError("driver bug"))  # type: ignore[method-assign]
        listener = make_listener(writer)
        listener.on_before_insert(Article(id=1, title="T"))
        report = await listener.on_after_flush()

        assert report.failures[0].reason == "driver bug"

    async def test_batch_size_splits_requests(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, batch_size=2)
        for i in range(5):
            listener.on_before_insert(Article(id=i, title=f"T{i}"))
        report = await listener.on_after_flush()

        assert [len(ops) for _, ops, _ in writer.requests] == [2, 2, 1]
        assert report.succeeded == 5


# ══════════════════════════════════════════════════════════════════════════════
# Flush toggle, error channel, messaging
# ══════════════════════════════════════════════════════════════════════════════


class TestFlushToggle:
    async def test_flush_disabled_keeps_operations(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer, settings=ListenerSettings(flush=False))
        listener.on_before_insert(Article(id=1, title="T"))
        listener.on_before_flush()
        await listener.on_after_flush()
        assert writer.requests == []
        assert len(listener.collector) == 1

        report = await listener.flush_pending()
        assert report.succeeded == 1

    async def test_discard(self, writer: RecordingWriter) -> None:
        listener = make_listener(writer)
        listener.on_before_insert(Article(id=1, title="T"))
        listener.on_before_insert(Article(id=None, title="T"))
        listener.discard()

        report = await listener.on_after_flush()
        assert report.submitted == 0
        assert report.ok


class TestErrorChannel:
    async def test_failures_logged_by_identity(self) -> None:
        listener = make_listener(RecordingWriter(fail_ids=["2"]))
        listener.on_before_insert(Article(id=2, title="T"))
        with structlog.testing.capture_logs() as logs:
            await listener.on_after_flush()

        failures = [entry for entry in logs if entry["event"] == "index_sync_failed"]
        assert len(failures) == 1
        assert failures[0]["identity"] == "2"
        assert failures[0]["index"] == "articles"
        assert failures[0]["stage"] == "write"
        assert "mapper_parsing_exception" in failures[0]["reason"]

    async def test_disabled_channel_still_reports(self) -> None:
        listener = make_listener(RecordingWriter(fail_ids=["2"]), settings=ListenerSettings(logger=False))
        listener.on_before_insert(Article(id=2, title="T"))
        with structlog.testing.capture_logs() as logs:
            report = await listener.on_after_flush()

        assert not [entry for entry in logs if entry["event"] == "index_sync_failed"]
        assert report.failed == 1


class TestMessaging:
    async def test_batch_published_instead_of_written(self) -> None:
        channel = MemoryChannel()
        listener = make_listener(channel=channel)
        listener.on_before_insert(Article(id=1, title="T"))
        listener.on_before_delete(Article(id=2, title="T"))
        report = await listener.on_after_flush()

        assert report.published
        assert report.submitted == 2
        message = await channel.receive(timeout=1)
        assert message is not None
        assert message.index == "articles"
        assert [(op.identity, op.kind, op.document) for op in message.operations] == [
            ("1", OperationKind.INSERT, {"title": "T"}),
            ("2", OperationKind.DELETE, None),
        ]

    async def test_channel_failure_is_reported(self) -> None:
        channel = AsyncMock(spec=BatchChannel)
        channel.publish.side_effect = ChannelError("redis down")
        listener = make_listener(channel=channel)
        listener.on_before_insert(Article(id=1, title="T"))
        report = await listener.on_after_flush()

        assert not report.published
        assert report.failures[0].stage is FailureStage.CHANNEL

    def test_writer_or_channel_required(self) -> None:
        with pytest.raises(ValueError):
            make_listener()
