"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import pytest
from sample_models import Article, Author

from indexsync.config.settings import Settings
from indexsync.exceptions import TransportError
from indexsync.models.operation import PendingOperation
from indexsync.models.result import FailureStage, WriteResult
from indexsync.writers.base.registry import WriterRegistry
from indexsync.writers.base.writer import IndexWriter, WriterHealth


class RecordingWriter(IndexWriter):
    """In-memory writer recording every bulk request it receives."""

    def __init__(self, fail_ids: Sequence[str] = (), unreachable: bool = False) -> None:
        self.fail_ids = set(fail_ids)
        self.unreachable = unreachable
        self.requests: list[tuple[str, list[PendingOperation], str | None]] = []

    @property
    def name(self) -> str:
        return "recording"

    async def initialize(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def submit(
        self,
        index: str,
        operations: Sequence[PendingOperation],
        refresh: str | None = None,
    ) -> list[WriteResult]:
        self.requests.append((index, list(operations), refresh))
        if self.unreachable:
            raise TransportError("Connection refused")
        return [
            WriteResult(identity=op.identity, kind=op.kind, ok=True, status=200)
            if op.identity not in self.fail_ids
            else WriteResult(
                identity=op.identity,
                kind=op.kind,
                ok=False,
                status=400,
                error="mapper_parsing_exception: failed to parse",
                stage=FailureStage.WRITE,
            )
            for op in operations
        ]

    async def health_check(self) -> WriterHealth:
        return WriterHealth(status="healthy")

    @property
    def operations(self) -> list[PendingOperation]:
        return [op for _, ops, _ in self.requests for op in ops]


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def settings() -> Settings:
    """Settings with one client and one synced index mapped to ``Article``."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        clients={"default": {"hosts": ["http://localhost:9200"]}},
        indexes={
            "articles": {
                "index_name": "articles_v1",
                "properties": {
                    "title": None,
                    "author": {"property_path": "author.name"},
                    "tags": None,
                },
                "persistence": {
                    "driver": "mongodb",
                    "model": "sample_models.Article",
                    "persister": {"batch_size": 2, "refresh": "wait_for"},
                },
            },
            "search_only": {"properties": ["title"]},
        },
    )


@pytest.fixture
def registry(writer: RecordingWriter) -> WriterRegistry:
    registry = WriterRegistry()
    registry.add("default", writer)
    return registry


@pytest.fixture
def article() -> Article:
    return Article(
        id=42,
        title="Solar Nowcasting with Deep Learning",
        body="We propose a novel approach to solar irradiance nowcasting.",
        author=Author(name="Jane Doe", email="jane@example.com"),
        tags=["solar", "deep-learning"],
        created_at=datetime(2024, 6, 15, 8, 30),
    )
