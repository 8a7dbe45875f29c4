"""Tests for the HTTP bulk writer."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from indexsync.exceptions import TransportError, WriteError
from indexsync.models.operation import OperationKind, PendingOperation
from indexsync.writers.http.writer import HttpBulkWriter

# ── Helpers ──────────────────────────────────────────────────────────────────


def _response(status_code: int, payload: Any = None, text: str = "") -> AsyncMock:
    response = AsyncMock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def writer() -> HttpBulkWriter:
    return HttpBulkWriter(hosts=["http://localhost:9200"], api_key="test-key")


@pytest.fixture
def operations() -> list[PendingOperation]:
    return [
        PendingOperation(identity="1", kind=OperationKind.INSERT, document={"title": "Wind Power Forecasting"}),
        PendingOperation(identity="2", kind=OperationKind.DELETE),
    ]


# ── Properties ───────────────────────────────────────────────────────────────


class TestHttpBulkWriterProperties:
    def test_name(self, writer: HttpBulkWriter) -> None:
        assert writer.name == "http"

    def test_base_url_gets_trailing_slash(self, writer: HttpBulkWriter) -> None:
        assert writer._base_url == "http://localhost:9200/"


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestHttpBulkWriterLifecycle:
    async def test_initialize_unreachable(self) -> None:
        writer = HttpBulkWriter(hosts=["http://127.0.0.1:1"], timeout=0.5)
        with pytest.raises(TransportError, match="Failed to connect"):
            await writer.initialize()
        await writer.shutdown()

    async def test_shutdown_closes_client(self, writer: HttpBulkWriter) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        writer._client = client
        await writer.shutdown()
        client.aclose.assert_called_once()
        assert writer._client is None


# ── Bulk ─────────────────────────────────────────────────────────────────────


class TestHttpBulkWriterSubmit:
    async def test_not_initialized(self, writer: HttpBulkWriter, operations: list[PendingOperation]) -> None:
        with pytest.raises(TransportError, match="not initialized"):
            await writer.submit("articles", operations)

    async def test_posts_ndjson(self, writer: HttpBulkWriter, operations: list[PendingOperation]) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post.return_value = _response(
            200, {"errors": False, "items": [{"index": {"status": 201}}, {"delete": {"status": 200}}]}
        )
        writer._client = client

        results = await writer.submit("articles", operations, refresh="true")

        assert [r.ok for r in results] == [True, True]
        call = client.post.call_args
        assert call.args[0] == "_bulk"
        assert call.kwargs["headers"] == {"Content-Type": "application/x-ndjson"}
        assert call.kwargs["params"] == {"refresh": "true"}
        lines = call.kwargs["content"].splitlines()
        assert json.loads(lines[0]) == {"index": {"_index": "articles", "_id": "1"}}
        assert json.loads(lines[2]) == {"delete": {"_index": "articles", "_id": "2"}}

    async def test_item_failure(self, writer: HttpBulkWriter, operations: list[PendingOperation]) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post.return_value = _response(
            200,
            {
                "errors": True,
                "items": [
                    {"index": {"status": 400, "error": {"type": "mapper_parsing_exception", "reason": "bad"}}},
                    {"delete": {"status": 200}},
                ],
            },
        )
        writer._client = client

        results = await writer.submit("articles", operations)
        assert not results[0].ok
        assert results[0].error == "mapper_parsing_exception: bad"
        assert results[1].ok

    async def test_http_error_status(self, writer: HttpBulkWriter, operations: list[PendingOperation]) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post.return_value = _response(401, text="unauthorized")
        writer._client = client

        with pytest.raises(WriteError, match="HTTP 401") as exc_info:
            await writer.submit("articles", operations)
        assert exc_info.value.status == 401

    async def test_connect_error(self, writer: HttpBulkWriter, operations: list[PendingOperation]) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post.side_effect = httpx.ConnectError("refused")
        writer._client = client

        with pytest.raises(TransportError, match="unreachable"):
            await writer.submit("articles", operations)


# ── Health ───────────────────────────────────────────────────────────────────


class TestHttpBulkWriterHealth:
    async def test_not_initialized(self, writer: HttpBulkWriter) -> None:
        assert (await writer.health_check()).status == "unhealthy"

    async def test_yellow_is_degraded(self, writer: HttpBulkWriter) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.get.return_value = _response(200, {"status": "yellow", "cluster_name": "test"})
        writer._client = client

        health = await writer.health_check()
        assert health.status == "degraded"
        client.get.assert_called_once_with("_cluster/health")

    async def test_error_status(self, writer: HttpBulkWriter) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.get.return_value = _response(503)
        writer._client = client

        health = await writer.health_check()
        assert health.status == "unhealthy"
        assert health.message == "HTTP 503"
