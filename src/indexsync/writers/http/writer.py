"""HTTP bulk writer — Elasticsearch-compatible ``_bulk`` endpoint over ``httpx``.

Works against Elasticsearch, OpenSearch or any service speaking the same
NDJSON bulk protocol. No extra dependencies beyond ``httpx``.

Usage::

    writer = HttpBulkWriter(hosts=["http://localhost:9200/"], api_key="...")
    await writer.initialize()
    results = await writer.write("articles", batch)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import httpx

from indexsync.exceptions import TransportError, WriteError
from indexsync.models.operation import PendingOperation
from indexsync.models.result import WriteResult
from indexsync.writers.base.writer import IndexWriter, WriterHealth, cluster_health
from indexsync.writers.bulk import build_bulk_body, parse_bulk_response, to_ndjson

logger = logging.getLogger(__name__)


class HttpBulkWriter(IndexWriter):
    """Index writer posting NDJSON to ``/_bulk``.

    Args:
        hosts: Backend URLs; the first one is used.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Optional API key, sent as an ``ApiKey`` authorization header.
        timeout: HTTP request timeout in seconds.
        verify_certs: Whether to verify TLS certificates.
        headers: Extra HTTP headers.
        **kwargs: Extra keyword arguments stored for future use.
    """

    def __init__(
        self,
        hosts: list[str] | None = None,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        verify_certs: bool = True,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        self._base_url = (hosts or ["http://localhost:9200/"])[0]
        if not self._base_url.endswith("/"):
            self._base_url += "/"
        self._username = username
        self._password = password
        self._api_key = api_key
        self._timeout = timeout
        self._verify_certs = verify_certs
        self._headers = dict(headers or {})
        self._extra_kwargs = kwargs
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def initialize(self) -> None:
        """Create an ``httpx.AsyncClient`` and verify the backend answers."""
        headers = dict(self._headers)
        if self._api_key:
            headers["Authorization"] = f"ApiKey {self._api_key}"

        auth = (self._username, self._password) if self._username and self._password else None

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            auth=auth,
            verify=self._verify_certs,
        )

        try:
            resp = await self._client.get("")
            resp.raise_for_status()
            logger.info("Connected to search backend at %s", self._base_url)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to connect to {self._base_url}: {e}") from e

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Bulk ─────────────────────────────────────────────────────────────

    async def submit(
        self,
        index: str,
        operations: Sequence[PendingOperation],
        refresh: str | None = None,
    ) -> list[WriteResult]:
        """Post one NDJSON bulk request."""
        if not self._client:
            raise TransportError("HTTP client not initialized.")

        params = {"refresh": refresh} if refresh else None
        try:
            start = time.monotonic()
            resp = await self._client.post(
                "_bulk",
                content=to_ndjson(build_bulk_body(index, operations)),
                headers={"Content-Type": "application/x-ndjson"},
                params=params,
            )
            took_ms = int((time.monotonic() - start) * 1000)
        except httpx.TransportError as e:
            raise TransportError(f"Search backend unreachable: {e}") from e

        if resp.status_code >= 400:
            raise WriteError(
                f"Bulk request failed with HTTP {resp.status_code}: {resp.text[:200]}",
                status=resp.status_code,
            )

        data = resp.json()
        logger.debug("Bulk request to %s: %d operations in %d ms", index, len(operations), took_ms)
        return parse_bulk_response(data, operations)

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> WriterHealth:
        """Check cluster health via ``/_cluster/health``."""
        if not self._client:
            return WriterHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            resp = await self._client.get("_cluster/health")
            latency_ms = int((time.monotonic() - start) * 1000)
            if resp.status_code != 200:
                return WriterHealth(status="unhealthy", latency_ms=latency_ms, message=f"HTTP {resp.status_code}")

            return cluster_health(resp.json(), latency_ms)
        except Exception as e:
            return WriterHealth(status="unhealthy", message=str(e))
