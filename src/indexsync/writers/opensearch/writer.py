"""OpenSearch writer — Bulk indexing for OpenSearch (v2+).

This writer uses ``opensearch-py`` (async) and submits each chunk of a batch
as one ``_bulk`` request.

Install the optional dependency::

    pip install indexsync[opensearch]
    # or: pip install opensearch-py
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

from indexsync.exceptions import ConfigurationError, TransportError, WriteError
from indexsync.models.operation import PendingOperation
from indexsync.models.result import WriteResult
from indexsync.writers.base.writer import IndexWriter, WriterHealth, cluster_health
from indexsync.writers.bulk import build_bulk_body, parse_bulk_response

logger = logging.getLogger(__name__)


class OpenSearchWriter(IndexWriter):
    """Index writer for OpenSearch (v2+).

    Args:
        hosts: List of OpenSearch node URLs.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Optional API key, sent as an ``ApiKey`` authorization header.
        timeout: Request timeout in seconds.
        verify_certs: Whether to verify TLS certificates.
        headers: Extra HTTP headers.
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
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
        self._hosts = hosts or ["https://localhost:9200"]
        self._username = username
        self._password = password
        self._api_key = api_key
        self._timeout = timeout
        self._verify_certs = verify_certs
        self._headers = dict(headers or {})
        self._extra_kwargs = kwargs
        self._client: Any = None

    @property
    def name(self) -> str:
        return "opensearch"

    async def initialize(self) -> None:
        """Create and verify the ``AsyncOpenSearch`` client."""
        try:
            from opensearchpy import AsyncOpenSearch
        except ImportError as e:
            raise ConfigurationError(
                "opensearch-py package is required.  Install with: pip install indexsync[opensearch]"
            ) from e

        headers = dict(self._headers)
        if self._api_key:
            headers["Authorization"] = f"ApiKey {self._api_key}"

        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._timeout,
        }
        if headers:
            client_kwargs["headers"] = headers
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)

        client_kwargs.update(self._extra_kwargs)

        try:
            self._client = AsyncOpenSearch(**client_kwargs)
            info = await self._client.info()
            version = info.get("version", {}).get("number", "unknown")
            cluster = info.get("cluster_name", "unknown")
            logger.info("Connected to OpenSearch cluster: %s (v%s)", cluster, version)
        except Exception as e:
            raise TransportError(f"Failed to connect to OpenSearch: {e}") from e

    async def shutdown(self) -> None:
        """Close the OpenSearch client."""
        if self._client:
            await self._client.close()
            self._client = None

    # ── Bulk ─────────────────────────────────────────────────────────────

    async def submit(
        self,
        index: str,
        operations: Sequence[PendingOperation],
        refresh: str | None = None,
    ) -> list[WriteResult]:
        """Submit one ``_bulk`` request."""
        if not self._client:
            raise TransportError("OpenSearch client not initialized.")

        from opensearchpy import exceptions as os_exceptions

        params: dict[str, Any] = {}
        if refresh:
            params["refresh"] = refresh

        try:
            start = time.monotonic()
            response = await self._client.bulk(body=build_bulk_body(index, operations), **params)
            took_ms = int((time.monotonic() - start) * 1000)
        except os_exceptions.ConnectionError as e:
            raise TransportError(f"OpenSearch unreachable: {e}") from e
        except os_exceptions.TransportError as e:
            status = e.status_code if isinstance(e.status_code, int) else None
            raise WriteError(f"OpenSearch bulk request failed: {e}", status=status) from e

        results = parse_bulk_response(response, operations)
        logger.debug(
            "Bulk request to %s: %d operations in %d ms (errors=%s)",
            index,
            len(operations),
            took_ms,
            response.get("errors", False),
        )
        return results

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> WriterHealth:
        """Check OpenSearch cluster health."""
        if not self._client:
            return WriterHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._client.cluster.health()
            return cluster_health(health, int((time.monotonic() - start) * 1000))
        except Exception as e:
            return WriterHealth(status="unhealthy", message=str(e))
