"""Bulk request helpers shared by Elasticsearch-compatible writers.

Insert and update both become ``index`` actions (the document is replaced
as a whole); delete becomes a ``delete`` action. Deleting a document that is
not in the index is not an error.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from indexsync.models.operation import OperationKind, PendingOperation
from indexsync.models.result import FailureStage, WriteResult


def build_bulk_body(index: str, operations: Sequence[PendingOperation]) -> list[dict[str, Any]]:
    """Build the action/source line pairs of a bulk request."""
    body: list[dict[str, Any]] = []
    for op in operations:
        meta = {"_index": index, "_id": op.identity}
        if op.kind is OperationKind.DELETE:
            body.append({"delete": meta})
        else:
            body.append({"index": meta})
            body.append(op.document or {})
    return body


def to_ndjson(body: Sequence[dict[str, Any]]) -> str:
    """Serialize bulk lines as newline-delimited JSON (with trailing newline)."""
    return "".join(json.dumps(line, separators=(",", ":"), ensure_ascii=False) + "\n" for line in body)


def parse_bulk_response(response: dict[str, Any], operations: Sequence[PendingOperation]) -> list[WriteResult]:
    """Map bulk response items back to identities, in submission order."""
    items = response.get("items") or []
    results: list[WriteResult] = []
    for position, op in enumerate(operations):
        if position >= len(items):
            results.append(
                WriteResult(
                    identity=op.identity,
                    kind=op.kind,
                    ok=False,
                    error="No response item for this operation",
                    stage=FailureStage.WRITE,
                )
            )
            continue

        item = items[position]
        detail = next(iter(item.values()), {}) if isinstance(item, dict) else {}
        status = detail.get("status")
        ok = status is not None and 200 <= status < 300
        if not ok and op.kind is OperationKind.DELETE and status == 404:
            ok = True

        results.append(
            WriteResult(
                identity=op.identity,
                kind=op.kind,
                ok=ok,
                status=status,
                error=None if ok else _error_reason(detail),
                stage=None if ok else FailureStage.WRITE,
            )
        )
    return results


def _error_reason(detail: dict[str, Any]) -> str:
    error = detail.get("error")
    if isinstance(error, dict):
        kind = error.get("type", "error")
        reason = error.get("reason", "")
        return f"{kind}: {reason}" if reason else kind
    if error:
        return str(error)
    return f"Unexpected status {detail.get('status')}"
