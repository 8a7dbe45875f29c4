"""Index writer layer — Bulk submission to search backends.

Built-in writers:
  - opensearch: OpenSearch v2+ through ``opensearch-py`` (async)
  - http: any Elasticsearch-compatible ``_bulk`` endpoint through ``httpx``

Implement ``IndexWriter`` to write to your own search backend.
"""
