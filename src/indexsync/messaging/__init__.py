"""Deferred indexing — Batch channels and the consumer applying them."""
