"""Logging setup and the indexing error channel."""
