"""IndexSync — Keeps search indexes in step with persisted entities."""

__version__ = "0.1.0"
