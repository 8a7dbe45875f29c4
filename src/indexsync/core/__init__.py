"""Synchronization pipeline — Collector, resolver, transformer and listener."""
