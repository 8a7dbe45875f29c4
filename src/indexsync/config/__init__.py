"""Configuration for IndexSync."""
