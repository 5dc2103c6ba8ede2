"""Incremental transaction indexer for a watched set of EVM contracts."""

__version__ = "0.1.0"
