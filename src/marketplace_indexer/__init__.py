"""Marketplace indexer: derives job marketplace state from on-chain event logs."""

__version__ = "0.1.0"
