"""Partition strategy analysis for large data warehouse tables."""

__version__ = "1.0.0"
