"""Incremental DRep delegation synchronization service."""

__version__ = "0.1.0"
