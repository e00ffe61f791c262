# src/delegation_sync/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .data import router as data_router

__all__ = ["data_router"]
