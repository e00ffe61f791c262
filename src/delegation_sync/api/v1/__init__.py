# src/delegation_sync/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import data_router

__all__ = ["data_router"]
