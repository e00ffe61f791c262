"""Service layer for delegation sync."""
