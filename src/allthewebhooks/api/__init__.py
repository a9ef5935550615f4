"""HTTP administration API."""

from .admin import router

__all__ = ["router"]
