# src/rahnavard/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import rep_router, security_router

__all__ = [
    "rep_router",
    "security_router",
]
