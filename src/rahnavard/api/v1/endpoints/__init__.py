# src/rahnavard/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .rep import router as rep_router
from .security import router as security_router

__all__ = [
    "rep_router",
    "security_router",
]
