# src/rahnavard/models/__init__.py
"""SQLAlchemy models for the Rahnavard application."""

from .rep import Rep, RepActivity, RepSession

__all__ = ["Rep", "RepActivity", "RepSession"]
