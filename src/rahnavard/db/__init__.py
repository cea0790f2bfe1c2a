# src/rahnavard/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, SessionLocal, create_tables, engine

__all__ = ["Base", "create_tables", "engine", "SessionLocal"]
