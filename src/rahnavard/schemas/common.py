"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

import secrets
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rahnavard.core.clock import utcnow

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return secrets.token_hex(8)


def current_request_id() -> str:
    """Return the id of the request being handled, or a fresh one outside a request."""
    return _request_id.get() or new_request_id()


@contextmanager
def request_scope(request_id: str) -> Iterator[str]:
    """Make ``request_id`` the id stamped on every envelope built inside the block."""
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class ResponseMetadata(BaseModel):
    """Metadata attached to every API response."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime = Field(default_factory=utcnow)
    request_id: str = Field(
        default_factory=current_request_id,
        alias="requestId",
        description="Opaque identifier for correlating logs with a response",
    )


class Envelope(BaseModel):
    """Uniform response wrapper: ``data`` on success, ``error`` otherwise."""

    success: bool
    data: Any | None = None
    error: str | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


def envelope(data: Any | None = None, *, error: str | None = None) -> dict[str, Any]:
    """Return a JSON-ready envelope; ``success`` is derived from ``error``."""
    return Envelope(success=error is None, data=data, error=error).model_dump(
        mode="json", by_alias=True
    )
