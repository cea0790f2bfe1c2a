"""Client identity resolution behind proxies and CDNs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

UNKNOWN_IDENTITY: Final[str] = "unknown"


def resolve_client_identity(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Return the best-known client IP for a request.

    Precedence: ``cf-connecting-ip``, the first ``x-forwarded-for`` entry,
    ``x-real-ip``, the transport peer, then ``"unknown"``. Never empty.
    """
    cf_connecting = (headers.get("cf-connecting-ip") or "").strip()
    if cf_connecting:
        return cf_connecting

    forwarded = headers.get("x-forwarded-for") or ""
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    real = (headers.get("x-real-ip") or "").strip()
    if real:
        return real

    if peer:
        return peer
    return UNKNOWN_IDENTITY


def client_identity(request: Any) -> str:
    """Resolve the identity for a Starlette request."""
    client = getattr(request, "client", None)
    peer = client.host if client is not None else None
    return resolve_client_identity(request.headers, peer)
