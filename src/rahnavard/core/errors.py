"""Rejection taxonomy raised by the request guard.

Every rejection carries a safe public message and a status code. The specific
internal reason (which check failed and why) is kept on ``reason`` for the
security log and is never rendered to the client.
"""

from __future__ import annotations

from typing import Any

from fastapi import status

from rahnavard.core.messages import message


class SecurityRejection(Exception):
    """Base class for expected, user-facing request rejections."""

    category = "rejection"

    def __init__(
        self,
        status_code: int,
        message_key: str,
        *,
        reason: str | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.public_message = message(message_key)
        self.reason = reason or message_key
        self.headers = headers or {}
        self.data = data
        super().__init__(self.reason)


class PolicyRejection(SecurityRejection):
    """Method, role, quota or block policy refused the request."""

    category = "policy"


class AuthenticationFailure(SecurityRejection):
    """Token, session or fingerprint checks failed. Always a generic 401."""

    category = "authentication"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(status.HTTP_401_UNAUTHORIZED, "AUTH_FAILED", reason=reason)


class ValidationFailure(SecurityRejection):
    """The request body was malformed, oversized or flagged as malicious."""

    category = "validation"
