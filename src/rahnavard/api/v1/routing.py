"""Route class and exception handlers that keep every response in the envelope.

``SecureRoute`` covers the versioned endpoints. Errors raised before a route
runs (unknown paths, wrong methods) or re-raised by it (``HTTPException``,
request validation) reach the app-level handlers registered by
``register_exception_handlers`` instead, which render the same envelope and
security headers.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException

from rahnavard.core.errors import SecurityRejection
from rahnavard.core.identity import client_identity
from rahnavard.core.messages import message
from rahnavard.core.settings import Settings, settings
from rahnavard.schemas.common import envelope, new_request_id, request_scope
from rahnavard.services.event_log import SecurityEventType, Severity

logger = logging.getLogger(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}
SESSION_TOKEN_HEADER = "X-Session-Token"
REQUEST_ID_HEADER = "X-Request-ID"

# Status codes FastAPI or Starlette raise themselves, mapped to message keys.
_STATUS_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "INVALID_INPUT",
    status.HTTP_401_UNAUTHORIZED: "AUTH_FAILED",
    status.HTTP_403_FORBIDDEN: "PERMISSION_DENIED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: "BODY_TOO_LARGE",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "INVALID_INPUT",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMIT_EXCEEDED",
}


def security_headers(config: Settings) -> dict[str, str]:
    """Return the static headers plus the configured CSP and HSTS values."""
    headers = dict(SECURITY_HEADERS)
    if config.content_security_policy:
        headers["Content-Security-Policy"] = config.content_security_policy
    hsts = config.strict_transport_security
    if hsts:
        headers["Strict-Transport-Security"] = hsts
    return headers


def rejection_response(rejection: SecurityRejection) -> JSONResponse:
    """Render a rejection as an error envelope with its status and headers."""
    body = envelope(rejection.data, error=rejection.public_message)
    return JSONResponse(body, status_code=rejection.status_code, headers=rejection.headers)


def apply_security_headers(request: Request, response: Response) -> Response:
    container: Any = getattr(request.app.state, "security", None)
    response.headers.update(security_headers(container.config if container else settings))
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    rotated = getattr(request.state, "rotated_token", None)
    if rotated:
        response.headers[SESSION_TOKEN_HEADER] = rotated
    return response


def _request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = new_request_id()
        request.state.request_id = request_id
    return request_id


class SecureRoute(APIRoute):
    """APIRoute whose handler converts every failure into a safe response.

    ``SecurityRejection`` renders the error envelope. ``HTTPException`` and
    request validation errors are left to the app's exception handlers.
    Anything else is recorded as an ``internal_error`` event and answered with
    an opaque 500.
    """

    def get_route_handler(self) -> Callable[[Request], Awaitable[Response]]:
        original = super().get_route_handler()

        async def secure_handler(request: Request) -> Response:
            with request_scope(_request_id_for(request)):
                try:
                    response = await original(request)
                except SecurityRejection as rejection:
                    response = rejection_response(rejection)
                except (HTTPException, RequestValidationError):
                    raise
                except Exception as exc:  # noqa: BLE001 - never leak internals to clients
                    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
                    _record_internal_error(request, exc)
                    response = JSONResponse(
                        envelope(error=message("SERVER_ERROR")),
                        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    )
            return apply_security_headers(request, response)

        return secure_handler


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Render framework HTTP errors (404, 405, ...) as an error envelope."""
    key = _STATUS_MESSAGES.get(exc.status_code)
    if key is None:
        key = "SERVER_ERROR" if exc.status_code >= 500 else "INVALID_INPUT"
    with request_scope(_request_id_for(request)):
        body = envelope(error=message(key))
    response = JSONResponse(body, status_code=exc.status_code, headers=exc.headers)
    return apply_security_headers(request, response)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> Response:
    """Render query, path and header validation errors as an error envelope."""
    logger.info(
        "Request validation failed for %s %s: %d errors",
        request.method,
        request.url.path,
        len(exc.errors()),
    )
    with request_scope(_request_id_for(request)):
        body = envelope(error=message("INVALID_INPUT"))
    response = JSONResponse(body, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)
    return apply_security_headers(request, response)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)


def _record_internal_error(request: Request, exc: Exception) -> None:
    container: Any = getattr(request.app.state, "security", None)
    if container is None:
        return
    subject_id = getattr(request.state, "subject_id", None)
    try:
        container.event_log.record(
            SecurityEventType.INTERNAL_ERROR,
            Severity.HIGH,
            client_identity(request),
            {"error": type(exc).__name__, "path": request.url.path},
            subject_id=subject_id,
            endpoint=request.url.path,
        )
    except Exception as log_exc:  # noqa: BLE001 - logging is best-effort
        logger.warning("Failed to record internal error event: %s", log_exc)
