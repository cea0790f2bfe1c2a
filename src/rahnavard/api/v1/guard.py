"""Per-request security pipeline.

``RequestGuard.guard`` runs the checks below in order and stops at the first
failure. Later stages never run for a rejected request.

1. HTTP method allowed for the route
2. identity not blocked
3. rate limit for the route's limiter class
4. session authentication and MFA (when required)
5. CSRF token (mutating methods)
6. body size, JSON shape and threat scan (methods with a body)
7. role membership (when roles are required)
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request, status

from rahnavard.core.errors import (
    AuthenticationFailure,
    PolicyRejection,
    SecurityRejection,
    ValidationFailure,
)
from rahnavard.core.identity import client_identity
from rahnavard.core.result import Err, Ok, Result
from rahnavard.core.sanitize import validate_input
from rahnavard.core.threats import ThreatLabel
from rahnavard.services.container import SecurityContainer
from rahnavard.services.csrf import CSRF_HEADER, anonymous_session_key
from rahnavard.services.event_log import SecurityEventType, Severity
from rahnavard.services.rate_limiter import LimiterClass, limiter_class_for_path
from rahnavard.services.session_security import SessionRecord, Subject, VerifiedSession

# Configure logger for this module
logger = logging.getLogger(__name__)

DEFAULT_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class GuardOptions:
    """Per-route guard configuration.

    ``limiter_class`` defaults to one derived from the request path.
    ``block_on_detection`` overrides the global setting for this route when set.
    """

    allowed_methods: frozenset[str] = DEFAULT_METHODS
    limiter_class: LimiterClass | None = None
    require_auth: bool = False
    require_mfa: bool = False
    check_csrf: bool = True
    validate_body: bool = True
    block_on_detection: bool | None = None
    roles: tuple[str, ...] = ()


@dataclass
class GuardResult:
    """Outcome of :meth:`RequestGuard.guard`."""

    identity: str
    verified: VerifiedSession | None = None
    body: Any = None
    threats: list[ThreatLabel] = field(default_factory=list)
    rejection: SecurityRejection | None = None

    @property
    def allowed(self) -> bool:
        return self.rejection is None

    @property
    def subject(self) -> Subject | None:
        return self.verified.subject if self.verified else None

    @property
    def session(self) -> SessionRecord | None:
        return self.verified.session if self.verified else None

    @property
    def rotated_token(self) -> str | None:
        return self.verified.rotated_token if self.verified else None


def parse_json_body(raw: bytes) -> Result[Any, str]:
    """Parse a request body. An empty body is an empty object."""
    if not raw.strip():
        return Ok({})
    try:
        return Ok(json.loads(raw))
    except (UnicodeDecodeError, ValueError) as exc:
        return Err(str(exc))


def iter_string_fields(value: Any, path: str = "") -> Iterator[tuple[str, str]]:
    """Yield ``(dotted path, string)`` for every string nested in ``value``."""
    if isinstance(value, str):
        yield path or "body", value
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from iter_string_fields(item, f"{path}.{key}" if path else str(key))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from iter_string_fields(item, f"{path}[{index}]")


class RequestGuard:
    """Apply the security pipeline to incoming requests."""

    def __init__(self, container: SecurityContainer) -> None:
        self.container = container
        self.config = container.config

    async def guard(self, request: Request, options: GuardOptions | None = None) -> GuardResult:
        """Run every stage for ``request``; the result carries the first rejection, if any."""
        opts = options or GuardOptions()
        result = GuardResult(identity=client_identity(request))
        try:
            await self._run(request, opts, result)
        except SecurityRejection as rejection:
            logger.info(
                "Request rejected: %s %s -> %d (%s)",
                request.method,
                request.url.path,
                rejection.status_code,
                rejection.reason,
            )
            result.rejection = rejection
        return result

    async def _run(self, request: Request, opts: GuardOptions, result: GuardResult) -> None:
        method = request.method.upper()
        path = request.url.path

        if method not in opts.allowed_methods:
            raise PolicyRejection(
                status.HTTP_405_METHOD_NOT_ALLOWED,
                "METHOD_NOT_ALLOWED",
                reason=f"method {method} not allowed",
                headers={"Allow": ", ".join(sorted(opts.allowed_methods))},
            )

        self._check_block(request, result.identity)
        self._check_rate_limit(request, opts, result.identity)

        if opts.require_auth or opts.require_mfa or opts.roles:
            result.verified = self._authenticate(request, result.identity)
            if opts.require_mfa and not result.verified.session.mfa_verified:
                raise PolicyRejection(
                    status.HTTP_403_FORBIDDEN, "MFA_REQUIRED", reason="mfa not verified"
                )

        if opts.check_csrf and method in MUTATING_METHODS:
            self._check_csrf(request, result)

        if opts.validate_body and method in BODY_METHODS:
            await self._check_body(request, opts, result)

        if opts.roles:
            self._check_role(request, opts, result)

    # --- Stages -------------------------------------------------------------------
    def _check_block(self, request: Request, identity: str) -> None:
        status_ = self.container.blocks.is_blocked(identity)
        if not status_.blocked:
            return

        headers: dict[str, str] = {}
        data: dict[str, Any] = {"reason": status_.reason, "until": status_.until}
        if status_.until is not None:
            remaining = max(1, math.ceil(status_.until - self.container.clock.time()))
            headers["Retry-After"] = str(remaining)
        self._safe_log(
            self.container.event_log.record,
            SecurityEventType.IP_BLOCKED,
            Severity.MEDIUM,
            identity,
            {"reason": status_.reason, "path": request.url.path},
            endpoint=request.url.path,
        )
        raise PolicyRejection(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "IP_BLOCKED",
            reason=f"identity blocked: {status_.reason}",
            headers=headers,
            data=data,
        )

    def _check_rate_limit(self, request: Request, opts: GuardOptions, identity: str) -> None:
        limiter_class = opts.limiter_class or limiter_class_for_path(request.url.path)
        decision = self.container.rate_limiter.consume(identity, limiter_class)
        if decision.allowed:
            return

        self._safe_log(
            self.container.event_log.log_rate_limit_exceeded,
            identity,
            request.url.path,
            limiter_class.value,
        )
        raise PolicyRejection(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "RATE_LIMIT_EXCEEDED",
            reason=f"{limiter_class.value} quota exhausted",
            headers={"Retry-After": str(decision.retry_after_seconds)},
            data={"retryAfter": decision.retry_after_seconds},
        )

    def _authenticate(self, request: Request, identity: str) -> VerifiedSession:
        verified, reason = self.container.sessions.authenticate(request)
        if verified is not None:
            return verified

        self._safe_log(
            self.container.event_log.log_auth_failure,
            identity,
            "unknown",
            request.headers.get("user-agent", ""),
            reason,
            endpoint=request.url.path,
        )
        raise AuthenticationFailure(reason)

    def _check_csrf(self, request: Request, result: GuardResult) -> None:
        session_key = (
            result.session.session_id
            if result.session is not None
            else anonymous_session_key(result.identity)
        )
        token = request.headers.get(CSRF_HEADER)
        if not token:
            outcome_error: str | None = "missing token"
        else:
            outcome_error = self.container.csrf.validate(session_key, token).error
        if outcome_error is None:
            return

        subject_id = result.subject.id if result.subject else None
        self._safe_log(
            self.container.event_log.log_csrf_violation,
            result.identity,
            subject_id,
            request.url.path,
            outcome_error,
        )
        raise PolicyRejection(
            status.HTTP_403_FORBIDDEN, "CSRF_VIOLATION", reason=f"csrf {outcome_error}"
        )

    async def _check_body(self, request: Request, opts: GuardOptions, result: GuardResult) -> None:
        limit = self.config.max_body_bytes
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise ValidationFailure(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "BODY_TOO_LARGE", reason="declared size"
            )

        raw = await request.body()
        if len(raw) > limit:
            raise ValidationFailure(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "BODY_TOO_LARGE", reason="body size"
            )

        parsed = parse_json_body(raw)
        if isinstance(parsed, Err):
            raise ValidationFailure(
                status.HTTP_400_BAD_REQUEST,
                "MALFORMED_BODY",
                reason=f"malformed body: {parsed.error}",
            )
        result.body = parsed.value

        block = self.config.block_on_detection
        if opts.block_on_detection is not None:
            block = opts.block_on_detection

        subject_id = result.subject.id if result.subject else None
        for field_path, text in iter_string_fields(result.body):
            check = validate_input(text, field_path, required=False, config=self.config)
            if not check.threats:
                continue

            result.threats.extend(t for t in check.threats if t not in result.threats)
            self._safe_log(
                self.container.event_log.record,
                SecurityEventType.SUSPICIOUS_INPUT,
                Severity.HIGH,
                result.identity,
                {
                    "field": field_path,
                    "threats": [t.value for t in check.threats],
                    "path": request.url.path,
                },
                subject_id=subject_id,
                endpoint=request.url.path,
            )
            if block:
                raise ValidationFailure(
                    status.HTTP_400_BAD_REQUEST,
                    "SUSPICIOUS_INPUT",
                    reason=f"threats in {field_path}",
                )

    def _check_role(self, request: Request, opts: GuardOptions, result: GuardResult) -> None:
        subject = result.subject
        if subject is not None and subject.role in opts.roles:
            return

        self._safe_log(
            self.container.event_log.record,
            SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT,
            Severity.CRITICAL,
            result.identity,
            {
                "path": request.url.path,
                "required_roles": list(opts.roles),
                "role": subject.role if subject else None,
            },
            subject_id=subject.id if subject else None,
            endpoint=request.url.path,
        )
        raise PolicyRejection(
            status.HTTP_403_FORBIDDEN, "PERMISSION_DENIED", reason="role not permitted"
        )

    # --- Helpers ------------------------------------------------------------------
    def _safe_log(self, log: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            log(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001 - logging is best-effort
            logger.warning(
                "Failed to record security event via %s: %s", getattr(log, "__name__", log), exc
            )
