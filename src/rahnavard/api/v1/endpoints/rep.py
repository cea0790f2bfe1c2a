# src/rahnavard/api/v1/endpoints/rep.py
"""Representative authentication endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError

from rahnavard.api.v1.dependencies import ContainerDep, Protect
from rahnavard.api.v1.guard import GuardResult
from rahnavard.api.v1.routing import SecureRoute
from rahnavard.core.errors import (
    AuthenticationFailure,
    PolicyRejection,
    ValidationFailure,
)
from rahnavard.core.sanitize import validate_username
from rahnavard.core.security import verify_password
from rahnavard.core.threats import detect_threats, is_sql_injection
from rahnavard.schemas.common import envelope
from rahnavard.schemas.rep import (
    CSRFTokenResponse,
    LoginRequest,
    LoginResponse,
    MFAVerifyRequest,
    RepProfile,
)
from rahnavard.services.csrf import anonymous_session_key
from rahnavard.services.event_log import SecurityEventType, Severity
from rahnavard.services.rate_limiter import LimiterClass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rep", tags=["rep"], route_class=SecureRoute)

SQL_INJECTION_BLOCK_REASON = "SQL injection attempt"

LoginGuard = Annotated[
    GuardResult,
    Depends(
        Protect(
            allowed_methods=frozenset({"POST"}),
            limiter_class=LimiterClass.AUTH,
            check_csrf=False,
            block_on_detection=False,
        )
    ),
]
MFAGuard = Annotated[
    GuardResult,
    Depends(
        Protect(
            allowed_methods=frozenset({"POST"}),
            limiter_class=LimiterClass.AUTH,
            require_auth=True,
        )
    ),
]
TokenGuard = Annotated[
    GuardResult,
    Depends(Protect(allowed_methods=frozenset({"GET"}), limiter_class=LimiterClass.GENERAL)),
]
SessionGuard = Annotated[GuardResult, Depends(Protect(require_auth=True))]


def _parse(model: type[LoginRequest] | type[MFAVerifyRequest], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as err:
        raise ValidationFailure(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_INPUT",
            reason=f"invalid payload: {err.error_count()} errors",
        ) from err


def _profile(guard: GuardResult) -> RepProfile:
    subject = guard.subject
    if subject is None:
        raise AuthenticationFailure("profile requested without a subject")
    return RepProfile.model_validate(subject)


@router.post("/login")
async def login(request: Request, guard: LoginGuard, container: ContainerDep) -> dict[str, Any]:
    """Exchange a username and password for a session token.

    Usernames that look like SQL injection get the caller blocked outright.
    Wrong credentials count toward the caller's failed-attempt threshold.
    """
    payload = _parse(LoginRequest, guard.body)
    identity = guard.identity
    user_agent = request.headers.get("user-agent", "")
    path = request.url.path

    threats = detect_threats(payload.username, container.config)
    if is_sql_injection(threats):
        container.event_log.log_sql_injection_attempt(
            identity, payload.username, path, [t.value for t in threats]
        )
        container.blocks.block(identity, SQL_INJECTION_BLOCK_REASON)
        raise PolicyRejection(
            status.HTTP_403_FORBIDDEN, "SUSPICIOUS_INPUT", reason="sql injection in username"
        )

    if not validate_username(payload.username).is_valid:
        raise ValidationFailure(
            status.HTTP_400_BAD_REQUEST, "INVALID_INPUT", reason="invalid username"
        )

    credentials = container.subjects.find_credentials(payload.username)
    authenticated = False
    if credentials is not None and credentials.subject.is_active:
        # bcrypt is CPU bound; keep it off the event loop.
        authenticated = await asyncio.to_thread(
            verify_password, payload.password, credentials.password_hash
        )
    if credentials is None or not authenticated:
        container.event_log.log_auth_failure(
            identity, payload.username, user_agent, "invalid credentials", endpoint=path
        )
        container.blocks.record_failed_attempt(identity)
        raise AuthenticationFailure("invalid credentials")

    subject = credentials.subject
    session, token = container.sessions.open_session(request, subject)
    container.blocks.clear(identity)
    container.event_log.log_auth_success(identity, subject.id, user_agent)
    container.activity.record(subject.id, "login", container.event_log.hash_identity(identity))

    config = container.config
    mfa_required = config.mfa_enabled and (config.mfa_required or subject.role == "admin")
    if mfa_required:
        code = container.sessions.generate_code()
        container.sessions.store_code(subject.id, code)
        # Code delivery (SMS or email) happens outside this service.
        logger.info("MFA challenge issued for rep %s", subject.id)

    response = LoginResponse(
        token=token,
        csrf_token=container.csrf.issue(session.session_id),
        mfa_required=mfa_required,
        rep=RepProfile.model_validate(subject),
    )
    return envelope(response.model_dump())


@router.post("/mfa/verify")
async def verify_mfa(guard: MFAGuard, container: ContainerDep) -> dict[str, Any]:
    """Confirm the second-factor code issued at login for the current session."""
    payload = _parse(MFAVerifyRequest, guard.body)
    subject = guard.subject
    session = guard.session
    if subject is None or session is None:
        raise AuthenticationFailure("mfa verification without a session")

    outcome = container.sessions.verify_code(subject.id, payload.code)
    if not outcome.valid:
        container.event_log.record(
            SecurityEventType.MFA_FAILURE,
            Severity.MEDIUM,
            guard.identity,
            {"reason": outcome.error},
            subject_id=subject.id,
        )
        raise PolicyRejection(status.HTTP_401_UNAUTHORIZED, "MFA_FAILED", reason=outcome.error)

    container.sessions.mark_mfa_verified(session)
    container.activity.record(
        subject.id, "mfa_verified", container.event_log.hash_identity(guard.identity)
    )
    return envelope({"mfa_verified": True})


@router.get("/csrf-token")
async def csrf_token(
    request: Request, guard: TokenGuard, container: ContainerDep
) -> dict[str, Any]:
    """Issue a CSRF token for the caller's session (or anonymous identity)."""
    session_key = anonymous_session_key(guard.identity)
    if request.headers.get("authorization"):
        verified = container.sessions.verify(request)
        if verified is None:
            raise AuthenticationFailure("csrf token requested with invalid session")
        session_key = verified.session.session_id
        if verified.rotated_token:
            request.state.rotated_token = verified.rotated_token

    token = container.csrf.issue(session_key)
    return envelope(CSRFTokenResponse(csrf_token=token).model_dump())


@router.get("/me")
async def me(guard: SessionGuard) -> dict[str, Any]:
    """Return the authenticated representative's profile."""
    return envelope(_profile(guard).model_dump())


@router.post("/logout")
async def logout(guard: SessionGuard, container: ContainerDep) -> dict[str, Any]:
    """End the current session and revoke its CSRF token."""
    session = guard.session
    if session is None:
        raise AuthenticationFailure("logout without a session")
    container.sessions.close_session(session)
    container.csrf.revoke(session.session_id)
    container.activity.record(
        session.subject_id, "logout", container.event_log.hash_identity(guard.identity)
    )
    return envelope({"logged_out": True})
