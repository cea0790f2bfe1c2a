# src/rahnavard/api/v1/endpoints/security.py
"""Security monitoring endpoints for administrators."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query

from rahnavard.api.v1.dependencies import ContainerDep, require_role
from rahnavard.api.v1.guard import GuardResult
from rahnavard.api.v1.routing import SecureRoute
from rahnavard.schemas.common import envelope
from rahnavard.schemas.security import (
    EventTypeCount,
    SecurityEventResponse,
    SecurityReportResponse,
    SuspiciousPatternsResponse,
)
from rahnavard.services.event_log import EventFilter, SecurityEventType, Severity
from rahnavard.services.rate_limiter import LimiterClass

router = APIRouter(prefix="/security", tags=["security"], route_class=SecureRoute)

AdminGuard = Annotated[
    GuardResult,
    Depends(
        require_role(
            "admin",
            require_mfa=True,
            allowed_methods=frozenset({"GET"}),
            limiter_class=LimiterClass.SENSITIVE,
        )
    ),
]


def _counts(pairs: list[tuple[SecurityEventType, int]]) -> list[EventTypeCount]:
    return [EventTypeCount(event_type=event_type.value, count=count) for event_type, count in pairs]


@router.get("/events")
async def list_events(
    _guard: AdminGuard,
    container: ContainerDep,
    event_type: SecurityEventType | None = None,
    severity: Severity | None = None,
    subject_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> dict[str, Any]:
    """Return the most recent security events matching the filters."""
    events = container.event_log.query(
        EventFilter(
            event_type=event_type,
            severity=severity,
            subject_id=subject_id,
            limit=limit,
        )
    )
    items = [SecurityEventResponse.model_validate(e.to_dict()).model_dump() for e in events]
    return envelope(items)


@router.get("/patterns")
async def suspicious_patterns(_guard: AdminGuard, container: ContainerDep) -> dict[str, Any]:
    """Return identities and subjects with many severe events in the last day."""
    patterns = container.event_log.analyze_suspicious_patterns()
    response = SuspiciousPatternsResponse(
        suspicious_identities=patterns.suspicious_identities,
        suspicious_subjects=patterns.suspicious_subjects,
        frequent_events=_counts(patterns.frequent_events),
    )
    return envelope(response.model_dump())


@router.get("/report")
async def security_report(
    _guard: AdminGuard,
    container: ContainerDep,
    period: Literal["day", "week", "month"] = "day",
) -> dict[str, Any]:
    """Summarize security events over the requested period."""
    report = container.event_log.generate_report(period)
    response = SecurityReportResponse(
        period=report.period,
        total_events=report.total_events,
        severity_counts=report.severity_counts,
        top_threats=_counts(report.top_threats),
        affected_subjects=report.affected_subjects,
        affected_identities=report.affected_identities,
    )
    return envelope(response.model_dump())
