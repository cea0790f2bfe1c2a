"""Schemas for the security monitoring endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class EventTypeCount(BaseModel):
    event_type: str
    count: int


class SecurityEventResponse(BaseModel):
    """A security event as exposed to administrators (identity already hashed)."""

    id: str
    timestamp: float
    event_type: str
    severity: str
    hashed_identity: str
    subject_id: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SuspiciousPatternsResponse(BaseModel):
    suspicious_identities: list[str]
    suspicious_subjects: list[str]
    frequent_events: list[EventTypeCount]


class SecurityReportResponse(BaseModel):
    """Aggregated counts for a reporting period."""

    period: str
    total_events: int
    severity_counts: dict[str, int]
    top_threats: list[EventTypeCount]
    affected_subjects: int
    affected_identities: int
