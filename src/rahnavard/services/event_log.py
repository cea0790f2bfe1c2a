"""Security event log: recording, querying and analysis.

Client identities are hashed with a salt before an event is stored, so the log
never holds a raw IP address. Critical events additionally fan out to
notifiers without delaying the request that produced them.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Final, Literal

import httpx

from rahnavard.core.clock import Clock
from rahnavard.core.security import hash_identity
from rahnavard.core.settings import Settings, settings
from rahnavard.services.stores import EventStore, InMemoryEventStore

# Configure logger for this module
logger = logging.getLogger(__name__)
security_logger = logging.getLogger("rahnavard.security")

SECONDS_PER_DAY: Final[int] = 24 * 60 * 60
REPORT_PERIODS: Final[dict[str, int]] = {
    "day": SECONDS_PER_DAY,
    "week": 7 * SECONDS_PER_DAY,
    "month": 30 * SECONDS_PER_DAY,
}
TOP_FREQUENT_EVENTS: Final[int] = 10
TOP_REPORT_THREATS: Final[int] = 5
MAX_LOGGED_INPUT: Final[int] = 200


class SecurityEventType(str, Enum):
    """Kinds of security-relevant occurrences."""

    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_TOKEN = "invalid_token"
    SESSION_HIJACK_ATTEMPT = "session_hijack_attempt"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"
    XSS_ATTEMPT = "xss_attempt"
    CSRF_VIOLATION = "csrf_violation"
    SUSPICIOUS_INPUT = "suspicious_input"
    IP_BLOCKED = "ip_blocked"
    MFA_FAILURE = "mfa_failure"
    PASSWORD_CHANGE = "password_change"
    ACCOUNT_LOCKED = "account_locked"
    PRIVILEGE_ESCALATION_ATTEMPT = "privilege_escalation_attempt"
    DATA_BREACH_ATTEMPT = "data_breach_attempt"
    INTERNAL_ERROR = "internal_error"


class Severity(str, Enum):
    """Event severity, ordered from least to most urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_ELEVATED: Final[frozenset[Severity]] = frozenset({Severity.HIGH, Severity.CRITICAL})


@dataclass(frozen=True)
class SecurityEvent:
    """One immutable entry in the security log."""

    id: str
    timestamp: float
    event_type: SecurityEventType
    severity: Severity
    hashed_identity: str
    details: dict[str, Any] = field(default_factory=dict)
    subject_id: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["severity"] = self.severity.value
        return data


@dataclass
class EventFilter:
    """Criteria for :meth:`SecurityEventLog.query`. Unset fields match everything."""

    event_type: SecurityEventType | None = None
    severity: Severity | None = None
    identity: str | None = None
    subject_id: str | None = None
    start: float | None = None
    end: float | None = None
    limit: int | None = None


@dataclass
class SuspiciousPatterns:
    """Offenders and hot event types over the last 24 hours."""

    suspicious_identities: list[str]
    suspicious_subjects: list[str]
    frequent_events: list[tuple[SecurityEventType, int]]


@dataclass
class SecurityReport:
    """Aggregate view of the log over a reporting period."""

    period: str
    total_events: int
    severity_counts: dict[str, int]
    top_threats: list[tuple[SecurityEventType, int]]
    affected_subjects: int
    affected_identities: int


CriticalEventNotifier = Callable[[SecurityEvent], Awaitable[None]]


class WebhookNotifier:
    """Post critical events as JSON to an alerting webhook."""

    def __init__(self, url: str, timeout: float | None = None) -> None:
        self.url = url
        self.timeout = timeout or settings.security_alert_timeout_seconds

    async def __call__(self, event: SecurityEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=event.to_dict())
            response.raise_for_status()


class SecurityEventLog:
    """Capped, append-only security log with analysis helpers."""

    def __init__(
        self,
        store: EventStore | None = None,
        *,
        config: Settings | None = None,
        clock: Clock | None = None,
        notifiers: Iterable[CriticalEventNotifier] | None = None,
    ) -> None:
        self.config = config or settings
        self.store: EventStore = store if store is not None else InMemoryEventStore()
        self.clock = clock or Clock()
        self.notifiers: list[CriticalEventNotifier] = list(notifiers or [])
        self._pending: set[asyncio.Task[None]] = set()

    # --- Recording ----------------------------------------------------------------
    def record(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        identity: str,
        details: Mapping[str, Any] | None = None,
        subject_id: str | None = None,
        user_agent: str | None = None,
        endpoint: str | None = None,
    ) -> SecurityEvent:
        """Hash the identity, store the event and fan out critical alerts."""
        now = self.clock.time()
        event = SecurityEvent(
            id=f"{int(now * 1000)}-{secrets.token_hex(6)}",
            timestamp=now,
            event_type=event_type,
            severity=severity,
            hashed_identity=self.hash_identity(identity),
            details=dict(details or {}),
            subject_id=subject_id,
            user_agent=user_agent,
            endpoint=endpoint,
        )
        self.store.append(event)

        level = logging.ERROR if severity in _ELEVATED else logging.WARNING
        security_logger.log(
            level,
            "[SECURITY EVENT] type=%s severity=%s identity=%s... subject=%s",
            event_type.value,
            severity.value,
            identity[:8],
            subject_id,
        )

        if severity is Severity.CRITICAL:
            self._dispatch_critical(event)

        if len(self.store) > self.config.event_log_capacity:
            dropped = self.store.drop_oldest(self.config.event_log_eviction_batch)
            logger.info("Security log over capacity, dropped %d oldest events", dropped)

        return event

    def hash_identity(self, identity: str) -> str:
        return hash_identity(identity, self.config.ip_hash_salt)

    def _dispatch_critical(self, event: SecurityEvent) -> None:
        security_logger.critical("CRITICAL SECURITY EVENT: %s", event.to_dict())
        if not self.notifiers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; critical event %s not forwarded", event.id)
            return
        for notifier in self.notifiers:
            task = loop.create_task(notifier(event))
            self._pending.add(task)
            task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Critical event notification failed: %s", exc)

    # --- Typed helpers ------------------------------------------------------------
    def log_auth_success(self, identity: str, subject_id: str, user_agent: str) -> SecurityEvent:
        return self.record(
            SecurityEventType.AUTH_SUCCESS,
            Severity.LOW,
            identity,
            {"success": True},
            subject_id=subject_id,
            user_agent=user_agent,
        )

    def log_auth_failure(
        self,
        identity: str,
        username: str,
        user_agent: str,
        reason: str,
        endpoint: str | None = None,
    ) -> SecurityEvent:
        return self.record(
            SecurityEventType.AUTH_FAILURE,
            Severity.MEDIUM,
            identity,
            {"username": username, "reason": reason},
            user_agent=user_agent,
            endpoint=endpoint,
        )

    def log_rate_limit_exceeded(
        self, identity: str, endpoint: str, limiter_class: str
    ) -> SecurityEvent:
        return self.record(
            SecurityEventType.RATE_LIMIT_EXCEEDED,
            Severity.MEDIUM,
            identity,
            {"endpoint": endpoint, "limiter_class": limiter_class},
            endpoint=endpoint,
        )

    def log_sql_injection_attempt(
        self, identity: str, value: str, endpoint: str, threats: Iterable[str] = ()
    ) -> SecurityEvent:
        return self.record(
            SecurityEventType.SQL_INJECTION_ATTEMPT,
            Severity.CRITICAL,
            identity,
            {"input": value[:MAX_LOGGED_INPUT], "threats": list(threats)},
            endpoint=endpoint,
        )

    def log_xss_attempt(self, identity: str, value: str, endpoint: str) -> SecurityEvent:
        return self.record(
            SecurityEventType.XSS_ATTEMPT,
            Severity.HIGH,
            identity,
            {"input": value[:MAX_LOGGED_INPUT]},
            endpoint=endpoint,
        )

    def log_csrf_violation(
        self, identity: str, subject_id: str | None, endpoint: str, reason: str
    ) -> SecurityEvent:
        return self.record(
            SecurityEventType.CSRF_VIOLATION,
            Severity.HIGH,
            identity,
            {"endpoint": endpoint, "reason": reason},
            subject_id=subject_id,
            endpoint=endpoint,
        )

    def log_session_hijack_attempt(
        self,
        identity: str,
        subject_id: str,
        details: Mapping[str, Any],
        user_agent: str | None = None,
    ) -> SecurityEvent:
        return self.record(
            SecurityEventType.SESSION_HIJACK_ATTEMPT,
            Severity.CRITICAL,
            identity,
            details,
            subject_id=subject_id,
            user_agent=user_agent,
        )

    # --- Reading ------------------------------------------------------------------
    def query(self, criteria: EventFilter | None = None) -> list[SecurityEvent]:
        """Return stored events matching ``criteria``, oldest first."""
        events = self.store.events()
        if criteria is None:
            return events

        if criteria.event_type is not None:
            events = [e for e in events if e.event_type is criteria.event_type]
        if criteria.severity is not None:
            events = [e for e in events if e.severity is criteria.severity]
        if criteria.identity:
            hashed = self.hash_identity(criteria.identity)
            events = [e for e in events if e.hashed_identity == hashed]
        if criteria.subject_id:
            events = [e for e in events if e.subject_id == criteria.subject_id]
        if criteria.start is not None:
            events = [e for e in events if e.timestamp >= criteria.start]
        if criteria.end is not None:
            events = [e for e in events if e.timestamp <= criteria.end]
        if criteria.limit:
            events = events[-criteria.limit :]
        return events

    def analyze_suspicious_patterns(self) -> SuspiciousPatterns:
        """Find repeat offenders and the most frequent event types in the last day."""
        since = self.clock.time() - SECONDS_PER_DAY
        recent = [e for e in self.store.events() if e.timestamp >= since]

        identity_counts: Counter[str] = Counter()
        subject_counts: Counter[str] = Counter()
        type_counts: Counter[SecurityEventType] = Counter()
        for event in recent:
            if event.severity in _ELEVATED:
                identity_counts[event.hashed_identity] += 1
                if event.subject_id:
                    subject_counts[event.subject_id] += 1
            type_counts[event.event_type] += 1

        return SuspiciousPatterns(
            suspicious_identities=[
                identity
                for identity, count in identity_counts.items()
                if count > self.config.suspicious_identity_threshold
            ],
            suspicious_subjects=[
                subject
                for subject, count in subject_counts.items()
                if count > self.config.suspicious_subject_threshold
            ],
            frequent_events=type_counts.most_common(TOP_FREQUENT_EVENTS),
        )

    def generate_report(self, period: Literal["day", "week", "month"] = "day") -> SecurityReport:
        """Summarize events recorded during the last ``period``."""
        if period not in REPORT_PERIODS:
            raise ValueError(f"Unknown report period: {period}")
        since = self.clock.time() - REPORT_PERIODS[period]
        events = [e for e in self.store.events() if e.timestamp >= since]

        severity_counts = Counter(e.severity.value for e in events)
        type_counts = Counter(e.event_type for e in events)

        return SecurityReport(
            period=period,
            total_events=len(events),
            severity_counts={level.value: severity_counts.get(level.value, 0) for level in Severity},
            top_threats=type_counts.most_common(TOP_REPORT_THREATS),
            affected_subjects=len({e.subject_id for e in events if e.subject_id}),
            affected_identities=len({e.hashed_identity for e in events}),
        )

    # --- Maintenance --------------------------------------------------------------
    def prune_expired(self) -> int:
        """Drop events older than the retention window and return how many went."""
        cutoff = self.clock.time() - self.config.event_log_retention_seconds
        removed = self.store.remove_where(lambda event: event.timestamp < cutoff)
        if removed:
            logger.info("Cleaned up %d old security events", removed)
        return removed
