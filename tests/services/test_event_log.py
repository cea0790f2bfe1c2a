# tests/services/test_event_log.py
"""Tests for the security event log."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rahnavard.core.security import hash_identity
from rahnavard.services.event_log import (
    EventFilter,
    SecurityEventLog,
    SecurityEventType,
    Severity,
    WebhookNotifier,
)

IP_A = "203.0.113.7"
IP_B = "198.51.100.1"
DAY = 24 * 60 * 60


@pytest.fixture
def log_settings(make_settings):
    return make_settings(ip_hash_salt="pepper")


@pytest.fixture
def event_log(log_settings, clock):
    return SecurityEventLog(config=log_settings, clock=clock)


class TestRecording:
    def test_identity_is_hashed(self, event_log):
        event = event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A, {"x": 1})

        assert event.hashed_identity == hash_identity(IP_A, "pepper")
        assert IP_A not in str(event.to_dict())
        assert event.to_dict()["event_type"] == "auth_failure"

    def test_ids_are_unique(self, event_log):
        first = event_log.record(SecurityEventType.AUTH_SUCCESS, Severity.LOW, IP_A)
        second = event_log.record(SecurityEventType.AUTH_SUCCESS, Severity.LOW, IP_A)
        assert first.id != second.id

    def test_capacity_evicts_oldest_in_bulk(self, make_settings, clock):
        event_log = SecurityEventLog(
            config=make_settings(event_log_capacity=5, event_log_eviction_batch=2), clock=clock
        )
        events = [
            event_log.record(SecurityEventType.SUSPICIOUS_INPUT, Severity.LOW, IP_A, {"n": n})
            for n in range(6)
        ]

        remaining = event_log.query()
        assert len(remaining) == 4
        assert [e.id for e in remaining] == [e.id for e in events[2:]]

    def test_prune_expired(self, make_settings, clock):
        event_log = SecurityEventLog(config=make_settings(event_log_retention_days=1), clock=clock)
        event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A)
        clock.advance(2 * DAY)
        kept = event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A)

        assert event_log.prune_expired() == 1
        assert [e.id for e in event_log.query()] == [kept.id]

    def test_typed_helpers(self, event_log):
        event = event_log.log_sql_injection_attempt(IP_A, "x" * 500, "/api/v1/rep/login")
        assert event.event_type is SecurityEventType.SQL_INJECTION_ATTEMPT
        assert event.severity is Severity.CRITICAL
        assert len(event.details["input"]) == 200

        event = event_log.log_csrf_violation(IP_A, "rep-1", "/api/v1/rep/logout", "mismatch")
        assert event.severity is Severity.HIGH
        assert event.subject_id == "rep-1"

        event = event_log.log_auth_failure(IP_A, "field.rep", "ua", "invalid credentials")
        assert event.details == {"username": "field.rep", "reason": "invalid credentials"}


class TestQuery:
    @pytest.fixture
    def populated(self, event_log, clock):
        event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A, subject_id="r1")
        clock.advance(10)
        event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_B)
        clock.advance(10)
        event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_B, subject_id="r2")
        return event_log

    def test_filter_by_type(self, populated):
        events = populated.query(EventFilter(event_type=SecurityEventType.AUTH_FAILURE))
        assert len(events) == 2

    def test_filter_by_severity(self, populated):
        events = populated.query(EventFilter(severity=Severity.HIGH))
        assert [e.event_type for e in events] == [SecurityEventType.XSS_ATTEMPT]

    def test_filter_by_raw_identity(self, populated):
        assert len(populated.query(EventFilter(identity=IP_B))) == 2

    def test_filter_by_subject(self, populated):
        assert len(populated.query(EventFilter(subject_id="r1"))) == 1

    def test_time_range(self, populated, clock):
        start = clock.time() - 15
        events = populated.query(EventFilter(start=start, end=clock.time() - 5))
        assert [e.event_type for e in events] == [SecurityEventType.XSS_ATTEMPT]

    def test_limit_keeps_most_recent(self, populated):
        events = populated.query(EventFilter(limit=1))
        assert len(events) == 1
        assert events[0].subject_id == "r2"


class TestAnalysis:
    @pytest.fixture
    def event_log(self, make_settings, clock):
        config = make_settings(suspicious_identity_threshold=2, suspicious_subject_threshold=1)
        return SecurityEventLog(config=config, clock=clock)

    def test_suspicious_patterns(self, event_log, clock):
        # Old events fall outside the 24 hour window.
        for _ in range(5):
            event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_B, subject_id="old")
        clock.advance(DAY + 1)

        for _ in range(3):
            event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_A)
        for _ in range(2):
            event_log.record(
                SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT,
                Severity.CRITICAL,
                IP_B,
                subject_id="r1",
            )
        for _ in range(4):
            event_log.record(SecurityEventType.AUTH_SUCCESS, Severity.LOW, IP_B, subject_id="r2")

        patterns = event_log.analyze_suspicious_patterns()

        assert patterns.suspicious_identities == [event_log.hash_identity(IP_A)]
        assert patterns.suspicious_subjects == ["r1"]
        assert patterns.frequent_events[0] == (SecurityEventType.AUTH_SUCCESS, 4)

    def test_report(self, event_log, clock):
        event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A, subject_id="r1")
        clock.advance(2 * DAY)
        event_log.record(SecurityEventType.AUTH_FAILURE, Severity.MEDIUM, IP_A, subject_id="r1")
        event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_B)

        day = event_log.generate_report("day")
        assert day.total_events == 2
        assert day.severity_counts == {"low": 0, "medium": 1, "high": 1, "critical": 0}
        assert day.affected_subjects == 1
        assert day.affected_identities == 2

        week = event_log.generate_report("week")
        assert week.total_events == 3
        assert week.top_threats[0] == (SecurityEventType.AUTH_FAILURE, 2)

    def test_unknown_period(self, event_log):
        with pytest.raises(ValueError):
            event_log.generate_report("year")  # type: ignore[arg-type]


class TestCriticalNotifications:
    @pytest.mark.asyncio
    async def test_critical_event_is_forwarded(self, log_settings, clock):
        notifier = AsyncMock()
        event_log = SecurityEventLog(config=log_settings, clock=clock, notifiers=[notifier])

        event = event_log.record(SecurityEventType.SESSION_HIJACK_ATTEMPT, Severity.CRITICAL, IP_A)
        await asyncio.sleep(0)

        notifier.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_non_critical_event_is_not_forwarded(self, log_settings, clock):
        notifier = AsyncMock()
        event_log = SecurityEventLog(config=log_settings, clock=clock, notifiers=[notifier])

        event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_A)
        await asyncio.sleep(0)

        notifier.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_affect_recording(self, log_settings, clock):
        notifier = AsyncMock(side_effect=RuntimeError("webhook down"))
        event_log = SecurityEventLog(config=log_settings, clock=clock, notifiers=[notifier])

        event_log.record(SecurityEventType.DATA_BREACH_ATTEMPT, Severity.CRITICAL, IP_A)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert len(event_log.query()) == 1
        notifier.assert_awaited_once()

    def test_without_event_loop_nothing_is_scheduled(self, log_settings, clock):
        notifier = AsyncMock()
        event_log = SecurityEventLog(config=log_settings, clock=clock, notifiers=[notifier])

        event_log.record(SecurityEventType.SESSION_HIJACK_ATTEMPT, Severity.CRITICAL, IP_A)

        notifier.assert_not_called()
        assert len(event_log.query()) == 1


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_event_json(self, mocker, event_log):
        client_cls = mocker.patch("rahnavard.services.event_log.httpx.AsyncClient")
        http = client_cls.return_value.__aenter__.return_value
        http.post = AsyncMock(return_value=MagicMock())
        event = event_log.record(SecurityEventType.XSS_ATTEMPT, Severity.HIGH, IP_A)

        await WebhookNotifier("https://alerts.rahnavard.org/hook", timeout=2.0)(event)

        client_cls.assert_called_once_with(timeout=2.0)
        http.post.assert_awaited_once_with(
            "https://alerts.rahnavard.org/hook", json=event.to_dict()
        )
