"""Wiring of the security services into one object shared by the application."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from rahnavard.core.clock import Clock
from rahnavard.core.settings import Settings, settings
from rahnavard.repositories.session_repo import SqlActivityLog, SqlSessionStore, SqlSubjectStore
from rahnavard.services.csrf import CSRFGuard
from rahnavard.services.event_log import SecurityEventLog, WebhookNotifier
from rahnavard.services.ip_blocking import IPBlockRegistry
from rahnavard.services.maintenance import SecurityMaintenanceWorker
from rahnavard.services.rate_limiter import RateLimiter
from rahnavard.services.session_security import SessionSecurity

logger = logging.getLogger(__name__)


@dataclass
class SecurityContainer:
    """Every stateful security component, built once per application."""

    config: Settings
    clock: Clock
    event_log: SecurityEventLog
    blocks: IPBlockRegistry
    rate_limiter: RateLimiter
    csrf: CSRFGuard
    sessions: SessionSecurity
    subjects: SqlSubjectStore
    activity: SqlActivityLog
    maintenance: SecurityMaintenanceWorker


def build_container(
    session_factory: sessionmaker[Session],
    *,
    config: Settings | None = None,
    clock: Clock | None = None,
) -> SecurityContainer:
    """Construct the security services over ``session_factory`` with in-memory state."""
    cfg = config or settings
    clk = clock or Clock()

    notifiers = []
    if cfg.security_alert_webhook_url:
        notifiers.append(
            WebhookNotifier(cfg.security_alert_webhook_url, cfg.security_alert_timeout_seconds)
        )
        logger.info("Critical security events will be posted to the alert webhook")

    event_log = SecurityEventLog(config=cfg, clock=clk, notifiers=notifiers)
    blocks = IPBlockRegistry(config=cfg, clock=clk)
    rate_limiter = RateLimiter(config=cfg, clock=clk, block_registry=blocks)
    csrf = CSRFGuard(config=cfg, clock=clk)
    subjects = SqlSubjectStore(session_factory)
    sessions = SessionSecurity(
        SqlSessionStore(session_factory),
        subjects,
        event_log,
        config=cfg,
        clock=clk,
    )
    maintenance = SecurityMaintenanceWorker(
        blocks=blocks,
        rate_limiter=rate_limiter,
        csrf=csrf,
        sessions=sessions,
        event_log=event_log,
        config=cfg,
        clock=clk,
    )
    return SecurityContainer(
        config=cfg,
        clock=clk,
        event_log=event_log,
        blocks=blocks,
        rate_limiter=rate_limiter,
        csrf=csrf,
        sessions=sessions,
        subjects=subjects,
        activity=SqlActivityLog(session_factory),
        maintenance=maintenance,
    )
