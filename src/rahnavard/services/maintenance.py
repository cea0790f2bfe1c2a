"""Background sweeps that keep in-memory security state bounded."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from rahnavard.core.clock import Clock
from rahnavard.core.settings import Settings, settings
from rahnavard.services.csrf import CSRFGuard
from rahnavard.services.event_log import SecurityEventLog
from rahnavard.services.ip_blocking import IPBlockRegistry
from rahnavard.services.rate_limiter import RateLimiter
from rahnavard.services.session_security import SessionSecurity

logger = logging.getLogger(__name__)

MIN_TICK_SECONDS = 0.1


@dataclass
class SweepJob:
    """One periodic sweep and when it last ran."""

    name: str
    interval: float
    run: Callable[[], int]
    last_run: float = field(default=0.0)


class SecurityMaintenanceWorker:
    """Periodically purges expired blocks, tokens, codes, buckets and events.

    Each sweep has its own interval. A failing sweep is logged and retried on
    its next interval; it never stops the other sweeps.
    """

    def __init__(
        self,
        *,
        blocks: IPBlockRegistry,
        rate_limiter: RateLimiter,
        csrf: CSRFGuard,
        sessions: SessionSecurity,
        event_log: SecurityEventLog,
        config: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        cfg = config or settings
        self.config = cfg
        self.clock = clock or Clock()
        self.jobs = [
            SweepJob("ip_blocks", cfg.block_sweep_interval_seconds, blocks.sweep_expired),
            SweepJob("rate_limits", cfg.block_sweep_interval_seconds, rate_limiter.evict_idle),
            SweepJob("csrf_tokens", cfg.csrf_sweep_interval_seconds, csrf.sweep_expired),
            SweepJob("mfa_codes", cfg.mfa_sweep_interval_seconds, sessions.sweep_expired_codes),
            SweepJob("security_events", cfg.event_log_sweep_interval_seconds, event_log.prune_expired),
        ]
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""

        if not self.config.maintenance_enabled:
            return

        if self._task is None or self._task.done():
            self._stopping.clear()
            now = self.clock.time()
            for job in self.jobs:
                job.last_run = now
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    def run_due(self) -> dict[str, int]:
        """Run every sweep whose interval has elapsed; return removals per sweep."""
        now = self.clock.time()
        results: dict[str, int] = {}
        for job in self.jobs:
            if now - job.last_run < job.interval:
                continue
            job.last_run = now
            try:
                results[job.name] = job.run()
            except Exception as exc:  # noqa: BLE001 - one sweep must not stop the rest
                logger.error("Maintenance sweep %s failed: %s", job.name, exc, exc_info=True)
        return results

    def run_all(self) -> dict[str, int]:
        """Run every sweep immediately regardless of its interval."""
        for job in self.jobs:
            job.last_run = float("-inf")
        return self.run_due()

    async def _run(self) -> None:
        tick = max(MIN_TICK_SECONDS, min(job.interval for job in self.jobs))

        while not self._stopping.is_set():
            results = self.run_due()
            if any(results.values()):
                logger.info("Security maintenance removed %s", results)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=tick)
            except TimeoutError:
                continue
