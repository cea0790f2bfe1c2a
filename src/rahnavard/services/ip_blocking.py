"""Per-identity block list with failed-attempt tracking and escalation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rahnavard.core.clock import Clock
from rahnavard.core.settings import Settings, settings
from rahnavard.services.stores import BlockRecord, BlockStore, InMemoryBlockStore

# Configure logger for this module
logger = logging.getLogger(__name__)

FAILED_ATTEMPTS_REASON = "Too many failed attempts"


@dataclass(frozen=True)
class BlockStatus:
    """Answer to :meth:`IPBlockRegistry.is_blocked`. ``until`` is None for permanent blocks."""

    blocked: bool
    reason: str | None = None
    until: float | None = None

    @property
    def permanent(self) -> bool:
        return self.blocked and self.until is None


class IPBlockRegistry:
    """Track failed attempts per identity and bar repeat offenders."""

    def __init__(
        self,
        store: BlockStore | None = None,
        *,
        config: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or settings
        self.store: BlockStore = store if store is not None else InMemoryBlockStore()
        self.clock = clock or Clock()

    def is_blocked(self, identity: str) -> BlockStatus:
        """Return the live block for ``identity``, discarding it if it has lapsed."""
        record = self.store.get_block(identity)
        if record is None:
            return BlockStatus(blocked=False)

        if record.blocked_until is not None and self.clock.time() > record.blocked_until:
            self.store.delete_block(identity)
            return BlockStatus(blocked=False)

        return BlockStatus(blocked=True, reason=record.reason, until=record.blocked_until)

    def block(self, identity: str, reason: str, duration_seconds: float | None = None) -> BlockRecord:
        """Bar ``identity`` for ``duration_seconds`` (default: the configured block length).

        Each call counts as an escalation. Once escalations reach the configured
        threshold and permanent blocking is enabled, the block never lapses.
        """
        escalations = self.store.get_escalations(identity) + 1
        self.store.set_escalations(identity, escalations)

        duration = self.config.ip_block_seconds if duration_seconds is None else duration_seconds
        blocked_until: float | None = self.clock.time() + duration
        if (
            self.config.ip_permanent_block_enabled
            and escalations >= self.config.ip_permanent_block_after
        ):
            blocked_until = None

        record = BlockRecord(
            identity=identity,
            blocked_until=blocked_until,
            reason=reason,
            escalation_count=escalations,
        )
        self.store.put_block(record)

        if blocked_until is None:
            logger.error("IP blocked permanently: %s (%s)", identity, reason)
        else:
            logger.error("IP blocked: %s until %.0f (%s)", identity, blocked_until, reason)
        return record

    def record_failed_attempt(self, identity: str) -> int:
        """Count a failure and return the new total; block once the threshold is reached."""
        if not self.config.ip_blocking_enabled:
            return 0

        attempts = self.store.get_failed_attempts(identity) + 1
        self.store.set_failed_attempts(identity, attempts)

        if attempts >= self.config.ip_max_failed_attempts:
            self.block(identity, FAILED_ATTEMPTS_REASON)
        return attempts

    def failed_attempts(self, identity: str) -> int:
        return self.store.get_failed_attempts(identity)

    def clear(self, identity: str) -> None:
        """Reset the failed-attempt counter. Active blocks are left in place."""
        self.store.clear_failed_attempts(identity)

    def sweep_expired(self) -> int:
        """Remove every lapsed block and return how many were removed."""
        now = self.clock.time()
        removed = 0
        for record in self.store.blocks():
            if record.blocked_until is not None and now > record.blocked_until:
                self.store.delete_block(record.identity)
                removed += 1
        if removed:
            logger.info("Removed %d expired IP blocks", removed)
        return removed
