"""Fixed-window rate limiting per client identity and limiter class."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from threading import Lock

from rahnavard.core.clock import Clock
from rahnavard.core.settings import Settings, settings
from rahnavard.services.ip_blocking import IPBlockRegistry
from rahnavard.services.stores import InMemoryRateLimitStore, RateLimitBucket, RateLimitStore

# Configure logger for this module
logger = logging.getLogger(__name__)


class LimiterClass(str, Enum):
    """Named quota policies; each has its own window, quota and block length."""

    GENERAL = "general"
    AUTH = "auth"
    SENSITIVE = "sensitive"


_AUTH_PATH_MARKERS = ("/login", "/register", "/mfa")
_SENSITIVE_PATH_MARKERS = ("/rep", "/submit", "/dashboard", "/security")


def limiter_class_for_path(path: str) -> LimiterClass:
    """Pick a default limiter class from a request path."""
    lowered = path.lower()
    if any(marker in lowered for marker in _AUTH_PATH_MARKERS):
        return LimiterClass.AUTH
    if any(marker in lowered for marker in _SENSITIVE_PATH_MARKERS):
        return LimiterClass.SENSITIVE
    return LimiterClass.GENERAL


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one consume call."""

    allowed: bool
    retry_after_ms: int = 0
    remaining: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after_ms / 1000))


class RateLimiter:
    """Per-identity fixed-window quotas.

    A request over quota starts a block for the class's block duration; until
    the block ends every further request for that identity and class is refused
    without touching the counter, and a fresh window starts once it ends. Each
    refusal is also reported to the block registry as a failed attempt.
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        config: Settings | None = None,
        clock: Clock | None = None,
        block_registry: IPBlockRegistry | None = None,
    ) -> None:
        self.config = config or settings
        self.store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock or Clock()
        self.block_registry = block_registry
        self._lock = Lock()

    def consume(self, identity: str, limiter_class: LimiterClass | str) -> RateLimitDecision:
        """Count one request against ``identity``'s quota for ``limiter_class``."""
        cls = LimiterClass(limiter_class)
        window, quota, block = self.config.rate_limits[cls.value]

        with self._lock:
            now = self.clock.time()
            bucket = self.store.get(identity, cls.value)

            if bucket is not None and bucket.blocked_until > now:
                decision = RateLimitDecision(
                    allowed=False,
                    retry_after_ms=math.ceil((bucket.blocked_until - now) * 1000),
                )
            else:
                block_ended = bucket is not None and 0 < bucket.blocked_until <= now
                if bucket is None or block_ended or now >= bucket.window_start + window:
                    bucket = RateLimitBucket(
                        identity=identity,
                        limiter_class=cls.value,
                        consumed=0,
                        window_start=now,
                    )
                bucket.consumed += 1

                if bucket.consumed > quota:
                    bucket.blocked_until = now + block
                    decision = RateLimitDecision(allowed=False, retry_after_ms=block * 1000)
                    logger.warning(
                        "Rate limit exceeded for %s on %s limiter", identity, cls.value
                    )
                else:
                    decision = RateLimitDecision(
                        allowed=True, remaining=max(0, quota - bucket.consumed)
                    )
                self.store.put(bucket)

        if not decision.allowed and self.block_registry is not None:
            self.block_registry.record_failed_attempt(identity)
        return decision

    def evict_idle(self) -> int:
        """Drop buckets whose window and block have both ended."""
        now = self.clock.time()
        removed = 0
        for bucket in self.store.buckets():
            window = self.config.rate_limits[bucket.limiter_class][0]
            if now >= bucket.window_start + window and now >= bucket.blocked_until:
                self.store.delete(bucket.identity, bucket.limiter_class)
                removed += 1
        return removed
