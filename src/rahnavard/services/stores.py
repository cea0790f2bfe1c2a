"""Storage interfaces for security state and their in-process implementations.

Every piece of mutable security state (blocks, rate-limit buckets, CSRF tokens,
MFA challenges, security events) lives behind one of the protocols below. The
in-memory classes are what a single process uses; a shared backend such as a
distributed cache can be dropped in by implementing the same protocol.

The in-memory stores are not shared across processes: each worker keeps its
own independent view.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from rahnavard.services.event_log import SecurityEvent

T = TypeVar("T")


@dataclass
class BlockRecord:
    """An identity barred from the API until ``blocked_until`` (None = permanent)."""

    identity: str
    blocked_until: float | None
    reason: str
    escalation_count: int


@dataclass
class RateLimitBucket:
    """Fixed-window consumption counter for one (identity, limiter class) pair."""

    identity: str
    limiter_class: str
    consumed: int
    window_start: float
    blocked_until: float = 0.0


@dataclass
class CSRFToken:
    """Single-use CSRF token bound to a session."""

    token: str
    expires_at: float
    used: bool = False


@dataclass
class MFAChallenge:
    """Pending second-factor code for a subject."""

    code: str
    expires_at: float
    attempts: int = 0


class BlockStore(Protocol):
    """Ledger of blocked identities, failed-attempt counters and escalations."""

    def get_block(self, identity: str) -> BlockRecord | None: ...

    def put_block(self, record: BlockRecord) -> None: ...

    def delete_block(self, identity: str) -> None: ...

    def blocks(self) -> list[BlockRecord]: ...

    def get_failed_attempts(self, identity: str) -> int: ...

    def set_failed_attempts(self, identity: str, count: int) -> None: ...

    def clear_failed_attempts(self, identity: str) -> None: ...

    def get_escalations(self, identity: str) -> int: ...

    def set_escalations(self, identity: str, count: int) -> None: ...


class RateLimitStore(Protocol):
    """Buckets keyed by identity and limiter class."""

    def get(self, identity: str, limiter_class: str) -> RateLimitBucket | None: ...

    def put(self, bucket: RateLimitBucket) -> None: ...

    def delete(self, identity: str, limiter_class: str) -> None: ...

    def buckets(self) -> list[RateLimitBucket]: ...


class RecordStore(Protocol[T]):
    """Keyed records with independent expiry, used for CSRF tokens and MFA codes."""

    def get(self, key: str) -> T | None: ...

    def put(self, key: str, record: T) -> None: ...

    def delete(self, key: str) -> None: ...

    def items(self) -> list[tuple[str, T]]: ...


CSRFStore = RecordStore[CSRFToken]
MFAStore = RecordStore[MFAChallenge]


class EventStore(Protocol):
    """Append-only event sequence ordered oldest first."""

    def append(self, event: SecurityEvent) -> None: ...

    def events(self) -> list[SecurityEvent]: ...

    def drop_oldest(self, count: int) -> int: ...

    def remove_where(self, predicate: Callable[[SecurityEvent], bool]) -> int: ...

    def __len__(self) -> int: ...


class InMemoryBlockStore:
    """Process-local :class:`BlockStore`."""

    def __init__(self) -> None:
        self._blocks: dict[str, BlockRecord] = {}
        self._failed: dict[str, int] = {}
        self._escalations: dict[str, int] = {}
        self._lock = Lock()

    def get_block(self, identity: str) -> BlockRecord | None:
        with self._lock:
            return self._blocks.get(identity)

    def put_block(self, record: BlockRecord) -> None:
        with self._lock:
            self._blocks[record.identity] = record

    def delete_block(self, identity: str) -> None:
        with self._lock:
            self._blocks.pop(identity, None)

    def blocks(self) -> list[BlockRecord]:
        with self._lock:
            return list(self._blocks.values())

    def get_failed_attempts(self, identity: str) -> int:
        with self._lock:
            return self._failed.get(identity, 0)

    def set_failed_attempts(self, identity: str, count: int) -> None:
        with self._lock:
            self._failed[identity] = count

    def clear_failed_attempts(self, identity: str) -> None:
        with self._lock:
            self._failed.pop(identity, None)

    def get_escalations(self, identity: str) -> int:
        with self._lock:
            return self._escalations.get(identity, 0)

    def set_escalations(self, identity: str, count: int) -> None:
        with self._lock:
            self._escalations[identity] = count


class InMemoryRateLimitStore:
    """Process-local :class:`RateLimitStore`."""

    def __init__(self) -> None:
        self._buckets: dict[tuple[str, str], RateLimitBucket] = {}
        self._lock = Lock()

    def get(self, identity: str, limiter_class: str) -> RateLimitBucket | None:
        with self._lock:
            return self._buckets.get((identity, limiter_class))

    def put(self, bucket: RateLimitBucket) -> None:
        with self._lock:
            self._buckets[(bucket.identity, bucket.limiter_class)] = bucket

    def delete(self, identity: str, limiter_class: str) -> None:
        with self._lock:
            self._buckets.pop((identity, limiter_class), None)

    def buckets(self) -> list[RateLimitBucket]:
        with self._lock:
            return list(self._buckets.values())


class InMemoryRecordStore(Generic[T]):
    """Process-local :class:`RecordStore`."""

    def __init__(self) -> None:
        self._records: dict[str, T] = {}
        self._lock = Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            return self._records.get(key)

    def put(self, key: str, record: T) -> None:
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def items(self) -> list[tuple[str, T]]:
        with self._lock:
            return list(self._records.items())


class InMemoryEventStore:
    """Process-local :class:`EventStore` backed by a list."""

    def __init__(self) -> None:
        self._events: list[SecurityEvent] = []
        self._lock = Lock()

    def append(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self) -> list[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def drop_oldest(self, count: int) -> int:
        with self._lock:
            removed = min(count, len(self._events))
            del self._events[:removed]
            return removed

    def remove_where(self, predicate: Callable[[SecurityEvent], bool]) -> int:
        with self._lock:
            kept = [event for event in self._events if not predicate(event)]
            removed = len(self._events) - len(kept)
            self._events = kept
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
