"""Single-use CSRF tokens bound to a session."""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from threading import Lock

from rahnavard.core.clock import Clock
from rahnavard.core.settings import Settings, settings
from rahnavard.services.stores import CSRFStore, CSRFToken, InMemoryRecordStore

# Configure logger for this module
logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
TOKEN_BYTES = 32

REASON_MISSING = "missing"
REASON_USED = "already used"
REASON_EXPIRED = "expired"
REASON_MISMATCH = "mismatch"


@dataclass(frozen=True)
class CSRFValidation:
    valid: bool
    error: str | None = None


def anonymous_session_key(identity: str) -> str:
    """Session key used for callers without an authenticated session."""
    return f"anon:{identity}"


class CSRFGuard:
    """Issue and validate single-use CSRF tokens."""

    def __init__(
        self,
        store: CSRFStore | None = None,
        *,
        config: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or settings
        self.store: CSRFStore = store if store is not None else InMemoryRecordStore[CSRFToken]()
        self.clock = clock or Clock()
        self._lock = Lock()

    def generate(self, session_id: str) -> str:
        """Create a fresh token for ``session_id``, replacing any previous one."""
        token = secrets.token_hex(TOKEN_BYTES)
        self.store.put(
            session_id,
            CSRFToken(token=token, expires_at=self.clock.time() + self.config.csrf_token_ttl_seconds),
        )
        return token

    def issue(self, session_id: str) -> str:
        """Return the session's current token if still usable, else a new one."""
        with self._lock:
            existing = self.store.get(session_id)
            if existing is not None and not existing.used and existing.expires_at > self.clock.time():
                return existing.token
            return self.generate(session_id)

    def validate(self, session_id: str, token: str | None) -> CSRFValidation:
        """Check ``token`` and consume it on success."""
        with self._lock:
            stored = self.store.get(session_id)
            if stored is None:
                return CSRFValidation(valid=False, error=REASON_MISSING)
            if stored.used:
                return CSRFValidation(valid=False, error=REASON_USED)
            if self.clock.time() > stored.expires_at:
                self.store.delete(session_id)
                return CSRFValidation(valid=False, error=REASON_EXPIRED)
            if not token or not hmac.compare_digest(stored.token.encode(), token.encode()):
                return CSRFValidation(valid=False, error=REASON_MISMATCH)

            stored.used = True
            self.store.put(session_id, stored)
        return CSRFValidation(valid=True)

    def revoke(self, session_id: str) -> None:
        self.store.delete(session_id)

    def sweep_expired(self) -> int:
        """Delete expired tokens and return how many were removed."""
        now = self.clock.time()
        removed = 0
        for session_id, record in self.store.items():
            if now > record.expires_at:
                self.store.delete(session_id)
                removed += 1
        if removed:
            logger.info("Removed %d expired CSRF tokens", removed)
        return removed
