"""Session verification, rotation and second-factor codes."""

from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Protocol

from jose import JWTError, jwt

from rahnavard.core.clock import Clock, ensure_aware
from rahnavard.core.identity import client_identity
from rahnavard.core.sanitize import normalize_digits
from rahnavard.core.security import sha256_hex
from rahnavard.core.settings import Settings, settings
from rahnavard.services.event_log import SecurityEventLog, SecurityEventType, Severity
from rahnavard.services.stores import InMemoryRecordStore, MFAChallenge, MFAStore

# Configure logger for this module
logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class Subject:
    """The authenticated principal behind a session."""

    id: str
    username: str
    email: str
    full_name: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    subject_id: str
    token: str
    fingerprint: str | None
    created_at: datetime
    last_rotation_at: datetime
    expires_at: datetime
    mfa_verified: bool = False


@dataclass(frozen=True)
class VerifiedSession:
    """Successful verification. ``rotated_token`` is set when the token was replaced."""

    subject: Subject
    session: SessionRecord
    rotated_token: str | None = None


@dataclass(frozen=True)
class MFAVerification:
    valid: bool
    error: str | None = None


class SessionStore(Protocol):
    """Persistence for session records, looked up by their current token."""

    def get_by_token(self, token: str) -> SessionRecord | None: ...

    def create(self, record: SessionRecord) -> None: ...

    def update_token(self, session_id: str, token: str, rotated_at: datetime) -> None: ...

    def mark_mfa_verified(self, session_id: str) -> None: ...

    def delete(self, session_id: str) -> None: ...


class SubjectStore(Protocol):
    """Read access to subjects (representative accounts)."""

    def get(self, subject_id: str) -> Subject | None: ...


class SessionSecurity:
    """Verify bearer sessions and manage their lifecycle.

    Verification never raises on bad input: every failure yields ``None`` and
    the internal reason is logged. Fingerprints are compared only when the
    session recorded one at sign-in.
    """

    def __init__(
        self,
        sessions: SessionStore,
        subjects: SubjectStore,
        event_log: SecurityEventLog,
        *,
        mfa_store: MFAStore | None = None,
        config: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.sessions = sessions
        self.subjects = subjects
        self.event_log = event_log
        self.mfa_store: MFAStore = (
            mfa_store if mfa_store is not None else InMemoryRecordStore[MFAChallenge]()
        )
        self.config = config or settings
        self.clock = clock or Clock()

    # --- Fingerprints and lifecycle checks ----------------------------------------
    def fingerprint(self, request: Any) -> str:
        """Return a stable digest of the client's network and browser traits."""
        headers = request.headers
        parts = (
            client_identity(request),
            headers.get("user-agent", ""),
            headers.get("accept-language", ""),
        )
        return sha256_hex("|".join(parts))

    @staticmethod
    def validate_fingerprint(stored: str, current: str) -> bool:
        return hmac.compare_digest(stored, current)

    def should_rotate(self, session: SessionRecord) -> bool:
        age = self.clock.now() - ensure_aware(session.last_rotation_at)
        return age > timedelta(seconds=self.config.session_rotation_seconds)

    def is_expired(self, session: SessionRecord) -> bool:
        """True once the session outlives the absolute timeout, regardless of rotation."""
        age = self.clock.now() - ensure_aware(session.created_at)
        return age > timedelta(seconds=self.config.session_absolute_timeout_seconds)

    # --- Tokens -------------------------------------------------------------------
    def issue_session_token(self, subject_id: str, session_id: str) -> str:
        """Sign a short-lived bearer token for ``session_id``."""
        now = self.clock.now()
        claims = {
            "sub": subject_id,
            "sid": session_id,
            "jti": secrets.token_hex(16),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.config.session_max_age_seconds)).timestamp()),
            "iss": self.config.jwt_issuer,
            "aud": self.config.jwt_audience,
        }
        return jwt.encode(claims, self.config.secret_key, algorithm=self.config.jwt_algorithm)

    def _decode(self, token: str) -> dict[str, Any]:
        return jwt.decode(
            token,
            self.config.secret_key,
            algorithms=[self.config.jwt_algorithm],
            audience=self.config.jwt_audience,
            issuer=self.config.jwt_issuer,
        )

    def open_session(self, request: Any, subject: Subject) -> tuple[SessionRecord, str]:
        """Create and persist a new session for ``subject``; return it with its token."""
        now = self.clock.now()
        session_id = str(uuid.uuid4())
        token = self.issue_session_token(subject.id, session_id)
        record = SessionRecord(
            session_id=session_id,
            subject_id=subject.id,
            token=token,
            fingerprint=self.fingerprint(request),
            created_at=now,
            last_rotation_at=now,
            expires_at=now + timedelta(seconds=self.config.session_absolute_timeout_seconds),
        )
        self.sessions.create(record)
        logger.info("Session opened for subject %s", subject.id)
        return record, token

    def close_session(self, session: SessionRecord) -> None:
        self.sessions.delete(session.session_id)

    def mark_mfa_verified(self, session: SessionRecord) -> SessionRecord:
        self.sessions.mark_mfa_verified(session.session_id)
        return replace(session, mfa_verified=True)

    # --- Verification -------------------------------------------------------------
    def verify(self, request: Any) -> VerifiedSession | None:
        """Return the verified session behind the request's bearer token, or None."""
        result, _reason = self.authenticate(request)
        return result

    def authenticate(self, request: Any) -> tuple[VerifiedSession | None, str | None]:
        """Like :meth:`verify`, but also return the internal failure reason."""
        try:
            return self._authenticate(request)
        except Exception as exc:  # noqa: BLE001 - store failures must not surface
            logger.error("Session verification failed: %s", exc)
            return None, "session store unavailable"

    def _authenticate(self, request: Any) -> tuple[VerifiedSession | None, str | None]:
        header = request.headers.get("authorization", "")
        if not header.lower().startswith(BEARER_PREFIX):
            return None, "missing bearer token"
        token = header[len(BEARER_PREFIX) :].strip()
        if not token:
            return None, "missing bearer token"

        identity = client_identity(request)
        try:
            claims = self._decode(token)
        except JWTError as exc:
            logger.info("Rejected session token: %s", exc)
            self._record(
                self.event_log.record,
                SecurityEventType.INVALID_TOKEN,
                Severity.MEDIUM,
                identity,
                {"reason": str(exc)},
                user_agent=request.headers.get("user-agent"),
            )
            return None, "invalid token"

        session = self.sessions.get_by_token(token)
        if session is None:
            return None, "unknown session"
        if claims.get("sub") != session.subject_id:
            return None, "token subject mismatch"

        subject = self.subjects.get(session.subject_id)
        if subject is None or not subject.is_active:
            return None, "inactive subject"

        if self.clock.now() > ensure_aware(session.expires_at):
            self.sessions.delete(session.session_id)
            return None, "session expired"

        if session.fingerprint:
            current = self.fingerprint(request)
            if not self.validate_fingerprint(session.fingerprint, current):
                self.sessions.delete(session.session_id)
                self._record(
                    self.event_log.log_session_hijack_attempt,
                    identity,
                    subject.id,
                    {"session_id": session.session_id, "reason": "fingerprint mismatch"},
                    user_agent=request.headers.get("user-agent"),
                )
                return None, "fingerprint mismatch"

        rotated_token: str | None = None
        if self.should_rotate(session):
            rotated_token = self.issue_session_token(subject.id, session.session_id)
            rotated_at = self.clock.now()
            self.sessions.update_token(session.session_id, rotated_token, rotated_at)
            session = replace(session, token=rotated_token, last_rotation_at=rotated_at)
            logger.info("Rotated session token for session %s", session.session_id)

        if self.is_expired(session):
            self.sessions.delete(session.session_id)
            return None, "absolute timeout"

        return VerifiedSession(subject=subject, session=session, rotated_token=rotated_token), None

    def _record(self, log: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            log(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001 - logging is best-effort
            logger.warning(
                "Failed to record security event via %s: %s", getattr(log, "__name__", log), exc
            )

    # --- Second factor ------------------------------------------------------------
    def generate_code(self) -> str:
        """Return a fresh uppercase hex code of the configured length."""
        length = self.config.mfa_code_length
        return secrets.token_hex((length + 1) // 2).upper()[:length]

    def store_code(self, subject_id: str, code: str) -> None:
        self.mfa_store.put(
            subject_id,
            MFAChallenge(code=code, expires_at=self.clock.time() + self.config.mfa_code_ttl_seconds),
        )

    def verify_code(self, subject_id: str, code: str) -> MFAVerification:
        """Check ``code`` for ``subject_id``; the challenge is single use."""
        challenge = self.mfa_store.get(subject_id)
        if challenge is None:
            return MFAVerification(valid=False, error="کد تأیید یافت نشد")

        if self.clock.time() > challenge.expires_at:
            self.mfa_store.delete(subject_id)
            return MFAVerification(valid=False, error="کد تأیید منقضی شده است")

        if challenge.attempts >= self.config.mfa_max_attempts:
            self.mfa_store.delete(subject_id)
            return MFAVerification(valid=False, error="تعداد تلاش‌ها بیش از حد مجاز است")

        challenge.attempts += 1
        self.mfa_store.put(subject_id, challenge)

        submitted = normalize_digits(code).strip().upper()
        if not hmac.compare_digest(challenge.code.encode(), submitted.encode()):
            return MFAVerification(valid=False, error="کد تأیید نامعتبر است")

        self.mfa_store.delete(subject_id)
        return MFAVerification(valid=True)

    def sweep_expired_codes(self) -> int:
        now = self.clock.time()
        removed = 0
        for subject_id, challenge in self.mfa_store.items():
            if now > challenge.expires_at:
                self.mfa_store.delete(subject_id)
                removed += 1
        return removed
