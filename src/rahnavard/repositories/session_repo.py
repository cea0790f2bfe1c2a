"""SQL-backed session, subject and activity stores for representatives."""
from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from rahnavard.core.clock import ensure_aware
from rahnavard.models.rep import Rep, RepActivity, RepSession
from rahnavard.services.session_security import SessionRecord, Subject

__all__ = ["Credentials", "SqlActivityLog", "SqlSessionStore", "SqlSubjectStore"]


@contextmanager
def _transaction(factory: sessionmaker[Session]) -> Iterator[Session]:
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _to_record(row: RepSession) -> SessionRecord:
    return SessionRecord(
        session_id=row.id,
        subject_id=row.rep_id,
        token=row.token,
        fingerprint=row.fingerprint,
        created_at=ensure_aware(row.created_at),
        last_rotation_at=ensure_aware(row.last_rotation_at),
        expires_at=ensure_aware(row.expires_at),
        mfa_verified=row.mfa_verified,
    )


def _to_subject(rep: Rep) -> Subject:
    return Subject(
        id=rep.id,
        username=rep.username,
        email=rep.email,
        full_name=rep.full_name,
        role=rep.role,
        is_active=rep.is_active,
    )


class SqlSessionStore:
    """Session store over the ``rep_sessions`` table."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        """Initialize the store with a session factory; each call uses its own session."""
        self.factory = factory

    def get_by_token(self, token: str) -> SessionRecord | None:
        """Return the session whose current token is ``token``."""
        with _transaction(self.factory) as db:
            row = db.execute(select(RepSession).where(RepSession.token == token)).scalars().first()
            return _to_record(row) if row is not None else None

    def create(self, record: SessionRecord) -> None:
        with _transaction(self.factory) as db:
            db.add(
                RepSession(
                    id=record.session_id,
                    rep_id=record.subject_id,
                    token=record.token,
                    fingerprint=record.fingerprint,
                    created_at=record.created_at,
                    last_rotation_at=record.last_rotation_at,
                    expires_at=record.expires_at,
                    mfa_verified=record.mfa_verified,
                )
            )

    def update_token(self, session_id: str, token: str, rotated_at: datetime) -> None:
        """Replace the session's token; the previous one stops resolving."""
        with _transaction(self.factory) as db:
            db.execute(
                update(RepSession)
                .where(RepSession.id == session_id)
                .values(token=token, last_rotation_at=rotated_at)
            )

    def mark_mfa_verified(self, session_id: str) -> None:
        with _transaction(self.factory) as db:
            db.execute(
                update(RepSession).where(RepSession.id == session_id).values(mfa_verified=True)
            )

    def delete(self, session_id: str) -> None:
        with _transaction(self.factory) as db:
            db.execute(delete(RepSession).where(RepSession.id == session_id))


@dataclass(frozen=True)
class Credentials:
    """A subject together with its stored password hash."""

    subject: Subject
    password_hash: str


class SqlSubjectStore:
    """Subject store over the ``reps`` table."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self.factory = factory

    def get(self, subject_id: str) -> Subject | None:
        with _transaction(self.factory) as db:
            rep = db.get(Rep, subject_id)
            return _to_subject(rep) if rep is not None else None

    def find_credentials(self, username: str) -> Credentials | None:
        """Return the active or inactive rep named ``username`` with its hash."""
        with _transaction(self.factory) as db:
            rep = db.execute(select(Rep).where(Rep.username == username)).scalars().first()
            if rep is None:
                return None
            return Credentials(_to_subject(rep), rep.password_hash)

    def create(
        self,
        *,
        username: str,
        email: str,
        password_hash: str,
        full_name: str = "",
        role: str = "rep",
    ) -> Subject:
        """Insert a new rep and return it as a subject."""
        with _transaction(self.factory) as db:
            rep = Rep(
                username=username,
                email=email,
                full_name=full_name,
                password_hash=password_hash,
                role=role,
            )
            db.add(rep)
            db.flush()
            return _to_subject(rep)


class SqlActivityLog:
    """Append-only audit trail over the ``rep_activity`` table."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self.factory = factory

    def record(
        self,
        subject_id: str,
        action: str,
        hashed_identity: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        with _transaction(self.factory) as db:
            db.add(
                RepActivity(
                    rep_id=subject_id,
                    action=action,
                    hashed_identity=hashed_identity,
                    details=json.dumps(details, ensure_ascii=False) if details else None,
                )
            )

    def for_subject(self, subject_id: str) -> list[tuple[str, str]]:
        """Return ``(action, hashed_identity)`` pairs for a rep, oldest first."""
        with _transaction(self.factory) as db:
            rows = db.execute(
                select(RepActivity.action, RepActivity.hashed_identity)
                .where(RepActivity.rep_id == subject_id)
                .order_by(RepActivity.id)
            ).all()
            return [(row.action, row.hashed_identity) for row in rows]
