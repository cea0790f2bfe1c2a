# src/rahnavard/models/rep.py
"""SQLAlchemy models for field representatives and their sessions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rahnavard.core.clock import utcnow
from rahnavard.db.session import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Rep(Base):
    """A representative account allowed to sign in to the dashboard."""

    __tablename__ = "reps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="rep")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    sessions: Mapped[list[RepSession]] = relationship(
        "RepSession",
        back_populates="rep",
        cascade="all, delete-orphan",
    )


class RepSession(Base):
    """A signed-in session; ``token`` is the currently valid bearer token."""

    __tablename__ = "rep_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rep_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_rotation_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mfa_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rep: Mapped[Rep] = relationship("Rep", back_populates="sessions")


class RepActivity(Base):
    """Audit trail of what a representative did and from where (hashed)."""

    __tablename__ = "rep_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rep_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    hashed_identity: Mapped[str] = mapped_column(String(16), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
