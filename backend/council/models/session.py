"""
SQLAlchemy models for the council tables.

A council session owns its drafts and evaluations: deleting a session
cascades to both. Drafts and evaluations are keyed by (turn, round) so a
follow-up conversation, which restarts at round 1, never collides with the
records of the turns before it.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from council.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CouncilSession(Base):
    """
    One ongoing or concluded debate.

    status is one of "thinking", "judging", "consensus". final_consensus is
    set exactly when status is "consensus".
    """

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True)

    # The query of the current turn (replaced by each follow-up)
    query: Mapped[str] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(20))
    current_round: Mapped[int] = mapped_column(Integer, default=1)
    max_rounds: Mapped[int] = mapped_column(Integer, default=3)

    # Conversation turn: 1 for the first query, +1 per follow-up
    turn: Mapped[int] = mapped_column(Integer, default=1)

    final_consensus: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # The synthesis a follow-up turn builds on
    prior_consensus: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    drafts: Mapped[list["Draft"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )
    evaluations: Mapped[list["Evaluation"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<CouncilSession id={self.id} status={self.status} round={self.current_round}>"


class Draft(Base):
    """One worker's answer for one round of one session."""

    __tablename__ = "drafts"
    __table_args__ = (
        UniqueConstraint("session_id", "turn", "round", "worker_id", name="uq_draft_slot"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), index=True
    )
    turn: Mapped[int] = mapped_column(Integer, default=1)
    round: Mapped[int] = mapped_column(Integer)

    # "worker-a" | "worker-b" | "worker-c" with the default roster
    worker_id: Mapped[str] = mapped_column(String(50))
    content: Mapped[str] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    session: Mapped[CouncilSession] = relationship(back_populates="drafts")


class Evaluation(Base):
    """The judge's verdict for one round of one session."""

    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint("session_id", "turn", "round", name="uq_evaluation_slot"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), index=True
    )
    turn: Mapped[int] = mapped_column(Integer, default=1)
    round: Mapped[int] = mapped_column(Integer)

    # Quality score on a 0-100 scale
    score: Mapped[int] = mapped_column(Integer)
    critique: Mapped[str] = mapped_column(Text)
    synthesis: Mapped[str] = mapped_column(Text)
    should_stop: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    session: Mapped[CouncilSession] = relationship(back_populates="evaluations")
