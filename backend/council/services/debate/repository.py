"""
Session Repository — Durable storage for sessions, drafts and evaluations.

WHAT THIS DOES:
Provides a clean interface for everything the council persists. The core
only ever talks to SessionRepository; SqlSessionRepository is the
PostgreSQL implementation used by the API.

WHY A SESSION FACTORY (not a request session):
A council round keeps running when the client that started it disconnects,
so it cannot borrow the request's database session. Each operation opens
its own short-lived session and commits before returning.

WHO WRITES WHAT:
- Session controller: session status / round / turn / consensus fields
- Round orchestrator: draft and evaluation rows
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from council.models.session import CouncilSession, Draft, Evaluation
from council.services.debate.errors import SessionNotFound, StorageError
from council.services.debate.models import (
    DraftRecord,
    EvaluationRecord,
    HistoryEntry,
    SessionRecord,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """
    Abstract storage interface for the council.

    Every method may raise StorageError. Methods addressing a session by id
    raise SessionNotFound when it does not exist, except get_session which
    returns None.
    """

    @abstractmethod
    async def create_session(self, query: str, max_rounds: int) -> SessionRecord:
        """Create a session in "thinking" state at round 1, turn 1."""
        pass

    @abstractmethod
    async def get_session(self, session_id: int) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    async def update_status(
        self,
        session_id: int,
        status: SessionStatus,
        round_number: Optional[int] = None,
    ) -> None:
        """Set the status, and the current round when one is given."""
        pass

    @abstractmethod
    async def record_consensus(self, session_id: int, text: str) -> None:
        """Store the final synthesis and move the session to "consensus"."""
        pass

    @abstractmethod
    async def start_follow_up(self, session_id: int, query: str) -> SessionRecord:
        """
        Open a new turn on a concluded session.

        The final synthesis becomes prior_consensus, final_consensus is
        cleared, turn is incremented, round resets to 1, status "thinking".
        """
        pass

    @abstractmethod
    async def create_drafts(self, drafts: list[DraftRecord]) -> list[DraftRecord]:
        """Store drafts, replacing any stale draft for the same slot."""
        pass

    @abstractmethod
    async def create_evaluation(self, evaluation: EvaluationRecord) -> EvaluationRecord:
        pass

    @abstractmethod
    async def get_drafts_for(
        self, session_id: int, round_number: int, turn: int = 1
    ) -> list[DraftRecord]:
        """Drafts of one round, ordered by worker id."""
        pass

    @abstractmethod
    async def get_evaluation_for(
        self, session_id: int, round_number: int, turn: int = 1
    ) -> Optional[EvaluationRecord]:
        pass

    @abstractmethod
    async def list_sessions(self) -> list[SessionRecord]:
        """All sessions, newest first."""
        pass

    @abstractmethod
    async def list_history(self) -> list[HistoryEntry]:
        """
        Concluded sessions, newest first.

        Each entry carries the score of the evaluation for the session's
        current (turn, round), or 0 if there is none.
        """
        pass

    @abstractmethod
    async def list_drafts(self, session_id: int) -> list[DraftRecord]:
        """Every draft of a session, ordered by turn, round, worker."""
        pass

    @abstractmethod
    async def list_evaluations(self, session_id: int) -> list[EvaluationRecord]:
        """Every evaluation of a session, ordered by turn, round."""
        pass


# =============================================================================
# ROW -> RECORD CONVERSION
# =============================================================================

def _session_record(row: CouncilSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        query=row.query,
        status=SessionStatus(row.status),
        current_round=row.current_round,
        max_rounds=row.max_rounds,
        turn=row.turn,
        final_consensus=row.final_consensus,
        prior_consensus=row.prior_consensus,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _draft_record(row: Draft) -> DraftRecord:
    return DraftRecord(
        session_id=row.session_id,
        turn=row.turn,
        round=row.round,
        worker_id=row.worker_id,
        content=row.content,
        created_at=row.created_at,
    )


def _evaluation_record(row: Evaluation) -> EvaluationRecord:
    return EvaluationRecord(
        session_id=row.session_id,
        turn=row.turn,
        round=row.round,
        score=row.score,
        critique=row.critique,
        synthesis=row.synthesis,
        should_stop=row.should_stop,
        created_at=row.created_at,
    )


# =============================================================================
# SQLALCHEMY IMPLEMENTATION
# =============================================================================

class SqlSessionRepository(SessionRepository):
    """SessionRepository on top of SQLAlchemy's async ORM."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _db(self, action: str) -> AsyncIterator[AsyncSession]:
        """Open a session for one operation, wrapping database errors."""
        try:
            async with self.session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"Storage failure while trying to {action}: {e}")
            raise StorageError(f"Could not {action}") from e

    async def _get_row(self, db: AsyncSession, session_id: int) -> CouncilSession:
        row = await db.get(CouncilSession, session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return row

    async def create_session(self, query: str, max_rounds: int) -> SessionRecord:
        async with self._db("create session") as db:
            row = CouncilSession(
                query=query,
                status=SessionStatus.THINKING.value,
                current_round=1,
                max_rounds=max_rounds,
                turn=1,
            )
            db.add(row)
            await db.commit()
            logger.info(f"Created session {row.id}")
            return _session_record(row)

    async def get_session(self, session_id: int) -> Optional[SessionRecord]:
        async with self._db("load session") as db:
            row = await db.get(CouncilSession, session_id)
            return _session_record(row) if row else None

    async def update_status(
        self,
        session_id: int,
        status: SessionStatus,
        round_number: Optional[int] = None,
    ) -> None:
        async with self._db("update session status") as db:
            row = await self._get_row(db, session_id)
            row.status = SessionStatus(status).value
            if round_number is not None:
                row.current_round = round_number
            await db.commit()

    async def record_consensus(self, session_id: int, text: str) -> None:
        async with self._db("record consensus") as db:
            row = await self._get_row(db, session_id)
            row.final_consensus = text
            row.status = SessionStatus.CONSENSUS.value
            await db.commit()

    async def start_follow_up(self, session_id: int, query: str) -> SessionRecord:
        async with self._db("start follow-up") as db:
            row = await self._get_row(db, session_id)
            row.prior_consensus = row.final_consensus
            row.final_consensus = None
            row.query = query
            row.turn += 1
            row.current_round = 1
            row.status = SessionStatus.THINKING.value
            await db.commit()
            return _session_record(row)

    async def create_drafts(self, drafts: list[DraftRecord]) -> list[DraftRecord]:
        if not drafts:
            return []

        async with self._db("save drafts") as db:
            rows = []
            for draft in drafts:
                # A retried round overwrites whatever the failed attempt left
                await db.execute(
                    delete(Draft).where(
                        Draft.session_id == draft.session_id,
                        Draft.turn == draft.turn,
                        Draft.round == draft.round,
                        Draft.worker_id == draft.worker_id,
                    )
                )
                row = Draft(
                    session_id=draft.session_id,
                    turn=draft.turn,
                    round=draft.round,
                    worker_id=draft.worker_id,
                    content=draft.content,
                )
                db.add(row)
                rows.append(row)
            await db.commit()
            return [_draft_record(r) for r in rows]

    async def create_evaluation(self, evaluation: EvaluationRecord) -> EvaluationRecord:
        async with self._db("save evaluation") as db:
            row = Evaluation(
                session_id=evaluation.session_id,
                turn=evaluation.turn,
                round=evaluation.round,
                score=evaluation.score,
                critique=evaluation.critique,
                synthesis=evaluation.synthesis,
                should_stop=evaluation.should_stop,
            )
            db.add(row)
            await db.commit()
            return _evaluation_record(row)

    async def get_drafts_for(
        self, session_id: int, round_number: int, turn: int = 1
    ) -> list[DraftRecord]:
        async with self._db("load drafts") as db:
            result = await db.execute(
                select(Draft)
                .where(
                    Draft.session_id == session_id,
                    Draft.turn == turn,
                    Draft.round == round_number,
                )
                .order_by(Draft.worker_id)
            )
            return [_draft_record(r) for r in result.scalars()]

    async def get_evaluation_for(
        self, session_id: int, round_number: int, turn: int = 1
    ) -> Optional[EvaluationRecord]:
        async with self._db("load evaluation") as db:
            result = await db.execute(
                select(Evaluation).where(
                    Evaluation.session_id == session_id,
                    Evaluation.turn == turn,
                    Evaluation.round == round_number,
                )
            )
            row = result.scalar_one_or_none()
            return _evaluation_record(row) if row else None

    async def list_sessions(self) -> list[SessionRecord]:
        async with self._db("list sessions") as db:
            result = await db.execute(
                select(CouncilSession).order_by(
                    CouncilSession.created_at.desc(), CouncilSession.id.desc()
                )
            )
            return [_session_record(r) for r in result.scalars()]

    async def list_history(self) -> list[HistoryEntry]:
        async with self._db("list history") as db:
            result = await db.execute(
                select(CouncilSession, Evaluation.score)
                .outerjoin(
                    Evaluation,
                    and_(
                        Evaluation.session_id == CouncilSession.id,
                        Evaluation.turn == CouncilSession.turn,
                        Evaluation.round == CouncilSession.current_round,
                    ),
                )
                .where(CouncilSession.status == SessionStatus.CONSENSUS.value)
                .order_by(CouncilSession.created_at.desc(), CouncilSession.id.desc())
            )
            return [
                HistoryEntry(
                    id=row.id,
                    query=row.query,
                    final_synthesis=row.final_consensus or "",
                    timestamp=row.updated_at or row.created_at,
                    score=score or 0,
                )
                for row, score in result.all()
            ]

    async def list_drafts(self, session_id: int) -> list[DraftRecord]:
        async with self._db("list drafts") as db:
            result = await db.execute(
                select(Draft)
                .where(Draft.session_id == session_id)
                .order_by(Draft.turn, Draft.round, Draft.worker_id)
            )
            return [_draft_record(r) for r in result.scalars()]

    async def list_evaluations(self, session_id: int) -> list[EvaluationRecord]:
        async with self._db("list evaluations") as db:
            result = await db.execute(
                select(Evaluation)
                .where(Evaluation.session_id == session_id)
                .order_by(Evaluation.turn, Evaluation.round)
            )
            return [_evaluation_record(r) for r in result.scalars()]
