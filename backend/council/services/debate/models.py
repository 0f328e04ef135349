"""
Council Models — Data structures for the debate-and-synthesis loop.

These dataclasses define the contract between council components:
- SessionRecord / DraftRecord / EvaluationRecord: what the repository stores
- RoundContext: everything one round needs to run
- RoundResult: what the orchestrator produces for one round
- RoundOutcome: the controller's decision after a round
- CouncilEvent: what the transport streams to the caller
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SessionStatus(str, Enum):
    """Persisted session status. The controller's idle state is never stored."""

    THINKING = "thinking"
    JUDGING = "judging"
    CONSENSUS = "consensus"


# =============================================================================
# STORED RECORDS
# =============================================================================

@dataclass
class SessionRecord:
    """A council session as seen by the core."""

    id: int
    query: str
    status: SessionStatus
    current_round: int = 1
    max_rounds: int = 3

    turn: int = 1
    """Conversation turn: 1 for the first query, +1 per follow-up"""

    final_consensus: Optional[str] = None
    """The accepted synthesis; set exactly when status is CONSENSUS"""

    prior_consensus: Optional[str] = None
    """Background context carried by a follow-up turn"""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_concluded(self) -> bool:
        return self.status == SessionStatus.CONSENSUS


@dataclass
class DraftRecord:
    """One worker's answer for one round."""

    session_id: int
    turn: int
    round: int
    worker_id: str
    content: str
    created_at: Optional[datetime] = None


@dataclass
class EvaluationRecord:
    """The judge's verdict for one round."""

    session_id: int
    turn: int
    round: int
    score: int
    critique: str
    synthesis: str
    should_stop: bool
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "round": self.round,
            "turn": self.turn,
            "score": self.score,
            "critique": self.critique,
            "synthesis": self.synthesis,
            "stop": self.should_stop,
        }


# =============================================================================
# ROUND DATA
# =============================================================================

@dataclass
class JudgeVerdict:
    """A parsed judge reply, before it is attached to a session and round."""

    score: int
    critique: str
    synthesis: str
    stop: bool


@dataclass
class RoundContext:
    """Inputs for a single round."""

    session_id: int
    turn: int
    round_number: int
    query: str

    previous_critique: Optional[str] = None
    """The judge's critique from the previous round, if any"""

    background: Optional[str] = None
    """Prior final synthesis, set when this round belongs to a follow-up"""


@dataclass
class RoundResult:
    """Drafts and evaluation produced by one round."""

    drafts: list[DraftRecord]
    evaluation: EvaluationRecord

    @property
    def drafts_by_worker(self) -> dict[str, str]:
        return {d.worker_id: d.content for d in self.drafts}


@dataclass
class RoundOutcome:
    """The session controller's view of a finished round."""

    session_id: int
    turn: int
    round_number: int
    result: RoundResult
    finalized: bool

    next_round: Optional[int] = None
    """Round the session advanced to (None once finalized)"""

    resumed: bool = False
    """True when an already-persisted evaluation was reused"""

    @property
    def evaluation(self) -> EvaluationRecord:
        return self.result.evaluation


@dataclass
class HistoryEntry:
    """A concluded session, as listed in the history."""

    id: int
    query: str
    final_synthesis: str
    timestamp: Optional[datetime]
    score: int


@dataclass
class SessionDetail:
    """A session with every draft and evaluation it has produced."""

    session: SessionRecord
    drafts: list[DraftRecord] = field(default_factory=list)
    evaluations: list[EvaluationRecord] = field(default_factory=list)


# =============================================================================
# EVENTS
# =============================================================================

class EventType(str, Enum):
    SESSION_CREATED = "session_created"
    WORKER_CHUNK = "worker_chunk"
    WORKER_COMPLETE = "worker_complete"
    WORKERS_COMPLETE = "workers_complete"
    JUDGE_THINKING = "judge_thinking"
    JUDGE_RESULT = "judge_result"
    ERROR = "error"


@dataclass
class CouncilEvent:
    """
    One event in the stream a round produces.

    Per round the terminal event is exactly one of JUDGE_RESULT or ERROR.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.JUDGE_RESULT, EventType.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.data}

    @classmethod
    def session_created(cls, session_id: int) -> "CouncilEvent":
        return cls(EventType.SESSION_CREATED, {"session_id": session_id})

    @classmethod
    def worker_chunk(cls, worker_id: str, chunk: str) -> "CouncilEvent":
        return cls(EventType.WORKER_CHUNK, {"worker_id": worker_id, "chunk": chunk})

    @classmethod
    def worker_complete(cls, worker_id: str, content: str) -> "CouncilEvent":
        return cls(EventType.WORKER_COMPLETE, {"worker_id": worker_id, "content": content})

    @classmethod
    def workers_complete(cls, round_number: int) -> "CouncilEvent":
        return cls(EventType.WORKERS_COMPLETE, {"round": round_number})

    @classmethod
    def judge_thinking(cls, round_number: int) -> "CouncilEvent":
        return cls(EventType.JUDGE_THINKING, {"round": round_number})

    @classmethod
    def judge_result(cls, outcome: RoundOutcome) -> "CouncilEvent":
        return cls(
            EventType.JUDGE_RESULT,
            {
                "session_id": outcome.session_id,
                "turn": outcome.turn,
                "round": outcome.round_number,
                "drafts": [
                    {"worker_id": d.worker_id, "content": d.content}
                    for d in outcome.result.drafts
                ],
                "evaluation": outcome.evaluation.to_dict(),
                "finalized": outcome.finalized,
                "next_round": outcome.next_round,
            },
        )

    @classmethod
    def error(
        cls,
        message: str,
        session_id: Optional[int] = None,
        kind: str = "InternalError",
    ) -> "CouncilEvent":
        return cls(
            EventType.ERROR,
            {"message": message, "session_id": session_id, "kind": kind},
        )
