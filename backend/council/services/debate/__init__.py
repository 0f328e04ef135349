"""
Debate Module — Worker drafts, judge synthesis, repeat until consensus.

Several personas ("workers") answer the same query in parallel, a judge
scores and critiques their drafts and writes a synthesis, and the loop
repeats with the critique until the judge is satisfied, the score clears
the threshold, or the round cap is reached.

COMPONENTS:
- SessionController: Owns the multi-round loop and the stop decision
- RoundOrchestrator: Runs one round (fan-out, judge, persist)
- CompletionGateway: Abstract text-completion provider (OpenAI implementation)
- SessionRepository: Abstract storage (SQLAlchemy implementation)
- WORKER_PERSONAS: The worker roster

USAGE:
    from council.services.debate import SessionController, RoundOrchestrator

    orchestrator = RoundOrchestrator(repository, worker_gateway, judge_gateway)
    controller = SessionController(repository, orchestrator)

    async for event in controller.stream_session("How should I price my product?"):
        print(event.to_dict())
"""

# Main entry points
from council.services.debate.controller import SessionController
from council.services.debate.orchestrator import (
    WORKER_FAILURE_TEXT,
    RoundOrchestrator,
)

# Data models
from council.services.debate.models import (
    CouncilEvent,
    DraftRecord,
    EvaluationRecord,
    EventType,
    HistoryEntry,
    RoundContext,
    RoundOutcome,
    RoundResult,
    SessionDetail,
    SessionRecord,
    SessionStatus,
)

# Errors
from council.services.debate.errors import (
    CouncilError,
    GatewayError,
    InvalidInput,
    MalformedJudgeResult,
    SessionBusy,
    SessionNotFound,
    StorageError,
)

# Collaborators
from council.services.debate.gateway import CompletionGateway, OpenAICompletionGateway
from council.services.debate.personas import WORKER_PERSONAS, WorkerPersona
from council.services.debate.repository import SessionRepository, SqlSessionRepository

__all__ = [
    # Main entry points
    "SessionController",
    "RoundOrchestrator",
    "WORKER_FAILURE_TEXT",
    # Data models
    "CouncilEvent",
    "DraftRecord",
    "EvaluationRecord",
    "EventType",
    "HistoryEntry",
    "RoundContext",
    "RoundOutcome",
    "RoundResult",
    "SessionDetail",
    "SessionRecord",
    "SessionStatus",
    # Errors
    "CouncilError",
    "GatewayError",
    "InvalidInput",
    "MalformedJudgeResult",
    "SessionBusy",
    "SessionNotFound",
    "StorageError",
    # Collaborators
    "CompletionGateway",
    "OpenAICompletionGateway",
    "WORKER_PERSONAS",
    "WorkerPersona",
    "SessionRepository",
    "SqlSessionRepository",
]
