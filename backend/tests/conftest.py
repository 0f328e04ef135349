"""
Shared pytest fixtures.

Nothing here talks to OpenAI or PostgreSQL:
- ScriptedWorkerGateway answers as each persona (optionally failing or stalling)
- ScriptedJudgeGateway replays a list of verdicts
- InMemorySessionRepository stores everything in dicts
"""

import asyncio
import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

import pytest

from council.services.debate import (
    CompletionGateway,
    DraftRecord,
    EvaluationRecord,
    GatewayError,
    HistoryEntry,
    RoundOrchestrator,
    SessionController,
    SessionNotFound,
    SessionRecord,
    SessionRepository,
    SessionStatus,
    StorageError,
    WORKER_PERSONAS,
)


@dataclass
class GatewayCall:
    system_instruction: str
    user_message: str
    prior_feedback: Optional[str] = None
    json_mode: bool = False


def worker_for(system_instruction: str) -> str:
    """Which persona a system instruction belongs to."""
    for worker_id, persona in WORKER_PERSONAS.items():
        if system_instruction.startswith(persona.instruction):
            return worker_id
    raise AssertionError(f"Unknown persona instruction: {system_instruction[:40]}")


class ScriptedWorkerGateway(CompletionGateway):
    """Answers "<worker-id> answer" for every persona."""

    def __init__(
        self,
        streaming: bool = True,
        fail: tuple[str, ...] = (),
        stall: tuple[str, ...] = (),
    ):
        self.streaming = streaming
        self.fail = set(fail)
        self.stall = set(stall)
        self.calls: list[GatewayCall] = []

    @property
    def supports_streaming(self) -> bool:
        return self.streaming

    async def _check(self, worker_id: str) -> None:
        if worker_id in self.fail:
            raise GatewayError(f"{worker_id} is down")
        if worker_id in self.stall:
            await asyncio.Event().wait()

    async def complete(self, system_instruction, user_message, prior_feedback=None, *, json_mode=False):
        self.calls.append(GatewayCall(system_instruction, user_message, prior_feedback, json_mode))
        worker_id = worker_for(system_instruction)
        await self._check(worker_id)
        return f"{worker_id} answer"

    async def stream_complete(self, system_instruction, user_message, prior_feedback=None):
        self.calls.append(GatewayCall(system_instruction, user_message, prior_feedback))
        worker_id = worker_for(system_instruction)
        await self._check(worker_id)
        yield f"{worker_id} "
        yield "answer"


class ScriptedJudgeGateway(CompletionGateway):
    """
    Replays verdicts in order; the last one repeats.

    A verdict can be a dict (sent as JSON), a raw string, or an exception.
    """

    def __init__(self, *verdicts):
        self.verdicts = list(verdicts) or [verdict(95)]
        self.calls: list[GatewayCall] = []

    async def complete(self, system_instruction, user_message, prior_feedback=None, *, json_mode=False):
        self.calls.append(GatewayCall(system_instruction, user_message, prior_feedback, json_mode))
        item = self.verdicts.pop(0) if len(self.verdicts) > 1 else self.verdicts[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return json.dumps(item)
        return item


async def wait_until(condition, attempts: int = 500):
    """Poll condition() every 10ms until it is true."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Condition never became true")


def verdict(score: int, stop: bool = False, critique: str = "", synthesis: str = "") -> dict:
    return {
        "score": score,
        "stop": stop,
        "critique": critique or f"critique at {score}",
        "synthesis": synthesis or f"synthesis at {score}",
    }


class InMemorySessionRepository(SessionRepository):
    """Dict-backed repository. Set fail_on to a method name to make it raise StorageError."""

    def __init__(self):
        self.sessions: dict[int, SessionRecord] = {}
        self.drafts: list[DraftRecord] = []
        self.evaluations: list[EvaluationRecord] = []
        self.status_log: list[tuple[int, SessionStatus, Optional[int]]] = []
        self.fail_on: set[str] = set()
        self._next_id = 1

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise StorageError(f"Could not {name}")

    def _get(self, session_id: int) -> SessionRecord:
        if session_id not in self.sessions:
            raise SessionNotFound(session_id)
        return self.sessions[session_id]

    async def create_session(self, query, max_rounds):
        self._maybe_fail("create_session")
        now = datetime.now(timezone.utc)
        session = SessionRecord(
            id=self._next_id,
            query=query,
            status=SessionStatus.THINKING,
            max_rounds=max_rounds,
            created_at=now,
            updated_at=now,
        )
        self.sessions[session.id] = session
        self._next_id += 1
        return replace(session)

    async def get_session(self, session_id):
        self._maybe_fail("get_session")
        session = self.sessions.get(session_id)
        return replace(session) if session else None

    async def update_status(self, session_id, status, round_number=None):
        self._maybe_fail("update_status")
        session = self._get(session_id)
        session.status = SessionStatus(status)
        if round_number is not None:
            session.current_round = round_number
        session.updated_at = datetime.now(timezone.utc)
        self.status_log.append((session_id, session.status, round_number))

    async def record_consensus(self, session_id, text):
        self._maybe_fail("record_consensus")
        session = self._get(session_id)
        session.final_consensus = text
        session.status = SessionStatus.CONSENSUS
        session.updated_at = datetime.now(timezone.utc)
        self.status_log.append((session_id, session.status, None))

    async def start_follow_up(self, session_id, query):
        self._maybe_fail("start_follow_up")
        session = self._get(session_id)
        session.prior_consensus = session.final_consensus
        session.final_consensus = None
        session.query = query
        session.turn += 1
        session.current_round = 1
        session.status = SessionStatus.THINKING
        return replace(session)

    async def create_drafts(self, drafts):
        self._maybe_fail("create_drafts")
        for draft in drafts:
            self.drafts = [
                d for d in self.drafts
                if (d.session_id, d.turn, d.round, d.worker_id)
                != (draft.session_id, draft.turn, draft.round, draft.worker_id)
            ]
            self.drafts.append(replace(draft))
        return [replace(d) for d in drafts]

    async def create_evaluation(self, evaluation):
        self._maybe_fail("create_evaluation")
        for e in self.evaluations:
            if (e.session_id, e.turn, e.round) == (evaluation.session_id, evaluation.turn, evaluation.round):
                raise StorageError("Evaluation already exists")
        self.evaluations.append(replace(evaluation))
        return replace(evaluation)

    async def get_drafts_for(self, session_id, round_number, turn=1):
        return sorted(
            (d for d in self.drafts
             if d.session_id == session_id and d.round == round_number and d.turn == turn),
            key=lambda d: d.worker_id,
        )

    async def get_evaluation_for(self, session_id, round_number, turn=1):
        for e in self.evaluations:
            if (e.session_id, e.turn, e.round) == (session_id, turn, round_number):
                return replace(e)
        return None

    async def list_sessions(self):
        self._maybe_fail("list_sessions")
        return [replace(s) for s in sorted(self.sessions.values(), key=lambda s: s.id, reverse=True)]

    async def list_history(self):
        self._maybe_fail("list_history")
        entries = []
        for session in sorted(self.sessions.values(), key=lambda s: s.id, reverse=True):
            if not session.is_concluded:
                continue
            evaluation = await self.get_evaluation_for(session.id, session.current_round, session.turn)
            entries.append(
                HistoryEntry(
                    id=session.id,
                    query=session.query,
                    final_synthesis=session.final_consensus or "",
                    timestamp=session.updated_at or session.created_at,
                    score=evaluation.score if evaluation else 0,
                )
            )
        return entries

    async def list_drafts(self, session_id):
        return sorted(
            (d for d in self.drafts if d.session_id == session_id),
            key=lambda d: (d.turn, d.round, d.worker_id),
        )

    async def list_evaluations(self, session_id):
        return sorted(
            (e for e in self.evaluations if e.session_id == session_id),
            key=lambda e: (e.turn, e.round),
        )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def worker_gateway() -> ScriptedWorkerGateway:
    return ScriptedWorkerGateway()


@pytest.fixture
def judge_gateway() -> ScriptedJudgeGateway:
    return ScriptedJudgeGateway(verdict(95))


@pytest.fixture
def orchestrator(repository, worker_gateway, judge_gateway) -> RoundOrchestrator:
    return RoundOrchestrator(
        repository,
        worker_gateway=worker_gateway,
        judge_gateway=judge_gateway,
        worker_timeout=5,
        judge_timeout=5,
    )


@pytest.fixture
def controller(repository, orchestrator) -> SessionController:
    return SessionController(repository, orchestrator, max_rounds=3, score_threshold=90)
