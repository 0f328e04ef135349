"""
Round Orchestrator — Runs exactly one round of the council.

WHAT THIS DOES:
Given a query and (optionally) the judge's critique from the previous
round, produces one draft per worker and one evaluation, and persists both.

HOW IT WORKS:
1. Fan-out: every worker is called concurrently (asyncio.gather)
   - streamed chunks are emitted as they arrive, tagged with the worker id
   - a failed or timed-out worker gets the sentinel draft, never an exception
2. Barrier: "workers_complete" is emitted once every worker has resolved
3. Judging: all drafts go to the judge in a single JSON-mode call
   - a failed or unparseable judge yields a zero-score, stop=true verdict
4. Persist: drafts, then the evaluation, through the session repository

WHAT THIS DOESN'T DO (Session Controller's job):
- Create sessions or change their status
- Decide whether the session is finished

USAGE:
    orchestrator = RoundOrchestrator(repository, worker_gateway, judge_gateway)
    result = await orchestrator.run_round(
        RoundContext(session_id=1, turn=1, round_number=1, query="How should I price my product?"),
        emit=sink,
    )
    print(result.evaluation.score)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Optional

from council.config import get_settings
from council.services.debate.errors import GatewayError, InvalidInput, MalformedJudgeResult
from council.services.debate.gateway import CompletionGateway
from council.services.debate.judge import (
    JUDGE_SYSTEM_PROMPT,
    build_judge_prompt,
    failed_verdict,
    format_background,
    parse_judge_result,
)
from council.services.debate.models import (
    CouncilEvent,
    DraftRecord,
    EvaluationRecord,
    JudgeVerdict,
    RoundContext,
    RoundResult,
)
from council.services.debate.personas import WorkerPersona, get_roster
from council.services.debate.repository import SessionRepository

logger = logging.getLogger(__name__)

# Draft used in place of a worker that failed or timed out
WORKER_FAILURE_TEXT = "I am currently unable to think due to an error."

FEEDBACK_TEMPLATE = (
    "CRITICAL FEEDBACK FROM JUDGE: {critique}. "
    "Please refine your answer based on this feedback."
)

EventSink = Callable[[CouncilEvent], Awaitable[None]]


async def discard_event(event: CouncilEvent) -> None:
    """Event sink for callers that don't listen."""
    return None


def feedback_message(critique: str) -> str:
    """The extra user message asking a worker to refine its previous answer."""
    return FEEDBACK_TEMPLATE.format(critique=critique.strip())


def worker_instruction(persona: WorkerPersona, background: Optional[str] = None) -> str:
    """Persona instruction, suffixed with prior-session context on a follow-up."""
    if not background:
        return persona.instruction
    return f"{persona.instruction}\n\n{format_background(background)}"


class RoundOrchestrator:
    """
    Executes one council round: fan-out, barrier, judge, persist.

    The orchestrator is the only writer of draft and evaluation rows.
    """

    def __init__(
        self,
        repository: SessionRepository,
        worker_gateway: CompletionGateway,
        judge_gateway: Optional[CompletionGateway] = None,
        roster: Optional[dict[str, WorkerPersona]] = None,
        worker_timeout: Optional[float] = None,
        judge_timeout: Optional[float] = None,
    ):
        """
        Args:
            repository: Where drafts and evaluations are written
            worker_gateway: Gateway used for every worker call
            judge_gateway: Gateway used for the judge (defaults to worker_gateway)
            roster: Worker personas (defaults to the built-in three)
            worker_timeout: Seconds before a worker call is abandoned
            judge_timeout: Seconds before the judge call is abandoned
        """
        settings = get_settings()
        roster = get_roster() if roster is None else dict(roster)
        if not roster:
            raise InvalidInput("The worker roster is empty")

        self.repository = repository
        self.worker_gateway = worker_gateway
        self.judge_gateway = judge_gateway or worker_gateway
        self.roster = roster
        self.worker_timeout = (
            settings.worker_timeout_seconds if worker_timeout is None else worker_timeout
        )
        self.judge_timeout = (
            settings.judge_timeout_seconds if judge_timeout is None else judge_timeout
        )

    async def run_round(
        self,
        context: RoundContext,
        emit: EventSink = discard_event,
    ) -> RoundResult:
        """
        Run one round and persist its drafts and evaluation.

        Args:
            context: Session, turn, round, query, critique and background
            emit: Async callback receiving the round's events

        Returns:
            RoundResult with one draft per roster worker and the evaluation

        Raises:
            InvalidInput: If the query is empty
            StorageError: If the drafts or evaluation could not be written
        """
        if not context.query or not context.query.strip():
            raise InvalidInput("Query is required")

        start_time = time.time()
        logger.info(
            f"Session {context.session_id} turn {context.turn} round {context.round_number}: "
            f"{len(self.roster)} workers, critique={'yes' if context.previous_critique else 'no'}"
        )

        # Step 1: Fan-out to every worker (never raises)
        drafts = await self._run_workers(context, emit)
        await emit(CouncilEvent.workers_complete(context.round_number))
        worker_time = time.time() - start_time
        logger.info(f"Workers completed in {worker_time:.2f}s")

        # Step 2: Judge the drafts (never raises)
        await emit(CouncilEvent.judge_thinking(context.round_number))
        verdict = await self._judge(context, drafts)

        # Step 3: Persist
        draft_records = [
            DraftRecord(
                session_id=context.session_id,
                turn=context.turn,
                round=context.round_number,
                worker_id=worker_id,
                content=content,
            )
            for worker_id, content in drafts.items()
        ]
        saved_drafts = await self.repository.create_drafts(draft_records)
        evaluation = await self.repository.create_evaluation(
            EvaluationRecord(
                session_id=context.session_id,
                turn=context.turn,
                round=context.round_number,
                score=verdict.score,
                critique=verdict.critique,
                synthesis=verdict.synthesis,
                should_stop=verdict.stop,
            )
        )

        logger.info(
            f"Round {context.round_number} complete: score={evaluation.score}, "
            f"stop={evaluation.should_stop}, total time {time.time() - start_time:.2f}s"
        )
        return RoundResult(drafts=saved_drafts, evaluation=evaluation)

    # =========================================================================
    # WORKERS
    # =========================================================================

    async def _run_workers(self, context: RoundContext, emit: EventSink) -> dict[str, str]:
        """Run all workers in parallel; returns worker id -> draft text."""
        tasks = [
            self._run_worker(worker_id, persona, context, emit)
            for worker_id, persona in self.roster.items()
        ]
        contents = await asyncio.gather(*tasks)
        return dict(zip(self.roster.keys(), contents))

    async def _run_worker(
        self,
        worker_id: str,
        persona: WorkerPersona,
        context: RoundContext,
        emit: EventSink,
    ) -> str:
        """Get one worker's draft, substituting the sentinel on any failure."""
        try:
            content = await asyncio.wait_for(
                self._call_worker(worker_id, persona, context, emit),
                timeout=self.worker_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Worker {worker_id} timed out after {self.worker_timeout}s")
            content = WORKER_FAILURE_TEXT
        except GatewayError as e:
            logger.warning(f"Worker {worker_id} failed: {e}")
            content = WORKER_FAILURE_TEXT
        except Exception as e:
            logger.error(f"Worker {worker_id} failed unexpectedly: {e}")
            content = WORKER_FAILURE_TEXT

        await emit(CouncilEvent.worker_complete(worker_id, content))
        return content

    async def _call_worker(
        self,
        worker_id: str,
        persona: WorkerPersona,
        context: RoundContext,
        emit: EventSink,
    ) -> str:
        instruction = worker_instruction(persona, context.background)
        feedback = (
            feedback_message(context.previous_critique) if context.previous_critique else None
        )

        if not self.worker_gateway.supports_streaming:
            return await self.worker_gateway.complete(instruction, context.query, feedback)

        parts = []
        async with aclosing(
            self.worker_gateway.stream_complete(instruction, context.query, feedback)
        ) as chunks:
            async for chunk in chunks:
                parts.append(chunk)
                await emit(CouncilEvent.worker_chunk(worker_id, chunk))

        content = "".join(parts)
        if not content.strip():
            raise GatewayError(f"Worker {worker_id} produced an empty draft")
        return content

    # =========================================================================
    # JUDGE
    # =========================================================================

    async def _judge(self, context: RoundContext, drafts: dict[str, str]) -> JudgeVerdict:
        """Ask the judge for a verdict, falling back to a stop verdict on failure."""
        prompt = build_judge_prompt(context.query, drafts, self.roster, context.background)

        try:
            reply = await asyncio.wait_for(
                self.judge_gateway.complete(JUDGE_SYSTEM_PROMPT, prompt, json_mode=True),
                timeout=self.judge_timeout,
            )
            return parse_judge_result(reply)
        except asyncio.TimeoutError:
            logger.warning(f"Judge timed out after {self.judge_timeout}s")
            return failed_verdict("The judge timed out.")
        except (GatewayError, MalformedJudgeResult) as e:
            logger.warning(f"Judge failed: {e}")
            return failed_verdict(str(e))
        except Exception as e:
            logger.error(f"Judge failed unexpectedly: {e}")
            return failed_verdict("Unexpected judge error.")
