"""
Session Controller — Owns the multi-round loop and the stop decision.

WHAT THIS DOES:
Drives a council session from the first query to consensus, one round at a
time, and supports follow-up questions on a concluded session.

STATE MACHINE:
    idle -> thinking -> judging -> thinking   (next round)
                               -> consensus  (finalized)

After every round:
    finalize = evaluation.stop
               OR evaluation.score >= 90      (consensus_score_threshold)
               OR round >= max_rounds         (3 by default)

The first true condition wins. The round cap guarantees termination even if
the judge never says stop, so a session costs at most
roster_size * max_rounds worker calls and max_rounds judge calls.

SESSION IDENTITY:
Nothing is global. A session is created lazily on the first round of a
fresh query; every later call that needs continuity passes its id.
- session in progress  -> continue at its stored round
- session in consensus -> follow-up: new turn, round 1, the previous final
                          synthesis becomes background context
- session already running -> SessionBusy (one run per session at a time)

STREAMING:
stream_round() / stream_session() run the work in a background task that
pushes events onto a queue. A caller that stops reading (client went away)
does not stop the round: it still runs to completion and is persisted.
cancel(session_id) is the only way to abort a run.

USAGE:
    controller = SessionController(repository, orchestrator)
    outcome = await controller.run("How should I price my product?")
    print(outcome.evaluation.synthesis)

    async for event in controller.stream_session("How should I price my product?"):
        print(event.to_dict())
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import ExitStack, contextmanager
from typing import Optional

from council.config import get_settings
from council.services.debate.errors import (
    CouncilError,
    InvalidInput,
    SessionBusy,
    SessionNotFound,
)
from council.services.debate.models import (
    CouncilEvent,
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
from council.services.debate.orchestrator import EventSink, RoundOrchestrator, discard_event
from council.services.debate.repository import SessionRepository

logger = logging.getLogger(__name__)


class SessionController:
    """
    Runs council sessions round by round.

    The controller is the only writer of session status, round, turn and
    consensus fields. Rounds of one session always run sequentially.
    """

    def __init__(
        self,
        repository: SessionRepository,
        orchestrator: RoundOrchestrator,
        max_rounds: Optional[int] = None,
        score_threshold: Optional[int] = None,
    ):
        settings = get_settings()
        self.repository = repository
        self.orchestrator = orchestrator
        self.max_rounds = settings.max_rounds if max_rounds is None else max_rounds
        self.score_threshold = (
            settings.consensus_score_threshold if score_threshold is None else score_threshold
        )
        if self.max_rounds < 1:
            raise InvalidInput("max_rounds must be at least 1")

        # session id -> task currently running it (for cancel())
        self._active: dict[int, asyncio.Task] = {}
        # strong references to background stream producers
        self._producers: set[asyncio.Task] = set()

    # =========================================================================
    # ONE ROUND
    # =========================================================================

    async def run_round(
        self,
        query: str,
        previous_critique: Optional[str] = None,
        session_id: Optional[int] = None,
        round_number: Optional[int] = None,
        emit: EventSink = discard_event,
    ) -> RoundOutcome:
        """
        Run a single round and apply the continue/stop transition.

        Args:
            query: The user's question (required, non-empty)
            previous_critique: Judge critique to feed into this round's workers
            session_id: Existing session to continue or follow up on
            round_number: The caller's idea of the round (informational only)
            emit: Async callback receiving the round's events

        Returns:
            RoundOutcome with the evaluation and whether the session finalized

        Raises:
            InvalidInput: Empty query
            SessionNotFound: Unknown session id
            SessionBusy: Another run of the session is in flight
            StorageError: The repository failed
        """
        query = (query or "").strip()
        if not query:
            raise InvalidInput("Query is required")

        with ExitStack() as claims:
            # Claimed before the first read: one run per session at a time
            if session_id is not None:
                claims.enter_context(self._tracking(session_id))

            session, context = await self._prepare_round(
                query, previous_critique, session_id, round_number
            )
            if session_id is None:
                claims.enter_context(self._tracking(session.id))
                await emit(CouncilEvent.session_created(session.id))

            result, resumed = await self._execute_round(context, emit)
            outcome = await self._transition(session, context, result, resumed)

        await emit(CouncilEvent.judge_result(outcome))
        return outcome

    async def _prepare_round(
        self,
        query: str,
        previous_critique: Optional[str],
        session_id: Optional[int],
        round_number: Optional[int],
    ) -> tuple[SessionRecord, RoundContext]:
        """Resolve (or create) the session and build the round's context."""
        # Fresh query: the session is created now, not before
        if session_id is None:
            session = await self.repository.create_session(query, self.max_rounds)
            return session, RoundContext(
                session_id=session.id,
                turn=session.turn,
                round_number=session.current_round,
                query=query,
                previous_critique=previous_critique or None,
            )

        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        # Follow-up on a concluded session
        if session.is_concluded:
            background = session.final_consensus
            if previous_critique:
                logger.debug(f"Session {session.id}: ignoring critique on follow-up")
            session = await self.repository.start_follow_up(session.id, query)
            logger.info(f"Session {session.id}: follow-up turn {session.turn}")
            return session, RoundContext(
                session_id=session.id,
                turn=session.turn,
                round_number=1,
                query=query,
                background=background,
            )

        # Session in progress: the stored round is authoritative
        current = session.current_round
        if round_number is not None and round_number != current:
            logger.warning(
                f"Session {session.id}: caller asked for round {round_number}, "
                f"continuing at stored round {current}"
            )
        if query != session.query:
            logger.debug(f"Session {session.id}: using stored query for round {current}")

        if not previous_critique and current > 1:
            previous = await self.repository.get_evaluation_for(
                session.id, current - 1, session.turn
            )
            previous_critique = previous.critique if previous else None

        return session, RoundContext(
            session_id=session.id,
            turn=session.turn,
            round_number=current,
            query=session.query,
            previous_critique=previous_critique or None,
            background=session.prior_consensus,
        )

    async def _execute_round(
        self,
        context: RoundContext,
        emit: EventSink,
    ) -> tuple[RoundResult, bool]:
        """Run the round, or reuse it if a previous attempt already persisted it."""
        existing = await self.repository.get_evaluation_for(
            context.session_id, context.round_number, context.turn
        )
        if existing is not None:
            logger.info(
                f"Session {context.session_id}: round {context.round_number} already judged, resuming"
            )
            drafts = await self.repository.get_drafts_for(
                context.session_id, context.round_number, context.turn
            )
            return RoundResult(drafts=drafts, evaluation=existing), True

        await self.repository.update_status(
            context.session_id, SessionStatus.THINKING, context.round_number
        )

        async def sink(event: CouncilEvent) -> None:
            if event.type == EventType.WORKERS_COMPLETE:
                await self.repository.update_status(context.session_id, SessionStatus.JUDGING)
            await emit(event)

        result = await self.orchestrator.run_round(context, emit=sink)
        return result, False

    def should_finalize(
        self,
        evaluation: EvaluationRecord,
        round_number: int,
        max_rounds: int,
    ) -> bool:
        """Judge's stop flag, then the score threshold, then the round cap."""
        return (
            evaluation.should_stop
            or evaluation.score >= self.score_threshold
            or round_number >= max_rounds
        )

    async def _transition(
        self,
        session: SessionRecord,
        context: RoundContext,
        result: RoundResult,
        resumed: bool,
    ) -> RoundOutcome:
        evaluation = result.evaluation

        if self.should_finalize(evaluation, context.round_number, session.max_rounds):
            await self.repository.record_consensus(session.id, evaluation.synthesis)
            logger.info(
                f"Session {session.id}: consensus at round {context.round_number} "
                f"(score={evaluation.score}, stop={evaluation.should_stop})"
            )
            return RoundOutcome(
                session_id=session.id,
                turn=context.turn,
                round_number=context.round_number,
                result=result,
                finalized=True,
                resumed=resumed,
            )

        next_round = context.round_number + 1
        await self.repository.update_status(session.id, SessionStatus.THINKING, next_round)
        logger.info(
            f"Session {session.id}: score {evaluation.score} below threshold, "
            f"advancing to round {next_round}"
        )
        return RoundOutcome(
            session_id=session.id,
            turn=context.turn,
            round_number=context.round_number,
            result=result,
            finalized=False,
            next_round=next_round,
            resumed=resumed,
        )

    # =========================================================================
    # FULL LOOP
    # =========================================================================

    async def run(
        self,
        query: str,
        session_id: Optional[int] = None,
        emit: EventSink = discard_event,
    ) -> RoundOutcome:
        """
        Run rounds until the session reaches consensus.

        Each round's critique is threaded into the next round's workers.

        Returns:
            The outcome of the final (finalizing) round
        """
        outcome = await self.run_round(query, session_id=session_id, emit=emit)

        with self._tracking(outcome.session_id):
            while not outcome.finalized:
                outcome = await self.run_round(
                    query,
                    previous_critique=outcome.evaluation.critique,
                    session_id=outcome.session_id,
                    round_number=outcome.next_round,
                    emit=emit,
                )

        return outcome

    # =========================================================================
    # STREAMING + CANCELLATION
    # =========================================================================

    def stream_round(
        self,
        query: str,
        previous_critique: Optional[str] = None,
        session_id: Optional[int] = None,
        round_number: Optional[int] = None,
    ) -> AsyncIterator[CouncilEvent]:
        """Events of a single round, ending with judge_result or error."""

        async def work(emit: EventSink) -> None:
            await self.run_round(query, previous_critique, session_id, round_number, emit=emit)

        return self._stream(work, session_id)

    def stream_session(
        self,
        query: str,
        session_id: Optional[int] = None,
    ) -> AsyncIterator[CouncilEvent]:
        """Events of every round until consensus (or the first error)."""

        async def work(emit: EventSink) -> None:
            await self.run(query, session_id, emit=emit)

        return self._stream(work, session_id)

    async def _stream(
        self,
        work: Callable[[EventSink], Awaitable[None]],
        session_id: Optional[int],
    ) -> AsyncIterator[CouncilEvent]:
        queue: asyncio.Queue[Optional[CouncilEvent]] = asyncio.Queue()

        producer = asyncio.create_task(self._produce(work, queue, session_id))
        self._producers.add(producer)
        producer.add_done_callback(self._producers.discard)

        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    async def _produce(
        self,
        work: Callable[[EventSink], Awaitable[None]],
        queue: asyncio.Queue,
        session_id: Optional[int],
    ) -> None:
        """Run the work, turning its outcome into events; always ends the stream."""
        current_id = session_id

        async def emit(event: CouncilEvent) -> None:
            nonlocal current_id
            if event.type == EventType.SESSION_CREATED:
                current_id = event.data["session_id"]
            queue.put_nowait(event)

        try:
            await work(emit)
        except asyncio.CancelledError:
            logger.info(f"Session {current_id}: run cancelled")
            queue.put_nowait(CouncilEvent.error("Run cancelled", current_id, kind="Cancelled"))
            raise
        except CouncilError as e:
            logger.warning(f"Session {current_id}: round failed: {e}")
            queue.put_nowait(CouncilEvent.error(str(e), current_id, kind=type(e).__name__))
        except Exception:
            logger.exception(f"Session {current_id}: unexpected council failure")
            queue.put_nowait(CouncilEvent.error("Internal error", current_id))
        finally:
            queue.put_nowait(None)

    @contextmanager
    def _tracking(self, session_id: int) -> Iterator[None]:
        """
        Register the current task as the runner of a session (outermost wins).

        Raises SessionBusy if another live task already runs it.
        """
        task = asyncio.current_task()
        holder = self._active.get(session_id)
        if holder is not None and holder is not task and not holder.done():
            raise SessionBusy(session_id)
        owner = holder is not task
        if owner:
            self._active[session_id] = task
        try:
            yield
        finally:
            if owner and self._active.get(session_id) is task:
                del self._active[session_id]

    def is_running(self, session_id: int) -> bool:
        return session_id in self._active

    def cancel(self, session_id: int) -> bool:
        """
        Abort the in-flight run of a session.

        In-flight gateway calls are cancelled and no evaluation is written
        for the interrupted round. Returns False if nothing was running.
        """
        task = self._active.get(session_id)
        if task is None or task.done():
            return False
        logger.info(f"Session {session_id}: cancellation requested")
        task.cancel()
        return True

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def get_history(self) -> list[HistoryEntry]:
        """Concluded sessions, newest first, with the score of their final round."""
        return await self.repository.list_history()

    async def get_session_detail(self, session_id: int) -> SessionDetail:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return SessionDetail(
            session=session,
            drafts=await self.repository.list_drafts(session_id),
            evaluations=await self.repository.list_evaluations(session_id),
        )
