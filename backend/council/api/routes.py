"""
API Routes — The HTTP face of the council.

ENDPOINTS:
- POST /api/council/run-round         → One round, JSON response
- POST /api/council/run-round/stream  → One round, Server-Sent Events
- POST /api/council/run/stream        → Every round until consensus, SSE
- GET  /api/council/history           → Concluded sessions, newest first
- GET  /api/council/workers           → The worker roster
- GET  /api/sessions/{session_id}     → Session with all drafts and evaluations
- POST /api/sessions/{session_id}/cancel → Abort the session's in-flight run

FLOW (client-driven rounds):
1. POST /api/council/run-round {"query": "..."} → session_id, round 1 result
2. While "finalized" is false: POST again with session_id
3. POST again with session_id after consensus → follow-up turn

SSE FORMAT:
    event: worker_chunk
    data: {"type": "worker_chunk", "worker_id": "worker-a", "chunk": "..."}

The round keeps running if the client disconnects mid-stream; only the
delivery is lost.
"""

import json
import logging
from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from council.database import get_session_factory
from council.models.schemas import (
    DraftResponse,
    EvaluationResponse,
    HistoryItem,
    RoundResponse,
    RunRoundRequest,
    RunSessionRequest,
    SessionDetailResponse,
    SessionResponse,
    WorkerResponse,
)
from council.services.debate import (
    CouncilEvent,
    EventType,
    RoundOrchestrator,
    SessionBusy,
    SessionController,
    SessionNotFound,
    SqlSessionRepository,
    StorageError,
)
from council.services.debate.gateway import get_judge_gateway, get_worker_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["council"])

# Error event kind -> HTTP status for the JSON endpoint
_ERROR_STATUS = {
    "InvalidInput": 400,
    "SessionNotFound": 404,
    "SessionBusy": 409,
    "Cancelled": 409,
    "StorageError": 503,
}


@lru_cache
def get_controller() -> SessionController:
    """
    The process-wide session controller.

    One instance, so cancel() can reach runs started by other requests.
    """
    repository = SqlSessionRepository(get_session_factory())
    orchestrator = RoundOrchestrator(
        repository,
        worker_gateway=get_worker_gateway(),
        judge_gateway=get_judge_gateway(),
    )
    return SessionController(repository, orchestrator)


def _sse(event: CouncilEvent) -> str:
    """Format one event as a Server-Sent Events frame."""
    return f"event: {event.type.value}\ndata: {json.dumps(event.to_dict())}\n\n"


async def _sse_stream(events: AsyncIterator[CouncilEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield _sse(event)


def _event_response(events: AsyncIterator[CouncilEvent]) -> StreamingResponse:
    return StreamingResponse(
        _sse_stream(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _require_session(controller: SessionController, session_id: int | None) -> None:
    """404 / 409 before streaming starts, instead of an error event inside a 200."""
    if session_id is None:
        return
    if controller.is_running(session_id):
        raise HTTPException(status_code=409, detail=str(SessionBusy(session_id)))
    try:
        session = await controller.repository.get_session(session_id)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")


# =============================================================================
# COUNCIL ROUNDS
# =============================================================================

@router.post("/council/run-round", response_model=RoundResponse)
async def run_round(
    request: RunRoundRequest,
    controller: SessionController = Depends(get_controller),
) -> RoundResponse:
    """
    Run one council round and return its drafts and evaluation.

    Example:
        POST /api/council/run-round
        {"query": "How should I price my product?"}

        Returns {"session_id": 1, "round": 1, "drafts": [...],
                 "evaluation": {...}, "finalized": false, "next_round": 2}
    """
    logger.info(f"Running council round for query: '{request.query[:50]}'")

    result = None
    async for event in controller.stream_round(
        request.query,
        previous_critique=request.previous_critique,
        session_id=request.session_id,
        round_number=request.round_number,
    ):
        if not event.is_terminal:
            continue
        if event.type == EventType.ERROR:
            status = _ERROR_STATUS.get(event.data.get("kind"), 500)
            raise HTTPException(status_code=status, detail=event.data["message"])
        result = event

    if result is None:
        raise HTTPException(status_code=500, detail="Round ended without a result")

    return RoundResponse(**result.data)


@router.post("/council/run-round/stream")
async def run_round_stream(
    request: RunRoundRequest,
    controller: SessionController = Depends(get_controller),
) -> StreamingResponse:
    """
    Run one council round as an event stream.

    Events: session_created?, worker_chunk*, worker_complete x N,
    workers_complete, judge_thinking, then judge_result or error.
    """
    await _require_session(controller, request.session_id)
    return _event_response(
        controller.stream_round(
            request.query,
            previous_critique=request.previous_critique,
            session_id=request.session_id,
            round_number=request.round_number,
        )
    )


@router.post("/council/run/stream")
async def run_session_stream(
    request: RunSessionRequest,
    controller: SessionController = Depends(get_controller),
) -> StreamingResponse:
    """
    Run rounds until consensus as one event stream.

    Each round contributes its events; the stream ends after the judge_result
    with "finalized": true, or after the first error.
    """
    await _require_session(controller, request.session_id)
    return _event_response(controller.stream_session(request.query, request.session_id))


# =============================================================================
# HISTORY + SESSIONS
# =============================================================================

@router.get("/council/history", response_model=list[HistoryItem])
async def get_history(
    controller: SessionController = Depends(get_controller),
) -> list[HistoryItem]:
    """Concluded sessions, newest first."""
    try:
        entries = await controller.get_history()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [HistoryItem.model_validate(entry) for entry in entries]


@router.get("/council/workers", response_model=list[WorkerResponse])
async def get_workers(
    controller: SessionController = Depends(get_controller),
) -> list[WorkerResponse]:
    """The personas taking part in every round."""
    return [
        WorkerResponse.model_validate(persona)
        for persona in controller.orchestrator.roster.values()
    ]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: int,
    controller: SessionController = Depends(get_controller),
) -> SessionDetailResponse:
    """
    Get a session with every draft and evaluation it has produced.

    Example:
        GET /api/sessions/12
    """
    try:
        detail = await controller.get_session_detail(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return SessionDetailResponse(
        session=SessionResponse.model_validate(detail.session),
        drafts=[DraftResponse.model_validate(d) for d in detail.drafts],
        evaluations=[EvaluationResponse(**e.to_dict()) for e in detail.evaluations],
    )


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(
    session_id: int,
    controller: SessionController = Depends(get_controller),
) -> dict:
    """Abort the in-flight run of a session (no evaluation is written)."""
    if not controller.cancel(session_id):
        raise HTTPException(status_code=404, detail=f"No run in progress for session {session_id}")
    return {"session_id": session_id, "cancelled": True}
