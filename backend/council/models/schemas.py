"""
Pydantic schemas for API request/response validation.

These define the shape of data that goes in and out of the API.

FLOW OVERVIEW:
==============
1. Client sends RunRoundRequest to /api/council/run-round (or a stream endpoint)
2. Workers draft, judge evaluates → RoundResponse (or an event stream)
3. Client follows up with the returned session_id until "finalized"
4. Concluded sessions show up in /api/council/history as HistoryItem
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from council.services.debate.models import SessionStatus


# =============================================================================
# API REQUEST SCHEMAS
# =============================================================================
#
# WHEN USED:
# - RunRoundRequest: one round (JSON or streamed)
# - RunSessionRequest: the whole loop until consensus (streamed)
#
# camelCase names are accepted too, for the existing web client.
#

class _QueryRequest(BaseModel):
    query: str = Field(description="The user's question")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Query is required")
        return value


class RunRoundRequest(_QueryRequest):
    """
    Request body for a single council round.

    USED BY: POST /api/council/run-round, POST /api/council/run-round/stream

    Example:
        {"query": "How should I price my product?"}
        {"query": "...", "session_id": 4, "previous_critique": "Cover churn risk"}
    """
    previous_critique: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("previous_critique", "previousCritique"),
        description="The judge's critique from the previous round",
    )
    session_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Session to continue, or to follow up on once concluded",
    )
    round_number: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("round_number", "roundNumber"),
        description="The round the caller expects to run (informational)",
    )


class RunSessionRequest(_QueryRequest):
    """
    Request body for a full council run.

    USED BY: POST /api/council/run/stream
    """
    session_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Concluded session to follow up on",
    )


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class DraftResponse(BaseModel):
    """One worker's draft."""
    model_config = ConfigDict(from_attributes=True)

    worker_id: str
    content: str
    turn: Optional[int] = None
    round: Optional[int] = None


class EvaluationResponse(BaseModel):
    """The judge's verdict for one round."""
    turn: int
    round: int
    score: int = Field(ge=0, le=100)
    critique: str
    synthesis: str
    stop: bool


class RoundResponse(BaseModel):
    """
    Result of one round.

    USED BY: POST /api/council/run-round
    When finalized is false, call again with session_id (and optionally the
    critique) to run next_round.
    """
    session_id: int
    turn: int
    round: int
    drafts: list[DraftResponse]
    evaluation: EvaluationResponse
    finalized: bool
    next_round: Optional[int] = None


class HistoryItem(BaseModel):
    """
    A concluded session.

    USED BY: GET /api/council/history
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    query: str
    final_synthesis: str
    timestamp: Optional[datetime] = None
    score: int


class SessionResponse(BaseModel):
    """A session's stored state."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    query: str
    status: SessionStatus
    current_round: int
    max_rounds: int
    turn: int
    final_consensus: Optional[str] = None
    prior_consensus: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SessionDetailResponse(BaseModel):
    """
    A session with everything it produced.

    USED BY: GET /api/sessions/{session_id}
    """
    session: SessionResponse
    drafts: list[DraftResponse]
    evaluations: list[EvaluationResponse]


class WorkerResponse(BaseModel):
    """
    A worker persona, for display.

    USED BY: GET /api/council/workers
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    role: str
    description: str
