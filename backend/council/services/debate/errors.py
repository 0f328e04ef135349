"""
Council errors.

Recovery policy per error:
- InvalidInput / SessionNotFound: surfaced to the caller, nothing is written
- SessionBusy: surfaced to the caller, the run in flight is untouched
- GatewayError (worker): replaced by the sentinel draft, round continues
- GatewayError (judge) / MalformedJudgeResult: replaced by a zero-score
  evaluation with stop=true, session concludes
- StorageError: surfaced to the caller as a failed round
"""


class CouncilError(Exception):
    """Base class for every error raised by the council core."""


class InvalidInput(CouncilError):
    """The caller sent something the council cannot run (e.g. an empty query)."""


class SessionNotFound(InvalidInput):
    """A session id was given that does not exist."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class GatewayError(CouncilError):
    """A completion call failed (network, provider error, empty reply...)."""


class MalformedJudgeResult(CouncilError):
    """The judge replied, but not with the JSON verdict we asked for."""


class StorageError(CouncilError):
    """The session repository could not read or write."""


class SessionBusy(CouncilError):
    """A run is already in flight for this session."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already has a run in progress")
