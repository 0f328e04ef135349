# Database models (API schemas live in council.models.schemas)
from council.models.session import CouncilSession, Draft, Evaluation

__all__ = [
    "CouncilSession",
    "Draft",
    "Evaluation",
]
