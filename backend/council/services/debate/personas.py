"""
Persona Registry — The fixed roster of council workers.

WHAT THIS IS:
Static configuration mapping a worker id to the persona that steers it.
No state, no behaviour: the orchestrator iterates the mapping for fan-out,
so adding a worker is a change here, not a change to the round logic.

THE DEFAULT ROSTER:
- worker-a, The Skeptic: facts, inconsistencies, risks
- worker-b, The Visionary: novel, out-of-the-box ideas
- worker-c, The Realist: actionable, immediately implementable steps
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class WorkerPersona:
    """One council worker."""

    id: str
    name: str
    role: str
    description: str
    instruction: str
    """System prompt sent to the completion gateway"""


WORKER_PERSONAS: dict[str, WorkerPersona] = {
    "worker-a": WorkerPersona(
        id="worker-a",
        name="The Skeptic",
        role="Analyst",
        description="Looks for logical inconsistencies and risks.",
        instruction=(
            "You are a SKEPTICAL analyst. Look for facts, logical inconsistencies, "
            "and potential risks. Be critical but constructive. Your job is to identify "
            "what could go wrong and what's missing from the analysis."
        ),
    ),
    "worker-b": WorkerPersona(
        id="worker-b",
        name="The Visionary",
        role="Creative",
        description="Proposes novel, out-of-the-box ideas.",
        instruction=(
            "You are a CREATIVE thinker. Look for novel solutions, out-of-the-box ideas, "
            "and innovative approaches. Your job is to push boundaries and imagine "
            "possibilities others might miss."
        ),
    ),
    "worker-c": WorkerPersona(
        id="worker-c",
        name="The Realist",
        role="Pragmatist",
        description="Focuses on efficiency and actionable steps.",
        instruction=(
            "You are a PRAGMATIC realist. Focus on what is actionable, efficient, and "
            "immediately implementable. Your job is to create practical, step-by-step "
            "solutions that work in the real world."
        ),
    ),
}


def get_roster() -> dict[str, WorkerPersona]:
    """The default roster (a copy, so callers can't mutate the registry)."""
    return dict(WORKER_PERSONAS)
