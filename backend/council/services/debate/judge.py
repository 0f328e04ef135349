"""
Judge — Builds the judge prompt and parses its verdict.

WHAT THIS DOES:
The judge ("Chief Editor") reads every worker draft for a round and returns
a JSON verdict:

    {
        "synthesis": "The best points of all drafts...",
        "critique": "What the workers should fix next round...",
        "score": 85,
        "stop": false
    }

The orchestrator makes the call; this module only owns the text going in
and the structure coming out.

PARSING RULES:
- Markdown code fences around the JSON are tolerated
- The stop flag may be named "stop", "shouldStop" or "should_stop"
- score must be numeric; it is clamped into 0-100
- anything else (not JSON, not an object, no score) is MalformedJudgeResult
"""

import json
import re
from typing import Optional

from council.services.debate.errors import MalformedJudgeResult
from council.services.debate.models import JudgeVerdict
from council.services.debate.personas import WorkerPersona

JUDGE_SYSTEM_PROMPT = """You are the Chief Editor of a council of analysts. Each analyst has drafted an answer to the same user query from a different perspective.

Your goal is to reach consensus.
1. Synthesize the best parts of all drafts into a coherent summary.
2. Provide specific critique on what is missing or conflicting.
3. Rate the current quality (0-100).

Return ONLY valid JSON in this format:
{
  "synthesis": "The summary of the best points...",
  "critique": "Instructions for the workers on how to improve...",
  "score": 85,
  "stop": false
}

Set stop to true if the score is above 90."""

BACKGROUND_TEMPLATE = """PRIOR BACKGROUND:
This conversation continues an earlier council session that concluded with the answer below. This is prior background: extend it rather than repeat it.
---
{background}
---"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_STOP_KEYS = ("stop", "shouldStop", "should_stop")


def format_background(background: str) -> str:
    """Wrap a prior final synthesis so the model reads it as context only."""
    return BACKGROUND_TEMPLATE.format(background=background.strip())


def build_judge_prompt(
    query: str,
    drafts: dict[str, str],
    roster: dict[str, WorkerPersona],
    background: Optional[str] = None,
) -> str:
    """
    Build the user message for the judge.

    Each draft is labelled with its worker's display name, in roster order.
    """
    sections = []
    for worker_id, persona in roster.items():
        text = drafts.get(worker_id, "")
        sections.append(f"--- {persona.name} ---\n{text}")
    combined = "\n\n".join(sections)

    parts = [f'USER QUERY: "{query}"']
    if background:
        parts.append(format_background(background))
    parts.append(f"You have received {len(drafts)} drafts.\n\nDRAFTS:\n{combined}")
    return "\n\n".join(parts)


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def parse_judge_result(content: str) -> JudgeVerdict:
    """
    Parse the judge's reply into a verdict.

    Raises:
        MalformedJudgeResult: If the reply is not a JSON object with a numeric score
    """
    text = (content or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)

    try:
        result = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedJudgeResult(f"Judge reply is not valid JSON: {e}") from e

    if not isinstance(result, dict):
        raise MalformedJudgeResult("Judge reply is not a JSON object")

    raw_score = result.get("score")
    if isinstance(raw_score, bool) or raw_score is None:
        raise MalformedJudgeResult("Judge reply has no numeric score")
    try:
        score = int(round(float(raw_score)))
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedJudgeResult(f"Judge score is not a number: {raw_score!r}") from e

    stop = False
    for key in _STOP_KEYS:
        if key in result:
            stop = _coerce_bool(result[key])
            break

    return JudgeVerdict(
        score=min(100, max(0, score)),
        critique=str(result.get("critique") or ""),
        synthesis=str(result.get("synthesis") or ""),
        stop=stop,
    )


def failed_verdict(reason: str) -> JudgeVerdict:
    """
    The verdict used when the judge cannot be called or understood.

    stop=True ends the session instead of looping on a broken judge.
    """
    return JudgeVerdict(
        score=0,
        critique="",
        synthesis=f"The judge was unable to evaluate this round. {reason}".strip(),
        stop=True,
    )
