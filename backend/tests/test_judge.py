"""
Tests for judge prompt building and verdict parsing.

Run with: pytest backend/tests/test_judge.py -v
"""

import pytest

from council.services.debate.errors import MalformedJudgeResult
from council.services.debate.judge import (
    build_judge_prompt,
    failed_verdict,
    parse_judge_result,
)
from council.services.debate.personas import WORKER_PERSONAS


# =============================================================================
# PARSING
# =============================================================================

def test_parses_well_formed_verdict():
    verdict = parse_judge_result(
        '{"synthesis": "Charge by value.", "critique": "Mention churn.", "score": 85, "stop": false}'
    )

    assert verdict.score == 85
    assert verdict.synthesis == "Charge by value."
    assert verdict.critique == "Mention churn."
    assert verdict.stop is False


@pytest.mark.parametrize("key", ["stop", "shouldStop", "should_stop"])
def test_accepts_every_stop_flag_spelling(key):
    verdict = parse_judge_result(f'{{"score": 50, "{key}": true}}')
    assert verdict.stop is True


def test_strips_code_fences():
    verdict = parse_judge_result('```json\n{"score": 70, "synthesis": "ok"}\n```')
    assert verdict.score == 70
    assert verdict.synthesis == "ok"


def test_clamps_score_and_rounds_floats():
    assert parse_judge_result('{"score": 140}').score == 100
    assert parse_judge_result('{"score": -3}').score == 0
    assert parse_judge_result('{"score": 89.6}').score == 90
    assert parse_judge_result('{"score": "75"}').score == 75


def test_missing_text_fields_default_to_empty():
    verdict = parse_judge_result('{"score": 40}')
    assert verdict.critique == ""
    assert verdict.synthesis == ""
    assert verdict.stop is False


def test_string_stop_flag():
    assert parse_judge_result('{"score": 40, "stop": "true"}').stop is True
    assert parse_judge_result('{"score": 40, "stop": "false"}').stop is False


@pytest.mark.parametrize(
    "reply",
    [
        "not json at all",
        "",
        "[1, 2, 3]",
        '{"synthesis": "no score"}',
        '{"score": "high"}',
        '{"score": true}',
        '{"score": null}',
    ],
)
def test_rejects_malformed_replies(reply):
    with pytest.raises(MalformedJudgeResult):
        parse_judge_result(reply)


def test_failed_verdict_forces_stop():
    verdict = failed_verdict("Judge reply is not valid JSON")

    assert verdict.score == 0
    assert verdict.critique == ""
    assert verdict.stop is True
    assert verdict.synthesis.startswith("The judge was unable to evaluate this round.")
    assert "not valid JSON" in verdict.synthesis


# =============================================================================
# PROMPT
# =============================================================================

def test_prompt_labels_drafts_by_persona_name():
    drafts = {
        "worker-a": "Risky.",
        "worker-b": "Bold idea.",
        "worker-c": "Do this first.",
    }

    prompt = build_judge_prompt("How should I price my product?", drafts, WORKER_PERSONAS)

    assert "How should I price my product?" in prompt
    assert "--- The Skeptic ---\nRisky." in prompt
    assert "--- The Visionary ---\nBold idea." in prompt
    assert "--- The Realist ---\nDo this first." in prompt
    assert "PRIOR BACKGROUND" not in prompt


def test_prompt_carries_background_on_follow_up():
    prompt = build_judge_prompt(
        "And for enterprise customers?",
        {"worker-a": "a", "worker-b": "b", "worker-c": "c"},
        WORKER_PERSONAS,
        background="Use tiered pricing.",
    )

    assert "PRIOR BACKGROUND" in prompt
    assert "Use tiered pricing." in prompt
    assert "extend it rather than repeat it" in prompt
