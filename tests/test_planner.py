import json
import pytest
from unittest.mock import MagicMock

from health_journal.errors import PlanParseError
from health_journal.models import ActionKind
from health_journal.planner import (
    MAX_BREAKDOWN_ATTEMPTS,
    Assessment,
    PlanSource,
    detect_replan,
    parse_plan,
    split_breakdown,
)
from health_journal.prompts import (
    BREAKDOWN_HEADER,
    BREAKDOWN_SENTINEL,
    EXECUTOR_HEADER,
    REPLAN_MARKER,
    PromptBook,
)

BREAKDOWN = (
    f"{BREAKDOWN_HEADER}\n"
    "1. Fetch today's sleep data\n"
    "2. Search for sleep efficiency research\n"
    "3. Respond to the user\n\n"
    f"{EXECUTOR_HEADER}\n"
    "Keep directives short.\n"
    f"{BREAKDOWN_SENTINEL}"
)

VALID_PLAN = {
    "actions": [
        {"kind": "fetch_sleep", "priority": 1, "dependencies": []},
        {"kind": "search", "priority": 2, "directive": "sleep efficiency", "dependencies": []},
        {"kind": "respond", "priority": 3, "directive": "answer", "dependencies": [1, 2]},
    ]
}


def _llm():
    llm = MagicMock()
    llm.complete_json.return_value = VALID_PLAN
    return llm


# ---------------------------------------------------------------------------
# Free-text adapters
# ---------------------------------------------------------------------------

def test_split_breakdown_separates_steps_and_guidance():
    steps, guidance = split_breakdown(BREAKDOWN)
    assert steps.startswith("1. Fetch today's sleep data")
    assert "3. Respond to the user" in steps
    assert BREAKDOWN_HEADER not in steps
    assert guidance == "Keep directives short."


def test_split_breakdown_without_guidance():
    steps, guidance = split_breakdown(f"1. Search X\n{BREAKDOWN_SENTINEL}")
    assert steps == "1. Search X"
    assert guidance == ""


def test_detect_replan_absent():
    assessment = detect_replan("The findings fully answer the question.")
    assert assessment.needs_more_research is False
    assert assessment.updated_steps is None


def test_detect_replan_present():
    text = (
        "More research is needed on caffeine.\n\n"
        f"{REPLAN_MARKER}\n"
        "1. Search caffeine half-life\n"
        "2. Respond to the user\n"
        f"{EXECUTOR_HEADER}\nignored guidance"
    )
    assessment = detect_replan(text)
    assert assessment.needs_more_research is True
    assert assessment.updated_steps == "1. Search caffeine half-life\n2. Respond to the user"
    assert assessment.text == text


# ---------------------------------------------------------------------------
# Plan parsing
# ---------------------------------------------------------------------------

def test_parse_plan_from_text_and_dict():
    assert len(parse_plan(json.dumps(VALID_PLAN))) == 3
    assert parse_plan(VALID_PLAN).ordered()[0].kind is ActionKind.FETCH_SLEEP


@pytest.mark.parametrize(
    "data",
    [
        "not json at all",
        {"actions": [{"kind": "shell", "priority": 1, "directive": "rm -rf /"}]},
        {"actions": [{"kind": "search", "priority": 1}]},
        {"actions": [{"kind": "search", "priority": 42, "directive": "x"}]},
        {
            "actions": [
                {"kind": "search", "priority": 1, "directive": "a"},
                {"kind": "respond", "priority": 1, "directive": "b"},
            ]
        },
        {"steps": []},
        ["search"],
    ],
)
def test_parse_plan_rejects_malformed(data):
    with pytest.raises(PlanParseError):
        parse_plan(data)


# ---------------------------------------------------------------------------
# PlanSource
# ---------------------------------------------------------------------------

def test_breakdown_retries_until_sentinel():
    llm = _llm()
    llm.complete.side_effect = ["no sentinel here", BREAKDOWN]
    source = PlanSource(llm)

    assert source.breakdown("how did I sleep?") == BREAKDOWN
    assert llm.complete.call_count == 2


def test_breakdown_gives_up_after_max_attempts():
    llm = _llm()
    llm.complete.return_value = "never finished"
    source = PlanSource(llm)

    with pytest.raises(PlanParseError, match="sentinel"):
        source.breakdown("how did I sleep?")
    assert llm.complete.call_count == MAX_BREAKDOWN_ATTEMPTS


def test_initial_plan_chains_breakdown_and_conversion():
    llm = _llm()
    llm.complete.return_value = BREAKDOWN
    plan, text = PlanSource(llm).initial_plan("how did I sleep?")

    assert text == BREAKDOWN
    assert [a.priority for a in plan.ordered()] == [1, 2, 3]
    prompt = llm.complete_json.call_args.args[0]
    assert "1. Fetch today's sleep data" in prompt
    assert "Keep directives short." in prompt


def test_convert_rejects_unknown_kind():
    llm = MagicMock()
    llm.complete_json.return_value = {
        "actions": [{"kind": "send_email", "priority": 1, "directive": "x"}]
    }
    with pytest.raises(PlanParseError):
        PlanSource(llm).convert("1. Email my doctor")


def test_prompt_overrides_are_rendered():
    llm = _llm()
    llm.complete.return_value = BREAKDOWN
    prompts = PromptBook({"breakdown": "Plan for: {ORIGINAL_QUERY}"})
    PlanSource(llm, prompts).breakdown("steps vs sleep")

    assert llm.complete.call_args.args[1] == "Plan for: steps vs sleep"


def test_assess_free_text_uses_marker_adapter():
    llm = MagicMock()
    llm.complete.return_value = f"Not enough.\n{REPLAN_MARKER}\n1. Search more"
    assessment = PlanSource(llm).assess("q", "context", "is it enough?")

    assert assessment.needs_more_research is True
    assert assessment.updated_steps == "1. Search more"
    llm.complete_json.assert_not_called()


def test_assess_structured_mode_uses_schema():
    llm = MagicMock()
    llm.complete_json.return_value = {
        "text": "Need caffeine data.",
        "needs_more_research": True,
        "updated_steps": "1. Search caffeine and sleep",
    }
    assessment = PlanSource(llm, structured_assessment=True).assess("q", "context", "enough?")

    assert assessment == Assessment(
        text="Need caffeine data.",
        needs_more_research=True,
        updated_steps="1. Search caffeine and sleep",
    )
    assert llm.complete_json.call_args.kwargs["schema"] is Assessment
    llm.complete.assert_not_called()
