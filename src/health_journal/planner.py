# planner.py
# Plan Source: turns free text into validated Plans.
#
# Planning is two chained model calls: a breakdown call that writes prose
# steps, and a conversion call that turns those steps into the strict
# action-list JSON. Conversion output is validated in full before it is
# accepted; a malformed plan is rejected, never partially executed.

import json
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from health_journal import display
from health_journal.errors import PlanParseError
from health_journal.llm import LLMRouter
from health_journal.models import Plan
from health_journal.prompts import (
    ALLOWED_ACTIONS,
    BREAKDOWN_HEADER,
    BREAKDOWN_SENTINEL,
    BREAKDOWN_USER_PROMPT,
    CONVERT_USER_PROMPT,
    EXECUTOR_HEADER,
    REPLAN_MARKER,
    STRUCTURED_ASSESSMENT_SUFFIX,
    PromptBook,
)

MAX_BREAKDOWN_ATTEMPTS = 3


class Assessment(BaseModel):
    """Structured result of a progress assessment."""

    model_config = ConfigDict(extra="forbid")

    text: str
    needs_more_research: bool = False
    updated_steps: str | None = Field(
        default=None, description="Prose breakdown of the follow-up work."
    )


# ---------------------------------------------------------------------------
# Free-text adapters
# ---------------------------------------------------------------------------


def split_breakdown(text: str) -> tuple[str, str]:
    """
    Split a breakdown response into (steps, executor guidance).

    The sentinel line and section headers are removed from both parts.
    """
    body = text.replace(BREAKDOWN_SENTINEL, "")
    steps, _, guidance = body.partition(EXECUTOR_HEADER)
    steps = steps.replace(BREAKDOWN_HEADER, "").strip()
    return steps, guidance.strip()


def detect_replan(text: str) -> Assessment:
    """
    Convert free-text analyzer output into an Assessment.

    The replan marker anywhere in the text means more work is needed; the
    text after it is the new breakdown.
    """
    if REPLAN_MARKER not in text:
        return Assessment(text=text)
    _, _, tail = text.partition(REPLAN_MARKER)
    steps, _, _ = tail.partition(EXECUTOR_HEADER)
    return Assessment(text=text, needs_more_research=True, updated_steps=steps.strip())


def parse_plan(data: object) -> Plan:
    """
    Validate a decoded plan document. Raises PlanParseError on any defect:
    unknown kind, missing directive, bad priority, duplicate priority,
    unexpected field or wrong shape.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise PlanParseError(f"Plan content is not valid JSON: {exc}") from exc
    try:
        return Plan.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(f"Plan content is invalid: {exc}") from exc


# ---------------------------------------------------------------------------
# PlanSource
# ---------------------------------------------------------------------------


class PlanSource:
    """Model-backed author of initial and replacement plans."""

    def __init__(
        self,
        llm: LLMRouter,
        prompts: PromptBook | None = None,
        structured_assessment: bool = False,
    ) -> None:
        self._llm = llm
        self._prompts = prompts or PromptBook()
        self._structured = structured_assessment

    def breakdown(self, query: str) -> str:
        """
        Ask for prose breakdown steps, retrying while the sentinel is absent.

        Returns the raw response. Raises PlanParseError when no attempt
        carries the sentinel.
        """
        prompt = BREAKDOWN_USER_PROMPT.format(
            now=datetime.now().strftime("%Y-%m-%d %H:%M"),
            query=query,
            allowed=ALLOWED_ACTIONS,
        )
        system_prompt = self._prompts.get("breakdown", original_query=query)
        for attempt in range(1, MAX_BREAKDOWN_ATTEMPTS + 1):
            response = self._llm.complete(prompt, system_prompt, task="Task Breakdown")
            if BREAKDOWN_SENTINEL in response:
                return response
            if attempt < MAX_BREAKDOWN_ATTEMPTS:
                display.breakdown_retry(attempt, MAX_BREAKDOWN_ATTEMPTS)
        raise PlanParseError(
            f"Breakdown sentinel missing after {MAX_BREAKDOWN_ATTEMPTS} attempts"
        )

    def convert(self, steps: str, guidance: str = "", query: str = "") -> Plan:
        """Convert prose steps into a validated Plan. Raises PlanParseError."""
        system_prompt = self._prompts.get("json_executor", original_query=query)
        prompt = CONVERT_USER_PROMPT.format(
            steps=steps,
            guidance=f"\nAdditional guidance:\n{guidance}\n" if guidance else "",
        )
        # Validated here rather than by the router so a bad plan is a PlanParseError
        data = self._llm.complete_json(prompt, system_prompt, task="JSON Executor")
        return parse_plan(data)

    def initial_plan(self, query: str) -> tuple[Plan, str]:
        """Author the first plan for a query. Returns (plan, breakdown text)."""
        response = self.breakdown(query)
        steps, guidance = split_breakdown(response)
        if not steps:
            raise PlanParseError("Breakdown response contained no steps")
        return self.convert(steps, guidance, query=query), response

    def assess(self, query: str, context: str, directive: str) -> Assessment:
        """
        Judge whether the accumulated findings answer the query.

        Models with structured output return the Assessment fields directly;
        free-text models go through the replan-marker adapter.
        """
        system_prompt = self._prompts.get(
            "progress_analyzer", original_query=query, action_query=directive
        )
        if self._structured:
            data = self._llm.complete_json(
                context,
                system_prompt + STRUCTURED_ASSESSMENT_SUFFIX,
                schema=Assessment,
                task="Progress Analyzer",
            )
            return Assessment.model_validate(data)
        text = self._llm.complete(context, system_prompt, task="Progress Analyzer")
        return detect_replan(text)
