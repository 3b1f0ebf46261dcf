# handlers.py
# Action handler registry, one handler per ActionKind.
#
# Every handler has the signature handle(action, results, job) -> None. It
# mutates the shared ResultAccumulator and raises on failure; retry and drop
# decisions belong to the executor alone.

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from health_journal import display
from health_journal.artifacts import JobArtifacts, slug
from health_journal.device import FitbitClient
from health_journal.errors import DeviceDataError, MemoryStoreError, PlanParseError
from health_journal.llm import LLMRouter
from health_journal.memory import SupabaseMemoryStore, format_memories, parse_key_insights
from health_journal.models import (
    Action,
    ActionKind,
    AnalysisRecord,
    Memory,
    MemoryDraft,
    ResultAccumulator,
    SynthesisRecord,
)
from health_journal.planner import PlanSource
from health_journal.prompts import PromptBook
from health_journal.search import DuckDuckGoSearch, GoogleSearch

MEMORY_THRESHOLD = 0.7
MEMORY_LIMIT = 5

_DATE_DIRECTIVE = re.compile(r"date:\s*(\d{4}-\d{2}-\d{2})")


@dataclass
class JobContext:
    """Per-job collaborators and identity shared by every handler call."""

    job_id: str
    query: str
    llm: LLMRouter
    planner: PlanSource
    search: GoogleSearch | DuckDuckGoSearch
    prompts: PromptBook
    memory: SupabaseMemoryStore | None = None
    device: FitbitClient | None = None
    artifacts: JobArtifacts | None = None

    def save_json(self, name: str, obj: Any) -> None:
        if self.artifacts is not None:
            self.artifacts.write_json(name, obj)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dump(obj: Any) -> str:
    if hasattr(obj, "model_dump"):
        obj = obj.model_dump(mode="json")
    elif isinstance(obj, list):
        obj = [o.model_dump(mode="json") if hasattr(o, "model_dump") else o for o in obj]
    return json.dumps(obj, indent=2, default=str)


def merge_memories(*groups: list[Memory]) -> list[Memory]:
    """Union of memory lists, de-duplicated by id, most similar first."""
    merged: dict[object, Memory] = {}
    for memory in (m for group in groups for m in group):
        key = memory.id if memory.id is not None else (memory.title, memory.content)
        if key not in merged:
            merged[key] = memory
    return sorted(merged.values(), key=lambda m: m.similarity or 0.0, reverse=True)


def _recall(action: Action, results: ResultAccumulator, job: JobContext, label: str) -> list[Memory]:
    """
    Memories for a model prompt: whatever earlier memory_search actions found
    plus an optional lookup against this action's directive.
    """
    found: list[Memory] = []
    if results.profile_id and job.memory is not None:
        query = f"{job.query} {action.directive or ''}".strip()
        try:
            found = job.memory.search_memories(
                results.profile_id, query, MEMORY_THRESHOLD, MEMORY_LIMIT
            )
        except MemoryStoreError as exc:
            display.handler_note(f"memory lookup for {label} unavailable: {exc}")
        else:
            job.save_json(f"memories_for_{label}_{slug(action.directive or '')}.json", found)
    return merge_memories(results.memory_matches, found)


def progress_context(
    action: Action, results: ResultAccumulator, job: JobContext, memories: list[Memory]
) -> str:
    """The user message handed to the progress analyzer."""
    top = "\n".join(
        f"{i}. {r.title}: {r.snippet}" for i, r in enumerate(results.search_results[:5], start=1)
    )
    return (
        f'ORIGINAL USER QUERY: "{job.query}"\n\n'
        "CURRENT PROGRESS:\n"
        f"- Search Results Found: {len(results.search_results)}\n"
        f"- Previous Analyses: {len(results.analyses)}\n"
        f"- Syntheses Completed: {len(results.syntheses)}\n\n"
        f"SEARCH RESULTS SUMMARY:\n{top or 'None'}\n\n"
        f"CURRENT INSTRUCTION: {action.directive}\n\n"
        "WEARABLE DATA:\n"
        f"- Activity: {_dump(results.activity) if results.activity else 'Not Available'}\n"
        f"- Sleep: {_dump(results.sleep) if results.sleep else 'Not Available'}\n\n"
        f"RELEVANT LONG-TERM MEMORIES:\n{format_memories(memories)}\n"
    )


def research_context(
    action: Action, results: ResultAccumulator, job: JobContext, memories: list[Memory]
) -> str:
    """Everything accumulated so far, for synthesis and the final response."""
    return (
        f"Current Date and Time: {datetime.now().strftime('%Y-%m-%d %H:%M')}\n"
        f'Original User Query: "{job.query}"\n'
        f'Current Action Query: "{action.directive}"\n\n'
        f"Wearable Activity Data:\n{_dump(results.activity)}\n\n"
        f"Wearable Sleep Data:\n{_dump(results.sleep)}\n\n"
        f"Search Results:\n{_dump(results.search_results)}\n\n"
        f"Analysis Results:\n{_dump(results.analyses)}\n\n"
        f"Syntheses:\n{_dump(results.syntheses)}\n\n"
        f"Relevant Long-Term Memories:\n{format_memories(memories)}\n"
    )


def _target_date(action: Action) -> str:
    match = _DATE_DIRECTIVE.search(action.directive or "")
    return match.group(1) if match else "today"


def _require_device(job: JobContext) -> FitbitClient:
    if job.device is None:
        raise DeviceDataError("No wearable device is configured")
    return job.device


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_search(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    found = job.search.search(action.directive or "")
    results.search_results.extend(found)
    job.save_json(f"search_{slug(action.directive or '')}.json", found)
    display.handler_note(f"{len(found)} result(s) for {action.directive!r}")


def handle_analyze(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    memories = _recall(action, results, job, "analysis")
    context = progress_context(action, results, job, memories)
    assessment = job.planner.assess(job.query, context, action.directive or "")

    replacement = None
    if assessment.needs_more_research and assessment.updated_steps:
        display.handler_note("progress analyzer requested more research")
        try:
            replacement = job.planner.convert(assessment.updated_steps, query=job.query)
        except PlanParseError as exc:
            display.plan_rejected(str(exc))
            job.save_json(
                "replan_rejected.json",
                {"steps": assessment.updated_steps, "error": str(exc)},
            )

    record = AnalysisRecord(
        instruction=action.directive or "",
        assessment=assessment.text,
        replan_requested=replacement is not None,
        search_results=len(results.search_results),
        analyses=len(results.analyses),
        syntheses=len(results.syntheses),
        activity_available=results.activity is not None,
        sleep_available=results.sleep is not None,
    )
    results.analyses.append(record)
    job.save_json("progress_analysis.json", record)

    if replacement is not None:
        job.save_json("updated_plan.json", replacement)
        results.request_replan(replacement)


def handle_synthesize(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    memories = _recall(action, results, job, "synthesis")
    system_prompt = job.prompts.get(
        "synthesis", original_query=job.query, action_query=action.directive or ""
    )
    narrative = job.llm.complete(
        research_context(action, results, job, memories), system_prompt, task="Synthesis"
    )
    record = SynthesisRecord(
        instruction=action.directive or "",
        narrative=narrative,
        key_insights=parse_key_insights(narrative),
        search_results=len(results.search_results),
        analyses=len(results.analyses),
    )
    results.syntheses.append(record)
    job.save_json("synthesis.json", record)


def handle_respond(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    memories = _recall(action, results, job, "final")
    system_prompt = job.prompts.get(
        "final_response", original_query=job.query, action_query=action.directive or ""
    )
    answer = job.llm.complete(
        research_context(action, results, job, memories), system_prompt, task="Final Response"
    )
    results.final_response = answer
    if job.artifacts is not None:
        job.artifacts.write_final_answer(answer)

    insights = parse_key_insights(answer)
    if insights and results.profile_id and job.memory is not None:
        draft = MemoryDraft(
            title=f"AI Final Insights: {job.query[:50]}...",
            content=insights,
            importance=0.75,
            source_id=job.job_id,
        )
        # The answer is already recorded; a failed insight write must not re-run it.
        try:
            job.memory.store_memory(results.profile_id, draft)
        except MemoryStoreError as exc:
            display.handler_note(f"storing final insights failed: {exc}")


def handle_fetch_activity(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    activity = _require_device(job).get_daily_activity(_target_date(action))
    if activity is None:
        display.handler_note("no activity data for the requested date")
        return
    results.activity = activity
    job.save_json("fitbit_activity.json", activity)
    display.handler_note(f"activity for {activity.date}: {activity.steps} steps")


def handle_fetch_sleep(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    sleep = _require_device(job).get_sleep(_target_date(action))
    if sleep is None:
        display.handler_note("no sleep data for the requested date")
        return
    results.sleep = sleep
    job.save_json("fitbit_sleep.json", sleep)
    display.handler_note(f"sleep for {sleep.date}: {sleep.minutes_asleep} min asleep")


def handle_memory_search(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    if not results.profile_id or job.memory is None:
        display.handler_note("memory_search skipped: no profile or memory store")
        return
    results.memory_matches = job.memory.search_memories(
        results.profile_id, action.directive or "", MEMORY_THRESHOLD, MEMORY_LIMIT
    )
    display.handler_note(f"memory_search found {len(results.memory_matches)} match(es)")


def handle_memory_store(action: Action, results: ResultAccumulator, job: JobContext) -> None:
    if not results.profile_id or job.memory is None:
        display.handler_note("memory_store skipped: no profile or memory store")
        return
    content = action.directive or ""
    job.memory.store_memory(
        results.profile_id,
        MemoryDraft(
            title=f"AI Memory: {content[:50]}...",
            content=content,
            kind="insight",
            importance=0.7,
            source_id=job.job_id,
        ),
    )
    display.handler_note(f"memory_store persisted {len(content)} chars")


Handler = Callable[[Action, ResultAccumulator, JobContext], None]

HANDLERS: dict[ActionKind, Handler] = {
    ActionKind.SEARCH:         handle_search,
    ActionKind.ANALYZE:        handle_analyze,
    ActionKind.SYNTHESIZE:     handle_synthesize,
    ActionKind.RESPOND:        handle_respond,
    ActionKind.FETCH_ACTIVITY: handle_fetch_activity,
    ActionKind.FETCH_SLEEP:    handle_fetch_sleep,
    ActionKind.MEMORY_SEARCH:  handle_memory_search,
    ActionKind.MEMORY_STORE:   handle_memory_store,
}
