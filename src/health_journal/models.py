# models.py
# Data contracts for the action-plan executor and its collaborators.
# Validation lives here; scheduling and I/O do not.

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Actions and plans
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    """Closed vocabulary of action kinds. One handler per member."""

    SEARCH = "search"
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    RESPOND = "respond"
    FETCH_ACTIVITY = "fetch_activity"
    FETCH_SLEEP = "fetch_sleep"
    MEMORY_SEARCH = "memory_search"
    MEMORY_STORE = "memory_store"


# Kinds that take no directive payload.
DEVICE_KINDS = frozenset({ActionKind.FETCH_ACTIVITY, ActionKind.FETCH_SLEEP})


class Action(BaseModel):
    """A single schedulable unit of work in a plan."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ActionKind = Field(..., description="Which handler runs this action.")
    directive: str | None = Field(default=None, description="Query or instruction payload.")
    priority: int = Field(..., ge=1, le=10, description="Lower runs earlier.")
    dependencies: tuple[int, ...] = Field(
        default_factory=tuple,
        description="Priorities that must complete before this action runs.",
    )

    @model_validator(mode="after")
    def _directive_required(self) -> "Action":
        if self.kind not in DEVICE_KINDS and not (self.directive or "").strip():
            raise ValueError(f"'{self.kind.value}' actions require a non-empty directive")
        return self

    @property
    def label(self) -> str:
        return f"{self.kind.value}#{self.priority}"


class Plan(BaseModel):
    """An immutable ordered collection of actions from one planning pass."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actions: tuple[Action, ...] = Field(default_factory=tuple)

    @field_validator("actions")
    @classmethod
    def _unique_priorities(cls, actions: tuple[Action, ...]) -> tuple[Action, ...]:
        # The attempt map and completed-set are keyed by priority.
        seen: set[int] = set()
        for action in actions:
            if action.priority in seen:
                raise ValueError(f"duplicate priority {action.priority} in plan")
            seen.add(action.priority)
        return actions

    def ordered(self) -> list[Action]:
        """Actions stable-sorted by ascending priority."""
        return sorted(self.actions, key=lambda a: a.priority)

    def __len__(self) -> int:
        return len(self.actions)


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


class SearchResult(BaseModel):
    title: str = ""
    snippet: str = ""
    link: str = ""


class Activity(BaseModel):
    """Daily activity snapshot reduced from the device API."""

    date: str
    steps: int = 0
    calories: int = 0
    distance: float = 0.0
    active_minutes: int = 0
    resting_heart_rate: int | None = None
    heart_rate_zones: list[dict[str, Any]] = Field(default_factory=list)
    goals: dict[str, Any] = Field(default_factory=dict)


class Sleep(BaseModel):
    """Main sleep period for a date."""

    date: str
    duration_min: int = 0
    minutes_asleep: int = 0
    minutes_awake: int = 0
    efficiency: int = 0
    start_time: str | None = None
    end_time: str | None = None
    time_in_bed: int = 0
    stages: dict[str, Any] = Field(default_factory=dict)


class MemoryDraft(BaseModel):
    """A memory about to be persisted."""

    title: str
    content: str
    kind: str = "insight"
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    source_type: str = "ai_analysis"
    source_id: str | None = None


class Memory(BaseModel):
    """A persisted memory, optionally scored against a query."""

    id: str | None = None
    title: str = ""
    content: str = ""
    kind: str = "memory"
    importance: float | None = None
    similarity: float | None = None
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Per-job state
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnalysisRecord(BaseModel):
    instruction: str
    assessment: str
    replan_requested: bool = False
    search_results: int = 0
    analyses: int = 0
    syntheses: int = 0
    activity_available: bool = False
    sleep_available: bool = False
    timestamp: str = Field(default_factory=_now)


class SynthesisRecord(BaseModel):
    instruction: str
    narrative: str
    key_insights: str = ""
    search_results: int = 0
    analyses: int = 0
    timestamp: str = Field(default_factory=_now)


class ResultAccumulator(BaseModel):
    """
    Shared mutable state for one job, passed by reference to every handler.

    The list fields are append-only. The re-planning flag and replacement plan
    are only ever written through request_replan() and read through
    take_replan(), so they are always set and cleared together.
    """

    profile_id: str | None = None
    search_results: list[SearchResult] = Field(default_factory=list)
    analyses: list[AnalysisRecord] = Field(default_factory=list)
    syntheses: list[SynthesisRecord] = Field(default_factory=list)
    final_response: str | None = None
    activity: Activity | None = None
    sleep: Sleep | None = None
    memory_matches: list[Memory] = Field(default_factory=list)
    replan_requested: bool = False
    replacement_plan: Plan | None = None

    def request_replan(self, plan: Plan) -> None:
        self.replacement_plan = plan
        self.replan_requested = True

    def take_replan(self) -> Plan | None:
        """Return the pending replacement plan (if any) and reset the signal."""
        if not self.replan_requested:
            return None
        plan = self.replacement_plan
        self.replan_requested = False
        self.replacement_plan = None
        return plan


class ExecutionSummary(BaseModel):
    """Outcome of one executor run."""

    total_actions: int = 0
    search_results_found: int = 0
    analysis_completed: bool = False
    synthesis_completed: bool = False
    final_response_generated: bool = False
    activity_retrieved: bool = False
    sleep_retrieved: bool = False
    executed: list[int] = Field(default_factory=list, description="Priorities that completed, in order.")
    dropped: list[int] = Field(default_factory=list, description="Priorities dropped after exhausting retries.")
    replans: int = 0
    timestamp: str = Field(default_factory=_now)

    @classmethod
    def from_results(cls, results: ResultAccumulator, **kwargs: Any) -> "ExecutionSummary":
        return cls(
            search_results_found=len(results.search_results),
            analysis_completed=bool(results.analyses),
            synthesis_completed=bool(results.syntheses),
            final_response_generated=bool(results.final_response),
            activity_retrieved=results.activity is not None,
            sleep_retrieved=results.sleep is not None,
            **kwargs,
        )
