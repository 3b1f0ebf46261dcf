# pipeline.py
# Job boundary: one user query in, one research-backed answer (or a recorded
# failure) out. Nothing raised inside a job escapes run_job().
#
# Flow:
#   new job dir → breakdown + conversion → plan artifact
#   → executor → summary artifact → final answer

from dataclasses import dataclass, field

from pydantic import BaseModel

from health_journal import display
from health_journal.artifacts import ArtifactStore
from health_journal.config import Settings
from health_journal.device import FitbitClient, JsonFileTokenStore
from health_journal.errors import AllModelsFailedError, PlanParseError
from health_journal.executor import Executor
from health_journal.handlers import JobContext
from health_journal.llm import LLMRouter
from health_journal.memory import JinaEmbedder, SupabaseMemoryStore
from health_journal.models import ExecutionSummary, ResultAccumulator
from health_journal.planner import PlanSource
from health_journal.prompts import PromptBook
from health_journal.search import DuckDuckGoSearch, GoogleSearch, build_search


class JobOutcome(BaseModel):
    job_id: str | None = None
    final_response: str | None = None
    summary: ExecutionSummary | None = None
    error: str | None = None


@dataclass
class Services:
    """Long-lived collaborators shared by every job in a process."""

    llm: LLMRouter
    planner: PlanSource
    search: GoogleSearch | DuckDuckGoSearch
    executor: Executor
    artifacts: ArtifactStore
    prompts: PromptBook = field(default_factory=PromptBook)
    memory: SupabaseMemoryStore | None = None
    device: FitbitClient | None = None


def build_services(settings: Settings) -> Services:
    prompts = PromptBook(settings.prompt_overrides)
    llm = LLMRouter(
        api_key=settings.openrouter_api_key,
        models=settings.models,
        json_models=settings.json_models,
        base_url=settings.openrouter_base_url,
        retry_delay=settings.model_retry_delay,
    )

    memory = None
    if settings.supabase_url and settings.supabase_key:
        memory = SupabaseMemoryStore(
            settings.supabase_url,
            settings.supabase_key,
            JinaEmbedder(settings.jina_api_key, settings.jina_api_url),
        )

    device = None
    if settings.fitbit_client_id:
        device = FitbitClient(
            settings.fitbit_client_id,
            settings.fitbit_client_secret,
            JsonFileTokenStore(settings.fitbit_token_file),
        )

    return Services(
        llm=llm,
        planner=PlanSource(llm, prompts, structured_assessment=settings.structured_assessment),
        search=build_search(settings),
        executor=Executor(max_retries=settings.max_retries, action_delay=settings.action_delay),
        artifacts=ArtifactStore(settings.outputs_dir),
        prompts=prompts,
        memory=memory,
        device=device,
    )


def run_job(query: str, services: Services, profile_id: str | None = None) -> JobOutcome:
    """
    Full pipeline entry point.

    Returns a JobOutcome in all cases; failures are recorded in the job
    directory (when one could be created) and reported on the console
    rather than raised.
    """
    try:
        artifacts = services.artifacts.new_job()
    except OSError as exc:
        display.halt(f"Could not create a job directory: {exc}")
        return JobOutcome(error=f"Job directory unavailable: {exc}")
    job_id = artifacts.job_id
    display.prompt_received(job_id, query)

    try:
        # ── Step 1: Plan ─────────────────────────────────────────────
        try:
            plan, breakdown = services.planner.initial_plan(query)
        except (PlanParseError, AllModelsFailedError) as exc:
            display.plan_rejected(str(exc))
            artifacts.write_json("plan_rejected.json", {"query": query, "error": str(exc)})
            return JobOutcome(job_id=job_id, error=f"Planning failed: {exc}")

        artifacts.write_text(
            "response.md",
            f'# Task Breakdown\n\n**Original Query:** "{query}"\n\n{breakdown}',
        )
        artifacts.write_json("execution_plan.json", plan)
        display.plan_parsed(plan)

        # ── Step 2: Execute ──────────────────────────────────────────
        job = JobContext(
            job_id=job_id,
            query=query,
            llm=services.llm,
            planner=services.planner,
            search=services.search,
            prompts=services.prompts,
            memory=services.memory,
            device=services.device,
            artifacts=artifacts,
        )
        results = ResultAccumulator(profile_id=profile_id)
        summary = services.executor.execute(plan, results, job)
        artifacts.write_json("execution_summary.json", summary)

        # ── Step 3: Report ───────────────────────────────────────────
        if results.final_response:
            display.final_result(results.final_response)
        return JobOutcome(job_id=job_id, final_response=results.final_response, summary=summary)

    except Exception as exc:
        display.halt(f"Job {job_id} failed: {exc}")
        artifacts.write_error(exc)
        return JobOutcome(job_id=job_id, error=str(exc))
