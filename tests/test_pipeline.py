import pytest
from unittest.mock import MagicMock

from health_journal.artifacts import ArtifactStore
from health_journal.config import Settings
from health_journal.device import FitbitClient
from health_journal.errors import AllModelsFailedError, PlanParseError
from health_journal.executor import Executor
from health_journal.memory import SupabaseMemoryStore
from health_journal.models import Action, Plan, SearchResult
from health_journal.pipeline import Services, build_services, run_job
from health_journal.search import DuckDuckGoSearch


PLAN = Plan(
    actions=[
        Action(kind="search", priority=1, directive="sleep and step count"),
        Action(kind="respond", priority=2, directive="answer the user", dependencies=[1]),
    ]
)


@pytest.fixture
def services(tmp_path):
    llm = MagicMock()
    llm.complete.return_value = "You slept well."
    planner = MagicMock()
    planner.initial_plan.return_value = (PLAN, "## BREAKDOWN STEPS:\n1. Search\n2. Respond")
    search = MagicMock()
    search.search.return_value = [SearchResult(title="Study")]
    return Services(
        llm=llm,
        planner=planner,
        search=search,
        executor=Executor(action_delay=0),
        artifacts=ArtifactStore(tmp_path / "outputs"),
    )


def _names(services, job_id):
    return [p.name for p in (services.artifacts.root / job_id).iterdir()]


def test_run_job_end_to_end(services):
    outcome = run_job("Did my sleep affect my steps?", services)

    assert outcome.error is None
    assert outcome.final_response == "You slept well."
    assert outcome.summary.search_results_found == 1
    assert outcome.summary.final_response_generated is True

    names = _names(services, outcome.job_id)
    assert "final_answer.md" in names
    assert any(n.endswith("_execution_plan.json") for n in names)
    assert any(n.endswith("_execution_summary.json") for n in names)
    assert any(n.endswith("_response.md") for n in names)


@pytest.mark.parametrize("error", [PlanParseError("bad kind"), AllModelsFailedError("all down")])
def test_planning_failure_is_recorded(services, error):
    services.planner.initial_plan.side_effect = error
    outcome = run_job("q", services)

    assert outcome.error.startswith("Planning failed")
    assert outcome.summary is None
    services.search.search.assert_not_called()
    assert any(n.endswith("_plan_rejected.json") for n in _names(services, outcome.job_id))


def test_unexpected_job_error_is_contained(services):
    services.executor = MagicMock()
    services.executor.execute.side_effect = RuntimeError("disk on fire")

    outcome = run_job("q", services)

    assert outcome.error == "disk on fire"
    error = services.artifacts.read(outcome.job_id, "error.txt")
    assert "RuntimeError" in error


def test_build_services_from_settings(tmp_path):
    settings = Settings(
        openrouter_api_key="k",
        outputs_dir=str(tmp_path / "out"),
        max_retries=5,
        action_delay=0.0,
    )
    services = build_services(settings)

    assert isinstance(services.search, DuckDuckGoSearch)
    assert services.memory is None
    assert services.device is None
    assert services.executor.max_retries == 5
    assert services.llm.models == settings.models


def test_build_services_with_optional_collaborators(tmp_path):
    settings = Settings(
        openrouter_api_key="k",
        outputs_dir=str(tmp_path / "out"),
        supabase_url="https://db.example.co",
        supabase_key="svc",
        jina_api_key="jina",
        fitbit_client_id="cid",
        fitbit_client_secret="secret",
        fitbit_token_file=str(tmp_path / "tokens.json"),
    )
    services = build_services(settings)

    assert isinstance(services.memory, SupabaseMemoryStore)
    assert isinstance(services.device, FitbitClient)


def test_job_directory_failure_is_contained(services):
    services.artifacts = MagicMock()
    services.artifacts.new_job.side_effect = OSError("No space left on device")

    outcome = run_job("q", services)

    assert outcome.job_id is None
    assert "No space left on device" in outcome.error
    services.planner.initial_plan.assert_not_called()
