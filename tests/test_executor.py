import pytest
from unittest.mock import MagicMock, patch

from health_journal.errors import SearchError, UnknownActionError
from health_journal.executor import Executor
from health_journal.models import (
    Action,
    ActionKind,
    Plan,
    ResultAccumulator,
    SearchResult,
)


def _plan(*actions) -> Plan:
    return Plan(actions=[Action(**fields) for fields in actions])


class Recorder:
    """Handler table that records every dispatch and delegates per kind."""

    def __init__(self, **overrides):
        self.calls: list[int] = []
        self._overrides = overrides

    def _make(self, kind: ActionKind):
        def handler(action, results, job):
            self.calls.append(action.priority)
            custom = self._overrides.get(kind.value)
            if custom is not None:
                custom(action, results, job)
            elif kind is ActionKind.SEARCH:
                results.search_results.append(SearchResult(title=action.directive))
            elif kind is ActionKind.RESPOND:
                results.final_response = f"answer from {action.priority}"
        return handler

    @property
    def table(self):
        return {kind: self._make(kind) for kind in ActionKind}


def _executor(recorder: Recorder, **kwargs) -> Executor:
    kwargs.setdefault("action_delay", 0)
    return Executor(handlers=recorder.table, **kwargs)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

def test_search_then_respond():
    rec = Recorder()
    plan = _plan(
        {"kind": "search", "priority": 1, "directive": "X"},
        {"kind": "respond", "priority": 2, "directive": "Y", "dependencies": [1]},
    )
    results = ResultAccumulator()
    summary = _executor(rec).execute(plan, results)

    assert rec.calls == [1, 2]
    assert summary.search_results_found >= 1
    assert summary.final_response_generated is True
    assert summary.executed == [1, 2]
    assert summary.dropped == []


def test_missing_dependency_is_dropped_after_max_deferrals():
    rec = Recorder()
    plan = _plan({"kind": "respond", "priority": 1, "directive": "Y", "dependencies": [5]})
    results = ResultAccumulator()
    summary = _executor(rec, max_retries=3).execute(plan, results)

    assert rec.calls == []
    assert summary.final_response_generated is False
    assert summary.dropped == [1]
    assert summary.total_actions == 1


@pytest.mark.parametrize("max_retries", [1, 2, 3, 5])
def test_unmet_dependency_deferred_exactly_max_retries_times(max_retries):
    rec = Recorder()
    plan = _plan({"kind": "respond", "priority": 1, "directive": "Y", "dependencies": [5]})

    with patch("health_journal.display.action_deferred") as deferred, patch(
        "health_journal.display.action_considered"
    ) as considered:
        summary = _executor(rec, max_retries=max_retries).execute(plan, ResultAccumulator())

    assert deferred.call_count == max_retries
    # every deferral plus the final look that drops it
    assert considered.call_count == max_retries + 1
    assert [c.args[2] for c in deferred.call_args_list] == list(range(1, max_retries + 1))
    assert rec.calls == []
    assert summary.dropped == [1]


def test_replan_replaces_remaining_queue():
    replacement = _plan(
        {"kind": "search", "priority": 2, "directive": "follow-up b"},
        {"kind": "search", "priority": 1, "directive": "follow-up a"},
    )

    def analyze(action, results, job):
        results.request_replan(replacement)

    rec = Recorder(analyze=analyze)
    plan = _plan(
        {"kind": "analyze", "priority": 1, "directive": "enough?"},
        {"kind": "synthesize", "priority": 2, "directive": "old"},
        {"kind": "respond", "priority": 3, "directive": "old"},
    )
    results = ResultAccumulator()
    summary = _executor(rec).execute(plan, results)

    # analyze#1, then the replacement in stable priority order; old 2 and 3 never run
    assert rec.calls == [1, 1, 2]
    assert [r.title for r in results.search_results] == ["follow-up a", "follow-up b"]
    assert summary.replans == 1
    assert summary.total_actions == 5
    assert summary.synthesis_completed is False
    assert results.replan_requested is False
    assert results.replacement_plan is None


def test_transient_failure_succeeds_on_third_attempt():
    attempts = {"n": 0}

    def flaky_search(action, results, job):
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise SearchError("rate limited")
        results.search_results.append(SearchResult(title="ok"))

    rec = Recorder(search=flaky_search)
    plan = _plan({"kind": "search", "priority": 1, "directive": "X"})
    results = ResultAccumulator()
    summary = _executor(rec, max_retries=3).execute(plan, results)

    assert rec.calls == [1, 1, 1]
    assert summary.search_results_found == 1
    assert summary.executed == [1]
    assert summary.dropped == []


def test_two_responds_last_write_wins():
    rec = Recorder()
    plan = _plan(
        {"kind": "respond", "priority": 7, "directive": "late"},
        {"kind": "respond", "priority": 3, "directive": "early"},
    )
    results = ResultAccumulator()
    _executor(rec).execute(plan, results)

    assert rec.calls == [3, 7]
    assert results.final_response == "answer from 7"


def test_empty_plan():
    rec = Recorder()
    sleep = MagicMock()
    summary = Executor(handlers=rec.table, sleep=sleep).execute(Plan(actions=[]), ResultAccumulator())

    assert rec.calls == []
    sleep.assert_not_called()
    assert summary.total_actions == 0
    assert summary.search_results_found == 0
    assert summary.analysis_completed is False
    assert summary.synthesis_completed is False
    assert summary.final_response_generated is False
    assert summary.activity_retrieved is False
    assert summary.sleep_retrieved is False
    assert summary.executed == []
    assert summary.dropped == []


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

def test_ordering_without_deferrals_is_ascending_priority():
    rec = Recorder()
    plan = _plan(
        {"kind": "search", "priority": 4, "directive": "d"},
        {"kind": "search", "priority": 1, "directive": "a"},
        {"kind": "search", "priority": 9, "directive": "e"},
        {"kind": "search", "priority": 2, "directive": "b"},
    )
    _executor(rec).execute(plan, ResultAccumulator())
    assert rec.calls == [1, 2, 4, 9]


def test_handler_never_runs_before_its_dependencies():
    completed: list[int] = []

    def tracking(action, results, job):
        for dep in action.dependencies:
            assert dep in completed
        completed.append(action.priority)

    overrides = {kind.value: tracking for kind in ActionKind}
    rec = Recorder(**overrides)
    # priority 1 depends on 3, so it is deferred behind 2 and 3
    plan = _plan(
        {"kind": "synthesize", "priority": 1, "directive": "s", "dependencies": [3]},
        {"kind": "search", "priority": 2, "directive": "a"},
        {"kind": "search", "priority": 3, "directive": "b", "dependencies": [2]},
    )
    summary = _executor(rec).execute(plan, ResultAccumulator())

    assert rec.calls == [2, 3, 1]
    assert summary.executed == [2, 3, 1]


def test_dependency_on_dropped_action_drops_dependent():
    def always_fail(action, results, job):
        raise SearchError("down")

    rec = Recorder(search=always_fail)
    plan = _plan(
        {"kind": "search", "priority": 1, "directive": "a"},
        {"kind": "respond", "priority": 2, "directive": "r", "dependencies": [1]},
    )
    summary = _executor(rec, max_retries=3).execute(plan, ResultAccumulator())

    assert 2 not in rec.calls
    assert sorted(summary.dropped) == [1, 2]
    assert summary.final_response_generated is False


@pytest.mark.parametrize("max_retries", [1, 2, 3, 5])
def test_failing_action_dispatched_at_most_max_retries(max_retries):
    def always_fail(action, results, job):
        raise RuntimeError("boom")

    rec = Recorder(search=always_fail)
    plan = _plan({"kind": "search", "priority": 1, "directive": "a"})
    summary = _executor(rec, max_retries=max_retries).execute(plan, ResultAccumulator())

    assert rec.calls == [1] * max_retries
    assert summary.dropped == [1]
    assert summary.executed == []


def test_replan_during_requeued_failure_still_discards_old_queue():
    replacement = _plan({"kind": "respond", "priority": 1, "directive": "new"})
    seen = {"n": 0}

    def analyze(action, results, job):
        seen["n"] += 1
        results.request_replan(replacement)
        raise RuntimeError("analyzer crashed after requesting a replan")

    rec = Recorder(analyze=analyze)
    plan = _plan(
        {"kind": "analyze", "priority": 1, "directive": "a"},
        {"kind": "search", "priority": 2, "directive": "old"},
    )
    results = ResultAccumulator()
    _executor(rec).execute(plan, results)

    assert seen["n"] == 1
    assert rec.calls == [1, 1]
    assert results.search_results == []
    assert results.final_response == "answer from 1"


def test_accumulator_lists_only_grow():
    sizes: list[int] = []

    def search(action, results, job):
        results.search_results.append(SearchResult(title=action.directive))
        sizes.append(len(results.search_results))

    rec = Recorder(search=search)
    plan = _plan(*({"kind": "search", "priority": p, "directive": str(p)} for p in range(1, 6)))
    _executor(rec).execute(plan, ResultAccumulator())
    assert sizes == [1, 2, 3, 4, 5]


# ---------------------------------------------------------------------------
# Re-planning knobs and pacing
# ---------------------------------------------------------------------------

def _replan_then_dependent(clear_completed: bool):
    replacement = _plan({"kind": "respond", "priority": 2, "directive": "r", "dependencies": [1]})

    def analyze(action, results, job):
        results.request_replan(replacement)

    rec = Recorder(analyze=analyze)
    plan = _plan({"kind": "analyze", "priority": 1, "directive": "a"})
    summary = _executor(rec, clear_completed_on_replan=clear_completed).execute(
        plan, ResultAccumulator()
    )
    return rec, summary


def test_completed_set_survives_replan_by_default():
    rec, summary = _replan_then_dependent(clear_completed=False)
    assert rec.calls == [1, 2]
    assert summary.final_response_generated is True


def test_completed_set_cleared_on_replan_when_configured():
    rec, summary = _replan_then_dependent(clear_completed=True)
    assert rec.calls == [1]
    assert summary.dropped == [2]


def test_action_delay_sleeps_between_dispatches():
    rec = Recorder()
    sleep = MagicMock()
    plan = _plan(
        {"kind": "search", "priority": 1, "directive": "a"},
        {"kind": "search", "priority": 2, "directive": "b"},
    )
    Executor(handlers=rec.table, action_delay=0.5, sleep=sleep).execute(plan, ResultAccumulator())
    assert sleep.call_count == 2
    sleep.assert_called_with(0.5)


def test_missing_handler_counts_as_failure():
    plan = _plan({"kind": "search", "priority": 1, "directive": "a"})
    summary = Executor(handlers={}, action_delay=0).execute(plan, ResultAccumulator())
    assert summary.dropped == [1]


def test_unknown_action_error_raised_by_dispatch():
    executor = Executor(handlers={}, action_delay=0)
    action = Action(kind="search", priority=1, directive="a")
    with pytest.raises(UnknownActionError):
        executor._dispatch(action, ResultAccumulator(), None)


def test_max_retries_must_be_positive():
    with pytest.raises(ValueError):
        Executor(max_retries=0)
