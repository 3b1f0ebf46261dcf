# executor.py
# Action-plan scheduler.
#
# The executor owns all control flow for one job's plan: ordering, dependency
# deferral, bounded retries, and hot-swapping the queue when a handler asks
# for a replacement plan. Handlers only mutate the ResultAccumulator.
#
# Control flow:
#   stable sort by priority → pop front → dependency gate
#   → dispatch → completed-set / retry / drop → replan check → repeat
#
# Dispatch is strictly sequential. The accumulator has no locking; running
# one action at a time is what keeps it consistent.

import time
from collections import deque
from typing import Callable

from health_journal import display
from health_journal.errors import UnknownActionError
from health_journal.handlers import HANDLERS, Handler, JobContext
from health_journal.models import (
    Action,
    ActionKind,
    ExecutionSummary,
    Plan,
    ResultAccumulator,
)

DEFAULT_MAX_RETRIES = 3
DEFAULT_ACTION_DELAY = 1.0


class Executor:
    """
    Runs a Plan against a shared ResultAccumulator.

    Deferrals (unmet dependencies) and failed dispatches draw on one attempt
    budget per action, keyed by priority. An action is dispatched at most
    max_retries times and deferred at most max_retries times before it is
    dropped.

    Example:
        executor = Executor(max_retries=3, action_delay=1.0)
        summary = executor.execute(plan, ResultAccumulator(profile_id=pid), job)
    """

    def __init__(
        self,
        handlers: dict[ActionKind, Handler] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        action_delay: float = DEFAULT_ACTION_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clear_completed_on_replan: bool = False,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._handlers = HANDLERS if handlers is None else handlers
        self._max_retries = max_retries
        self._action_delay = action_delay
        self._sleep = sleep
        self._clear_completed_on_replan = clear_completed_on_replan

    @property
    def max_retries(self) -> int:
        return self._max_retries

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, action: Action, results: ResultAccumulator, job: JobContext | None) -> None:
        handler = self._handlers.get(action.kind)
        if handler is None:
            raise UnknownActionError(f"No handler registered for '{action.kind.value}'")
        handler(action, results, job)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def execute(
        self,
        plan: Plan,
        results: ResultAccumulator,
        job: JobContext | None = None,
    ) -> ExecutionSummary:
        """
        Run every action in the plan (and any replacement plans) to completion.

        Never raises for handler failures: a failing action is retried and
        then dropped, and the job carries on with what has accumulated.
        """
        job_id = job.job_id if job else None
        queue: deque[Action] = deque(plan.ordered())
        completed: set[int] = set()
        attempts: dict[int, int] = {}
        executed: list[int] = []
        dropped: list[int] = []
        total = len(queue)
        replans = 0

        if queue:
            display.execution_start(job_id, total, self._max_retries)

        while queue:
            action = queue.popleft()
            count = attempts.get(action.priority, 0)
            display.action_considered(action, count, self._max_retries)

            # ── Dependency gate ──────────────────────────────────────
            unmet = [dep for dep in action.dependencies if dep not in completed]
            if unmet:
                if count < self._max_retries:
                    attempts[action.priority] = count + 1
                    display.action_deferred(action, unmet, count + 1, self._max_retries)
                    queue.append(action)
                else:
                    display.action_dropped(
                        action, f"dependencies {unmet} unmet after {self._max_retries} deferrals"
                    )
                    dropped.append(action.priority)
                continue

            # ── Dispatch ─────────────────────────────────────────────
            try:
                self._dispatch(action, results, job)
            except Exception as exc:
                if count + 1 < self._max_retries:
                    attempts[action.priority] = count + 1
                    display.action_retrying(action, exc, count + 1, self._max_retries)
                    queue.append(action)
                else:
                    display.action_dropped(
                        action, f"failed after {self._max_retries} attempts: {exc}"
                    )
                    dropped.append(action.priority)
            else:
                completed.add(action.priority)
                executed.append(action.priority)
                display.action_completed(action)

            # ── Re-planning check ────────────────────────────────────
            replacement = results.take_replan()
            if replacement is not None:
                display.replan_installed(replacement, discarded=len(queue))
                queue = deque(replacement.ordered())
                attempts.clear()
                if self._clear_completed_on_replan:
                    completed.clear()
                total += len(replacement)
                replans += 1

            if self._action_delay:
                self._sleep(self._action_delay)

        summary = ExecutionSummary.from_results(
            results,
            total_actions=total,
            executed=executed,
            dropped=dropped,
            replans=replans,
        )
        if total:
            display.execution_summary(summary)
        return summary
