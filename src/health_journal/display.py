# display.py
# All terminal output for the health-journal pipeline.
#
# This module owns presentation entirely. No other module formats strings
# for the console; they call named functions here.
#
# Colour language:
#   cyan    - scheduling / routing events
#   blue    - model calls and responses
#   yellow  - deferrals, retries, fallbacks
#   green   - success / confirmed
#   red     - drops, failures, job errors
#   magenta - handler internals (search, device, memory)

import json

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from health_journal.models import Action, ExecutionSummary, Plan

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _job(job_id: str | None) -> str:
    return f"[dim]\\[job {job_id}][/dim] " if job_id else ""


# ---------------------------------------------------------------------------
# Pipeline entry
# ---------------------------------------------------------------------------


def banner(models: list[str]) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Health Journal[/bold cyan]\n"
            "[dim]Research-backed answers from an LLM-authored action plan[/dim]\n\n"
            f"[dim]Models :[/dim] [white]{', '.join(models) or 'none configured'}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(job_id: str, query: str) -> None:
    console.print()
    console.print(Rule(f"[cyan]JOB {job_id}[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{query}[/white]",
            title=_label("USER QUERY", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Model calls
# ---------------------------------------------------------------------------


def model_attempt(task: str, index: int, total: int, model: str) -> None:
    console.print(
        f"  [blue]{task}[/blue] [dim]→ model {index + 1}/{total}:[/dim] [white]{model}[/white]"
    )


def model_succeeded(task: str, model: str) -> None:
    console.print(f"  [bold green]✓ {task}[/bold green] [dim]answered by {model}[/dim]")


def model_failed(task: str, model: str, reason: str) -> None:
    console.print(
        f"  [yellow]↳ {task}: {model} failed[/yellow] [dim]{_mono(reason, 160)}[/dim]"
    )


def all_models_failed(task: str, count: int) -> None:
    console.print(
        Panel(
            f"[bold red]All {count} model(s) failed for {task}.[/bold red]",
            title=_label("MODEL FALLBACK EXHAUSTED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def breakdown_retry(attempt: int, max_attempts: int) -> None:
    console.print(
        f"  [yellow]↳ Breakdown sentinel missing — retrying "
        f"({attempt}/{max_attempts})…[/yellow]"
    )


def plan_parsed(plan: Plan, title: str = "PLAN PARSED") -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Pri", justify="center", width=4)
    table.add_column("Kind", style="bold white", width=15)
    table.add_column("Deps", style="dim white", width=12)
    table.add_column("Directive", style="white")

    for action in plan.ordered():
        table.add_row(
            str(action.priority),
            action.kind.value,
            json.dumps(action.dependencies),
            _mono(action.directive or "—", 80),
        )

    console.print(
        Panel(
            table,
            title=_label(title, "cyan"),
            subtitle=f"[dim]{len(plan)} action(s)[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def plan_rejected(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]Plan rejected.[/bold red]\n\n[white]{reason}[/white]",
            title=_label("PLAN REJECTED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Execution loop
# ---------------------------------------------------------------------------


def execution_start(job_id: str | None, total: int, max_retries: int) -> None:
    console.print()
    console.print(
        Rule(
            f"[cyan]EXECUTION — {total} action(s), max {max_retries} attempt(s) each[/cyan]",
            style="cyan",
        )
    )
    if job_id:
        console.print(f"  {_job(job_id)}")


def action_considered(action: Action, attempt: int, max_retries: int) -> None:
    console.print()
    console.print(
        f"[bold cyan]  {action.label}[/bold cyan]  "
        f"[dim]attempt {attempt + 1}/{max_retries}[/dim]  "
        f"[white]{_mono(action.directive or '', 100)}[/white]"
    )


def action_deferred(action: Action, unmet: list[int], attempt: int, max_retries: int) -> None:
    console.print(
        f"  [yellow]↳ Deferred[/yellow] [dim]unmet dependencies {unmet} "
        f"(retry {attempt}/{max_retries})[/dim]"
    )


def action_retrying(action: Action, error: Exception, attempt: int, max_retries: int) -> None:
    console.print(
        f"  [yellow]↳ {type(error).__name__}:[/yellow] [white]{_mono(str(error), 140)}[/white] "
        f"[dim]retrying ({attempt}/{max_retries})[/dim]"
    )


def action_dropped(action: Action, reason: str) -> None:
    console.print(f"  [bold red]✗ Dropped {action.label}[/bold red]  [dim]{_mono(reason, 160)}[/dim]")


def action_completed(action: Action) -> None:
    console.print(f"  [bold green]✓ Completed {action.label}[/bold green]")


def replan_installed(plan: Plan, discarded: int) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]Replacement plan installed.[/bold white]\n"
            f"[dim]Discarded {discarded} queued action(s); "
            f"{len(plan)} new action(s) enqueued.[/dim]",
            title=_label("RE-PLANNING", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )
    plan_parsed(plan, title="REPLACEMENT PLAN")


def handler_note(message: str) -> None:
    console.print(f"  [magenta]•[/magenta] [dim white]{_mono(message, 200)}[/dim white]")


def execution_summary(summary: ExecutionSummary) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Metric", width=28)
    table.add_column("Value", style="dim white")

    def mark(flag: bool) -> str:
        return "[bold green]✓[/bold green]" if flag else "[bold red]✗[/bold red]"

    table.add_row("Actions considered", str(summary.total_actions))
    table.add_row("Search results found", str(summary.search_results_found))
    table.add_row("Analysis completed", mark(summary.analysis_completed))
    table.add_row("Synthesis completed", mark(summary.synthesis_completed))
    table.add_row("Final response generated", mark(summary.final_response_generated))
    table.add_row("Activity retrieved", mark(summary.activity_retrieved))
    table.add_row("Sleep retrieved", mark(summary.sleep_retrieved))
    table.add_row("Replans", str(summary.replans))
    table.add_row("Dropped", json.dumps(summary.dropped))

    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{result}[/white]",
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("JOB FAILED", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


def jobs_table(jobs: list[dict]) -> None:
    table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan", padding=(0, 1))
    table.add_column("Job", style="bold white")
    table.add_column("Files", justify="right")
    table.add_column("Created", style="dim")
    for job in jobs:
        table.add_row(job["job_id"], str(job["file_count"]), job["created"])
    console.print(table)


def file_contents(job_id: str, filename: str, content: str) -> None:
    console.print(
        Panel(
            content,
            title=_label(f"{job_id}/{filename}", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )
