# run.py
# Entry point. Config and wiring only; no logic lives here.
#
# Swap model strings via OPENROUTER_MODEL_1..5 for any OpenRouter-supported model.
# https://openrouter.ai/models
#
#   health-journal ask "How did my sleep affect my step count this week?" --profile <uuid>
#   health-journal jobs
#   health-journal show <job_id> <filename>

import argparse

from health_journal import display
from health_journal.artifacts import ArtifactStore
from health_journal.config import Settings
from health_journal.pipeline import build_services, run_job


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="health-journal",
        description="Research-backed health journaling answers from an LLM-authored action plan.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Run one query through the full pipeline.")
    ask.add_argument("query", nargs="+", help="The question to answer.")
    ask.add_argument("--profile", default=None, help="Profile UUID for long-term memory.")

    sub.add_parser("jobs", help="List past jobs, newest first.")

    show = sub.add_parser("show", help="Print one artifact from a past job.")
    show.add_argument("job_id")
    show.add_argument("filename")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    settings = Settings.from_env()

    if args.command == "jobs":
        display.jobs_table(ArtifactStore(settings.outputs_dir).list_jobs())
        return 0

    if args.command == "show":
        try:
            content = ArtifactStore(settings.outputs_dir).read(args.job_id, args.filename)
        except FileNotFoundError:
            display.halt(f"No file {args.filename!r} in job {args.job_id}")
            return 1
        display.file_contents(args.job_id, args.filename, content)
        return 0

    services = build_services(settings)
    display.banner(services.llm.models)
    outcome = run_job(" ".join(args.query), services, profile_id=args.profile)
    return 1 if outcome.error else 0


if __name__ == "__main__":
    raise SystemExit(main())
