"""Click CLI: loads config, builds the panel, resolves the target, runs the review."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from config.config_loader import AppConfig, ConfigError, init_config, load_config
from magpie.convergence import BackendConvergenceJudge
from magpie.debate import DebateCoordinator, TurnError
from magpie.healthcheck import run_health_checks
from magpie.models import DebateOptions, Participant, ReviewSubject, RunResult
from magpie.output import OUTPUT_FORMATS, StreamPrinter, print_conclusion, print_usage, save_result
from magpie.providers.base import ChatProvider, ProviderError
from magpie.providers.factory import create_provider
from magpie.targets import TargetError, build_subject

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

ANALYZER_ID = "analyzer"
SUMMARIZER_ID = "summarizer"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_participants(config: AppConfig) -> tuple[Participant, list[Participant], Participant]:
    """Returns (analyzer, reviewers, summarizer). Providers are shared per model."""
    cache: dict[str, ChatProvider] = {}

    def provider_for(model: str) -> ChatProvider:
        if model not in cache:
            cache[model] = create_provider(model, config)
        return cache[model]

    analyzer = Participant(ANALYZER_ID, provider_for(config.analyzer.model), config.analyzer.prompt)
    reviewers = [
        Participant(rid, provider_for(rcfg.model), rcfg.prompt)
        for rid, rcfg in config.reviewers.items()
    ]
    summarizer = Participant(SUMMARIZER_ID, provider_for(config.summarizer.model), config.summarizer.prompt)
    return analyzer, reviewers, summarizer


def _resolve_options(
    config: AppConfig,
    rounds: int | None,
    interactive: bool,
    converge: bool | None,
) -> DebateOptions:
    """CLI flag > config default. Convergence runs only if neither side disables it."""
    return DebateOptions(
        max_rounds=rounds if rounds is not None else config.defaults.max_rounds,
        interactive=interactive,
        check_convergence=config.defaults.check_convergence and converge is not False,
    )


def _distinct_providers(participants: list[Participant]) -> dict[str, ChatProvider]:
    """One entry per backend instance, labelled by its model."""
    providers: dict[str, ChatProvider] = {}
    for p in participants:
        providers.setdefault(p.backend.model_string(), p.backend)
    return providers


async def _check_providers(participants: list[Participant]) -> None:
    """Ping every backend; exit if any fails, since a failed turn aborts the whole review."""
    console.print("\n[bold]Checking providers...[/bold]")
    results = await run_health_checks(_distinct_providers(participants))

    failed: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")
            failed.append(name)

    if failed:
        console.print(
            f"\n[bold red]Error:[/bold red] {len(failed)} provider(s) failed: {', '.join(failed)}. "
            "Fix the config or pass --skip-health-check."
        )
        sys.exit(1)
    console.print()


async def _run_review(
    subject: ReviewSubject,
    analyzer: Participant,
    reviewers: list[Participant],
    summarizer: Participant,
    options: DebateOptions,
    convergence_prompt: str,
    check_health: bool = True,
) -> RunResult:
    if check_health:
        await _check_providers([analyzer, *reviewers, summarizer])

    printer = StreamPrinter(options.max_rounds, analyzer_id=analyzer.id, summarizer_id=summarizer.id)
    coordinator = DebateCoordinator(
        analyzer,
        reviewers,
        summarizer,
        options,
        convergence_judge=BackendConvergenceJudge(analyzer, convergence_prompt),
        on_waiting=printer.on_waiting,
        on_message=printer.on_message,
        on_round_complete=printer.on_round_complete,
        on_interactive=printer.on_interactive if options.interactive else None,
    )
    try:
        return await coordinator.run(subject)
    finally:
        printer.close()


@click.group()
def main() -> None:
    """Magpie -- multi-reviewer AI code review debate."""


@main.command("init")
@click.option("--dir", "base_dir", default=None, type=click.Path(file_okay=False),
              help="Directory to create .magpie/config.yaml in (default: home)")
def init_command(base_dir: str | None) -> None:
    """Write a starter config to ~/.magpie/config.yaml."""
    try:
        path = init_config(base_dir)
    except FileExistsError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    console.print(f"[green]Created config:[/green] {path}")
    console.print("Set ANTHROPIC_API_KEY / OPENAI_API_KEY / GOOGLE_API_KEY in your environment or .env.")


@main.command("review")
@click.argument("pr", required=False)
@click.option("-c", "--config", "config_path", default=None, help="Path to config file")
@click.option("-r", "--rounds", default=None, type=click.IntRange(min=0),
              help="Maximum debate rounds (default: from config)")
@click.option("-i", "--interactive", is_flag=True, help="Pause between turns to continue, interject, or quit")
@click.option("-o", "--output", "output_path", default=None, type=click.Path(dir_okay=False),
              help="Also write the result to this file")
@click.option("-f", "--format", "output_format", default=None, type=click.Choice(OUTPUT_FORMATS),
              help="Output file format (default: from config)")
@click.option("--converge/--no-converge", default=None,
              help="Stop early when reviewers reach consensus (default: from config)")
@click.option("-l", "--local", is_flag=True, help="Review local uncommitted changes")
@click.option("-b", "--branch", is_flag=False, flag_value="", default=None,
              help="Review current branch vs BASE (default base: origin HEAD)")
@click.option("--files", multiple=True, help="Review specific files (repeatable)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def review_command(
    pr: str | None,
    config_path: str | None,
    rounds: int | None,
    interactive: bool,
    output_path: str | None,
    output_format: str | None,
    converge: bool | None,
    local: bool,
    branch: str | None,
    files: tuple[str, ...],
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Review code changes with a panel of AI reviewers.

    \b
    Examples:
      magpie review 123
      magpie review --local --rounds 2
      magpie review --branch main --no-converge
      magpie review --files src/app.py --files src/db.py -o review.md
      magpie review --local -i -f json -o review.json
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so model output containing
    # Unicode chars doesn't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config(config_path)
        analyzer, reviewers, summarizer = _build_participants(config)
        subject = build_subject(pr, local=local, branch=branch, files=list(files) or None)
    except (FileNotFoundError, ConfigError, ProviderError, TargetError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    options = _resolve_options(config, rounds, interactive, converge)
    fmt = output_format or config.defaults.output_format

    console.print(f"\n[bold white on blue] {subject.subject_id} Review [/bold white on blue]")
    console.print(f"[dim]├─ Reviewers: {', '.join(r.id for r in reviewers)}[/dim]")
    console.print(f"[dim]├─ Max rounds: {options.max_rounds}[/dim]")
    console.print(f"[dim]└─ Convergence: {'enabled' if options.check_convergence else 'disabled'}[/dim]")

    try:
        result = asyncio.run(
            _run_review(
                subject, analyzer, reviewers, summarizer, options, config.convergence_prompt,
                check_health=not skip_health_check,
            )
        )
    except (TurnError, ProviderError) as exc:
        console.print(f"\n[bold red]Review failed:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    console.print()
    print_conclusion(result)
    print_usage(result)

    if output_path:
        saved = save_result(result, Path(output_path), fmt)
        console.print(f"\n[green]Output saved to:[/green] {saved}")


if __name__ == "__main__":
    main()
