"""Rich console rendering of a live review, plus markdown/JSON export of the result."""

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.text import Text

from magpie.debate import OperatorAction, parse_operator_input
from magpie.models import CONVERGENCE_CHECK_ID, Phase, RunResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

OUTPUT_FORMATS = ("markdown", "json")
USAGE_NOTE = "Excludes convergence checks and operator interjections."


class StreamPrinter:
    """Observer callbacks for DebateCoordinator that render to the console."""

    def __init__(
        self,
        max_rounds: int,
        analyzer_id: str = "analyzer",
        summarizer_id: str = "summarizer",
        out: Console | None = None,
    ) -> None:
        self._console = out or console
        self._max_rounds = max_rounds
        self._analyzer_id = analyzer_id
        self._summarizer_id = summarizer_id
        self._status: Status | None = None
        self._speaker: str | None = None
        self._round = 1
        self._debate_over = max_rounds == 0

    def _stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def _waiting_label(self, participant_id: str) -> str:
        if participant_id == self._analyzer_id:
            return "Analyzing changes..."
        if participant_id == self._summarizer_id:
            return "Generating final conclusion..."
        if participant_id == CONVERGENCE_CHECK_ID:
            return "Checking convergence..."
        return f"{participant_id} is thinking..."

    def on_waiting(self, participant_id: str) -> None:
        self._stop_status()
        self._speaker = None  # every turn gets its own header
        self._status = self._console.status(self._waiting_label(participant_id))
        self._status.start()

    def _print_header(self, participant_id: str) -> None:
        if participant_id == self._analyzer_id:
            self._console.print(Rule("[bold magenta]Analysis[/bold magenta]"))
        elif participant_id == self._summarizer_id:
            self._console.print(Rule("[bold green]Synthesis[/bold green]"))
        elif self._debate_over:
            self._console.print(f"\n[bold cyan]┌─ {participant_id}[/bold cyan] [dim]\\[summary][/dim]")
        else:
            self._console.print(
                f"\n[bold cyan]┌─ {participant_id}[/bold cyan] "
                f"[dim]\\[Round {self._round}/{self._max_rounds}][/dim]"
            )

    def on_message(self, participant_id: str, fragment: str) -> None:
        self._stop_status()
        if participant_id != self._speaker:
            self._speaker = participant_id
            self._print_header(participant_id)
        self._console.print(fragment, end="", markup=False, highlight=False, soft_wrap=True)

    def on_round_complete(self, round_number: int, converged: bool) -> None:
        self._stop_status()
        self._console.print()
        if converged:
            self._console.print(
                f"\n[bold green]Round {round_number}/{self._max_rounds} - CONSENSUS REACHED[/bold green]"
            )
            self._console.print("[green]   Stopping early to save tokens.[/green]\n")
            self._debate_over = True
        else:
            self._console.print(f"[dim]── Round {round_number}/{self._max_rounds} complete ──[/dim]\n")
        self._round = round_number + 1
        if self._round > self._max_rounds:
            self._debate_over = True

    async def on_interactive(self) -> str | None:
        self._stop_status()
        answer = await asyncio.to_thread(
            self._console.input,
            "\n[yellow]Press Enter to continue, type to interject, or q to end: [/yellow]",
        )
        if parse_operator_input(answer)[0] is OperatorAction.QUIT:
            self._debate_over = True
        return answer or None

    def close(self) -> None:
        self._stop_status()


def print_conclusion(result: RunResult, out: Console | None = None) -> None:
    out = out or console
    out.print(Rule("[bold green]Final Conclusion[/bold green]"))
    out.print(Markdown(result.final_conclusion))
    notes = [f"Rounds: {result.rounds_run}", f"Duration: {result.total_duration_sec:.1f}s"]
    if result.converged_at_round is not None:
        notes.append(f"Converged at round {result.converged_at_round}")
    if result.interrupted:
        notes.append("Ended early by operator")
    out.print(Text(" | ".join(notes), style="dim"))


def print_usage(result: RunResult, out: Console | None = None) -> None:
    """Token usage table with a totals row."""
    out = out or console
    table = Table(
        title="Token Usage (Estimated)",
        title_style="dim",
        caption=USAGE_NOTE,
        caption_style="dim",
        show_footer=True,
    )
    total_in = sum(u.input_tokens for u in result.usage)
    total_out = sum(u.output_tokens for u in result.usage)
    total_cost = sum(u.estimated_cost for u in result.usage)
    table.add_column("Participant", footer="Total")
    table.add_column("Input", justify="right", footer=f"{total_in:,}")
    table.add_column("Output", justify="right", footer=f"{total_out:,}")
    table.add_column("Cost", justify="right", footer=f"~${total_cost:.4f}")
    for usage in result.usage:
        table.add_row(
            usage.participant_id,
            f"{usage.input_tokens:,}",
            f"{usage.output_tokens:,}",
            f"${usage.estimated_cost:.4f}",
        )
    out.print(table)


def format_markdown(result: RunResult) -> str:
    lines: list[str] = [
        f"# Code Review: {result.subject_id}",
        "",
        "## Analysis",
        "",
        result.analysis,
        "",
        "## Debate",
        "",
    ]
    for turn in result.transcript:
        if turn.phase is not Phase.DEBATE:
            continue
        round_label = f" (Round {turn.round})" if turn.round is not None else ""
        lines += [f"### {turn.participant_id}{round_label}", "", turn.content, ""]

    lines += ["## Summaries", ""]
    for summary in result.summaries:
        lines += [f"### {summary.reviewer_id}", "", summary.summary, ""]

    lines += ["## Final Conclusion", "", result.final_conclusion, ""]

    if result.converged_at_round is not None:
        lines += [f"*Converged at round {result.converged_at_round}.*", ""]

    lines += [
        "## Token Usage (Estimated)",
        "",
        f"*{USAGE_NOTE}*",
        "",
        "| Participant | Input | Output | Cost |",
        "|---|---:|---:|---:|",
    ]
    for usage in result.usage:
        lines.append(
            f"| {usage.participant_id} | {usage.input_tokens} | {usage.output_tokens} "
            f"| ${usage.estimated_cost:.4f} |"
        )
    lines.append("")
    return "\n".join(lines)


def format_json(result: RunResult) -> str:
    return json.dumps(asdict(result), indent=2, ensure_ascii=False)


def save_result(result: RunResult, path: Path, fmt: str = "markdown") -> Path:
    """Write the result as markdown or JSON.

    Raises:
        ValueError: On an unknown format.
    """
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unknown output format '{fmt}', expected one of {', '.join(OUTPUT_FORMATS)}")

    path.parent.mkdir(parents=True, exist_ok=True)
    text = format_json(result) if fmt == "json" else format_markdown(result)
    path.write_text(text, encoding="utf-8")
    logger.info("Review saved to: %s", path)
    return path
