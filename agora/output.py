"""Rich console echo, cost table, and JSON transcript save for debate results."""

import json
import logging
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from agora.debate import DebateObserver
from agora.models import Agent, AgentThought, DebateTranscript
from agora.usage import UsageSummary

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


class ConsoleEcho(DebateObserver):
    """Streams thoughts and responses to the terminal as they arrive."""

    def __init__(self, target: Console | None = None) -> None:
        self._console = target or console

    def debate_started(self, opening: str) -> None:
        self._console.print(Panel(Text(opening), border_style="cyan", title="[bold cyan]Debate[/bold cyan]"))

    def round_started(self, round_index: int) -> None:
        self._console.print(Rule(f"[bold cyan]Round {round_index + 1}[/bold cyan]"))

    def moderator_interjected(self, line: str) -> None:
        self._console.print(line, style="bold yellow", markup=False, highlight=False)

    def thinking_started(self, agent: Agent) -> None:
        self._console.print(f"[dim]{agent.name} thinks:[/dim]")

    def speaking_started(self, agent: Agent) -> None:
        self._console.print(f"\n[bold]{agent.name} says:[/bold]")

    def token(self, text: str) -> None:
        self._console.print(text, end="", markup=False, highlight=False)

    def stream_finished(self) -> None:
        self._console.print()

    def speaker_selected(self, thought: AgentThought) -> None:
        self._console.print(
            f"[green]Moderator: Next speaking will be {thought.agent_name}[/green] "
            f"[dim](speakNextProb {thought.speak_next_prob:.2f})[/dim]"
        )


def print_usage(summary: UsageSummary) -> None:
    """Print per-call, per-model and total token costs as a table."""
    table = Table(title="Token usage", show_footer=False)
    table.add_column("Call")
    table.add_column("Prompt", justify="right")
    table.add_column("Response", justify="right")
    table.add_column("Total", justify="right")

    for line in summary.calls:
        table.add_row(
            line.label,
            f"{line.prompt_tokens} (${line.prompt_cost:.4f})",
            f"{line.response_tokens} (${line.response_cost:.4f})",
            f"{line.total_tokens} (${line.total_cost:.4f})",
        )
    table.add_section()
    for line in [*summary.per_model, summary.total]:
        table.add_row(
            f"[bold]{line.label}[/bold]",
            f"{line.prompt_tokens} (${line.prompt_cost:.4f})",
            f"{line.response_tokens} (${line.response_cost:.4f})",
            f"{line.total_tokens} (${line.total_cost:.4f})",
        )
    console.print(table)
    if summary.per_item_cost is not None:
        console.print(f"[dim]${summary.per_item_cost:.4f} per item[/dim]")


def transcript_to_dict(transcript: DebateTranscript) -> dict:
    return {
        "problem": transcript.problem,
        "thoughts": [[asdict(t) for t in round_thoughts] for round_thoughts in transcript.thoughts],
        "responses": [asdict(r) for r in transcript.responses],
        "history": list(transcript.history),
    }


def save_transcript(transcript: DebateTranscript, output_file: Path) -> Path:
    """Write thoughts, responses and history as indented JSON, replacing the file.

    Returns:
        Path to the saved file.
    """
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(json.dumps(transcript_to_dict(transcript), indent=2), encoding="utf-8")
    logger.debug("Debate saved to: %s", output_file)
    return output_file


def make_round_writer(output_file: Path) -> Callable[[DebateTranscript], None]:
    """Build an on_round_complete callback that saves after every round.

    Write failures are logged and swallowed so the debate keeps going.
    """

    def write(transcript: DebateTranscript) -> None:
        try:
            save_transcript(transcript, output_file)
        except OSError as exc:
            logger.warning("Could not save debate to %s: %s", output_file, exc)

    return write
