"""Click CLI: loads config and personas, runs the debate, prints costs."""

import asyncio
import logging
import random
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, ModelConfig, load_config
from agora.debate import DebateError, DebateObserver, DebateSettings, run_debate
from agora.output import ConsoleEcho, make_round_writer, print_usage
from agora.personas import load_personas, select_agents
from agora.providers.base import BackendError, ChatBackend
from agora.providers.openai_provider import OpenAIBackend
from agora.tokens import TiktokenCounter
from agora.usage import summarize_usage

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

BACKEND_CLASSES: dict[str, type[ChatBackend]] = {
    "openai": OpenAIBackend,
}

_GPT4_MODEL = "gpt-4"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _determine_model(config: AppConfig, model_arg: str | None, gpt4_flag: bool) -> ModelConfig:
    """--model overrides --gpt4, which overrides the configured default."""
    if model_arg:
        name = model_arg
    elif gpt4_flag:
        name = _GPT4_MODEL
    else:
        name = config.defaults.model
    if name not in config.models:
        raise click.BadParameter(f"Unknown model '{name}'. Known: {', '.join(sorted(config.models))}")
    return config.models[name]


def _build_backend(model: ModelConfig) -> ChatBackend:
    if model.sdk not in BACKEND_CLASSES:
        raise BackendError(model.sdk, f"No backend for sdk '{model.sdk}'")
    return BACKEND_CLASSES[model.sdk](model)


def _settings_from_args(
    config: AppConfig,
    rounds: int | None,
    temperature: float | None,
    moderation_interval: int | None,
    allow_speaking_twice: bool,
) -> DebateSettings:
    """CLI flags win; settings.yaml fills in the rest."""
    defaults = config.defaults
    return DebateSettings(
        rounds=rounds if rounds is not None else defaults.rounds,
        temperature=temperature if temperature is not None else defaults.temperature,
        moderation_interval=(
            moderation_interval if moderation_interval is not None else defaults.moderation_interval
        ),
        allow_speaking_twice=allow_speaking_twice or defaults.allow_speaking_twice,
    )


@click.command()
@click.argument("problem")
@click.option("--output", "-o", "output_file", default=None, type=click.Path(dir_okay=False),
              help="JSON file to write the debate to after every round (default: from config)")
@click.option("--no-output", is_flag=True, help="Do not write a JSON file")
@click.option("--rounds", "-r", default=None, type=click.IntRange(min=1), help="Number of rounds (default: from config)")
@click.option("--temperature", "-t", default=None, type=click.FloatRange(0.0, 2.0),
              help="Sampling temperature (default: from config)")
@click.option("--gpt4", is_flag=True, help="Use GPT-4 instead of GPT-3.5")
@click.option("--model", default=None, help="Model name from settings.yaml, overrides --gpt4")
@click.option("--moderation-interval", "-m", default=None, type=click.IntRange(min=0),
              help="Rounds between moderator interjections, 0 disables them (default: from config)")
@click.option("--allow-speaking-twice", "-a", is_flag=True, help="Let an agent speak in consecutive rounds")
@click.option("--quiet", "-d", is_flag=True, help="Don't print the debate to the console")
@click.option("--agents", "agent_ids", default=None, help="Comma-separated persona ids (default: all)")
@click.option("--personas", "personas_dir", default=None, type=click.Path(file_okay=False),
              help="Persona directory (default: from config)")
@click.option("--seed", default=None, type=int, help="Random seed for moderator comments and tie-breaks")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    problem: str,
    output_file: str | None,
    no_output: bool,
    rounds: int | None,
    temperature: float | None,
    gpt4: bool,
    model: str | None,
    moderation_interval: int | None,
    allow_speaking_twice: bool,
    quiet: bool,
    agent_ids: str | None,
    personas_dir: str | None,
    seed: int | None,
    verbose: bool,
) -> None:
    """Agora -- a discussion room where personas with private thoughts debate a problem.

    \b
    Examples:
      agora "Should your creator have pizza for dinner?"
      agora "Is the unexamined life worth living?" --rounds 4 --gpt4
      agora "Cats or dogs?" --agents socrates,mark-twain -m 0 -o cats.json
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    model_cfg = _determine_model(config, model, gpt4)
    settings = _settings_from_args(config, rounds, temperature, moderation_interval, allow_speaking_twice)

    try:
        library = load_personas(Path(personas_dir) if personas_dir else config.defaults.personas_dir)
        ids = [a.strip() for a in agent_ids.split(",") if a.strip()] if agent_ids else None
        agents = select_agents(library, ids)
    except (FileNotFoundError, ValueError, KeyError) as exc:
        console.print(f"[bold red]Persona error:[/bold red] {exc}")
        sys.exit(1)

    if not agents:
        console.print("[bold red]Error:[/bold red] No personas to debate with.")
        sys.exit(1)

    if model_cfg.name not in config.available_models:
        console.print(
            f"[bold red]Error:[/bold red] No API key for {model_cfg.readable_name}. "
            f"Set {model_cfg.api_key_env} in .env."
        )
        sys.exit(1)

    try:
        backend = _build_backend(model_cfg)
    except BackendError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}. Set it in .env.")
        sys.exit(1)

    target: Path | None = None
    if not no_output:
        target = Path(output_file) if output_file else config.defaults.output_file

    console.print(
        f"\n[bold cyan]Agora[/bold cyan]: {len(agents)} agents, {settings.rounds} rounds, "
        f"{model_cfg.readable_name}"
    )
    console.print(f"Problem: [italic]{problem}[/italic]\n", highlight=False)

    try:
        transcript = asyncio.run(
            run_debate(
                problem,
                agents,
                backend,
                model_cfg,
                config.prompts,
                settings,
                rng=random.Random(seed),
                observer=DebateObserver() if quiet else ConsoleEcho(console),
                on_round_complete=make_round_writer(target) if target else None,
                counter=TiktokenCounter(model_cfg.model),
            )
        )
    except DebateError as exc:
        console.print(f"[bold red]Debate error:[/bold red] {exc}")
        sys.exit(1)

    print_usage(summarize_usage(transcript.usage, config.models, group_by_call_desc=True))
    if target:
        console.print(f"\n[dim]Debate complete! Saved to: {target}[/dim]")


if __name__ == "__main__":
    main()
