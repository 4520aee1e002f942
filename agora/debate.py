"""Debate orchestration: per-round thought collection, speaker selection, responses."""

import logging
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from config.config_loader import ModelConfig, PromptsConfig
from agora.agents import process_response, process_thoughts
from agora.models import Agent, AgentThought, DebateTranscript
from agora.providers.base import ChatBackend
from agora.tokens import TokenCounter

logger = logging.getLogger(__name__)

MODERATOR_LABEL = "Moderator: "


class DebateError(RuntimeError):
    """Raised when the debate cannot continue, e.g. nobody is eligible to speak."""


@dataclass
class DebateSettings:
    rounds: int = 10
    temperature: float = 0.5
    moderation_interval: int = 4   # 0 disables moderator interjections
    allow_speaking_twice: bool = False


class DebateObserver:
    """Receives progress of a running debate. Every hook is a no-op by default."""

    def debate_started(self, opening: str) -> None:
        pass

    def round_started(self, round_index: int) -> None:
        pass

    def moderator_interjected(self, line: str) -> None:
        pass

    def thinking_started(self, agent: Agent) -> None:
        pass

    def speaking_started(self, agent: Agent) -> None:
        pass

    def token(self, text: str) -> None:
        pass

    def stream_finished(self) -> None:
        pass

    def speaker_selected(self, thought: AgentThought) -> None:
        pass


def select_speaker(
    thoughts: Sequence[AgentThought],
    previous_speaker: str | None,
    rng: random.Random,
) -> AgentThought:
    """Highest speak_next_prob wins; equal probabilities are ordered at random.

    Thoughts of previous_speaker are never eligible. Pass None to allow anyone.
    """
    candidates = [t for t in thoughts if t.agent_name != previous_speaker]
    if not candidates:
        raise DebateError("No agent is eligible to speak; need at least 2 agents when speaking twice is disallowed")
    ranked = sorted(candidates, key=lambda t: (-t.speak_next_prob, rng.random()))
    return ranked[0]


def moderator_due(round_index: int, interval: int) -> bool:
    return interval > 0 and round_index > 0 and round_index % interval == 0


async def run_debate(
    problem: str,
    agents: Sequence[Agent],
    backend: ChatBackend,
    model: ModelConfig,
    prompts: PromptsConfig,
    settings: DebateSettings,
    *,
    rng: random.Random | None = None,
    observer: DebateObserver | None = None,
    on_round_complete: Callable[[DebateTranscript], None] | None = None,
    counter: TokenCounter | None = None,
) -> DebateTranscript:
    """Run the full debate across all rounds.

    Args:
        problem: The topic being debated.
        agents: Roster, in thought-collection order.
        backend: Chat backend every agent call goes through.
        model: Model properties for every call.
        prompts: Prompt templates and the moderator comment pool.
        settings: Rounds, temperature, moderator cadence, anti-repetition.
        rng: Source for moderator comments and tie-breaks. Seed it for
            reproducible speaker order.
        observer: Console echo or other progress sink.
        on_round_complete: Called with the transcript after every round.
            Exceptions it raises are logged and do not stop the debate.
        counter: Token counter passed down to every call.

    Returns:
        The transcript: history lines, thoughts per round, one response per round.

    Raises:
        DebateError: If no agent is eligible to speak in some round.
    """
    if not agents:
        raise DebateError("A debate needs at least one agent")

    rng = rng or random.Random()
    observer = observer or DebateObserver()
    by_name = {agent.name: agent for agent in agents}

    transcript = DebateTranscript(problem=problem)
    transcript.history.append(
        prompts.opening.format(problem=problem, names=", ".join(a.name for a in agents))
    )
    observer.debate_started(transcript.history[0])

    previous_speaker: str | None = None

    for round_index in range(settings.rounds):
        logger.info("Starting round %d of %d", round_index + 1, settings.rounds)
        observer.round_started(round_index)

        if moderator_due(round_index, settings.moderation_interval) and prompts.moderator_comments:
            line = MODERATOR_LABEL + rng.choice(prompts.moderator_comments)
            transcript.history.append(line)
            logger.info("Moderator interjects before round %d", round_index + 1)
            observer.moderator_interjected(line)

        excluded = None if settings.allow_speaking_twice else previous_speaker
        # Every agent reads the same snapshot; history changes only after selection.
        snapshot = tuple(transcript.history)

        thoughts: list[AgentThought] = []
        for agent in agents:
            if agent.name == excluded:
                continue
            observer.thinking_started(agent)
            thought = await process_thoughts(
                agent,
                problem,
                snapshot,
                backend=backend,
                model=model,
                prompts=prompts,
                temperature=settings.temperature,
                usage=transcript.usage,
                on_token=observer.token,
                counter=counter,
            )
            observer.stream_finished()
            thoughts.append(thought)
        transcript.thoughts.append(thoughts)

        chosen = select_speaker(thoughts, excluded, rng)
        logger.info("Next speaker: %s (speakNextProb %.2f)", chosen.agent_name, chosen.speak_next_prob)
        observer.speaker_selected(chosen)

        speaker = by_name[chosen.agent_name]
        observer.speaking_started(speaker)
        response = await process_response(
            speaker,
            snapshot,
            chosen.thoughts,
            backend=backend,
            model=model,
            prompts=prompts,
            temperature=settings.temperature,
            usage=transcript.usage,
            on_token=observer.token,
            counter=counter,
        )
        observer.stream_finished()

        transcript.responses.append(response)
        if response.response:
            transcript.history.append(response.response)
        else:
            logger.warning("Round %d: %s produced no response", round_index + 1, speaker.name)

        if on_round_complete:
            try:
                on_round_complete(transcript)
            except Exception as exc:
                logger.error("Round %d output failed: %s", round_index + 1, exc)

        previous_speaker = speaker.name

    return transcript
