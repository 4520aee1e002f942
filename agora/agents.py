"""Agent turn pipeline: private thoughts with a speak-next probability, then a public response."""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Callable, Sequence

from config.config_loader import ModelConfig, PromptsConfig
from agora.models import (
    Agent,
    AgentResponse,
    AgentThought,
    CallStatistics,
    Message,
    PromptTokenCount,
    ResponseTokenCount,
    StreamError,
    TokenDelta,
)
from agora.providers.base import ChatBackend
from agora.session import stream_chat
from agora.tokens import TokenCounter

logger = logging.getLogger(__name__)

SPEAK_NEXT_PROB_TOKEN = "speakNextProb"
STYLE_EXAMPLE_CHARS = 2000

_PROB_PATTERN = re.compile(rf"{SPEAK_NEXT_PROB_TOKEN}:\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)

TokenCallback = Callable[[str], None]


def speaking_label(agent: Agent) -> str:
    return f"{agent.name}: "


def project_history(history: Sequence[str], agent: Agent) -> list[Message]:
    """View the shared history from one agent's seat.

    Lines carrying the agent's own ``name:`` marker become assistant turns,
    everything else user turns. Returns new messages; history is untouched.
    """
    marker = f"{agent.name}:".lower()
    return [
        Message("assistant" if marker in line.lower() else "user", line)
        for line in history
    ]


def build_thought_messages(
    agent: Agent,
    history: Sequence[str],
    problem: str,
    prompts: PromptsConfig,
) -> list[Message]:
    conversation = project_history(history, agent)
    if not conversation:
        conversation = [Message("user", prompts.opening.format(problem=problem, names=agent.name))]

    return [
        Message("system", prompts.thoughts_system.format(name=agent.name, bio=agent.bio)),
        *conversation,
        Message(
            "user",
            prompts.thoughts_request.format(
                problem=problem,
                name=agent.name,
                prob_token=SPEAK_NEXT_PROB_TOKEN,
                label=speaking_label(agent),
            ),
        ),
    ]


def build_response_messages(
    agent: Agent,
    history: Sequence[str],
    thoughts: str,
    prompts: PromptsConfig,
) -> list[Message]:
    return [
        Message(
            "system",
            prompts.response_system.format(
                name=agent.name,
                style_example=agent.style_example[:STYLE_EXAMPLE_CHARS],
                style_summary=agent.style_summary,
            ),
        ),
        *project_history(history, agent),
        Message("user", prompts.response_request.format(name=agent.name, thoughts=thoughts)),
    ]


def parse_thoughts(agent_name: str, raw: str) -> AgentThought:
    """Split raw model output into thoughts and a speak-next probability.

    The probability is clamped to [0, 1]. Without a match it is 0 and the
    whole output counts as thoughts.
    """
    match = _PROB_PATTERN.search(raw)
    if not match:
        return AgentThought(agent_name=agent_name, speak_next_prob=0.0, thoughts=raw)

    prob = min(1.0, max(0.0, float(match.group(1))))
    return AgentThought(
        agent_name=agent_name,
        speak_next_prob=prob,
        thoughts=raw[:match.start()].strip(),
    )


async def _relay(
    events: AsyncIterator,
    statistics: CallStatistics | None,
) -> AsyncIterator[TokenDelta | StreamError]:
    async for event in events:
        if isinstance(event, (TokenDelta, StreamError)):
            yield event
        elif statistics is not None and isinstance(event, PromptTokenCount):
            statistics.prompt_tokens = event.token_count
        elif statistics is not None and isinstance(event, ResponseTokenCount):
            statistics.response_tokens = event.token_count


async def stream_thoughts(
    agent: Agent,
    history: Sequence[str],
    problem: str,
    *,
    backend: ChatBackend,
    model: ModelConfig,
    prompts: PromptsConfig,
    temperature: float,
    statistics: CallStatistics | None = None,
    cancel: asyncio.Event | None = None,
    counter: TokenCounter | None = None,
) -> AsyncIterator[TokenDelta | StreamError]:
    """Stream the agent's private thoughts. Errors are yielded, not raised."""
    messages = build_thought_messages(agent, history, problem, prompts)
    events = stream_chat(
        messages,
        model,
        backend,
        correlation_id=f"thoughts:{agent.name}",
        cancel=cancel,
        temperature=temperature,
        counter=counter,
    )
    async for event in _relay(events, statistics):
        yield event


async def stream_response(
    agent: Agent,
    history: Sequence[str],
    thoughts: str,
    *,
    backend: ChatBackend,
    model: ModelConfig,
    prompts: PromptsConfig,
    temperature: float,
    statistics: CallStatistics | None = None,
    cancel: asyncio.Event | None = None,
    counter: TokenCounter | None = None,
) -> AsyncIterator[TokenDelta | StreamError]:
    """Stream the agent's public response, led by its speaking label."""
    messages = build_response_messages(agent, history, thoughts, prompts)
    yield TokenDelta(speaking_label(agent))
    events = stream_chat(
        messages,
        model,
        backend,
        correlation_id=f"response:{agent.name}",
        cancel=cancel,
        temperature=temperature,
        counter=counter,
    )
    async for event in _relay(events, statistics):
        yield event


async def process_thoughts(
    agent: Agent,
    problem: str,
    history: Sequence[str],
    *,
    backend: ChatBackend,
    model: ModelConfig,
    prompts: PromptsConfig,
    temperature: float,
    usage: list[CallStatistics] | None = None,
    on_token: TokenCallback | None = None,
    counter: TokenCounter | None = None,
) -> AgentThought:
    """Collect one agent's thoughts. A failed call yields probability 0 and no thoughts."""
    statistics = CallStatistics(model=model.name, call_desc=f"thoughts:{agent.name}")
    raw = ""
    failure: StreamError | None = None
    async for event in stream_thoughts(
        agent, history, problem,
        backend=backend, model=model, prompts=prompts, temperature=temperature,
        statistics=statistics, counter=counter,
    ):
        if isinstance(event, TokenDelta):
            raw += event.token
            if on_token:
                on_token(event.token)
        else:
            failure = event

    if usage is not None:
        usage.append(statistics)

    if failure is not None:
        logger.warning(
            "Thoughts from %s failed with %s (retryable: %s)",
            agent.name, failure.kind.value, failure.retryable,
        )
        return AgentThought(agent_name=agent.name, speak_next_prob=0.0, thoughts="")

    return parse_thoughts(agent.name, raw)


async def process_response(
    agent: Agent,
    history: Sequence[str],
    thoughts: str,
    *,
    backend: ChatBackend,
    model: ModelConfig,
    prompts: PromptsConfig,
    temperature: float,
    usage: list[CallStatistics] | None = None,
    on_token: TokenCallback | None = None,
    counter: TokenCounter | None = None,
) -> AgentResponse:
    """Collect one agent's public response. A failed call yields an empty response."""
    statistics = CallStatistics(model=model.name, call_desc=f"response:{agent.name}")
    text = ""
    failure: StreamError | None = None
    async for event in stream_response(
        agent, history, thoughts,
        backend=backend, model=model, prompts=prompts, temperature=temperature,
        statistics=statistics, counter=counter,
    ):
        if isinstance(event, TokenDelta):
            text += event.token
            if on_token:
                on_token(event.token)
        else:
            failure = event

    if usage is not None:
        usage.append(statistics)

    if failure is not None:
        logger.warning(
            "Response from %s failed with %s (retryable: %s)",
            agent.name, failure.kind.value, failure.retryable,
        )
        return AgentResponse(agent_name=agent.name, response="")

    return AgentResponse(agent_name=agent.name, response=text)
