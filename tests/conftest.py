"""Shared pytest fixtures."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, PromptsConfig
from agora.models import Agent, Message
from agora.providers.base import ChatBackend, ChatRequest


class WordCounter:
    """Deterministic stand-in tokenizer: one token per whitespace-separated word."""

    def count(self, text: str) -> int:
        return len(text.split())


def sse_record(token: str) -> bytes:
    payload = {"choices": [{"index": 0, "delta": {"content": token}, "finish_reason": None}]}
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


DONE = b"data: [DONE]\n\n"


def sse_chunks(*tokens: str, done: bool = True) -> list[bytes]:
    """One chunk per token, then the end marker."""
    chunks = [b'data: {"choices":[{"index":0,"delta":{"role":"assistant"}}]}\n\n']
    chunks += [sse_record(t) for t in tokens]
    if done:
        chunks.append(DONE)
    return chunks


Script = list[bytes | Exception]


class FakeBackend(ChatBackend):
    """Test double ChatBackend replaying scripted byte chunks.

    Pass a list of scripts (one per call, in order) or a callable that builds
    a script from the request. An Exception inside a script is raised when
    reached.
    """

    def __init__(self, scripts: list[Script] | Callable[[ChatRequest], Script]) -> None:
        self._scripts = scripts
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return "fake"

    def _next_script(self, request: ChatRequest) -> Script:
        if callable(self._scripts):
            return self._scripts(request)
        return self._scripts.pop(0)

    async def open_stream(self, request: ChatRequest):
        self.requests.append(request)
        for chunk in self._next_script(request):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def counter() -> WordCounter:
    return WordCounter()


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test-model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        readable_name="Test Model",
        token_limit=1000,
        default_prompt_token_ratio=0.5,
        prompt_cost_per_mille=0.002,
        response_cost_per_mille=0.004,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        opening="Moderator: Let us begin by discussing the topic '{problem}'. Welcome {names}.",
        thoughts_system="You are {name}. Bio: {bio}",
        thoughts_request="Topic: {problem}. Think as {name}, then give {prob_token}: <float>\n{label}",
        response_system="You are {name}. Excerpts: {style_example} Style: {style_summary}",
        response_request="Your thoughts: {thoughts}. Respond as {name}.",
        moderator_comments=["Can anyone offer a counter-argument?", "What are the long-term impacts?"],
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        rounds=3,
        temperature=0.5,
        moderation_interval=4,
        model="test-model",
        output_file=tmp_path / "output.json",
        personas_dir=tmp_path / "personas",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    sample_model_config: ModelConfig,
) -> AppConfig:
    gpt4 = ModelConfig(
        name="gpt-4",
        sdk="openai",
        model="gpt-4",
        api_key_env="OPENAI_API_KEY",
        readable_name="GPT-4.0",
        token_limit=8192,
        default_prompt_token_ratio=0.8,
        prompt_cost_per_mille=0.03,
        response_cost_per_mille=0.06,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"test-model": sample_model_config, "gpt-4": gpt4},
        prompts=sample_prompts_config,
        available_models={"test-model"},
    )


@pytest.fixture
def socrates() -> Agent:
    return Agent(
        name="Socrates",
        bio="Athenian philosopher who asks questions.",
        style_example="Tell me, then, what you say piety is.",
        style_summary="Ironic and inquisitive.",
    )


@pytest.fixture
def three_agents() -> list[Agent]:
    return [
        Agent("Alice", "Alice bio.", "Alice example.", "Alice style."),
        Agent("Bob", "Bob bio.", "Bob example.", "Bob style."),
        Agent("Carol", "Carol bio.", "Carol example.", "Carol style."),
    ]


@pytest.fixture
def short_conversation() -> list[Message]:
    return [
        Message("system", "You are terse."),
        Message("user", "Hello there"),
    ]
