"""Pure dataclasses for the debate room and the streaming session. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class Message:
    role: Role
    content: str


@dataclass(frozen=True)
class Agent:
    name: str              # unique, also the display name
    bio: str
    style_example: str
    style_summary: str


@dataclass
class AgentThought:
    agent_name: str
    speak_next_prob: float  # 0.0 when the model gave no usable probability
    thoughts: str


@dataclass
class AgentResponse:
    agent_name: str
    response: str


class ErrorKind(str, Enum):
    TOKEN_LIMIT = "TOKEN_LIMIT"
    LAST_MESSAGE_TOO_LARGE = "LAST_MESSAGE_TOO_LARGE"
    AUTH_ERROR = "AUTH_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    MANUAL_ABORT = "MANUAL_ABORT"
    UNKNOWN = "UNKNOWN"
    UNEXPECTED_END = "UNEXPECTED_END"
    RATE_LIMIT = "RATE_LIMIT"
    ENGINE_OVERLOADED = "ENGINE_OVERLOADED"
    OPENAI_SCREWUP = "OPENAI_SCREWUP"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({
    ErrorKind.UNEXPECTED_END,
    ErrorKind.RATE_LIMIT,
    ErrorKind.ENGINE_OVERLOADED,
    ErrorKind.OPENAI_SCREWUP,
})


# --- Stream events ---

@dataclass(frozen=True)
class TokenDelta:
    token: str


@dataclass(frozen=True)
class PromptTokenCount:
    token_count: int


@dataclass(frozen=True)
class ResponseTokenCount:
    token_count: int


@dataclass(frozen=True)
class CompleteMessage:
    complete_message: str


@dataclass(frozen=True)
class StreamError:
    kind: ErrorKind
    partial_message: str = ""

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


StreamEvent = TokenDelta | PromptTokenCount | ResponseTokenCount | CompleteMessage | StreamError


@dataclass
class CallStatistics:
    model: str             # ModelConfig.name
    prompt_tokens: int = 0
    response_tokens: int = 0
    call_desc: str = ""


@dataclass
class ChatOutcome:
    result: CompleteMessage | StreamError
    statistics: CallStatistics


@dataclass
class DebateTranscript:
    problem: str
    history: list[str] = field(default_factory=list)
    thoughts: list[list[AgentThought]] = field(default_factory=list)  # one list per round
    responses: list[AgentResponse] = field(default_factory=list)
    usage: list[CallStatistics] = field(default_factory=list)
