"""Abstract base for streaming chat-completion backends."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

from agora.models import Message


class BackendError(Exception):
    """Raised when a backend call fails. status_code drives error classification."""

    def __init__(self, backend_name: str, message: str, status_code: int | None = None) -> None:
        self.backend_name = backend_name
        self.status_code = status_code
        super().__init__(f"[{backend_name}] {message}")


@dataclass
class ChatRequest:
    model: str
    messages: list[Message]
    max_tokens: int
    temperature: float = 0.0
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    def to_params(self) -> dict:
        """Keyword arguments for an OpenAI-style chat completion call."""
        return {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stream": True,
        }


class ChatBackend(ABC):
    """Abstract base for all chat backends."""

    @abstractmethod
    def name(self) -> str:
        """Return the short backend name (e.g. 'openai')."""
        ...

    @abstractmethod
    def open_stream(self, request: ChatRequest) -> AsyncIterator[bytes]:
        """Issue a streamed completion and iterate the raw response body.

        Args:
            request: The fully prepared request.

        Returns:
            Async iterator of byte chunks. Each chunk holds zero or more
            newline-delimited ``data: {json}`` records; the body ends with a
            ``data: [DONE]`` record when the backend finished normally.

        Raises:
            BackendError: On transport, authentication or rate failures.
        """
        ...
