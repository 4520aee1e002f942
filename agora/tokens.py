"""Token counting and trailing-window fitting of message lists to a token budget."""

import logging
from collections.abc import Sequence
from functools import lru_cache
from typing import Protocol

import tiktoken

from agora.models import Message

logger = logging.getLogger(__name__)

_FALLBACK_ENCODING = "cl100k_base"


class TokenCounter(Protocol):
    def count(self, text: str) -> int:
        ...


class TiktokenCounter:
    """Counts tokens with the tiktoken encoding registered for a model."""

    def __init__(self, model: str | None = None) -> None:
        self._encoding = _encoding_for(model)

    def count(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))


@lru_cache(maxsize=8)
def _encoding_for(model: str | None) -> "tiktoken.Encoding":
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            logger.debug("No tiktoken encoding registered for %s, using %s", model, _FALLBACK_ENCODING)
    return tiktoken.get_encoding(_FALLBACK_ENCODING)


@lru_cache(maxsize=1)
def default_counter() -> TiktokenCounter:
    return TiktokenCounter()


def count_message_tokens(messages: Sequence[Message], counter: TokenCounter | None = None) -> int:
    """Token count of the message contents joined by newlines, as one text."""
    counter = counter or default_counter()
    return counter.count("\n".join(m.content for m in messages))


def _largest_trailing_window(
    messages: Sequence[Message],
    max_tokens: int,
    counter: TokenCounter,
) -> list[Message]:
    # Re-tokenizes every candidate window: O(n^2) in message count.
    window = 0
    while window < len(messages) and count_message_tokens(messages[-(window + 1):], counter) < max_tokens:
        window += 1
    return list(messages[-window:]) if window else []


def fit_messages_to_token_limit(
    messages: Sequence[Message],
    max_tokens: int,
    keep_system_message: bool = False,
    counter: TokenCounter | None = None,
) -> list[Message]:
    """Return the longest trailing run of messages whose token count is below max_tokens.

    With keep_system_message, the most recent system message of the full input
    is prepended when the fitted window has none, displacing older ordinary
    messages. When it cannot be made to fit, the system-less window is
    returned. An empty result means even the newest message is too large.
    """
    counter = counter or default_counter()
    fitted = _largest_trailing_window(messages, max_tokens, counter)

    if not keep_system_message or any(m.role == "system" for m in fitted):
        return fitted

    system_messages = [m for m in messages if m.role == "system"]
    if not system_messages:
        return fitted

    system_message = system_messages[-1]
    system_tokens = count_message_tokens([system_message], counter)
    if system_tokens >= max_tokens:
        return fitted

    refitted = _largest_trailing_window(fitted, max_tokens - system_tokens, counter)
    combined = [system_message, *refitted]
    if count_message_tokens(combined, counter) < max_tokens:
        return combined
    return fitted
