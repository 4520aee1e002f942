"""Streaming inference session: budget fitting, streamed completion, error classification."""

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterator, Mapping, Sequence

from config.config_loader import ModelConfig
from agora.models import (
    CallStatistics,
    ChatOutcome,
    CompleteMessage,
    ErrorKind,
    Message,
    PromptTokenCount,
    ResponseTokenCount,
    StreamError,
    StreamEvent,
    TokenDelta,
)
from agora.providers.base import BackendError, ChatBackend, ChatRequest
from agora.tokens import TokenCounter, count_message_tokens, default_counter, fit_messages_to_token_limit

logger = logging.getLogger(__name__)

# Absorbs drift between the local tokenizer and the model's own count.
TOKEN_MARGIN = 100

_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"

ErrorPolicy = Mapping[int, ErrorKind]

# 429 covers both transient throttling and hard quota exhaustion; the status
# code alone cannot tell them apart, so it maps to the retryable kind.
DEFAULT_ERROR_POLICY: ErrorPolicy = {
    401: ErrorKind.AUTH_ERROR,
    402: ErrorKind.QUOTA_EXCEEDED,
    429: ErrorKind.RATE_LIMIT,
    500: ErrorKind.OPENAI_SCREWUP,
    502: ErrorKind.OPENAI_SCREWUP,
    503: ErrorKind.ENGINE_OVERLOADED,
}


def classify_error(exc: BaseException, policy: ErrorPolicy | None = None) -> ErrorKind:
    """Map a backend fault to an ErrorKind via its ``status_code`` attribute."""
    policy = DEFAULT_ERROR_POLICY if policy is None else policy
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        return ErrorKind.UNKNOWN
    return policy.get(status_code, ErrorKind.UNKNOWN)


def _response_allowance(model: ModelConfig, prompt_tokens: int) -> int:
    return model.token_limit - prompt_tokens - TOKEN_MARGIN


def _error_record(backend_name: str, error: object) -> BackendError:
    if not isinstance(error, dict):
        return BackendError(backend_name, f"Stream error: {error}")
    status = error.get("status", error.get("code"))
    if isinstance(status, str) and status.isdigit():
        status = int(status)
    return BackendError(
        backend_name,
        f"Stream error: {error.get('message') or error.get('type') or error}",
        status if isinstance(status, int) else None,
    )


def _parse_records(lines: Sequence[str], backend_name: str) -> tuple[list[str], bool, BackendError | None]:
    """Extract text deltas from ``data:`` lines.

    Returns (deltas, done, fault). Parsing stops at the end marker or at an
    ``error`` record, which comes back as a BackendError for classification.
    """
    deltas: list[str] = []
    for line in lines:
        line = line.strip()
        if not line.startswith(_DATA_PREFIX):
            continue
        payload = line[len(_DATA_PREFIX):].strip()
        if payload == _DONE_SENTINEL:
            return deltas, True, None
        record = json.loads(payload)
        if "error" in record:
            return deltas, False, _error_record(backend_name, record["error"])
        choices = record.get("choices") or []
        if not choices:
            continue
        token = (choices[0].get("delta") or {}).get("content")
        if token:
            deltas.append(token)
    return deltas, False, None


async def stream_chat(
    messages: Sequence[Message],
    model: ModelConfig,
    backend: ChatBackend,
    *,
    correlation_id: str | None = None,
    cancel: asyncio.Event | None = None,
    prompt_token_ratio: float | None = None,
    allow_auto_trim: bool = True,
    temperature: float | None = None,
    counter: TokenCounter | None = None,
    error_policy: ErrorPolicy | None = None,
) -> AsyncIterator[StreamEvent]:
    """Stream one chat completion as a sequence of StreamEvents.

    Emits PromptTokenCount, then TokenDelta per streamed fragment, then
    ResponseTokenCount and CompleteMessage on success. Every failure ends the
    sequence with a single StreamError; nothing is raised for backend faults.

    Args:
        messages: Conversation to send, oldest first.
        model: Model properties (context window, default prompt ratio).
        backend: Where the request goes.
        correlation_id: Tag for log lines belonging to this call.
        cancel: Checked at every chunk boundary; when set the call ends with
            MANUAL_ABORT carrying the text received so far.
        prompt_token_ratio: Share of the context window the prompt may use.
            Defaults to the model's ratio.
        allow_auto_trim: Drop older messages (keeping the latest system
            message) when the prompt exceeds its share. When False an
            oversized prompt fails with TOKEN_LIMIT.
        temperature: Sampling temperature, 0 when not given.
        counter: Token counter; tiktoken by default.
        error_policy: Status code to ErrorKind overrides.
    """
    counter = counter or default_counter()
    tag = correlation_id or "-"
    messages = list(messages)
    ratio = prompt_token_ratio or model.default_prompt_token_ratio
    prompt_ceiling = ratio * model.token_limit

    prompt_tokens = count_message_tokens(messages, counter)
    allowance = _response_allowance(model, prompt_tokens)
    exceeded = prompt_tokens > prompt_ceiling
    logger.debug(
        "[%s] Calling %s: prompt %d tokens, limit %d, response allowance %d, prompt ceiling %.0f, exceeded: %s",
        tag, model.name, prompt_tokens, model.token_limit, allowance, prompt_ceiling, exceeded,
    )

    if exceeded:
        if allow_auto_trim:
            messages = fit_messages_to_token_limit(messages, int(prompt_ceiling), True, counter)
            prompt_tokens = count_message_tokens(messages, counter)
            allowance = _response_allowance(model, prompt_tokens)
            exceeded = prompt_tokens > prompt_ceiling
            logger.debug(
                "[%s] Trimmed to %d messages, %d tokens, exceeded: %s",
                tag, len(messages), prompt_tokens, exceeded,
            )
        if exceeded:
            logger.warning("[%s] %s: prompt of %d tokens exceeds ceiling", tag, ErrorKind.TOKEN_LIMIT.value, prompt_tokens)
            yield StreamError(ErrorKind.TOKEN_LIMIT)
            return
        if not messages:
            logger.warning("[%s] %s: nothing fits after trimming", tag, ErrorKind.LAST_MESSAGE_TOO_LARGE.value)
            yield StreamError(ErrorKind.LAST_MESSAGE_TOO_LARGE)
            return

    yield PromptTokenCount(prompt_tokens)

    if cancel is not None and cancel.is_set():
        logger.info("[%s] Call aborted before it was issued", tag)
        yield StreamError(ErrorKind.MANUAL_ABORT)
        return

    request = ChatRequest(
        model=model.model,
        messages=messages,
        max_tokens=allowance,
        temperature=temperature or 0.0,
    )

    complete_message = ""
    pending = ""
    decoder = codecs.getincrementaldecoder("utf-8")()
    done = False
    stream = None
    try:
        stream = backend.open_stream(request)
        async for chunk in stream:
            if cancel is not None and cancel.is_set():
                logger.info("[%s] Call aborted after %d characters", tag, len(complete_message))
                yield StreamError(ErrorKind.MANUAL_ABORT, complete_message)
                return

            text = pending + decoder.decode(chunk)
            lines = text.split("\n")
            # Keep an unterminated record for the next chunk.
            pending = lines.pop()
            deltas, done, fault = _parse_records(lines, backend.name())
            for token in deltas:
                complete_message += token
                yield TokenDelta(token)
            if fault is not None:
                raise fault
            if done:
                break

        if not done:
            # Raises on a multibyte sequence cut off by the end of the body.
            tail = pending + decoder.decode(b"", final=True)
            deltas, done, fault = _parse_records([tail], backend.name())
            for token in deltas:
                complete_message += token
                yield TokenDelta(token)
            if fault is not None:
                raise fault
    except Exception as exc:
        kind = classify_error(exc, error_policy)
        logger.warning("[%s] %s from %s: %s", tag, kind.value, backend.name(), exc)
        yield StreamError(kind, complete_message)
        return
    finally:
        if stream is not None and hasattr(stream, "aclose"):
            await stream.aclose()

    if not done:
        logger.warning("[%s] %s: stream closed before the end marker", tag, ErrorKind.UNEXPECTED_END.value)
        yield StreamError(ErrorKind.UNEXPECTED_END, complete_message)
        return

    response_tokens = count_message_tokens([Message("assistant", complete_message)], counter)
    logger.info("[%s] %s call complete: %d prompt tokens, %d response tokens", tag, model.name, prompt_tokens, response_tokens)
    yield ResponseTokenCount(response_tokens)
    yield CompleteMessage(complete_message)


async def ask_chat(
    messages: Sequence[Message],
    model: ModelConfig,
    backend: ChatBackend,
    *,
    call_desc: str = "",
    **stream_kwargs,
) -> ChatOutcome:
    """Drain stream_chat and return only the terminal outcome plus token statistics."""
    statistics = CallStatistics(model=model.name, call_desc=call_desc)
    async for event in stream_chat(messages, model, backend, **stream_kwargs):
        if isinstance(event, PromptTokenCount):
            statistics.prompt_tokens = event.token_count
        elif isinstance(event, ResponseTokenCount):
            statistics.response_tokens = event.token_count
        elif isinstance(event, (CompleteMessage, StreamError)):
            return ChatOutcome(result=event, statistics=statistics)

    return ChatOutcome(result=StreamError(ErrorKind.UNKNOWN), statistics=statistics)
