"""OpenAI backend using the openai SDK, streaming the raw server-sent-event body."""

import logging
import os
from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from agora.providers.base import BackendError, ChatBackend, ChatRequest

logger = logging.getLogger(__name__)


class OpenAIBackend(ChatBackend):
    """OpenAI (or OpenAI-compatible, via base_url) chat completions."""

    def __init__(self, config: ModelConfig, client: AsyncOpenAI | None = None) -> None:
        self._config = config
        if client is None:
            api_key = os.environ.get(config.api_key_env, "").strip()
            if not api_key:
                raise BackendError(config.sdk, f"Missing API key: {config.api_key_env}")
            client = AsyncOpenAI(api_key=api_key, base_url=config.base_url, max_retries=0)
        self._client = client

    def name(self) -> str:
        return self._config.sdk

    async def open_stream(self, request: ChatRequest) -> AsyncIterator[bytes]:
        try:
            async with self._client.chat.completions.with_streaming_response.create(
                **request.to_params()
            ) as response:
                logger.debug("OpenAI stream opened for %s (status %s)", request.model, response.status_code)
                async for chunk in response.iter_bytes():
                    yield chunk
        except openai.APIStatusError as exc:
            raise BackendError(self.name(), f"API call failed: {exc.message}", exc.status_code) from exc
        except openai.APIError as exc:
            raise BackendError(self.name(), f"API call failed: {exc}") from exc
