"""OpenAI provider using openai SDK with native async."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from magpie.models import Message
from magpie.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(ChatProvider):
    """OpenAI provider via openai SDK. base_url allows OpenAI-compatible endpoints."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        if not config.api_key:
            raise ProviderError(config.name, "Missing API key: providers.openai.api_key")
        self._client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_sec,
        )

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    @staticmethod
    def _messages(messages: list[Message], system_prompt: str | None) -> list[dict[str, str]]:
        msgs: list[dict[str, str]] = []
        if system_prompt:
            msgs.append({"role": "system", "content": system_prompt})
        msgs.extend({"role": m.role, "content": m.content} for m in messages)
        return msgs

    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=self._messages(messages, system_prompt),
                    max_tokens=self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        logger.debug("OpenAI chat: %.2fs", time.monotonic() - start)
        return choice.message.content

    async def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        start = time.monotonic()
        try:
            stream = await self._client.chat.completions.create(
                model=self._config.model,
                messages=self._messages(messages, system_prompt),
                max_tokens=self._config.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                content = chunk.choices[0].delta.content if chunk.choices else None
                if content:
                    yield content
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc

        logger.debug("OpenAI stream: %.2fs", time.monotonic() - start)
