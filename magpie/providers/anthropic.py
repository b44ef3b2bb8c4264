"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from magpie.models import Message
from magpie.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(ChatProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        if not config.api_key:
            raise ProviderError(config.name, "Missing API key: providers.anthropic.api_key")
        self._client = anthropic_sdk.AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout_sec,
        )

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _request(self, messages: list[Message], system_prompt: str | None) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            # Anthropic has no system role inside the message list
            "messages": [
                {"role": "user" if m.role == "system" else m.role, "content": m.content}
                for m in messages
            ],
        }
        if system_prompt:
            request["system"] = system_prompt
        return request

    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**self._request(messages, system_prompt)),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        logger.debug("Anthropic chat: %.2fs", time.monotonic() - start)
        return "\n".join(text_blocks)

    async def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        start = time.monotonic()
        try:
            async with self._client.messages.stream(**self._request(messages, system_prompt)) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc

        logger.debug("Anthropic stream: %.2fs", time.monotonic() - start)
