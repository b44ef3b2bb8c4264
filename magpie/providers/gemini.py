"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from magpie.models import Message
from magpie.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(ChatProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        if not config.api_key:
            raise ProviderError(config.name, "Missing API key: providers.google.api_key")
        self._client = genai.Client(api_key=config.api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    @staticmethod
    def _contents(messages: list[Message]) -> list[genai_types.Content]:
        # Gemini calls the assistant role "model"
        return [
            genai_types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[genai_types.Part(text=m.content)],
            )
            for m in messages
        ]

    def _generate_config(self, system_prompt: str | None) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction=system_prompt or None,
        )

    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=self._contents(messages),
                    config=self._generate_config(system_prompt),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        logger.debug("Gemini chat: %.2fs", time.monotonic() - start)
        return response.text

    async def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        start = time.monotonic()
        try:
            stream = await asyncio.wait_for(
                self._client.aio.models.generate_content_stream(
                    model=self._config.model,
                    contents=self._contents(messages),
                    config=self._generate_config(system_prompt),
                ),
                timeout=self._config.timeout_sec,
            )
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming call failed: {exc}") from exc

        logger.debug("Gemini stream: %.2fs", time.monotonic() - start)
