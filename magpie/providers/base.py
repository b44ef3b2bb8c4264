"""Abstract base for all chat completion providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from magpie.models import Message


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class ChatProvider(ABC):
    """Abstract base for all chat completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'anthropic', 'claude-code')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:
        """Return the full completion for the conversation.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...

    @abstractmethod
    def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield completion text fragments as they arrive.

        Implementations are async generators. Errors surface from the
        iteration as ProviderError.
        """
        ...
