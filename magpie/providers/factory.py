"""Pick a provider class from a model name and build it from the app config."""

import logging

from config.config_loader import AppConfig, ConfigError, ModelConfig
from magpie.providers.anthropic import AnthropicProvider
from magpie.providers.base import ChatProvider
from magpie.providers.claude_code import ClaudeCodeProvider
from magpie.providers.gemini import GeminiProvider
from magpie.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

CLAUDE_CODE_MODEL = "claude-code"

# (model-name prefix, providers section, provider class); first match wins
PROVIDER_RULES: list[tuple[str, str, type[ChatProvider]]] = [
    (CLAUDE_CODE_MODEL, "claude-code", ClaudeCodeProvider),
    ("claude", "anthropic", AnthropicProvider),
    ("gpt", "openai", OpenAIProvider),
    ("o1", "openai", OpenAIProvider),
    ("o3", "openai", OpenAIProvider),
    ("o4", "openai", OpenAIProvider),
    ("gemini", "google", GeminiProvider),
]


def resolve_provider(model: str) -> tuple[str, type[ChatProvider]]:
    """Return (providers-section name, provider class) for a model string."""
    for prefix, section, provider_cls in PROVIDER_RULES:
        if model.startswith(prefix):
            return section, provider_cls
    raise ConfigError(f"Unknown model '{model}': no provider handles it")


def create_provider(model: str, config: AppConfig) -> ChatProvider:
    """Instantiate the provider for a model.

    Raises:
        ConfigError: If no provider handles the model name.
        ProviderError: If the provider is missing its API key.
    """
    section, provider_cls = resolve_provider(model)
    provider_cfg = config.providers.get(section)
    model_cfg = ModelConfig(
        name=section,
        model=model,
        api_key=provider_cfg.api_key if provider_cfg else "",
        timeout_sec=config.defaults.timeout_sec,
        max_tokens=config.defaults.max_tokens,
        base_url=provider_cfg.base_url if provider_cfg else None,
    )
    logger.debug("Model %s -> %s", model, provider_cls.__name__)
    return provider_cls(model_cfg)
