"""Token and cost estimates for a single turn."""

import math

from magpie.models import Message

CHARS_PER_TOKEN = 4

# USD per million tokens (input, output), matched by longest model-name prefix
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4": (15.0, 75.0),
    "claude-sonnet-4": (3.0, 15.0),
    "claude-3-7-sonnet": (3.0, 15.0),
    "claude-3-5-sonnet": (3.0, 15.0),
    "claude-3-5-haiku": (0.8, 4.0),
    "claude-haiku-4": (1.0, 5.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4o": (2.5, 10.0),
    "gpt-4.1-mini": (0.4, 1.6),
    "gpt-4.1": (2.0, 8.0),
    "o3": (2.0, 8.0),
    "o4-mini": (1.1, 4.4),
    "gemini-2.5-pro": (1.25, 10.0),
    "gemini-2.5-flash": (0.3, 2.5),
}


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_input_tokens(messages: list[Message], system_prompt: str | None = None) -> int:
    return estimate_tokens(system_prompt or "") + sum(estimate_tokens(m.content) for m in messages)


def model_pricing(model: str) -> tuple[float, float]:
    """Return (input, output) USD per million tokens; (0, 0) for unknown models."""
    matches = [prefix for prefix in MODEL_PRICING if model.startswith(prefix)]
    if not matches:
        return 0.0, 0.0
    return MODEL_PRICING[max(matches, key=len)]


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = model_pricing(model)
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000
