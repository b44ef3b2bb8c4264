"""Shared pytest fixtures."""

import re
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, ProviderConfig, RoleConfig
from magpie.models import DebateOptions, Message, Participant, ReviewSubject
from magpie.providers.base import ChatProvider


class MockProvider(ChatProvider):
    """Test double ChatProvider.

    ``chat_stream`` replays scripted responses in order (falling back to a
    default), split into word fragments. A scripted Exception is raised
    instead. ``chat`` is an AsyncMock so tests can set its return value.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        responses: list[str | Exception] | None = None,
        model: str = "mock-model",
        chat_response: str = "NO",
    ) -> None:
        self._name = provider_name
        self._model = model
        self._responses = list(responses or [])
        self.default_response = f"Response from {provider_name}"
        self.stream_calls: list[tuple[list[Message], str | None]] = []
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because chat is defined in the class body below.
        self.chat = AsyncMock(return_value=chat_response)  # type: ignore[method-assign]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return self._model

    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return "NO"

    async def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append((list(messages), system_prompt))
        response = self._responses.pop(0) if self._responses else self.default_response
        if isinstance(response, Exception):
            raise response
        for fragment in re.findall(r"\S+\s*|\s+", response):
            yield fragment


def make_participant(pid: str, responses: list[str | Exception] | None = None, **kwargs) -> Participant:
    return Participant(pid, MockProvider(pid, responses, **kwargs), f"You are {pid}.")


@pytest.fixture
def analyzer() -> Participant:
    return make_participant("analyzer", ["The change adds a login endpoint."])


@pytest.fixture
def reviewers() -> list[Participant]:
    return [make_participant("alice"), make_participant("bob")]


@pytest.fixture
def summarizer() -> Participant:
    return make_participant("summarizer", ["## Verdict\nApprove with fixes."])


@pytest.fixture
def sample_subject() -> ReviewSubject:
    return ReviewSubject(
        subject_id="Local Changes",
        prompt="Please review the following code changes.",
        diff="--- a/app.py\n+++ b/app.py\n@@ -1 +1 @@\n-x = 1\n+x = 2\n",
    )


@pytest.fixture
def two_round_options() -> DebateOptions:
    return DebateOptions(max_rounds=2, interactive=False, check_convergence=False)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test",
        model="test-model-1",
        api_key="sk-test",
        timeout_sec=30,
        max_tokens=1024,
    )


@pytest.fixture
def sample_app_config() -> AppConfig:
    return AppConfig(
        defaults=DefaultsConfig(max_rounds=2, check_convergence=True, timeout_sec=60, max_tokens=2048),
        reviewers={
            "security": RoleConfig(model="claude-sonnet-4-20250514", prompt="You are a security expert."),
            "performance": RoleConfig(model="gpt-4o", prompt="You are a performance expert."),
        },
        summarizer=RoleConfig(model="claude-sonnet-4-20250514", prompt="Summarize."),
        analyzer=RoleConfig(model="claude-sonnet-4-20250514", prompt="Analyze."),
        providers={
            "anthropic": ProviderConfig(api_key="sk-ant-test"),
            "openai": ProviderConfig(api_key="sk-openai-test"),
        },
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        """
providers:
  anthropic:
    api_key: ${TEST_ANTHROPIC_KEY}
defaults:
  max_rounds: 2
reviewers:
  security:
    model: claude-sonnet-4-20250514
    prompt: You are a security expert.
  quality:
    model: claude-sonnet-4-20250514
    prompt: You are a code quality expert.
summarizer:
  model: claude-sonnet-4-20250514
  prompt: Summarize the review.
""",
        encoding="utf-8",
    )
    return path
