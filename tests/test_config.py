"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    DEFAULT_ANALYZER_PROMPT,
    AppConfig,
    ConfigError,
    RoleConfig,
    expand_env_vars,
    get_config_path,
    init_config,
    load_config,
)
from magpie.convergence import DEFAULT_CONVERGENCE_PROMPT


def _write(tmp_path: Path, settings: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(config_file):
    config = load_config(config_file)
    assert isinstance(config, AppConfig)


def test_load_config_reviewers_keep_file_order(config_file):
    config = load_config(config_file)
    assert list(config.reviewers) == ["security", "quality"]
    assert isinstance(config.reviewers["security"], RoleConfig)
    assert config.reviewers["security"].model == "claude-sonnet-4-20250514"


def test_load_config_defaults(config_file):
    config = load_config(config_file)
    assert config.defaults.max_rounds == 2
    assert config.defaults.output_format == "markdown"
    assert config.defaults.check_convergence is True
    assert config.defaults.timeout_sec == 300


def test_load_config_expands_env_vars(config_file, monkeypatch):
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-ant-from-env")
    config = load_config(config_file)
    assert config.providers["anthropic"].api_key == "sk-ant-from-env"


def test_load_config_missing_env_var_is_empty(config_file, monkeypatch):
    monkeypatch.delenv("TEST_ANTHROPIC_KEY", raising=False)
    config = load_config(config_file)
    assert config.providers["anthropic"].api_key == ""


def test_analyzer_defaults_to_summarizer_model(config_file):
    config = load_config(config_file)
    assert config.analyzer.model == config.summarizer.model
    assert config.analyzer.prompt == DEFAULT_ANALYZER_PROMPT
    assert config.convergence_prompt == DEFAULT_CONVERGENCE_PROMPT


def test_explicit_analyzer_and_convergence_prompt(tmp_path):
    path = _write(tmp_path, {
        "reviewers": {"a": {"model": "gpt-4o", "prompt": "A"}},
        "summarizer": {"model": "gpt-4o", "prompt": "S"},
        "analyzer": {"model": "gemini-2.5-pro", "prompt": "Analyze it."},
        "convergence": {"prompt": "Round {round}: {remarks}. Agreed?"},
    })
    config = load_config(path)
    assert config.analyzer == RoleConfig(model="gemini-2.5-pro", prompt="Analyze it.")
    assert config.convergence_prompt == "Round {round}: {remarks}. Agreed?"


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/config.yaml"))


def test_load_config_requires_reviewers(tmp_path):
    path = _write(tmp_path, {"summarizer": {"model": "gpt-4o", "prompt": "S"}})
    with pytest.raises(ConfigError, match="reviewers"):
        load_config(path)


def test_load_config_requires_summarizer(tmp_path):
    path = _write(tmp_path, {"reviewers": {"a": {"model": "gpt-4o", "prompt": "A"}}})
    with pytest.raises(ConfigError, match="summarizer"):
        load_config(path)


def test_load_config_reviewer_needs_model_and_prompt(tmp_path):
    path = _write(tmp_path, {
        "reviewers": {"a": {"model": "gpt-4o"}},
        "summarizer": {"model": "gpt-4o", "prompt": "S"},
    })
    with pytest.raises(ConfigError, match="reviewers.a"):
        load_config(path)


def test_expand_env_vars(monkeypatch):
    monkeypatch.setenv("MAGPIE_TEST_VAR", "value")
    monkeypatch.delenv("MAGPIE_UNSET_VAR", raising=False)
    assert expand_env_vars("key=${MAGPIE_TEST_VAR}") == "key=value"
    assert expand_env_vars("${MAGPIE_UNSET_VAR}") == ""
    assert expand_env_vars("no vars here") == "no vars here"


def test_get_config_path_default_and_custom():
    assert get_config_path() == Path.home() / ".magpie" / "config.yaml"
    assert get_config_path("/tmp/x.yaml") == Path("/tmp/x.yaml")


def test_init_config_writes_loadable_default(tmp_path):
    path = init_config(tmp_path)
    assert path == tmp_path / ".magpie" / "config.yaml"
    config = load_config(path)
    assert list(config.reviewers) == ["security-expert", "performance-expert", "code-quality-expert"]
    assert set(config.providers) == {"anthropic", "openai", "google"}


def test_init_config_refuses_to_overwrite(tmp_path):
    init_config(tmp_path)
    with pytest.raises(FileExistsError):
        init_config(tmp_path)


def _with_convergence_prompt(tmp_path: Path, prompt: str) -> Path:
    return _write(tmp_path, {
        "reviewers": {"a": {"model": "gpt-4o", "prompt": "A"}},
        "summarizer": {"model": "gpt-4o", "prompt": "S"},
        "convergence": {"prompt": prompt},
    })


def test_convergence_prompt_with_literal_braces_rejected(tmp_path):
    path = _with_convergence_prompt(
        tmp_path, 'Round {round}\n{remarks}\nAnswer as JSON like {"converged": true}'
    )
    with pytest.raises(ConfigError, match="convergence.prompt"):
        load_config(path)


def test_convergence_prompt_without_remarks_rejected(tmp_path):
    path = _with_convergence_prompt(tmp_path, "Round {round}: did they agree?")
    with pytest.raises(ConfigError, match="remarks"):
        load_config(path)


def test_convergence_prompt_unbalanced_brace_rejected(tmp_path):
    path = _with_convergence_prompt(tmp_path, "{remarks} agree? {")
    with pytest.raises(ConfigError, match="Unparsable"):
        load_config(path)


def test_convergence_prompt_doubled_braces_accepted(tmp_path):
    prompt = 'Round {round}\n{remarks}\nReply like {{"converged": true}}'
    assert load_config(_with_convergence_prompt(tmp_path, prompt)).convergence_prompt == prompt


def test_unknown_output_format_rejected(tmp_path):
    path = _write(tmp_path, {
        "defaults": {"output_format": "md"},
        "reviewers": {"a": {"model": "gpt-4o", "prompt": "A"}},
        "summarizer": {"model": "gpt-4o", "prompt": "S"},
    })
    with pytest.raises(ConfigError, match="output_format"):
        load_config(path)


def test_json_output_format_accepted(tmp_path):
    path = _write(tmp_path, {
        "defaults": {"output_format": "json"},
        "reviewers": {"a": {"model": "gpt-4o", "prompt": "A"}},
        "summarizer": {"model": "gpt-4o", "prompt": "S"},
    })
    assert load_config(path).defaults.output_format == "json"
