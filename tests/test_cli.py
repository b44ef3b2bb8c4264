"""Tests for the CLI wiring in magpie/cli.py."""

import pytest
from click.testing import CliRunner

import magpie.cli as cli
from magpie.cli import _build_participants, _distinct_providers, _resolve_options, main
from magpie.models import Participant, ReviewSubject

from tests.conftest import MockProvider, make_participant


@pytest.fixture
def mock_factory(monkeypatch):
    """Replace create_provider with one that hands out MockProviders, keyed by model."""
    created: dict[str, MockProvider] = {}

    def fake_create(model, config):
        created[model] = MockProvider(model, model=model)
        return created[model]

    monkeypatch.setattr(cli, "create_provider", fake_create)
    return created


# --- participants and options ---

def test_build_participants_ids_and_prompts(sample_app_config, mock_factory):
    analyzer, reviewers, summarizer = _build_participants(sample_app_config)

    assert analyzer.id == "analyzer"
    assert analyzer.system_prompt == "Analyze."
    assert [r.id for r in reviewers] == ["security", "performance"]
    assert reviewers[0].system_prompt == "You are a security expert."
    assert summarizer.id == "summarizer"


def test_build_participants_shares_provider_per_model(sample_app_config, mock_factory):
    analyzer, reviewers, summarizer = _build_participants(sample_app_config)

    assert set(mock_factory) == {"claude-sonnet-4-20250514", "gpt-4o"}
    assert analyzer.backend is summarizer.backend
    assert reviewers[0].backend is analyzer.backend
    assert reviewers[1].backend is not analyzer.backend


def test_resolve_options_uses_config_defaults(sample_app_config):
    options = _resolve_options(sample_app_config, rounds=None, interactive=False, converge=None)
    assert options.max_rounds == 2
    assert options.check_convergence is True
    assert options.interactive is False


def test_resolve_options_flags_override(sample_app_config):
    options = _resolve_options(sample_app_config, rounds=5, interactive=True, converge=False)
    assert options.max_rounds == 5
    assert options.interactive is True
    assert options.check_convergence is False


def test_resolve_options_zero_rounds_is_kept(sample_app_config):
    assert _resolve_options(sample_app_config, rounds=0, interactive=False, converge=None).max_rounds == 0


def test_resolve_options_config_disables_convergence(sample_app_config):
    sample_app_config.defaults.check_convergence = False
    options = _resolve_options(sample_app_config, rounds=None, interactive=False, converge=True)
    assert options.check_convergence is False


def test_distinct_providers_dedupes_by_model():
    shared = MockProvider("anthropic", model="claude-sonnet-4")
    participants = [
        Participant("a", shared, ""),
        make_participant("b", model="gpt-4o"),
        Participant("c", shared, ""),
    ]

    providers = _distinct_providers(participants)

    assert list(providers) == ["claude-sonnet-4", "gpt-4o"]
    assert providers["claude-sonnet-4"] is shared


# --- init command ---

def test_init_creates_config(tmp_path):
    result = CliRunner().invoke(main, ["init", "--dir", str(tmp_path)])
    assert result.exit_code == 0
    assert (tmp_path / ".magpie" / "config.yaml").exists()


def test_init_refuses_existing_config(tmp_path):
    runner = CliRunner()
    runner.invoke(main, ["init", "--dir", str(tmp_path)])
    result = runner.invoke(main, ["init", "--dir", str(tmp_path)])
    assert result.exit_code == 1
    assert "already exists" in result.output


# --- review command ---

def test_review_without_target_exits(config_file, mock_factory):
    result = CliRunner().invoke(main, ["review", "-c", str(config_file)])
    assert result.exit_code == 1
    assert "exactly one" in result.output


def test_review_missing_config_exits(tmp_path):
    result = CliRunner().invoke(main, ["review", "1", "-c", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_review_rejects_negative_rounds(config_file):
    result = CliRunner().invoke(main, ["review", "1", "-c", str(config_file), "--rounds", "-1"])
    assert result.exit_code == 2


def test_review_end_to_end_with_mock_providers(config_file, tmp_path, monkeypatch, mock_factory):
    monkeypatch.setattr(
        cli, "build_subject",
        lambda pr, **kwargs: ReviewSubject(f"PR #{pr}", f"Review PR #{pr}."),
    )
    out_path = tmp_path / "out" / "review.md"

    result = CliRunner().invoke(main, [
        "review", "7", "-c", str(config_file), "--rounds", "1", "--no-converge",
        "--skip-health-check", "-o", str(out_path),
    ])

    assert result.exit_code == 0, result.output
    assert "PR #7 Review" in result.output
    text = out_path.read_text(encoding="utf-8")
    assert text.startswith("# Code Review: PR #7")
    assert "### security (Round 1)" in text
    assert "### quality (Round 1)" in text


def test_review_health_check_failure_exits(config_file, monkeypatch):
    monkeypatch.setattr(cli, "build_subject", lambda pr, **kwargs: ReviewSubject("PR #7", "Review."))

    def failing_create(model, config):
        provider = MockProvider(model, model=model)
        provider.chat.side_effect = RuntimeError("401 Unauthorized")
        return provider

    monkeypatch.setattr(cli, "create_provider", failing_create)

    result = CliRunner().invoke(main, ["review", "7", "-c", str(config_file)])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_review_turn_failure_exits(config_file, monkeypatch):
    monkeypatch.setattr(cli, "build_subject", lambda pr, **kwargs: ReviewSubject("PR #7", "Review."))
    monkeypatch.setattr(
        cli, "create_provider",
        lambda model, config: MockProvider(model, [RuntimeError("boom")], model=model),
    )

    result = CliRunner().invoke(main, ["review", "7", "-c", str(config_file), "--skip-health-check"])

    assert result.exit_code == 1
    assert "Review failed" in result.output
    assert "boom" in result.output


def test_review_help_lists_target_options():
    result = CliRunner().invoke(main, ["review", "--help"])
    assert result.exit_code == 0
    for flag in ("--local", "--branch", "--files", "--interactive", "--rounds"):
        assert flag in result.output



def test_review_bad_output_format_fails_before_review(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "defaults:\n  output_format: md\n"
        "reviewers:\n  a:\n    model: gpt-4o\n    prompt: A\n"
        "summarizer:\n  model: gpt-4o\n  prompt: S\n",
        encoding="utf-8",
    )
    created: list[str] = []
    monkeypatch.setattr(cli, "create_provider", lambda model, config: created.append(model))

    result = CliRunner().invoke(main, ["review", "7", "-c", str(path), "-o", str(tmp_path / "r.md")])

    assert result.exit_code == 1
    assert "output_format" in result.output
    assert created == []
