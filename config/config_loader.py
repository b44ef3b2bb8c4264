"""Load ~/.magpie/config.yaml into typed dataclasses, expanding ${VAR} references."""

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from magpie.convergence import DEFAULT_CONVERGENCE_PROMPT, check_prompt_template
from magpie.output import OUTPUT_FORMATS

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default_config.yaml"
_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")

DEFAULT_ANALYZER_PROMPT = (
    "You are a senior engineer preparing a code review. Summarize what the change does, "
    "which components it touches, and the areas that deserve the closest scrutiny. "
    "Do not give a verdict; the review panel will debate it."
)


class ConfigError(ValueError):
    """Raised when the configuration file is structurally invalid."""


@dataclass
class ProviderConfig:
    api_key: str = ""
    base_url: str | None = None


@dataclass
class RoleConfig:
    model: str
    prompt: str


@dataclass
class DefaultsConfig:
    max_rounds: int = 3
    output_format: str = "markdown"
    check_convergence: bool = True
    timeout_sec: int = 300
    max_tokens: int = 4096


@dataclass
class ModelConfig:
    """Resolved settings handed to a single provider instance."""

    name: str
    model: str
    api_key: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    reviewers: dict[str, RoleConfig]
    summarizer: RoleConfig
    analyzer: RoleConfig
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    convergence_prompt: str = DEFAULT_CONVERGENCE_PROMPT


def expand_env_vars(value: str) -> str:
    """Replace ${VAR} with the environment value, or "" when unset."""
    return _ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _expand_env_vars_in(obj: Any) -> Any:
    if isinstance(obj, str):
        return expand_env_vars(obj)
    if isinstance(obj, list):
        return [_expand_env_vars_in(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _expand_env_vars_in(v) for k, v in obj.items()}
    return obj


def get_config_path(custom_path: str | Path | None = None) -> Path:
    if custom_path:
        return Path(custom_path)
    return Path.home() / ".magpie" / "config.yaml"


def _role(raw: Any, section: str) -> RoleConfig:
    if not isinstance(raw, dict) or "model" not in raw or "prompt" not in raw:
        raise ConfigError(f"'{section}' needs both 'model' and 'prompt'")
    return RoleConfig(model=str(raw["model"]), prompt=str(raw["prompt"]).strip())


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration.

    Raises FileNotFoundError if the file is missing and ConfigError when a
    required section is absent or malformed. Empty API keys are not an error
    here; providers complain when they are instantiated.
    """
    path = get_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    raw = _expand_env_vars_in(raw)

    defaults_raw = raw.get("defaults") or {}
    defaults = DefaultsConfig(
        max_rounds=int(defaults_raw.get("max_rounds", 3)),
        output_format=str(defaults_raw.get("output_format", "markdown")),
        check_convergence=bool(defaults_raw.get("check_convergence", True)),
        timeout_sec=int(defaults_raw.get("timeout_sec", 300)),
        max_tokens=int(defaults_raw.get("max_tokens", 4096)),
    )
    if defaults.max_rounds < 0:
        raise ConfigError("defaults.max_rounds must not be negative")
    if defaults.output_format not in OUTPUT_FORMATS:
        raise ConfigError(
            f"defaults.output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
            f"got '{defaults.output_format}'"
        )

    reviewers_raw = raw.get("reviewers") or {}
    if not isinstance(reviewers_raw, dict) or not reviewers_raw:
        raise ConfigError("'reviewers' must define at least one reviewer")
    reviewers = {
        str(rid): _role(rcfg, f"reviewers.{rid}") for rid, rcfg in reviewers_raw.items()
    }

    if "summarizer" not in raw:
        raise ConfigError("'summarizer' section is required")
    summarizer = _role(raw["summarizer"], "summarizer")

    analyzer_raw = raw.get("analyzer")
    if analyzer_raw:
        analyzer = _role(analyzer_raw, "analyzer")
    else:
        analyzer = RoleConfig(model=summarizer.model, prompt=DEFAULT_ANALYZER_PROMPT)

    providers: dict[str, ProviderConfig] = {}
    for provider_name, provider_raw in (raw.get("providers") or {}).items():
        provider_raw = provider_raw or {}
        providers[provider_name] = ProviderConfig(
            api_key=str(provider_raw.get("api_key", "")).strip(),
            base_url=provider_raw.get("base_url") or None,
        )
        if providers[provider_name].api_key:
            logger.debug("Provider configured: %s", provider_name)
        else:
            logger.debug("Provider has no API key: %s", provider_name)

    convergence_raw = raw.get("convergence") or {}
    convergence_prompt = str(convergence_raw.get("prompt", DEFAULT_CONVERGENCE_PROMPT))
    try:
        check_prompt_template(convergence_prompt)
    except ValueError as exc:
        raise ConfigError(f"convergence.prompt: {exc}") from exc

    return AppConfig(
        defaults=defaults,
        reviewers=reviewers,
        summarizer=summarizer,
        analyzer=analyzer,
        providers=providers,
        convergence_prompt=convergence_prompt,
    )


def init_config(base_dir: str | Path | None = None) -> Path:
    """Write the bundled default config to <base>/.magpie/config.yaml.

    Raises FileExistsError rather than overwrite an existing config.
    """
    base = Path(base_dir) if base_dir else Path.home()
    config_path = base / ".magpie" / "config.yaml"
    if config_path.exists():
        raise FileExistsError(f"Config already exists: {config_path}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(_DEFAULT_CONFIG_PATH, config_path)
    logger.info("Wrote default config to %s", config_path)
    return config_path
