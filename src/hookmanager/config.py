"""Dispatcher configuration."""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from hookmanager.exceptions import ConfigError
from hookmanager.models import DEFAULT_BLOCKING_EXIT_CODES, DispatchOptions, HookDefinition


class DispatcherSettings(BaseSettings):
    """Hook dispatcher configuration.

    Can be set via environment variables with HOOKMANAGER_ prefix.
    """

    # Execution defaults
    default_timeout_ms: int = Field(
        default=30000,
        gt=0,
        description="Per-attempt timeout when neither the call nor the hook sets one",
    )
    default_retry: int = Field(
        default=0,
        ge=0,
        description="Retries when neither the call nor the hook sets them",
    )
    parallel: bool = Field(
        default=False,
        description="Run a dispatch's handlers concurrently by default",
    )
    continue_on_error: bool = Field(
        default=False,
        description="Keep running a sequential batch after a handler fails",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level for the CLI")

    # Decision backend
    ai_provider: Literal["anthropic", "openai"] = Field(
        default="anthropic",
        description="Provider used by prompt hooks",
    )
    ai_api_key: str | None = Field(
        default=None,
        description="Provider API key (falls back to the provider's usual env var)",
    )
    ai_base_url: str | None = Field(default=None, description="Provider endpoint override")
    ai_model: str = Field(default="haiku", description="Model when a prompt hook sets none")
    ai_timeout_ms: int = Field(default=30000, gt=0, description="Decision request timeout")
    ai_max_tokens: int = Field(default=1024, gt=0, description="Decision completion token limit")

    # Hook definition sources
    global_config_dir: Path = Field(
        default=Path("~/.claude/hooks/hookmanager").expanduser(),
        description="Directory holding the global hook config",
    )
    project_dir: Path | None = Field(
        default=None,
        description="Project whose .claude/hooks/hookmanager config is loaded",
    )

    class Config:
        env_prefix = "HOOKMANAGER_"
        env_file = ".env"
        extra = "ignore"


def load_settings(config_path: Path | str | None = None) -> DispatcherSettings:
    """Load dispatcher settings.

    Args:
        config_path: Optional path to a YAML config file

    Returns:
        DispatcherSettings instance
    """
    if config_path:
        import yaml

        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}", path=str(config_path)) from e
            if not isinstance(data, dict):
                raise ConfigError(f"Expected a mapping in {config_path}", path=str(config_path))
            return DispatcherSettings(**data)

    return DispatcherSettings()


@dataclass(frozen=True)
class EffectiveOptions:
    """Per-invocation knobs after precedence has been applied."""

    timeout_ms: int
    retries: int
    exit_code_blocking: tuple[int, ...]


def resolve_options(
    definition: HookDefinition,
    options: DispatchOptions | None,
    settings: DispatcherSettings,
) -> EffectiveOptions:
    """Resolve timeout, retries and blocking codes for one invocation.

    Precedence is call override, then the hook definition, then settings.
    """
    options = options or DispatchOptions()

    timeout = options.timeout or definition.timeout or settings.default_timeout_ms

    if options.retry is not None:
        retries = options.retry
    elif "retry" in definition.model_fields_set:
        retries = definition.retry
    else:
        retries = settings.default_retry

    if options.exit_code_blocking is not None:
        blocking = options.exit_code_blocking
    else:
        blocking = definition.exit_code_blocking or DEFAULT_BLOCKING_EXIT_CODES

    return EffectiveOptions(
        timeout_ms=timeout,
        retries=retries,
        exit_code_blocking=tuple(blocking),
    )
