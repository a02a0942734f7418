"""Configuration loading.

Settings come from ``$CLARISSA_HOME/config.yaml`` (read with ``yaml.safe_load``)
and are validated with pydantic. A few environment variables override the
file; explicit constructor arguments to ``AIAgent`` override both.

Example config.yaml::

    agent:
      max_iterations: 10
      auto_approve: false
      expand_file_references: true
    provider:
      provider: openrouter
      model: anthropic/claude-sonnet-4
    fallback:
      enabled: true
      max_attempts: 2
      models: ["openai:gpt-4o", "anthropic:claude-sonnet-4"]
      on_errors: [rate_limit, timeout]
    tools:
      always_allow: [read_file]
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agent.config_validator import ConfigValidationError
from clarissa_constants import DEFAULT_MAX_ITERATIONS, get_clarissa_home

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MODELS = [
    "openrouter:anthropic/claude-sonnet-4",
    "openrouter:openai/gpt-4o",
    "openai:gpt-4o",
    "anthropic:claude-sonnet-4",
]

FallbackTrigger = Literal["rate_limit", "timeout", "server_error", "all"]


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FallbackConfig(_Section):
    enabled: bool = True
    max_attempts: int = Field(2, ge=1, le=5)
    models: List[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_MODELS))
    on_errors: List[FallbackTrigger] = Field(default_factory=lambda: ["rate_limit", "timeout"])

    def triggers_on(self, kind: str) -> bool:
        return "all" in self.on_errors or kind in self.on_errors


class RetrySettings(_Section):
    max_retries: int = Field(3, ge=0, le=10)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(10.0, ge=0)


class AgentSettings(_Section):
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=1)
    auto_approve: bool = False
    system_prompt: Optional[str] = None
    expand_file_references: bool = True


class ContextSettings(_Section):
    context_length: Optional[int] = Field(None, ge=1024)
    response_reserve: int = Field(4096, ge=0)
    use_remote_metadata: bool = False


class ProviderSettings(_Section):
    provider: Optional[str] = None
    model: Optional[str] = None
    timeout: float = Field(120.0, gt=0)


class ToolSettings(_Section):
    enabled: Optional[List[str]] = None
    disabled: List[str] = Field(default_factory=list)
    always_allow: List[str] = Field(default_factory=list)
    working_dir: Optional[str] = None


class ClarissaConfig(_Section):
    agent: AgentSettings = Field(default_factory=AgentSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    memory_enabled: bool = True
    debug: bool = False


def get_config_path() -> Path:
    return get_clarissa_home() / "config.yaml"


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigValidationError(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(data: Dict[str, Any], env_get: Callable[[str], Optional[str]]) -> Dict[str, Any]:
    provider = env_get("LLM_PROVIDER")
    if provider:
        data.setdefault("provider", {})["provider"] = provider
    max_iterations = env_get("MAX_ITERATIONS")
    if max_iterations:
        data.setdefault("agent", {})["max_iterations"] = max_iterations
    debug = env_get("CLARISSA_DEBUG")
    if debug:
        data["debug"] = _truthy(debug)
    context_length = env_get("CLARISSA_CONTEXT_LENGTH")
    if context_length:
        data.setdefault("context", {})["context_length"] = context_length
    return data


def load_config(
    path: Optional[Path] = None,
    env_get: Callable[[str], Optional[str]] = os.getenv,
) -> ClarissaConfig:
    """Load and validate configuration.

    Raises:
        ConfigValidationError: the file is unreadable or fails validation.
    """
    config_path = Path(path) if path else get_config_path()
    data = _apply_env_overrides(_read_yaml(config_path), env_get)
    try:
        config = ClarissaConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid configuration in {config_path}: {e}") from e
    logger.debug("Loaded configuration from %s", config_path)
    return config


def save_config(config: ClarissaConfig, path: Optional[Path] = None) -> Path:
    config_path = Path(path) if path else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.model_dump(exclude_none=True), f, sort_keys=False)
    return config_path
