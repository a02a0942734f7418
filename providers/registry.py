"""
Central provider registry.

Static provider metadata (``PROVIDERS``) plus a small stateful
``ProviderRegistry`` that builds adapter instances on demand and caches them
per ``provider:model`` spec. Resolution helpers take an ``env_get`` callable
so tests never touch the real environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from clarissa_constants import (
    ANTHROPIC_BASE_URL,
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_OPENAI_MODEL,
    DEFAULT_OPENROUTER_MODEL,
    LMSTUDIO_BASE_URL,
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
)
from providers.anthropic import AnthropicProvider
from providers.base import LLMProvider, ProviderStatus
from providers.openai_compat import OpenAICompatibleProvider

logger = logging.getLogger(__name__)

EnvGetter = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ProviderMeta:
    id: str
    label: str
    api_style: str  # "openai" or "anthropic"
    default_base_url: str = ""
    api_key_env_vars: Tuple[str, ...] = ()
    base_url_env_var: Optional[str] = None
    model_env_var: Optional[str] = None
    default_model: Optional[str] = None
    local: bool = False
    max_tools: Optional[int] = None
    aliases: Tuple[str, ...] = ()


PROVIDERS: Dict[str, ProviderMeta] = {
    "openrouter": ProviderMeta(
        id="openrouter",
        label="OpenRouter",
        api_style="openai",
        default_base_url=OPENROUTER_BASE_URL,
        api_key_env_vars=("OPENROUTER_API_KEY",),
        base_url_env_var="OPENROUTER_BASE_URL",
        model_env_var="OPENROUTER_MODEL",
        default_model=DEFAULT_OPENROUTER_MODEL,
    ),
    "openai": ProviderMeta(
        id="openai",
        label="OpenAI",
        api_style="openai",
        default_base_url=OPENAI_BASE_URL,
        api_key_env_vars=("OPENAI_API_KEY",),
        base_url_env_var="OPENAI_BASE_URL",
        model_env_var="OPENAI_MODEL",
        default_model=DEFAULT_OPENAI_MODEL,
    ),
    "anthropic": ProviderMeta(
        id="anthropic",
        label="Anthropic",
        api_style="anthropic",
        default_base_url=ANTHROPIC_BASE_URL,
        api_key_env_vars=("ANTHROPIC_API_KEY",),
        base_url_env_var="ANTHROPIC_BASE_URL",
        model_env_var="ANTHROPIC_MODEL",
        default_model=DEFAULT_ANTHROPIC_MODEL,
        aliases=("claude",),
    ),
    "lmstudio": ProviderMeta(
        id="lmstudio",
        label="LM Studio",
        api_style="openai",
        default_base_url=LMSTUDIO_BASE_URL,
        base_url_env_var="LMSTUDIO_BASE_URL",
        model_env_var="LMSTUDIO_MODEL",
        local=True,
        # Small local models degrade quickly with long tool lists.
        max_tools=8,
        aliases=("lm-studio", "local"),
    ),
}

# Order used when no provider is preferred explicitly.
PROVIDER_PRIORITY = ("openrouter", "openai", "anthropic", "lmstudio")

OPENROUTER_HEADERS = {
    "X-OpenRouter-Title": "Clarissa",
    "X-OpenRouter-Categories": "cli-agent",
}


def _env_default(key: str) -> Optional[str]:
    return os.getenv(key)


def normalize_provider_id(provider_id: Optional[str], default: Optional[str] = None) -> Optional[str]:
    if provider_id is None or not provider_id.strip():
        return default
    normalized = provider_id.strip().lower()
    for meta in PROVIDERS.values():
        if normalized == meta.id or normalized in meta.aliases:
            return meta.id
    return normalized


def get_provider_meta(provider_id: Optional[str]) -> Optional[ProviderMeta]:
    normalized = normalize_provider_id(provider_id)
    return PROVIDERS.get(normalized) if normalized else None


def parse_model_spec(spec: str) -> Tuple[str, Optional[str]]:
    """Split ``provider:model`` (or a bare ``provider``) into its parts."""
    spec = spec.strip()
    if ":" not in spec:
        return normalize_provider_id(spec) or spec, None
    provider_id, model = spec.split(":", 1)
    return normalize_provider_id(provider_id) or provider_id, (model.strip() or None)


def resolve_provider_api_key(
    provider_id: str,
    *,
    env_get: EnvGetter = _env_default,
    explicit_api_key: Optional[str] = None,
) -> Optional[str]:
    if explicit_api_key and explicit_api_key.strip():
        return explicit_api_key.strip()
    meta = get_provider_meta(provider_id)
    if meta is None:
        return None
    for var in meta.api_key_env_vars:
        value = env_get(var)
        if value and value.strip():
            return value.strip()
    return None


def resolve_provider_base_url(
    provider_id: str,
    *,
    env_get: EnvGetter = _env_default,
    explicit_base_url: Optional[str] = None,
) -> Optional[str]:
    if explicit_base_url and explicit_base_url.strip():
        return explicit_base_url.strip()
    meta = get_provider_meta(provider_id)
    if meta is None:
        return None
    if meta.base_url_env_var:
        value = env_get(meta.base_url_env_var)
        if value and value.strip():
            return value.strip().rstrip("/")
    return meta.default_base_url or None


def resolve_provider_model(
    provider_id: str,
    *,
    env_get: EnvGetter = _env_default,
    explicit_model: Optional[str] = None,
) -> Optional[str]:
    if explicit_model:
        return explicit_model
    meta = get_provider_meta(provider_id)
    if meta is None:
        return None
    if meta.model_env_var:
        value = env_get(meta.model_env_var)
        if value and value.strip():
            return value.strip()
    return meta.default_model


def create_provider(
    provider_id: str,
    model: Optional[str] = None,
    *,
    env_get: EnvGetter = _env_default,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: float = 120.0,
) -> LLMProvider:
    """Instantiate the adapter for ``provider_id``. Raises ``KeyError`` if unknown."""
    meta = get_provider_meta(provider_id)
    if meta is None:
        raise KeyError(f"Unknown provider: {provider_id}")

    key = resolve_provider_api_key(meta.id, env_get=env_get, explicit_api_key=api_key)
    url = resolve_provider_base_url(meta.id, env_get=env_get, explicit_base_url=base_url)
    resolved_model = resolve_provider_model(meta.id, env_get=env_get, explicit_model=model)

    if meta.api_style == "anthropic":
        return AnthropicProvider(
            api_key=key,
            model=resolved_model,
            base_url=url or ANTHROPIC_BASE_URL,
            max_tools=meta.max_tools,
            timeout=timeout,
        )
    return OpenAICompatibleProvider(
        meta.id,
        meta.label,
        url or meta.default_base_url,
        api_key=key,
        model=resolved_model,
        local=meta.local,
        max_tools=meta.max_tools,
        default_headers=OPENROUTER_HEADERS if meta.id == "openrouter" else None,
        timeout=timeout,
    )


ProviderFactory = Callable[[str, Optional[str]], LLMProvider]


class ProviderRegistry:
    """Builds and caches provider instances keyed by ``(provider_id, model)``.

    Args:
        factory: ``(provider_id, model) -> LLMProvider``. Defaults to
            ``create_provider`` reading the process environment.
        provider_ids: Providers known to this registry, in priority order.
        preferred: Provider to try first when selecting the active one.
    """

    def __init__(
        self,
        factory: Optional[ProviderFactory] = None,
        provider_ids: Optional[List[str]] = None,
        preferred: Optional[str] = None,
    ):
        self._factory = factory or (lambda pid, model: create_provider(pid, model))
        self._provider_ids = list(provider_ids or PROVIDER_PRIORITY)
        self.preferred = normalize_provider_id(preferred)
        self._instances: Dict[Tuple[str, Optional[str]], LLMProvider] = {}

    def list_ids(self) -> List[str]:
        return list(self._provider_ids)

    def is_known(self, provider_id: str) -> bool:
        return normalize_provider_id(provider_id) in self._provider_ids

    def get(self, provider_id: str, model: Optional[str] = None) -> Optional[LLMProvider]:
        """Cached provider instance, or None for unknown ids."""
        normalized = normalize_provider_id(provider_id)
        if normalized not in self._provider_ids:
            return None
        key = (normalized, model)
        if key not in self._instances:
            self._instances[key] = self._factory(normalized, model)
        return self._instances[key]

    def selection_order(self) -> List[str]:
        order = list(self._provider_ids)
        if self.preferred in order:
            order.remove(self.preferred)
            order.insert(0, self.preferred)
        return order

    async def get_statuses(self) -> List[Tuple[LLMProvider, ProviderStatus]]:
        results = []
        for provider_id in self._provider_ids:
            provider = self.get(provider_id)
            try:
                status = await provider.check_availability()
            except Exception as e:
                status = ProviderStatus(False, f"Availability check failed: {e}")
            results.append((provider, status))
        return results

    async def close(self) -> None:
        for provider in self._instances.values():
            try:
                await provider.close()
            except Exception as e:
                logger.debug("Error closing provider %s: %s", provider.info.id, e)
        self._instances.clear()
