"""Tests for providers/registry.py -- provider metadata, resolution, and caching."""

import pytest

from providers.anthropic import AnthropicProvider
from providers.openai_compat import OpenAICompatibleProvider
from providers.registry import (
    OPENROUTER_HEADERS,
    PROVIDER_PRIORITY,
    ProviderRegistry,
    create_provider,
    normalize_provider_id,
    parse_model_spec,
    resolve_provider_api_key,
    resolve_provider_base_url,
    resolve_provider_model,
)
from tests.fakes.fake_provider import FakeProvider


def _env(**values):
    return values.get


# ---------------------------------------------------------------------------
# Ids and specs
# ---------------------------------------------------------------------------

class TestNormalization:
    def test_aliases(self):
        assert normalize_provider_id("Claude") == "anthropic"
        assert normalize_provider_id("lm-studio") == "lmstudio"
        assert normalize_provider_id("local") == "lmstudio"
        assert normalize_provider_id("  OpenRouter ") == "openrouter"

    def test_empty_uses_default(self):
        assert normalize_provider_id("", default="openai") == "openai"
        assert normalize_provider_id(None) is None

    def test_unknown_passes_through(self):
        assert normalize_provider_id("mystery") == "mystery"

    def test_parse_model_spec(self):
        assert parse_model_spec("openrouter:anthropic/claude-sonnet-4") == ("openrouter", "anthropic/claude-sonnet-4")
        assert parse_model_spec("claude:claude-sonnet-4") == ("anthropic", "claude-sonnet-4")
        assert parse_model_spec("lmstudio") == ("lmstudio", None)
        assert parse_model_spec("openai:") == ("openai", None)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestResolution:
    def test_api_key_explicit_wins(self):
        env = _env(OPENAI_API_KEY="sk-env")
        assert resolve_provider_api_key("openai", env_get=env, explicit_api_key="sk-explicit") == "sk-explicit"
        assert resolve_provider_api_key("openai", env_get=env) == "sk-env"

    def test_api_key_blank_env_ignored(self):
        assert resolve_provider_api_key("openai", env_get=_env(OPENAI_API_KEY="   ")) is None

    def test_local_provider_has_no_key(self):
        assert resolve_provider_api_key("lmstudio", env_get=_env()) is None

    def test_base_url_env_override(self):
        env = _env(LMSTUDIO_BASE_URL="http://gpu-box:1234/v1/")
        assert resolve_provider_base_url("lmstudio", env_get=env) == "http://gpu-box:1234/v1"
        assert resolve_provider_base_url("lmstudio", env_get=_env()) == "http://localhost:1234/v1"

    def test_model_resolution(self):
        assert resolve_provider_model("openai", env_get=_env()) == "gpt-4o"
        assert resolve_provider_model("openai", env_get=_env(OPENAI_MODEL="gpt-4o-mini")) == "gpt-4o-mini"
        assert resolve_provider_model("openai", env_get=_env(), explicit_model="o3") == "o3"
        assert resolve_provider_model("lmstudio", env_get=_env()) is None


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestCreateProvider:
    def test_anthropic_adapter(self):
        provider = create_provider("claude", env_get=_env(ANTHROPIC_API_KEY="sk-ant"))
        assert isinstance(provider, AnthropicProvider)
        assert provider.api_key == "sk-ant"
        assert provider.model == "claude-sonnet-4-20250514"

    def test_openrouter_headers(self):
        provider = create_provider("openrouter", env_get=_env(OPENROUTER_API_KEY="sk-or"))
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider._default_headers == OPENROUTER_HEADERS

    def test_lmstudio_is_local_with_tool_limit(self):
        provider = create_provider("lmstudio", env_get=_env())
        assert provider.info.capabilities.local is True
        assert provider.max_tools == 8

    def test_unknown_provider(self):
        with pytest.raises(KeyError):
            create_provider("mystery")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestProviderRegistry:
    def test_default_priority(self):
        assert ProviderRegistry().list_ids() == list(PROVIDER_PRIORITY)

    def test_preferred_first(self):
        registry = ProviderRegistry(preferred="claude")
        assert registry.selection_order()[0] == "anthropic"
        assert sorted(registry.selection_order()) == sorted(PROVIDER_PRIORITY)

    def test_instances_cached_per_model(self):
        built = []

        def factory(provider_id, model):
            built.append((provider_id, model))
            return FakeProvider(provider_id, model or "default")

        registry = ProviderRegistry(factory=factory, provider_ids=["openai"])
        first = registry.get("openai", "gpt-4o")
        assert registry.get("openai", "gpt-4o") is first
        assert registry.get("openai", "gpt-4o-mini") is not first
        assert registry.get("mystery") is None
        assert built == [("openai", "gpt-4o"), ("openai", "gpt-4o-mini")]

    @pytest.mark.asyncio
    async def test_close_clears_cache(self):
        fake = FakeProvider("openai")
        registry = ProviderRegistry(factory=lambda pid, model: fake, provider_ids=["openai"])
        registry.get("openai")
        await registry.close()
        assert fake.closed is True
