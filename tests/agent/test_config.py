"""Tests for agent/config.py and agent/config_validator.py."""

import pytest

from agent.config import (
    DEFAULT_FALLBACK_MODELS,
    ClarissaConfig,
    FallbackConfig,
    load_config,
    save_config,
)
from agent.config_validator import (
    ConfigValidationError,
    run_validation,
    validate_api_keys,
    validate_model_spec,
)


def _no_env(_key):
    return None


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

class TestDefaults:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "config.yaml", env_get=_no_env)
        assert config.agent.max_iterations == 10
        assert config.agent.auto_approve is False
        assert config.retry.max_retries == 3
        assert config.retry.base_delay == 1.0
        assert config.retry.max_delay == 10.0
        assert config.memory_enabled is True

    def test_fallback_defaults(self):
        fallback = FallbackConfig()
        assert fallback.enabled is True
        assert fallback.max_attempts == 2
        assert fallback.models == DEFAULT_FALLBACK_MODELS
        assert fallback.on_errors == ["rate_limit", "timeout"]

    def test_triggers_on(self):
        assert FallbackConfig().triggers_on("rate_limit")
        assert not FallbackConfig().triggers_on("server_error")
        assert FallbackConfig(on_errors=["all"]).triggers_on("other")


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

class TestLoadConfig:
    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "agent:\n"
            "  max_iterations: 4\n"
            "provider:\n"
            "  provider: anthropic\n"
            "fallback:\n"
            "  max_attempts: 3\n"
            "  on_errors: [all]\n"
            "tools:\n"
            "  always_allow: [read_file]\n"
            "unknown_section: ignored\n",
            encoding="utf-8",
        )
        config = load_config(path, env_get=_no_env)
        assert config.agent.max_iterations == 4
        assert config.provider.provider == "anthropic"
        assert config.fallback.max_attempts == 3
        assert config.fallback.on_errors == ["all"]
        assert config.tools.always_allow == ["read_file"]

    def test_max_attempts_bounds(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("fallback:\n  max_attempts: 9\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(path, env_get=_no_env)

    def test_unknown_trigger_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("fallback:\n  on_errors: [sometimes]\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(path, env_get=_no_env)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("agent: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(path, env_get=_no_env)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(path, env_get=_no_env)

    def test_env_overrides(self, tmp_path):
        env = {
            "LLM_PROVIDER": "lmstudio",
            "MAX_ITERATIONS": "7",
            "CLARISSA_DEBUG": "yes",
            "CLARISSA_CONTEXT_LENGTH": "16384",
        }
        config = load_config(tmp_path / "config.yaml", env_get=env.get)
        assert config.provider.provider == "lmstudio"
        assert config.agent.max_iterations == 7
        assert config.debug is True
        assert config.context.context_length == 16384

    def test_save_round_trip(self, tmp_path):
        config = ClarissaConfig()
        config.agent.max_iterations = 5
        path = save_config(config, tmp_path / "nested" / "config.yaml")
        assert path.exists()
        assert load_config(path, env_get=_no_env).agent.max_iterations == 5


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class TestValidator:
    def test_model_spec(self):
        assert validate_model_spec("openai:gpt-4o")[0]
        assert validate_model_spec("lmstudio")[0]
        assert not validate_model_spec("")[0]
        assert not validate_model_spec(":gpt-4o")[0]

    def test_api_keys_reported(self, monkeypatch):
        for key in ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
            monkeypatch.delenv(key, raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        results = {name: is_set for name, is_set, _ in validate_api_keys()}
        assert results["OPENAI_API_KEY"] is True
        assert results["ANTHROPIC_API_KEY"] is False
        assert "INFERENCE_PROVIDER" not in results

    def test_run_validation_flags_bad_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLARISSA_HOME", str(tmp_path))
        for key in ("LLM_PROVIDER", "MAX_ITERATIONS", "CLARISSA_DEBUG", "CLARISSA_CONTEXT_LENGTH"):
            monkeypatch.delenv(key, raising=False)
        (tmp_path / "config.yaml").write_text("fallback:\n  models: [':gpt-4o']\n", encoding="utf-8")
        results = run_validation()
        assert results["is_valid"] is False
        assert any("fallback.models" in e for e in results["errors"])
