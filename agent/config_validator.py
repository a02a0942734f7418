"""Configuration validation utilities.

Validates config.yaml and environment setup before running the agent.
"""

import os
from typing import Any, Dict, List, Tuple
import logging

from clarissa_constants import get_clarissa_home

logger = logging.getLogger(__name__)

PROVIDER_KEYS = ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY")


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""
    pass


def validate_api_keys() -> List[Tuple[str, bool, str]]:
    """Check provider API keys.

    Returns:
        List of (key_name, is_set, message) tuples
    """
    results = []

    labels = {
        "OPENROUTER_API_KEY": "OpenRouter",
        "OPENAI_API_KEY": "OpenAI",
        "ANTHROPIC_API_KEY": "Anthropic",
    }
    for key in PROVIDER_KEYS:
        if os.environ.get(key):
            results.append((key, True, f"{labels[key]} configured"))
        else:
            results.append((key, False, "Not set (optional)"))

    # A local LM Studio server needs no key, so a missing key is only a warning.
    if not any(os.environ.get(key) for key in PROVIDER_KEYS):
        results.append(("INFERENCE_PROVIDER", False,
            "No cloud provider configured. Set OPENROUTER_API_KEY, OPENAI_API_KEY, "
            "or ANTHROPIC_API_KEY, or run a local LM Studio server"))

    return results


def validate_clarissa_home() -> Tuple[bool, str]:
    """Validate the CLARISSA_HOME directory.

    Returns:
        (is_valid, message) tuple
    """
    home = get_clarissa_home()

    if not home.exists():
        return (False, f"{home} does not exist (it will be created on first save)")

    config_file = home / "config.yaml"
    if not config_file.exists():
        return (True, f"Valid, using defaults (no config.yaml at {config_file})")

    sessions_dir = home / "sessions"
    session_count = len(list(sessions_dir.glob("*.json"))) if sessions_dir.exists() else 0
    return (True, f"Valid with {session_count} saved sessions")


def validate_model_spec(spec: str) -> Tuple[bool, str]:
    """Validate a ``provider:model`` string.

    Returns:
        (is_valid, message) tuple
    """
    if not spec or not spec.strip():
        return (False, "No model specified")

    if ":" in spec:
        provider, model_name = spec.split(":", 1)
        if not provider:
            return (False, f"Missing provider in '{spec}'")
        return (True, f"Provider: {provider}, Model: {model_name or '(provider default)'}")

    return (True, f"Provider: {spec} (provider default model)")


def run_validation() -> Dict[str, Any]:
    """Run all validation checks.

    Returns:
        Dictionary with validation results
    """
    results: Dict[str, Any] = {
        "api_keys": validate_api_keys(),
        "clarissa_home": validate_clarissa_home(),
        "errors": [],
        "warnings": [],
    }

    # Imported here: agent.config imports this module for ConfigValidationError.
    from agent.config import load_config

    try:
        config = load_config()
    except ConfigValidationError as e:
        results["errors"].append(str(e))
    else:
        for spec in config.fallback.models:
            ok, msg = validate_model_spec(spec)
            if not ok:
                results["errors"].append(f"fallback.models: {msg}")

    has_provider = any(
        name in PROVIDER_KEYS and is_set
        for name, is_set, _ in results["api_keys"]
    )
    if not has_provider:
        results["warnings"].append("No cloud provider API key configured")

    home_valid, home_msg = results["clarissa_home"]
    if not home_valid:
        results["warnings"].append(f"CLARISSA_HOME issue: {home_msg}")

    results["is_valid"] = len(results["errors"]) == 0

    return results
