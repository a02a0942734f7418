"""Model metadata, context lengths, and token estimation utilities.

Pure utility functions with no AIAgent dependency. Used by the context
budget manager and the usage tracker.
"""

import logging
import math
import os
import time
from typing import Any, Dict, Optional

import requests

from clarissa_constants import OPENROUTER_MODELS_URL

logger = logging.getLogger(__name__)

_model_metadata_cache: Dict[str, Dict[str, Any]] = {}
_model_metadata_cache_time: float = 0
_MODEL_CACHE_TTL = 3600

# Conservative floor for unknown models. Override with MODEL_CONTEXT_LENGTH.
SAFE_DEFAULT_CONTEXT_LENGTH = 8192

# Tokens held back from the budget for the model's reply.
RESPONSE_RESERVE = 4096

# Role/framing overhead added to every message estimate.
MESSAGE_OVERHEAD_TOKENS = 4

DEFAULT_CONTEXT_LENGTHS = {
    "anthropic/claude-opus-4": 200000,
    "anthropic/claude-sonnet-4": 200000,
    "anthropic/claude-sonnet-4-20250514": 200000,
    "anthropic/claude-3.5-sonnet": 200000,
    "anthropic/claude-haiku-4.5": 200000,
    "openai/gpt-4o": 128000,
    "openai/gpt-4o-mini": 128000,
    "openai/gpt-4-turbo": 128000,
    "google/gemini-2.0-flash": 1048576,
    "google/gemini-2.5-pro": 1048576,
    "meta-llama/llama-3.3-70b-instruct": 131072,
    "deepseek/deepseek-chat-v3-0324": 128000,
    "qwen/qwen-2.5-72b-instruct": 32768,
}


def _get_fallback_context_length() -> int:
    """Get the fallback context length from env var or use safe default."""
    env_override = os.getenv("MODEL_CONTEXT_LENGTH")
    if env_override:
        try:
            return int(env_override)
        except ValueError:
            logger.warning("Invalid MODEL_CONTEXT_LENGTH value: %s, using default", env_override)
    return SAFE_DEFAULT_CONTEXT_LENGTH


def fetch_model_metadata(force_refresh: bool = False) -> Dict[str, Dict[str, Any]]:
    """Fetch model metadata from OpenRouter (cached for 1 hour)."""
    global _model_metadata_cache, _model_metadata_cache_time

    if not force_refresh and _model_metadata_cache and (time.time() - _model_metadata_cache_time) < _MODEL_CACHE_TTL:
        return _model_metadata_cache

    fallback_length = _get_fallback_context_length()

    try:
        response = requests.get(OPENROUTER_MODELS_URL, timeout=10)
        response.raise_for_status()
        data = response.json()

        cache = {}
        for model in data.get("data", []):
            model_id = model.get("id", "")
            cache[model_id] = {
                "context_length": model.get("context_length", fallback_length),
                "name": model.get("name", model_id),
                "pricing": model.get("pricing", {}),
            }
            canonical = model.get("canonical_slug", "")
            if canonical and canonical != model_id:
                cache[canonical] = cache[model_id]

        _model_metadata_cache = cache
        _model_metadata_cache_time = time.time()
        logger.debug("Fetched metadata for %s models from OpenRouter", len(cache))
        return cache

    except (requests.RequestException, ValueError) as e:
        logger.warning("Failed to fetch model metadata from OpenRouter: %s", e)
        return _model_metadata_cache or {}


def _lookup_builtin(model: str) -> Optional[int]:
    if model in DEFAULT_CONTEXT_LENGTHS:
        return DEFAULT_CONTEXT_LENGTHS[model]
    # Direct-provider ids ("gpt-4o", "claude-sonnet-4-20250514") lack the
    # OpenRouter vendor prefix; compare on the bare model name.
    bare = model.split("/", 1)[-1]
    for known, length in DEFAULT_CONTEXT_LENGTHS.items():
        if known.split("/", 1)[-1] == bare:
            return length
    for known, length in DEFAULT_CONTEXT_LENGTHS.items():
        known_bare = known.split("/", 1)[-1]
        if bare.startswith(known_bare):
            return length
    return None


def get_model_context_length(model: str, use_remote: bool = False) -> int:
    """Get the context length for a model.

    Resolution order:
    1. Built-in DEFAULT_CONTEXT_LENGTHS table (known models)
    2. OpenRouter API metadata (only when ``use_remote`` is set)
    3. MODEL_CONTEXT_LENGTH env var (user override)
    4. SAFE_DEFAULT_CONTEXT_LENGTH (8192 - conservative floor)
    """
    if model:
        length = _lookup_builtin(model)
        if length is not None:
            return length

        if use_remote:
            metadata = fetch_model_metadata()
            if model in metadata:
                return metadata[model].get("context_length", _get_fallback_context_length())

    fallback_length = _get_fallback_context_length()
    logger.warning(
        "Unknown model '%s' - using conservative context length of %s tokens. "
        "Set MODEL_CONTEXT_LENGTH env var to override if your model supports more.",
        model, f"{fallback_length:,}",
    )
    return fallback_length


def estimate_tokens(text: Optional[str]) -> int:
    """Heuristic token count.

    Mostly-ASCII text is about four characters per token; anything else
    (CJK, emoji-heavy text) is counted as one token per character.
    """
    if not text:
        return 0
    length = len(text)
    ascii_count = sum(1 for ch in text if ord(ch) < 128)
    if ascii_count > length / 2:
        return max(1, math.ceil(length / 4))
    return length


def estimate_message_tokens(message: Dict[str, Any]) -> int:
    """Token estimate for one wire-format message, including overhead."""
    tokens = estimate_tokens(message.get("content"))
    for tc in message.get("tool_calls") or []:
        function = tc.get("function") or {}
        tokens += estimate_tokens(function.get("name"))
        tokens += estimate_tokens(function.get("arguments"))
    return tokens + MESSAGE_OVERHEAD_TOKENS
