"""Shared constants for Clarissa.

Import-safe module with no dependencies -- can be imported from anywhere
without risk of circular imports.
"""

import os
from pathlib import Path

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_MODELS_URL = f"{OPENROUTER_BASE_URL}/models"

OPENAI_BASE_URL = "https://api.openai.com/v1"

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"

LMSTUDIO_BASE_URL = "http://localhost:1234/v1"

DEFAULT_OPENROUTER_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"

DEFAULT_MAX_ITERATIONS = 10


def get_clarissa_home() -> Path:
    """Return the Clarissa home directory (``$CLARISSA_HOME`` or ``~/.clarissa``)."""
    return Path(os.getenv("CLARISSA_HOME", Path.home() / ".clarissa"))
