"""Token usage and cost tracking for one session.

Costs are rough estimates from a static per-million-token price table.
When a provider reports no usage, token counts are estimated with the same
heuristic the context budget manager uses.
"""

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from agent.model_metadata import estimate_message_tokens, estimate_tokens

# USD per 1M tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "anthropic/claude-sonnet-4": (3.0, 15.0),
    "anthropic/claude-opus-4": (15.0, 75.0),
    "anthropic/claude-3.5-sonnet": (3.0, 15.0),
    "openai/gpt-4o": (2.5, 10.0),
    "openai/gpt-4o-mini": (0.15, 0.6),
    "google/gemini-2.0-flash": (0.1, 0.4),
}
DEFAULT_PRICING = (1.0, 3.0)


def get_pricing(model: Optional[str]) -> Tuple[float, float]:
    if not model:
        return DEFAULT_PRICING
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    bare = model.split("/", 1)[-1]
    for known, pricing in MODEL_PRICING.items():
        if bare.startswith(known.split("/", 1)[-1]):
            return pricing
    return DEFAULT_PRICING


@dataclass(frozen=True)
class SessionUsage:
    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class UsageTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._usage = SessionUsage()

    def add_usage(self, model: Optional[str], prompt_tokens: int, completion_tokens: int) -> float:
        """Record one request; returns its estimated cost."""
        input_price, output_price = get_pricing(model)
        cost = prompt_tokens / 1_000_000 * input_price + completion_tokens / 1_000_000 * output_price
        with self._lock:
            self._usage = replace(
                self._usage,
                requests=self._usage.requests + 1,
                prompt_tokens=self._usage.prompt_tokens + prompt_tokens,
                completion_tokens=self._usage.completion_tokens + completion_tokens,
                estimated_cost=self._usage.estimated_cost + cost,
            )
        return cost

    def add_estimated(self, model: Optional[str], request_messages: List[dict], completion_text: str) -> float:
        prompt = sum(estimate_message_tokens(m) for m in request_messages)
        return self.add_usage(model, prompt, estimate_tokens(completion_text))

    def get_session_usage(self) -> SessionUsage:
        with self._lock:
            return self._usage

    def format_usage(self) -> str:
        usage = self.get_session_usage()
        return f"{usage.requests} requests | {usage.total_tokens:,} tokens | ~${usage.estimated_cost:.4f}"

    def reset(self) -> None:
        with self._lock:
            self._usage = SessionUsage()
