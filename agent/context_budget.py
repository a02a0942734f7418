"""Context window budgeting for long conversations.

Keeps the conversation inside the model's context window by dropping the
oldest conversational exchanges while protecting system messages and never
separating an assistant's tool calls from their results.

Grouping rules (one group = one atomic unit for truncation):
    - a user message starts a new group
    - an assistant message joins the open group when that group is led by a
      user message, otherwise it starts a new group
    - tool messages always attach to the open group
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agent.messages import Message, SYSTEM, USER, ASSISTANT, TOOL
from agent.model_metadata import (
    RESPONSE_RESERVE,
    estimate_message_tokens,
    get_model_context_length,
)

logger = logging.getLogger(__name__)

NEAR_LIMIT_THRESHOLD = 0.8
CRITICAL_THRESHOLD = 0.95


@dataclass(frozen=True)
class ContextStats:
    """Snapshot of context usage. Computed fresh on every request."""

    total_tokens: int
    available_tokens: int
    usage_percent: int
    message_count: int
    model: str
    response_reserve: int
    trimmed_count: int = 0
    breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def usage_ratio(self) -> float:
        if self.available_tokens <= 0:
            return 1.0
        return self.total_tokens / self.available_tokens

    @property
    def is_near_limit(self) -> bool:
        return self.usage_ratio >= NEAR_LIMIT_THRESHOLD

    @property
    def is_critical(self) -> bool:
        return self.usage_ratio >= CRITICAL_THRESHOLD


class ContextBudgetManager:
    """Token accounting and truncation for one model's context window.

    Args:
        model: Model identifier, used to look up the context length.
        context_length: Explicit context length; skips the lookup when set.
        response_reserve: Tokens held back for the reply.
        use_remote_metadata: Allow a live OpenRouter lookup for unknown models.
    """

    def __init__(
        self,
        model: str = "",
        *,
        context_length: Optional[int] = None,
        response_reserve: int = RESPONSE_RESERVE,
        use_remote_metadata: bool = False,
    ):
        self.response_reserve = response_reserve
        self._use_remote_metadata = use_remote_metadata
        self._context_override = context_length
        self.trimmed_count = 0
        self.model = ""
        self.max_context = 0
        self.set_model(model)

    def set_model(self, model: str) -> None:
        """Resize the budget for a different model."""
        self.model = model or ""
        if self._context_override:
            self.max_context = self._context_override
        else:
            self.max_context = get_model_context_length(self.model, use_remote=self._use_remote_metadata)

    @property
    def budget(self) -> int:
        return max(0, self.max_context - self.response_reserve)

    def estimate_message_tokens(self, message: Message) -> int:
        return estimate_message_tokens(message.to_dict())

    def estimate_conversation_tokens(self, messages: List[Message]) -> int:
        return sum(self.estimate_message_tokens(m) for m in messages)

    @staticmethod
    def group_messages(messages: List[Message]) -> List[List[Message]]:
        """Split non-system messages into atomic groups."""
        groups: List[List[Message]] = []
        current: List[Message] = []
        for msg in messages:
            if msg.role == SYSTEM:
                continue
            if msg.role == USER:
                if current:
                    groups.append(current)
                current = [msg]
            elif msg.role == ASSISTANT:
                if current and current[0].role != USER:
                    groups.append(current)
                    current = [msg]
                else:
                    current.append(msg)
            elif msg.role == TOOL:
                current.append(msg)
        if current:
            groups.append(current)
        return groups

    def truncate_to_fit(self, messages: List[Message]) -> List[Message]:
        """Return the newest whole groups that fit, preceded by all system messages.

        Returns the input unchanged when it already fits. Applying this to its
        own output is a no-op.
        """
        budget = self.budget
        if self.estimate_conversation_tokens(messages) <= budget:
            return messages

        system_messages = [m for m in messages if m.role == SYSTEM]
        total = self.estimate_conversation_tokens(system_messages)

        kept: List[List[Message]] = []
        for group in reversed(self.group_messages(messages)):
            group_tokens = self.estimate_conversation_tokens(group)
            if total + group_tokens > budget:
                break
            kept.append(group)
            total += group_tokens

        result = list(system_messages)
        for group in reversed(kept):
            result.extend(group)

        dropped = len(messages) - len(result)
        self.trimmed_count += dropped
        if not kept:
            logger.warning(
                "Newest exchange alone exceeds the context budget (%s tokens); "
                "only system messages were kept",
                budget,
            )
        else:
            logger.info("Trimmed %d message(s) to fit %s-token budget", dropped, budget)
        return result

    def get_stats(self, messages: List[Message]) -> ContextStats:
        total = 0
        breakdown: Dict[str, Dict[str, int]] = {
            role: {"tokens": 0, "count": 0} for role in (SYSTEM, USER, ASSISTANT, TOOL)
        }
        for msg in messages:
            tokens = self.estimate_message_tokens(msg)
            total += tokens
            breakdown[msg.role]["tokens"] += tokens
            breakdown[msg.role]["count"] += 1

        available = self.budget
        percent = round(total / available * 100) if available else 100
        return ContextStats(
            total_tokens=total,
            available_tokens=available,
            usage_percent=percent,
            message_count=len(messages),
            model=self.model,
            response_reserve=self.response_reserve,
            trimmed_count=self.trimmed_count,
            breakdown=breakdown,
        )

    def is_near_limit(self, messages: List[Message]) -> bool:
        return self.get_stats(messages).is_near_limit

    def format_stats(self, messages: List[Message]) -> str:
        """One-line summary, e.g. ``1,234/123,904 tokens (1%)``."""
        stats = self.get_stats(messages)
        return f"{stats.total_tokens:,}/{stats.available_tokens:,} tokens ({stats.usage_percent}%)"

    def format_detailed_stats(self, messages: List[Message]) -> str:
        stats = self.get_stats(messages)
        lines = [
            f"Model: {stats.model or 'unknown'}",
            f"Context: {self.format_stats(messages)}",
            f"Response reserve: {stats.response_reserve:,} tokens",
            f"Messages: {stats.message_count}",
        ]
        for role, entry in stats.breakdown.items():
            if entry["count"]:
                lines.append(f"  {role}: {entry['count']} message(s), {entry['tokens']:,} tokens")
        if stats.trimmed_count:
            lines.append(f"Trimmed so far: {stats.trimmed_count} message(s)")
        if stats.is_critical:
            lines.append("Status: CRITICAL - older messages will be dropped")
        elif stats.is_near_limit:
            lines.append("Status: near limit")
        return "\n".join(lines)
