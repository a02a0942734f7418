"""System prompt assembly with caching.

Caching contract:
    - build() returns the cached prompt while the tool-set version and the
      memory version are unchanged
    - a change in either version triggers a rebuild on the next build()
    - invalidate() forces a rebuild regardless of versions
"""

from datetime import datetime
from typing import Iterable, Optional, Tuple

DEFAULT_AGENT_IDENTITY = (
    "You are Clarissa, a helpful AI assistant with access to tools. "
    "Use tools when they help answer the user's request accurately; answer "
    "directly when they do not. When you call a tool, wait for its result "
    "before drawing conclusions, and tell the user if a tool fails or is "
    "rejected."
)

MEMORY_GUIDANCE = (
    "When the user asks you to remember something, use the remember tool. "
    "Remembered facts from earlier conversations are listed below."
)


class PromptAssembler:
    """Assembles the full system prompt from layered components.

    Args:
        identity: Base instructions. Defaults to ``DEFAULT_AGENT_IDENTITY``.
        include_timestamp: Append a "Conversation started" line.
    """

    def __init__(self, *, identity: Optional[str] = None, include_timestamp: bool = True):
        self._identity = identity or DEFAULT_AGENT_IDENTITY
        self._include_timestamp = include_timestamp
        self._cached_prompt: Optional[str] = None
        self._cache_key: Optional[Tuple[int, int]] = None

    def needs_rebuild(self, tools_version: int, memory_version: int) -> bool:
        return self._cached_prompt is None or self._cache_key != (tools_version, memory_version)

    def build(
        self,
        *,
        tool_names: Iterable[str],
        tools_version: int = 0,
        memory_store=None,
        system_message: Optional[str] = None,
    ) -> str:
        """Assemble the full system prompt from all layers.

        Args:
            tool_names: Names of the registered tools.
            tools_version: ``ToolRegistry.version`` at build time.
            memory_store: Optional store exposing ``version`` and
                ``get_prompt_context()``.
            system_message: Optional custom instructions appended after the
                identity block.

        Returns:
            The fully assembled system prompt string.
        """
        memory_version = memory_store.version if memory_store is not None else 0
        if not self.needs_rebuild(tools_version, memory_version):
            return self._cached_prompt

        names = list(tool_names)
        prompt_parts = [self._identity]

        if names:
            prompt_parts.append("Available tools: " + ", ".join(names) + ".")
            if "remember" in names:
                prompt_parts.append(MEMORY_GUIDANCE)

        if system_message:
            prompt_parts.append(system_message)

        if memory_store is not None:
            mem_block = memory_store.get_prompt_context()
            if mem_block:
                prompt_parts.append(mem_block)

        if self._include_timestamp:
            now = datetime.now()
            prompt_parts.append(
                f"Conversation started: {now.strftime('%A, %B %d, %Y %I:%M %p')}"
            )

        result = "\n\n".join(prompt_parts)
        self._cached_prompt = result
        self._cache_key = (tools_version, memory_version)
        return result

    @property
    def cached(self) -> Optional[str]:
        """Return the cached prompt, or None if not yet built/invalidated."""
        return self._cached_prompt

    def invalidate(self) -> None:
        """Invalidate the cached prompt, forcing rebuild on next build() call."""
        self._cached_prompt = None
        self._cache_key = None
