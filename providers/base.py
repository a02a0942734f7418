"""Provider contract shared by every language-model backend.

A provider streams one completion as a sequence of ``StreamChunk`` objects:
zero or more text chunks followed by exactly one terminal chunk
(``done=True``) carrying the finalized tool calls and usage. Tool-call
fragments are assembled inside the adapter; callers never see partial calls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional, Tuple

from agent.messages import Message, ToolCall
from tools.base import ToolDefinition


@dataclass(frozen=True)
class ProviderCapabilities:
    streaming: bool = True
    tool_calling: bool = True
    structured_output: bool = False
    local: bool = False
    max_tools: Optional[int] = None


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)


@dataclass(frozen=True)
class ProviderStatus:
    available: bool
    reason: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ChatOptions:
    model: Optional[str] = None
    tools: List[ToolDefinition] = field(default_factory=list)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class StreamChunk:
    content: Optional[str] = None
    done: bool = False
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None


class LLMProvider(ABC):
    """Base class for provider adapters.

    Subclasses implement ``info``, ``check_availability`` and ``chat``.
    ``chat`` is an async generator; adapters raise ``ProviderError`` (see
    ``agent.retry.to_provider_error``) for any backend failure.
    """

    model: Optional[str] = None

    @property
    @abstractmethod
    def info(self) -> ProviderInfo:
        ...

    @property
    def max_tools(self) -> Optional[int]:
        return self.info.capabilities.max_tools

    @property
    def spec(self) -> str:
        """``provider:model`` identifier used in logs and fallback notices."""
        return f"{self.info.id}:{self.model}" if self.model else self.info.id

    @abstractmethod
    async def check_availability(self) -> ProviderStatus:
        ...

    @abstractmethod
    def chat(self, messages: List[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        ...

    async def initialize(self) -> None:
        """Optional one-time setup before the first request."""

    async def prewarm(self) -> None:
        """Optional warm-up (e.g. load a local model). Best effort."""

    async def close(self) -> None:
        """Release network resources."""


async def collect_stream(
    stream: AsyncIterator[StreamChunk],
    on_chunk: Optional[Callable[[str], None]] = None,
) -> Tuple[Message, Optional[Usage]]:
    """Drain a chat stream into a single assistant message.

    Text is forwarded to ``on_chunk`` as it arrives.
    """
    parts: List[str] = []
    tool_calls: List[ToolCall] = []
    usage: Optional[Usage] = None
    async for chunk in stream:
        if chunk.content:
            parts.append(chunk.content)
            if on_chunk is not None:
                on_chunk(chunk.content)
        if chunk.done:
            tool_calls = list(chunk.tool_calls)
            usage = chunk.usage
    content = "".join(parts) or None
    return Message.assistant(content, tool_calls), usage
