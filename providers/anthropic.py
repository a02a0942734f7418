"""Anthropic Messages API adapter (streaming over SSE with httpx).

The agent keeps its history in OpenAI chat shape; this module converts it at
the boundary:

- system messages are joined into the top-level ``system`` field
- assistant tool calls become ``tool_use`` content blocks
- tool messages become ``tool_result`` blocks inside a user turn
  (consecutive results are merged into one turn)
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from agent.errors import ProviderError
from agent.messages import ASSISTANT, SYSTEM, TOOL, Message
from agent.retry import classify_status, friendly_message, to_provider_error
from clarissa_constants import ANTHROPIC_API_VERSION, ANTHROPIC_BASE_URL
from providers.base import (
    ChatOptions,
    LLMProvider,
    ProviderCapabilities,
    ProviderInfo,
    ProviderStatus,
    StreamChunk,
    Usage,
)
from providers.streaming import ToolCallAccumulator

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


def convert_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Convert OpenAI-shaped history into ``(system, messages)`` for Anthropic."""
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for msg in messages:
        if msg.role == SYSTEM:
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content or "",
            }
            last = converted[-1] if converted else None
            if (
                last is not None
                and last["role"] == "user"
                and isinstance(last["content"], list)
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if msg.role == ASSISTANT and msg.tool_calls:
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                try:
                    tool_input = tc.parsed_arguments()
                except ValueError:
                    tool_input = {}
                blocks.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": tool_input})
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": msg.role, "content": msg.content or ""})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


def convert_tools(options: ChatOptions) -> List[Dict[str, Any]]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in options.tools
    ]


def iter_sse_events(lines: List[str]) -> List[Dict[str, Any]]:
    """Parse ``data:`` lines into JSON events (used by tests and the stream loop)."""
    events = []
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data or data == "[DONE]":
            continue
        try:
            events.append(json.loads(data))
        except json.JSONDecodeError:
            continue
    return events


class AnthropicStreamDecoder:
    """Turns Messages API stream events into text deltas plus tool calls."""

    def __init__(self):
        self.accumulator = ToolCallAccumulator()
        self.prompt_tokens = 0
        self.completion_tokens = 0

    def feed(self, event: Dict[str, Any]) -> Optional[str]:
        """Consume one event; returns text to emit, if any."""
        event_type = event.get("type")
        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            self.prompt_tokens = usage.get("input_tokens", 0) or 0
        elif event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self.accumulator.add(event.get("index", 0), call_id=block.get("id"), name=block.get("name"))
            elif block.get("type") == "text" and block.get("text"):
                return block["text"]
        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None
            if delta.get("type") == "input_json_delta":
                self.accumulator.add(event.get("index", 0), arguments=delta.get("partial_json", ""))
        elif event_type == "message_delta":
            usage = event.get("usage") or {}
            self.completion_tokens = usage.get("output_tokens", self.completion_tokens) or 0
        elif event_type == "error":
            error = event.get("error") or {}
            message = error.get("message", "stream error")
            kind = "server_error" if error.get("type") == "overloaded_error" else "other"
            raise ProviderError(f"Anthropic error: {message}", kind=kind, provider_id="anthropic")
        return None

    def finish(self) -> StreamChunk:
        usage = Usage(self.prompt_tokens, self.completion_tokens)
        return StreamChunk(done=True, tool_calls=self.accumulator.finalize(), usage=usage)


class AnthropicProvider(LLMProvider):
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        base_url: str = ANTHROPIC_BASE_URL,
        max_tools: Optional[int] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._info = ProviderInfo(
            id="anthropic",
            name="Anthropic",
            capabilities=ProviderCapabilities(structured_output=True, max_tools=max_tools),
        )

    @property
    def info(self) -> ProviderInfo:
        return self._info

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def check_availability(self) -> ProviderStatus:
        if not self.api_key:
            return ProviderStatus(False, "ANTHROPIC_API_KEY not set")
        return ProviderStatus(True, model=self.model)

    def _build_body(self, messages: List[Message], options: ChatOptions) -> Dict[str, Any]:
        system, converted = convert_messages(messages)
        body: Dict[str, Any] = {
            "model": options.model or self.model,
            "messages": converted,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        if system:
            body["system"] = system
        if options.tools:
            body["tools"] = convert_tools(options)
        if options.temperature is not None:
            body["temperature"] = options.temperature
        return body

    async def chat(self, messages: List[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, options)
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }
        decoder = AnthropicStreamDecoder()

        try:
            async with self.client.stream("POST", f"{self.base_url}/messages", json=body, headers=headers) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")[:500]
                    error = httpx.HTTPStatusError(detail, request=response.request, response=response)
                    raise ProviderError(
                        f"{friendly_message(error, 'anthropic')} {detail}".strip(),
                        kind=classify_status(response.status_code),
                        provider_id="anthropic",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    for event in iter_sse_events([line]):
                        text = decoder.feed(event)
                        if text:
                            yield StreamChunk(content=text)
        except ProviderError:
            raise
        except Exception as e:
            raise to_provider_error(e, "anthropic") from e

        yield decoder.finish()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
