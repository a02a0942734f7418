"""OpenAI-compatible chat completions adapter.

Serves OpenRouter, OpenAI, and local OpenAI-compatible servers (LM Studio)
through the ``openai`` SDK's async streaming client.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from agent.errors import ProviderError
from agent.messages import Message
from agent.retry import to_provider_error
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


class OpenAICompatibleProvider(LLMProvider):
    """Streaming chat against any OpenAI-compatible ``/chat/completions`` API.

    Args:
        provider_id: Registry id ("openrouter", "openai", "lmstudio").
        name: Display name.
        base_url: API base URL.
        api_key: API key; local servers accept any placeholder.
        model: Default model for requests.
        local: Local server (availability is checked over HTTP, no key needed).
        max_tools: Tool-count limit advertised to the agent loop.
        default_headers: Extra headers sent with every request.
        timeout: Request timeout in seconds.
        client: Pre-built ``AsyncOpenAI`` client (tests inject fakes here).
    """

    def __init__(
        self,
        provider_id: str,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        local: bool = False,
        max_tools: Optional[int] = None,
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = 120.0,
        client: Optional[Any] = None,
    ):
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.local = local
        self.timeout = timeout
        self._default_headers = default_headers or {}
        self._client = client
        self._info = ProviderInfo(
            id=provider_id,
            name=name,
            capabilities=ProviderCapabilities(
                streaming=True,
                tool_calling=True,
                structured_output=not local,
                local=local,
                max_tools=max_tools,
            ),
        )

    @property
    def info(self) -> ProviderInfo:
        return self._info

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key or "not-needed",
                base_url=self.base_url,
                default_headers=self._default_headers or None,
                timeout=self.timeout,
                max_retries=0,  # retries are handled by agent.retry
            )
        return self._client

    async def check_availability(self) -> ProviderStatus:
        if not self.local:
            if not self.api_key:
                return ProviderStatus(False, f"{self.info.name} API key not set")
            return ProviderStatus(True, model=self.model)

        try:
            async with httpx.AsyncClient(timeout=2.0) as http:
                response = await http.get(f"{self.base_url}/models")
        except httpx.HTTPError as e:
            return ProviderStatus(False, f"{self.info.name} not reachable at {self.base_url}: {e}")
        if response.status_code != 200:
            return ProviderStatus(False, f"{self.info.name} returned HTTP {response.status_code}")
        if not self.model:
            try:
                models = response.json().get("data", [])
            except ValueError:
                models = []
            if not models:
                return ProviderStatus(False, f"No model loaded in {self.info.name}")
            self.model = models[0].get("id")
        return ProviderStatus(True, model=self.model)

    def _build_request(self, messages: List[Message], options: ChatOptions) -> Dict[str, Any]:
        model = options.model or self.model
        if not model:
            raise to_provider_error(ValueError(f"No model configured for {self.provider_id}"), self.provider_id)
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "stream": True,
        }
        if not self.local:
            kwargs["stream_options"] = {"include_usage": True}
        if options.tools:
            kwargs["tools"] = [t.to_openai() for t in options.tools]
            kwargs["tool_choice"] = "auto"
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        return kwargs

    async def chat(self, messages: List[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        kwargs = self._build_request(messages, options)
        accumulator = ToolCallAccumulator()
        usage: Optional[Usage] = None

        try:
            stream = await self.client.chat.completions.create(**kwargs)
            async for chunk in stream:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = Usage(
                        prompt_tokens=getattr(chunk_usage, "prompt_tokens", 0) or 0,
                        completion_tokens=getattr(chunk_usage, "completion_tokens", 0) or 0,
                    )
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None:
                    continue
                if delta.content:
                    yield StreamChunk(content=delta.content)
                for tc in getattr(delta, "tool_calls", None) or []:
                    function = getattr(tc, "function", None)
                    accumulator.add(
                        tc.index,
                        call_id=getattr(tc, "id", None),
                        name=getattr(function, "name", None) if function else None,
                        arguments=getattr(function, "arguments", None) if function else None,
                    )
        except ProviderError:
            raise
        except Exception as e:
            raise to_provider_error(e, self.provider_id) from e

        yield StreamChunk(done=True, tool_calls=accumulator.finalize(), usage=usage)

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
            self._client = None
