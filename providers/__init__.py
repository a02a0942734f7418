"""Language-model provider adapters.

- base: provider contract, stream chunk types, ``collect_stream``
- streaming: ``ToolCallAccumulator`` for index-addressed tool-call fragments
- openai_compat: OpenRouter / OpenAI / LM Studio via the openai SDK
- anthropic: Anthropic Messages API over httpx SSE
- registry: provider metadata and the instance cache used by ``LLMClient``
"""
