"""Agent internals -- the pieces AIAgent in run_agent.py is assembled from.

Module Overview
---------------

**messages.py**
    Conversation data model (``Message``, ``ToolCall``) and the OpenAI-style
    dict conversion used on the wire and in saved sessions.

**errors.py**
    The ``AgentError`` hierarchy: tool errors, provider errors, fallback
    exhaustion, cancellation, iteration limit.

**model_metadata.py**
    Context window lookup (built-in table, optional OpenRouter metadata)
    and the character-based token estimate.

**context_budget.py**
    ``ContextBudgetManager`` -- groups messages into turns and drops the
    oldest turns until the request fits the model's window.

**retry.py**
    Error classification and exponential backoff with jitter.

**llm_client.py**
    ``LLMClient`` -- retries, model fallback, usage accounting and the
    streaming sink in front of the provider adapters.

**tool_executor.py**
    Confirmation, parallel/sequential partitioning and result shaping for
    a batch of tool calls.

**prompt_assembler.py**
    System prompt assembly from identity, tool list and saved memories.

**config.py / config_validator.py**
    ``config.yaml`` loading with pydantic validation, plus the environment
    checks behind ``--check_config``.

**usage.py**
    Token usage and cost estimate per session.

**session_store.py**
    JSON conversation files under ``$CLARISSA_HOME/sessions``.

**async_bridge.py**
    ``run_async`` for calling the async loop from sync code.

**file_references.py**
    ``@path[:a-b]`` expansion of user messages into inline file blocks.
"""
