"""Error taxonomy for the agent core.

Everything the loop, registry, or LLM client can raise derives from
``AgentError`` so callers can catch the whole family at once. Tool failures
normally never escape the loop: they are converted into structured error
payloads inside tool messages. Provider failures surface only after the
retry and fallback layer has given up.
"""

from typing import List, Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class NoProviderConfigured(AgentError):
    """No language-model provider is configured or available."""


class MaxIterationsReached(AgentError):
    """The loop hit its iteration bound without producing a final answer."""

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(
            f"Maximum iterations reached ({max_iterations}). "
            "The agent may be stuck in a loop."
        )


class Cancelled(AgentError):
    """The caller requested cancellation."""


# ---------------------------------------------------------------------------
# Tool errors
# ---------------------------------------------------------------------------

class ToolError(AgentError):
    """Base class for tool failures. ``kind`` is used in error payloads."""

    kind = "tool_error"

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotFound(ToolError):
    kind = "not_found"

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class ToolValidationFailed(ToolError):
    kind = "validation_failed"

    def __init__(self, tool_name: str, details: str):
        self.details = details
        super().__init__(tool_name, f"Invalid arguments for {tool_name}: {details}")


class ToolExecutionFailed(ToolError):
    kind = "execution_failed"

    def __init__(self, tool_name: str, cause: BaseException):
        self.cause = cause
        super().__init__(tool_name, f"{tool_name} failed: {cause}")


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

RATE_LIMIT = "rate_limit"
TIMEOUT = "timeout"
SERVER_ERROR = "server_error"
OTHER = "other"

RETRYABLE_KINDS = frozenset({RATE_LIMIT, TIMEOUT, SERVER_ERROR})


class ProviderError(AgentError):
    """A failure talking to a language-model backend.

    Attributes:
        kind: One of ``rate_limit``, ``timeout``, ``server_error``, ``other``.
        provider_id: The provider that failed, when known.
        status_code: HTTP status code, when the failure carried one.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = OTHER,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class AllFallbacksExhausted(ProviderError):
    """The primary provider and every attempted fallback failed."""

    def __init__(self, last_error: BaseException, attempted: List[str]):
        self.last_error = last_error
        self.attempted = list(attempted)
        kind = getattr(last_error, "kind", OTHER)
        super().__init__(
            f"All fallback providers failed (tried: {', '.join(attempted)}). "
            f"Last error: {last_error}",
            kind=kind,
            provider_id=getattr(last_error, "provider_id", None),
            status_code=getattr(last_error, "status_code", None),
        )
