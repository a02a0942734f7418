"""Error classification and retry with exponential backoff.

``classify_error`` maps anything a provider call can raise onto one of four
kinds (rate_limit, timeout, server_error, other). SDK exception types and
HTTP status codes are checked first; message inspection is the last resort
for errors that arrive as plain exceptions.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import openai

from agent.errors import (
    OTHER,
    RATE_LIMIT,
    RETRYABLE_KINDS,
    SERVER_ERROR,
    TIMEOUT,
    ProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0
JITTER_RATIO = 0.3

_RATE_LIMIT_MARKERS = ("rate", "429", "too many")
_TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout")
_SERVER_MARKERS = ("500", "502", "503", "504", "529", "server error", "internal error", "overloaded")
_NETWORK_MARKERS = ("network", "connection", "econnreset", "econnrefused")


def classify_status(status_code: Optional[int]) -> str:
    if status_code is None:
        return OTHER
    if status_code == 429:
        return RATE_LIMIT
    if status_code == 408:
        return TIMEOUT
    if status_code >= 500:
        return SERVER_ERROR
    return OTHER


def classify_message(message: str) -> str:
    text = message.lower()
    if any(m in text for m in _RATE_LIMIT_MARKERS):
        return RATE_LIMIT
    if any(m in text for m in _TIMEOUT_MARKERS):
        return TIMEOUT
    if any(m in text for m in _SERVER_MARKERS):
        return SERVER_ERROR
    if any(m in text for m in _NETWORK_MARKERS):
        return SERVER_ERROR
    return OTHER


def classify_error(error: BaseException) -> str:
    """Return the error kind for ``error``."""
    if isinstance(error, ProviderError):
        return error.kind
    if isinstance(error, openai.RateLimitError):
        return RATE_LIMIT
    # APITimeoutError subclasses APIConnectionError, so test it first.
    if isinstance(error, openai.APITimeoutError):
        return TIMEOUT
    if isinstance(error, openai.APIConnectionError):
        return SERVER_ERROR
    if isinstance(error, openai.APIStatusError):
        return classify_status(error.status_code)
    if isinstance(error, httpx.TimeoutException):
        return TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code)
    if isinstance(error, httpx.TransportError):
        return SERVER_ERROR
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return TIMEOUT
    return classify_message(str(error))


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, openai.APIStatusError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return getattr(error, "status_code", None)


def friendly_message(error: BaseException, provider_id: Optional[str] = None) -> str:
    """Human-readable summary for common HTTP failures."""
    status = _status_code_of(error)
    label = provider_id or "provider"
    if status == 401:
        return f"Invalid API key for {label}. Check your configuration."
    if status == 402:
        return f"Insufficient credits on {label}."
    if status == 429:
        return f"Rate limited by {label} (429). Please wait and try again."
    if status is not None and status >= 500:
        return f"{label} server error ({status}). The service may be temporarily unavailable."
    return str(error) or error.__class__.__name__


def to_provider_error(error: BaseException, provider_id: Optional[str] = None) -> ProviderError:
    """Wrap any exception as a ``ProviderError`` (returned as-is if it already is one)."""
    if isinstance(error, ProviderError):
        if error.provider_id is None:
            error.provider_id = provider_id
        return error
    wrapped = ProviderError(
        friendly_message(error, provider_id),
        kind=classify_error(error),
        provider_id=provider_id,
        status_code=_status_code_of(error),
    )
    wrapped.__cause__ = error
    return wrapped


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) in RETRYABLE_KINDS


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    ``max_retries`` counts extra attempts after the first one.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def compute_delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        exponential = self.base_delay * (2 ** attempt)
        jitter = rand() * JITTER_RATIO * exponential
        return min(exponential + jitter, self.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    should_abort: Optional[Callable[[], bool]] = None,
) -> T:
    """Run ``func`` and retry retryable failures per ``policy``.

    Non-retryable errors propagate immediately. When ``should_abort`` turns
    true between attempts, the last error is raised without further retries.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            kind = classify_error(e)
            if kind not in RETRYABLE_KINDS or attempt >= policy.max_retries:
                raise
            if should_abort is not None and should_abort():
                raise
            delay = policy.compute_delay(attempt)
            logger.warning(
                "%s failed (%s: %s); retry %d/%d in %.1fs",
                description, kind, e, attempt + 1, policy.max_retries, delay,
            )
            await sleep(delay)
            if should_abort is not None and should_abort():
                raise
            attempt += 1
