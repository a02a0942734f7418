"""Tests for agent/retry.py -- error classification and backoff."""

import asyncio

import httpx
import pytest

from agent.errors import ProviderError
from agent.retry import (
    RetryPolicy,
    classify_error,
    classify_status,
    friendly_message,
    is_retryable,
    retry_async,
    to_provider_error,
)


class _StatusError(Exception):
    def __init__(self, status_code, message="request failed"):
        super().__init__(message)
        self.status_code = status_code


def _http_status_error(status):
    request = httpx.Request("POST", "https://example.invalid/v1/messages")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassifyError:
    def test_status_codes(self):
        assert classify_status(429) == "rate_limit"
        assert classify_status(408) == "timeout"
        assert classify_status(503) == "server_error"
        assert classify_status(400) == "other"
        assert classify_status(None) == "other"

    def test_provider_error_keeps_kind(self):
        assert classify_error(ProviderError("x", kind="timeout")) == "timeout"

    def test_httpx_errors(self):
        assert classify_error(_http_status_error(429)) == "rate_limit"
        assert classify_error(_http_status_error(502)) == "server_error"
        assert classify_error(httpx.ReadTimeout("slow")) == "timeout"
        assert classify_error(httpx.ConnectError("refused")) == "server_error"

    def test_builtin_timeout(self):
        assert classify_error(asyncio.TimeoutError()) == "timeout"

    def test_message_fallback(self):
        assert classify_error(RuntimeError("Too Many Requests")) == "rate_limit"
        assert classify_error(RuntimeError("request timed out")) == "timeout"
        assert classify_error(RuntimeError("upstream overloaded")) == "server_error"
        assert classify_error(RuntimeError("ECONNRESET by peer")) == "server_error"
        assert classify_error(ValueError("invalid model id")) == "other"

    def test_is_retryable(self):
        assert is_retryable(_http_status_error(429))
        assert not is_retryable(_http_status_error(401))


class TestFriendlyMessage:
    def test_known_statuses(self):
        assert "Invalid API key for openai" in friendly_message(_StatusError(401), "openai")
        assert "Insufficient credits" in friendly_message(_StatusError(402))
        assert "Rate limited" in friendly_message(_StatusError(429))
        assert "server error (503)" in friendly_message(_StatusError(503), "anthropic")

    def test_other_errors_pass_through(self):
        assert friendly_message(ValueError("bad input")) == "bad input"

    def test_to_provider_error_wraps(self):
        original = _http_status_error(429)
        wrapped = to_provider_error(original, "anthropic")
        assert wrapped.kind == "rate_limit"
        assert wrapped.status_code == 429
        assert wrapped.provider_id == "anthropic"
        assert wrapped.__cause__ is original

    def test_to_provider_error_returns_provider_errors_unchanged(self):
        error = ProviderError("boom", kind="timeout")
        assert to_provider_error(error, "openai") is error
        assert error.provider_id == "openai"


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy()
        assert policy.compute_delay(0, rand=lambda: 0.0) == 1.0
        assert policy.compute_delay(1, rand=lambda: 0.0) == 2.0
        assert policy.compute_delay(2, rand=lambda: 0.0) == 4.0

    def test_jitter_bounded(self):
        policy = RetryPolicy()
        assert policy.compute_delay(1, rand=lambda: 1.0) == pytest.approx(2.6)

    def test_capped_at_max_delay(self):
        assert RetryPolicy().compute_delay(10, rand=lambda: 0.5) == 10.0


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []
        sleeps = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ProviderError("busy", kind="rate_limit")
            return "ok"

        async def fake_sleep(delay):
            sleeps.append(delay)

        result = await retry_async(flaky, RetryPolicy(), sleep=fake_sleep)
        assert result == "ok"
        assert len(attempts) == 3
        assert len(sleeps) == 2
        assert all(0 < d <= 10.0 for d in sleeps)

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        attempts = []

        async def bad():
            attempts.append(1)
            raise ProviderError("denied", kind="other")

        async def fake_sleep(delay):
            raise AssertionError("should not sleep")

        with pytest.raises(ProviderError):
            await retry_async(bad, RetryPolicy(), sleep=fake_sleep)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        attempts = []

        async def always_busy():
            attempts.append(1)
            raise ProviderError("busy", kind="server_error")

        async def fake_sleep(delay):
            return None

        with pytest.raises(ProviderError):
            await retry_async(always_busy, RetryPolicy(max_retries=2), sleep=fake_sleep)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_abort_stops_retrying(self):
        attempts = []
        aborted = {"value": False}

        async def busy():
            attempts.append(1)
            raise ProviderError("busy", kind="timeout")

        async def fake_sleep(delay):
            aborted["value"] = True

        with pytest.raises(ProviderError):
            await retry_async(busy, RetryPolicy(), sleep=fake_sleep, should_abort=lambda: aborted["value"])
        assert len(attempts) == 1
