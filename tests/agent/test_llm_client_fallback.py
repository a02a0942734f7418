"""Tests for agent/llm_client.py -- provider selection, retry, and fallback.

All providers are scripted fakes (tests/fakes/fake_provider.py); nothing
touches the network.
"""

from unittest.mock import MagicMock

import pytest

from agent.config import FallbackConfig
from agent.errors import AllFallbacksExhausted, Cancelled, NoProviderConfigured, ProviderError
from agent.messages import Message
from tests.fakes.fake_provider import FakeProvider, call, make_client, text_reply, tool_reply


def _rate_limited():
    return ProviderError("429 Too Many Requests", kind="rate_limit", status_code=429)


def _messages():
    return [Message.system("sys"), Message.user("hi")]


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

class TestProviderSelection:
    @pytest.mark.asyncio
    async def test_preferred_provider_used(self):
        a = FakeProvider("a", responses=[text_reply("from a")])
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b}, preferred="b")
        reply = await client.chat(_messages())
        assert reply.content == "from b"
        assert client.active_provider is b

    @pytest.mark.asyncio
    async def test_skips_unavailable_preferred(self):
        a = FakeProvider("a", available=False)
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b})
        assert (await client.chat(_messages())).content == "from b"

    @pytest.mark.asyncio
    async def test_no_provider_available(self):
        client = make_client({"a": FakeProvider("a", available=False)})
        with pytest.raises(NoProviderConfigured) as exc_info:
            await client.chat(_messages())
        assert "a: not configured" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_max_tools_from_active_provider(self):
        client = make_client({"a": FakeProvider("a", max_tools=8)})
        assert await client.get_max_tools() == 8

    @pytest.mark.asyncio
    async def test_available_providers_listing(self):
        client = make_client({"a": FakeProvider("a"), "b": FakeProvider("b", available=False)})
        listing = await client.get_available_providers()
        assert [(p["id"], p["available"]) for p in listing] == [("a", True), ("b", False)]

    @pytest.mark.asyncio
    async def test_switch_provider(self):
        a = FakeProvider("a")
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b})
        await client.switch_provider("b")
        assert client.registry.preferred == "b"
        assert (await client.chat(_messages())).content == "from b"

    @pytest.mark.asyncio
    async def test_provider_info(self):
        client = make_client({"a": FakeProvider("a", model="small")})
        assert await client.get_provider_info() == {"id": "a", "name": "Fake a", "model": "small"}

    @pytest.mark.asyncio
    async def test_prewarm_without_provider_does_not_raise(self):
        client = make_client({"a": FakeProvider("a", available=False)})
        await client.prewarm()
        assert client.active_provider is None

    @pytest.mark.asyncio
    async def test_switch_to_unknown_provider(self):
        client = make_client({"a": FakeProvider("a")})
        with pytest.raises(NoProviderConfigured):
            await client.switch_provider("zzz")


# ---------------------------------------------------------------------------
# Streaming, usage, retry
# ---------------------------------------------------------------------------

class TestCompletion:
    @pytest.mark.asyncio
    async def test_chunks_forwarded_and_tool_calls_returned(self):
        provider = FakeProvider("a", responses=[tool_reply(call("c1", "calculator"), text="thinking")])
        client = make_client({"a": provider})
        chunks = []
        reply = await client.chat(_messages(), on_chunk=chunks.append)
        assert chunks == ["thinking"]
        assert reply.tool_calls[0].name == "calculator"

    @pytest.mark.asyncio
    async def test_usage_recorded(self):
        client = make_client({"a": FakeProvider("a", responses=[text_reply("ok")])})
        await client.chat(_messages())
        usage = client.usage.get_session_usage()
        assert usage.requests == 1
        assert usage.prompt_tokens == 10
        assert usage.completion_tokens == 5

    @pytest.mark.asyncio
    async def test_transient_error_retried_on_same_provider(self):
        a = FakeProvider("a", responses=[_rate_limited(), text_reply("recovered")])
        client = make_client({"a": a}, max_retries=2)
        assert (await client.chat(_messages())).content == "recovered"
        assert len(a.requests) == 2


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

class TestFallback:
    @pytest.mark.asyncio
    async def test_falls_back_and_notifies_once(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", responses=[text_reply("from b")])
        callback = MagicMock()
        client = make_client(
            {"a": a, "b": b},
            fallback=FallbackConfig(models=["b:fake-model"]),
            fallback_callback=callback,
        )

        reply = await client.chat(_messages())

        assert reply.content == "from b"
        callback.assert_called_once()
        from_spec, to_spec, error = callback.call_args[0]
        assert from_spec == "a:fake-model"
        assert to_spec == "b:fake-model"
        assert "429" in error

    @pytest.mark.asyncio
    async def test_conversation_passed_unchanged(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", responses=[text_reply("ok")])
        client = make_client({"a": a, "b": b}, fallback=FallbackConfig(models=["b"]))
        messages = _messages()
        await client.chat(messages)
        assert b.requests[0][0] == messages

    @pytest.mark.asyncio
    async def test_non_triggering_error_does_not_fall_back(self):
        a = FakeProvider("a", responses=[ProviderError("bad request", kind="other")])
        b = FakeProvider("b", responses=[text_reply("from b")])
        callback = MagicMock()
        client = make_client(
            {"a": a, "b": b}, fallback=FallbackConfig(models=["b"]), fallback_callback=callback
        )
        with pytest.raises(ProviderError) as exc_info:
            await client.chat(_messages())
        assert not isinstance(exc_info.value, AllFallbacksExhausted)
        callback.assert_not_called()
        assert b.requests == []

    @pytest.mark.asyncio
    async def test_all_trigger_falls_back_on_any_error(self):
        a = FakeProvider("a", responses=[ProviderError("bad request", kind="other")])
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b}, fallback=FallbackConfig(models=["b"], on_errors=["all"]))
        assert (await client.chat(_messages())).content == "from b"

    @pytest.mark.asyncio
    async def test_disabled_fallback_reraises_original(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b}, fallback=FallbackConfig(enabled=False, models=["b"]))
        with pytest.raises(ProviderError) as exc_info:
            await client.chat(_messages())
        assert exc_info.value.kind == "rate_limit"
        assert not isinstance(exc_info.value, AllFallbacksExhausted)

    @pytest.mark.asyncio
    async def test_skips_failed_unknown_and_unavailable(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", available=False)
        c = FakeProvider("c", responses=[text_reply("from c")])
        callback = MagicMock()
        client = make_client(
            {"a": a, "b": b, "c": c},
            fallback=FallbackConfig(models=["a", "nowhere:model", "b", "c"]),
            fallback_callback=callback,
        )
        assert (await client.chat(_messages())).content == "from c"
        callback.assert_called_once()
        assert callback.call_args[0][1] == "c:fake-model"

    @pytest.mark.asyncio
    async def test_max_attempts_respected(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", responses=[_rate_limited()])
        c = FakeProvider("c", responses=[text_reply("never reached")])
        client = make_client(
            {"a": a, "b": b, "c": c},
            fallback=FallbackConfig(models=["b", "c"], max_attempts=1),
        )
        with pytest.raises(AllFallbacksExhausted) as exc_info:
            await client.chat(_messages())
        assert exc_info.value.attempted == ["b:fake-model"]
        assert c.requests == []

    @pytest.mark.asyncio
    async def test_no_usable_fallback_reraises_original(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        client = make_client({"a": a}, fallback=FallbackConfig(models=["nowhere:model", "a"]))
        with pytest.raises(ProviderError) as exc_info:
            await client.chat(_messages())
        assert not isinstance(exc_info.value, AllFallbacksExhausted)
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_abort_skips_fallback(self):
        a = FakeProvider("a", responses=[_rate_limited()])
        b = FakeProvider("b", responses=[text_reply("from b")])
        client = make_client({"a": a, "b": b}, fallback=FallbackConfig(models=["b"]))
        with pytest.raises(Cancelled) as exc_info:
            await client.chat(_messages(), should_abort=lambda: True)
        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert b.requests == []
