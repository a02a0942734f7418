"""Tests for agent/usage.py -- token and cost tracking."""

import pytest

from agent.usage import DEFAULT_PRICING, UsageTracker, get_pricing


class TestPricing:
    def test_exact_model(self):
        assert get_pricing("openai/gpt-4o") == (2.5, 10.0)

    def test_bare_model_prefix(self):
        assert get_pricing("claude-sonnet-4-20250514") == (3.0, 15.0)

    def test_unknown_model(self):
        assert get_pricing("mystery/model") == DEFAULT_PRICING
        assert get_pricing(None) == DEFAULT_PRICING


class TestUsageTracker:
    def test_accumulates(self):
        tracker = UsageTracker()
        cost = tracker.add_usage("openai/gpt-4o", 1_000_000, 0)
        assert cost == pytest.approx(2.5)
        tracker.add_usage("openai/gpt-4o", 0, 1_000_000)

        usage = tracker.get_session_usage()
        assert usage.requests == 2
        assert usage.total_tokens == 2_000_000
        assert usage.estimated_cost == pytest.approx(12.5)

    def test_estimated_usage(self):
        tracker = UsageTracker()
        tracker.add_estimated("mystery/model", [{"role": "user", "content": "abcd"}], "abcdefgh")
        usage = tracker.get_session_usage()
        assert usage.prompt_tokens == 5
        assert usage.completion_tokens == 2

    def test_format_and_reset(self):
        tracker = UsageTracker()
        tracker.add_usage("openai/gpt-4o", 1200, 300)
        assert tracker.format_usage() == "1 requests | 1,500 tokens | ~$0.0060"
        tracker.reset()
        assert tracker.get_session_usage().requests == 0
