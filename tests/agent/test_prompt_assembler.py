"""Tests for PromptAssembler.

Covers:
    - Layer ordering (identity first, timestamp last)
    - Tool list and memory guidance gating
    - Memory block inclusion
    - Caching contract keyed on tool and memory versions
    - Invalidation
"""

from unittest import mock

from agent.prompt_assembler import (
    DEFAULT_AGENT_IDENTITY,
    MEMORY_GUIDANCE,
    PromptAssembler,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_memory_store(block="## Remembered Context\n- likes tea", version=1):
    store = mock.MagicMock()
    store.version = version
    store.get_prompt_context = mock.MagicMock(return_value=block)
    return store


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestPromptAssembler:
    """Unit tests for PromptAssembler."""

    def test_identity_first(self):
        prompt = PromptAssembler(include_timestamp=False).build(tool_names=[])
        assert prompt.startswith(DEFAULT_AGENT_IDENTITY)

    def test_custom_identity(self):
        prompt = PromptAssembler(identity="You are a test bot.", include_timestamp=False).build(tool_names=[])
        assert prompt == "You are a test bot."

    def test_tool_names_listed(self):
        prompt = PromptAssembler(include_timestamp=False).build(tool_names=["calculator", "bash"])
        assert "Available tools: calculator, bash." in prompt
        assert MEMORY_GUIDANCE not in prompt

    def test_memory_guidance_when_remember_available(self):
        prompt = PromptAssembler(include_timestamp=False).build(tool_names=["remember"])
        assert MEMORY_GUIDANCE in prompt

    def test_memory_block_and_system_message(self):
        store = _make_memory_store()
        prompt = PromptAssembler(include_timestamp=False).build(
            tool_names=["remember"], memory_store=store, system_message="Be brief."
        )
        assert "- likes tea" in prompt
        assert prompt.index("Be brief.") < prompt.index("- likes tea")

    def test_empty_memory_block_skipped(self):
        store = _make_memory_store(block=None)
        prompt = PromptAssembler(include_timestamp=False).build(tool_names=[], memory_store=store)
        assert prompt == DEFAULT_AGENT_IDENTITY

    def test_timestamp_last(self):
        prompt = PromptAssembler().build(tool_names=["calculator"])
        assert prompt.split("\n\n")[-1].startswith("Conversation started:")


class TestCaching:
    def test_same_versions_return_cached_prompt(self):
        assembler = PromptAssembler(include_timestamp=False)
        store = _make_memory_store()
        first = assembler.build(tool_names=["a"], tools_version=1, memory_store=store)
        second = assembler.build(tool_names=["b"], tools_version=1, memory_store=store)
        assert second is first
        assert store.get_prompt_context.call_count == 1

    def test_tool_version_change_rebuilds(self):
        assembler = PromptAssembler(include_timestamp=False)
        assembler.build(tool_names=["a"], tools_version=1)
        prompt = assembler.build(tool_names=["a", "b"], tools_version=2)
        assert "Available tools: a, b." in prompt

    def test_memory_version_change_rebuilds(self):
        assembler = PromptAssembler(include_timestamp=False)
        store = _make_memory_store(version=1)
        assembler.build(tool_names=[], memory_store=store)
        store.version = 2
        store.get_prompt_context.return_value = "## Remembered Context\n- likes coffee"
        prompt = assembler.build(tool_names=[], memory_store=store)
        assert "likes coffee" in prompt

    def test_needs_rebuild(self):
        assembler = PromptAssembler(include_timestamp=False)
        assert assembler.needs_rebuild(0, 0)
        assembler.build(tool_names=[], tools_version=3)
        assert not assembler.needs_rebuild(3, 0)
        assert assembler.needs_rebuild(4, 0)

    def test_invalidate(self):
        assembler = PromptAssembler(include_timestamp=False)
        assembler.build(tool_names=[])
        assert assembler.cached is not None
        assembler.invalidate()
        assert assembler.cached is None
        assert assembler.needs_rebuild(0, 0)
