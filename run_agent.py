#!/usr/bin/env python3
"""
AI Agent Runner with Tool Calling

This module provides the Clarissa agent: a reason-and-act loop that sends the
conversation to a language model, executes the tools it asks for (behind a
confirmation gate for risky ones), feeds the results back, and repeats until
the model answers without tools or the iteration bound is hit.

Features:
- Streaming responses with tool-call assembly
- Parallel execution of auto-approved tools, ordered results
- Context-window budgeting that never splits tool exchanges
- Retry with backoff and automatic model fallback
- Cooperative cancellation with clean rollback

Usage:
    from run_agent import AIAgent

    agent = AIAgent(provider="openrouter", model="anthropic/claude-sonnet-4")
    response = agent.chat("What is 17 * 23?")
"""

import asyncio
import json
import logging
logger = logging.getLogger(__name__)
import signal
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import fire

# Load .env from ~/.clarissa/.env first, then project root as dev fallback
from dotenv import load_dotenv

from clarissa_constants import get_clarissa_home

_clarissa_home = get_clarissa_home()
_user_env = _clarissa_home / ".env"
_project_env = Path(__file__).parent / ".env"
if _user_env.exists():
    try:
        load_dotenv(dotenv_path=_user_env, encoding="utf-8")
    except UnicodeDecodeError:
        load_dotenv(dotenv_path=_user_env, encoding="latin-1")
    logger.info("Loaded environment variables from %s", _user_env)
elif _project_env.exists():
    try:
        load_dotenv(dotenv_path=_project_env, encoding="utf-8")
    except UnicodeDecodeError:
        load_dotenv(dotenv_path=_project_env, encoding="latin-1")
    logger.info("Loaded environment variables from %s", _project_env)
else:
    logger.info("No .env file found. Using system environment variables.")

from agent.async_bridge import run_async
from agent.config import ClarissaConfig, load_config, save_config
from agent.config_validator import ConfigValidationError, run_validation
from agent.context_budget import ContextBudgetManager, ContextStats
from agent.errors import AgentError, Cancelled, MaxIterationsReached, ProviderError
from agent.file_references import expand_file_references
from agent.llm_client import LLMClient
from agent.messages import SYSTEM, Message, messages_from_dicts, messages_to_dicts
from agent.prompt_assembler import PromptAssembler
from agent.retry import RetryPolicy
from agent.session_store import InvalidSessionId, SessionStore
from agent.tool_executor import ToolExecConfig, execute_tool_calls
from providers.registry import ProviderRegistry, create_provider, normalize_provider_id
from tools import MemoryStore, ToolRegistry, create_default_registry
from tools.approval import ApprovalPolicy


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging once for CLI use."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        # Keep third-party libraries at WARNING level to reduce noise
        logging.getLogger('openai').setLevel(logging.WARNING)
        logging.getLogger('openai._base_client').setLevel(logging.WARNING)
        logging.getLogger('httpx').setLevel(logging.WARNING)
        logging.getLogger('httpcore').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)
        logger.info("Verbose logging enabled (third-party library logs suppressed)")
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        logging.getLogger('openai').setLevel(logging.ERROR)
        logging.getLogger('openai._base_client').setLevel(logging.ERROR)
        logging.getLogger('httpx').setLevel(logging.ERROR)
        logging.getLogger('httpcore').setLevel(logging.ERROR)
        if quiet:
            # The REPL prints its own status lines; INFO logs just clutter it.
            for quiet_logger in ['tools', 'agent', 'providers', 'run_agent']:
                logging.getLogger(quiet_logger).setLevel(logging.ERROR)


@dataclass
class ToolFailure:
    """Record of a tool execution error during the agent loop."""

    turn: int                  # Which turn the error occurred on
    tool_name: str             # Which tool was called
    arguments: str             # The arguments passed (truncated)
    error: str                 # The error message


@dataclass
class AgentResult:
    """Result of one ``AIAgent.run`` call."""

    # Final assistant text (None when cancelled)
    final_response: Optional[str]
    # Full conversation history in OpenAI message format
    messages: List[Dict[str, Any]]
    # How many LLM calls were made
    turns_used: int = 0
    # True if the model answered without calling tools
    finished_naturally: bool = False
    # True if the run was cancelled; history was rolled back to its start
    cancelled: bool = False
    tool_errors: List[ToolFailure] = field(default_factory=list)


class AIAgent:
    """
    AI Agent with tool calling capabilities.

    One instance owns one conversation. ``run()`` must not be called
    concurrently on the same instance; ``interrupt()`` may be called from
    any thread.
    """

    def __init__(
        self,
        provider: str = None,
        model: str = None,
        api_key: str = None,
        base_url: str = None,
        max_iterations: int = None,
        auto_approve: bool = None,
        system_message: str = None,
        context_length: int = None,
        config: ClarissaConfig = None,
        tool_registry: ToolRegistry = None,
        memory_store: MemoryStore = None,
        skip_memory: bool = False,
        llm_client: LLMClient = None,
        stream_callback: Callable[[str], None] = None,
        confirmation_callback: Callable[[str, str], Any] = None,
        tool_progress_callback: Callable[[str, str], None] = None,
        tool_result_callback: Callable[[str, str, bool], None] = None,
        thinking_callback: Callable[[], None] = None,
        fallback_callback: Callable[[str, str, str], None] = None,
        log_prefix: str = "",
        log_prefix_chars: int = 100,
    ):
        """
        Initialize the AI Agent.

        Args:
            provider (str): Preferred provider id ("openrouter", "openai", "anthropic", "lmstudio")
            model (str): Model for the preferred provider (provider default if omitted)
            api_key (str): API key for the preferred provider (env var if omitted)
            base_url (str): Base URL override for the preferred provider
            max_iterations (int): Maximum LLM calls per run (default: 10)
            auto_approve (bool): Skip confirmation for tools that normally need it
            system_message (str): Extra instructions appended to the system prompt
            context_length (int): Context window override in tokens
            config (ClarissaConfig): Loaded configuration (read from disk if omitted)
            tool_registry (ToolRegistry): Tools to expose (built-in tools if omitted)
            memory_store (MemoryStore): Memory store (default file store if omitted)
            skip_memory (bool): Disable memories entirely
            llm_client (LLMClient): Pre-built client (tests inject fakes here)
            stream_callback: ``(text)`` called for each streamed text chunk
            confirmation_callback: ``(tool_name, arguments_json) -> bool`` (may be async)
            tool_progress_callback: ``(tool_name, args_preview)`` before each tool runs
            tool_result_callback: ``(tool_name, content, success)`` after each tool
            thinking_callback: ``()`` before each LLM call
            fallback_callback: ``(from_spec, to_spec, error)`` on provider fallback
            log_prefix (str): Prefix for log lines (useful with several agents)
            log_prefix_chars (int): Characters of tool arguments shown in logs
        """
        self.config = config or load_config()
        self.max_iterations = max_iterations or self.config.agent.max_iterations
        self.system_message = system_message or self.config.agent.system_prompt
        self.log_prefix = log_prefix
        self.log_prefix_chars = log_prefix_chars

        self.stream_callback = stream_callback
        self.confirmation_callback = confirmation_callback
        self.tool_progress_callback = tool_progress_callback
        self.tool_result_callback = tool_result_callback
        self.thinking_callback = thinking_callback

        if auto_approve is None:
            auto_approve = self.config.agent.auto_approve
        self.approval = ApprovalPolicy(auto_approve=auto_approve, permanent=self.config.tools.always_allow)

        if skip_memory or not self.config.memory_enabled:
            self.memory_store = None
        else:
            self.memory_store = memory_store or MemoryStore()

        if tool_registry is None:
            tool_registry = create_default_registry(
                memory_store=self.memory_store,
                working_dir=self.config.tools.working_dir,
                enabled=self.config.tools.enabled,
                disabled=self.config.tools.disabled,
            )
        self.tool_registry = tool_registry

        if llm_client is None:
            preferred = normalize_provider_id(provider or self.config.provider.provider)
            timeout = self.config.provider.timeout

            def _factory(provider_id, provider_model):
                overrides = {}
                if provider_id == preferred:
                    overrides = {"api_key": api_key, "base_url": base_url}
                return create_provider(provider_id, provider_model, timeout=timeout, **overrides)

            llm_client = LLMClient(
                ProviderRegistry(factory=_factory, preferred=preferred),
                fallback=self.config.fallback,
                retry_policy=RetryPolicy(**self.config.retry.model_dump()),
                model=model or self.config.provider.model,
                sleep=self._interruptible_sleep,
            )
        self.llm_client = llm_client
        if fallback_callback is not None:
            self.llm_client.set_fallback_callback(fallback_callback)

        self.context = ContextBudgetManager(
            self.llm_client.active_model or "",
            context_length=context_length or self.config.context.context_length,
            response_reserve=self.config.context.response_reserve,
            use_remote_metadata=self.config.context.use_remote_metadata,
        )

        self._prompt = PromptAssembler()
        self.messages: List[Message] = []
        self._interrupt_event = threading.Event()

    # ------------------------------------------------------------------
    # Interrupts
    # ------------------------------------------------------------------

    def interrupt(self) -> None:
        """
        Request cancellation of the current (or next) run.

        Safe to call from any thread. The loop stops at its next checkpoint
        and restores the conversation to what it was when the run started.
        """
        self._interrupt_event.set()
        logger.info("%sInterrupt requested", self.log_prefix)

    def clear_interrupt(self) -> None:
        """Clear any pending interrupt request."""
        self._interrupt_event.clear()

    @property
    def is_interrupted(self) -> bool:
        """Check if an interrupt has been requested."""
        return self._interrupt_event.is_set()

    async def _interruptible_sleep(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._interrupt_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(0.1, remaining))

    # ------------------------------------------------------------------
    # Conversation state
    # ------------------------------------------------------------------

    def _ensure_system_prompt(self) -> None:
        """Rebuild the system message only when tools or memories changed."""
        memory_version = self.memory_store.version if self.memory_store is not None else 0
        has_system = bool(self.messages) and self.messages[0].role == SYSTEM
        if has_system and not self._prompt.needs_rebuild(self.tool_registry.version, memory_version):
            return
        prompt = self._prompt.build(
            tool_names=self.tool_registry.get_tool_names(),
            tools_version=self.tool_registry.version,
            memory_store=self.memory_store,
            system_message=self.system_message,
        )
        if has_system:
            self.messages[0] = Message.system(prompt)
        else:
            self.messages.insert(0, Message.system(prompt))

    def _sync_context_model(self) -> None:
        model = self.llm_client.active_model
        if model and model != self.context.model:
            self.context.set_model(model)

    def reset(self) -> None:
        """Drop the conversation, keeping only a fresh system message."""
        self._prompt.invalidate()
        self.messages = []
        self._ensure_system_prompt()

    def get_history(self) -> List[Message]:
        return list(self.messages)

    def get_messages_for_save(self) -> List[Dict[str, Any]]:
        """History without the system message, in OpenAI chat shape."""
        return messages_to_dicts([m for m in self.messages if m.role != SYSTEM], include_name=True)

    def load_messages(self, messages: List[Dict[str, Any]]) -> None:
        """Replace the conversation with saved messages (system message is rebuilt)."""
        loaded = [m for m in messages_from_dicts(messages) if m.role != SYSTEM]
        self._prompt.invalidate()
        self.messages = []
        self._ensure_system_prompt()
        self.messages.extend(loaded)

    def get_context_stats(self) -> ContextStats:
        self._sync_context_model()
        return self.context.get_stats(self.messages)

    def format_context_stats(self, detailed: bool = False) -> str:
        self._sync_context_model()
        if detailed:
            return self.context.format_detailed_stats(self.messages)
        return self.context.format_stats(self.messages)

    def toggle_auto_approve(self) -> bool:
        return self.approval.toggle_auto_approve()

    def allow_tool_permanently(self, tool_name: str) -> Path:
        """Add ``tool_name`` to ``tools.always_allow`` and write config.yaml."""
        self.approval.approve_permanent(tool_name)
        if tool_name not in self.config.tools.always_allow:
            self.config.tools.always_allow.append(tool_name)
        return save_config(self.config)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _emit_chunk(self, text: str) -> None:
        if self.stream_callback is None:
            return
        try:
            self.stream_callback(text)
        except Exception as cb_err:
            logger.debug("Stream callback error: %s", cb_err)

    def _tool_exec_config(self) -> ToolExecConfig:
        return ToolExecConfig(
            registry=self.tool_registry,
            approval=self.approval,
            confirmation_callback=self.confirmation_callback,
            tool_progress_callback=self.tool_progress_callback,
            tool_result_callback=self.tool_result_callback,
            log_prefix=self.log_prefix,
            log_prefix_chars=self.log_prefix_chars,
        )

    def _cancelled(self, snapshot: List[Message], turns: int, tool_errors: List[ToolFailure]) -> AgentResult:
        logger.info("%sRun cancelled after %d turn(s); history restored", self.log_prefix, turns)
        self.messages = snapshot
        return AgentResult(
            final_response=None,
            messages=messages_to_dicts(self.messages),
            turns_used=turns,
            cancelled=True,
            tool_errors=tool_errors,
        )

    async def _expand_file_references(self, text: str) -> str:
        result = await asyncio.to_thread(expand_file_references, text, self.config.tools.working_dir)
        for failed in result.failed_files:
            logger.warning("%sCould not include @%s: %s", self.log_prefix, failed.path, failed.error)
        if result.referenced_files:
            logger.info("%sIncluded %d referenced file(s)", self.log_prefix, len(result.referenced_files))
        return result.expanded_message

    async def run(self, user_message: str) -> AgentResult:
        """Run the agent loop for one user message.

        Raises:
            NoProviderConfigured: no provider is available.
            ProviderError: a provider failure survived retry and fallback.
            MaxIterationsReached: ``max_iterations`` LLM calls all requested tools.
        """
        snapshot = list(self.messages)
        tool_errors: List[ToolFailure] = []
        try:
            if self.is_interrupted:
                return self._cancelled(snapshot, 0, tool_errors)

            if self.config.agent.expand_file_references:
                user_message = await self._expand_file_references(user_message)
            self._ensure_system_prompt()
            self.messages.append(Message.user(user_message))

            for turn in range(1, self.max_iterations + 1):
                if self.is_interrupted:
                    return self._cancelled(snapshot, turn - 1, tool_errors)

                max_tools = await self.llm_client.get_max_tools()
                self._sync_context_model()
                self.messages = self.context.truncate_to_fit(self.messages)
                definitions = self.tool_registry.get_definitions_limited(max_tools)

                if self.thinking_callback is not None:
                    try:
                        self.thinking_callback()
                    except Exception as cb_err:
                        logger.debug("Thinking callback error: %s", cb_err)

                logger.debug("%sturn %d: %d messages, %d tools", self.log_prefix, turn, len(self.messages), len(definitions))
                try:
                    assistant = await self.llm_client.chat(
                        self.messages,
                        definitions,
                        on_chunk=self._emit_chunk,
                        should_abort=lambda: self.is_interrupted,
                    )
                except Cancelled:
                    return self._cancelled(snapshot, turn, tool_errors)
                except ProviderError:
                    if self.is_interrupted:
                        return self._cancelled(snapshot, turn, tool_errors)
                    raise

                self.messages.append(assistant)

                if not assistant.tool_calls:
                    return AgentResult(
                        final_response=assistant.content or "",
                        messages=messages_to_dicts(self.messages),
                        turns_used=turn,
                        finished_naturally=True,
                        tool_errors=tool_errors,
                    )

                if self.is_interrupted:
                    return self._cancelled(snapshot, turn, tool_errors)

                logger.info(
                    "%sturn %d: executing %d tool call(s): %s",
                    self.log_prefix, turn, len(assistant.tool_calls),
                    ", ".join(tc.name for tc in assistant.tool_calls),
                )
                outcomes = await execute_tool_calls(
                    self._tool_exec_config(),
                    assistant.tool_calls,
                    is_interrupted=lambda: self.is_interrupted,
                )
                for outcome in outcomes:
                    self.messages.append(outcome.to_message())
                    if not outcome.success and not outcome.rejected:
                        tool_errors.append(ToolFailure(
                            turn=turn,
                            tool_name=outcome.tool_call.name,
                            arguments=outcome.tool_call.arguments[:200],
                            error=outcome.error or outcome.content,
                        ))

            logger.warning("%sMaximum iterations reached (%d)", self.log_prefix, self.max_iterations)
            raise MaxIterationsReached(self.max_iterations)
        finally:
            self.clear_interrupt()

    def chat(self, message: str) -> str:
        """
        Simple chat interface that returns just the final response.

        Args:
            message (str): User message

        Returns:
            str: Final assistant response ("" if the run was cancelled)
        """
        async def _run_once():
            try:
                return await self.run(message)
            finally:
                # Provider connections are bound to this event loop.
                await self.llm_client.close()

        result = run_async(_run_once())
        return result.final_response or ""


# ---------------------------------------------------------------------------
# Terminal client
# ---------------------------------------------------------------------------

HELP_TEXT = """Commands:
  /reset      Start a new conversation
  /context    Show context window usage
  /usage      Show token usage and estimated cost
  /approve    Toggle auto-approve, or set it: /approve on|off
  /memories   List remembered facts
  /providers  List providers and their availability
  /provider   Show the active provider, or switch: /provider <id> [model]
  /sessions   List saved conversations
  /save       Save this conversation
  /exit       Quit"""


async def _ainput(prompt: str) -> str:
    """``input()`` on a daemon thread; an abandoned prompt never blocks shutdown."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _settle(value: Optional[str], error: Optional[Exception]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def _read() -> None:
        try:
            value = input(prompt)
        except Exception as e:
            loop.call_soon_threadsafe(_settle, None, e)
        else:
            loop.call_soon_threadsafe(_settle, value, None)

    threading.Thread(target=_read, name="clarissa-input", daemon=True).start()
    return await future


async def _run_turn(agent: AIAgent, line: str) -> AgentResult:
    """Run one REPL turn with Ctrl-C mapped to ``agent.interrupt()``."""
    loop = asyncio.get_running_loop()
    # A Ctrl-C that arrived after the previous turn finished belongs to no run.
    agent.clear_interrupt()
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, agent.interrupt)
    except (NotImplementedError, RuntimeError):
        # Windows loops and non-main threads have no loop signal handlers.
        return await agent.run(line)
    try:
        return await agent.run(line)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _print_stream(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def _interactive(agent: AIAgent, sessions: SessionStore) -> None:
    try:
        await _repl(agent, sessions)
    finally:
        await agent.llm_client.close()


async def _repl(agent: AIAgent, sessions: SessionStore) -> None:
    await agent.llm_client.prewarm()
    print("Type /help for commands.\n")
    while True:
        try:
            line = (await _ainput("> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue

        if line.startswith("/"):
            command = line.split()[0].lower()
            args = line.split()[1:]
            if command in ("/exit", "/quit"):
                break
            elif command == "/help":
                print(HELP_TEXT)
            elif command == "/reset":
                agent.reset()
                agent.approval.clear_session()
                sessions.create()
                print("Conversation reset.")
            elif command == "/context":
                print(agent.format_context_stats(detailed=True))
            elif command == "/usage":
                print(agent.llm_client.usage.format_usage())
            elif command == "/approve":
                if args and args[0].lower() in ("on", "off"):
                    enabled = args[0].lower() == "on"
                    agent.approval.set_auto_approve(enabled)
                elif args:
                    print("Usage: /approve [on|off]")
                    continue
                else:
                    enabled = agent.toggle_auto_approve()
                print(f"Auto-approve {'enabled' if enabled else 'disabled'}.")
            elif command == "/memories":
                if agent.memory_store is None:
                    print("Memory is disabled.")
                else:
                    memories = agent.memory_store.list()
                    if not memories:
                        print("No memories saved.")
                    for i, memory in enumerate(memories, 1):
                        print(f"  {i}. {memory.content}")
            elif command == "/providers":
                for entry in await agent.llm_client.get_available_providers():
                    mark = "+" if entry["available"] else "-"
                    reason = f" ({entry['reason']})" if entry["reason"] else ""
                    print(f"  {mark} {entry['id']}: {entry['name']}{reason}")
            elif command == "/provider":
                try:
                    if args:
                        await agent.llm_client.switch_provider(args[0], args[1] if len(args) > 1 else None)
                    info = await agent.llm_client.get_provider_info()
                except AgentError as e:
                    print(f"Error: {e}")
                    continue
                print(f"Provider: {info['name']} ({info['model'] or 'default model'})")
            elif command == "/sessions":
                for entry in sessions.list_sessions()[:10]:
                    print(f"  {entry['id']}  {entry['updated_at']}  {entry['name']}")
            elif command == "/save":
                path = sessions.save(agent.get_messages_for_save())
                print(f"Saved to {path}")
            else:
                print(f"Unknown command: {command}. Type /help.")
            continue

        try:
            result = await _run_turn(agent, line)
        except AgentError as e:
            print(f"\nError: {e}")
            continue
        print()
        if result.cancelled:
            print("(cancelled)")
        sessions.save(agent.get_messages_for_save())


def main(
    query: str = None,
    provider: str = None,
    model: str = None,
    max_iterations: int = None,
    auto_approve: bool = False,
    resume: str = None,
    list_tools: bool = False,
    list_providers: bool = False,
    check_config: bool = False,
    verbose: bool = False,
):
    """
    Main function for running the agent directly.

    Args:
        query (str): Run a single query and exit. Starts an interactive session if omitted.
        provider (str): Preferred provider (openrouter, openai, anthropic, lmstudio).
        model (str): Model for the preferred provider.
        max_iterations (int): Maximum LLM calls per message. Defaults to config (10).
        auto_approve (bool): Run tools that need confirmation without asking.
        resume (str): Session id to resume, or "last" for the most recent session.
        list_tools (bool): Just list available tools and exit.
        list_providers (bool): Just list providers and their availability and exit.
        check_config (bool): Validate config.yaml and API keys, then exit.
        verbose (bool): Enable verbose logging for debugging.
    """
    if check_config:
        setup_logging(verbose=verbose, quiet=not verbose)
        results = run_validation()
        for key, is_set, message in results["api_keys"]:
            print(f"  {'+' if is_set else '-'} {key}: {message}")
        print(f"  CLARISSA_HOME: {results['clarissa_home'][1]}")
        for warning in results["warnings"]:
            print(f"  warning: {warning}")
        for error in results["errors"]:
            print(f"  error: {error}")
        if not results["is_valid"]:
            sys.exit(1)
        return

    try:
        config = load_config()
    except ConfigValidationError as e:
        print(f"Error: {e}")
        sys.exit(1)
    verbose = verbose or config.debug
    setup_logging(verbose=verbose, quiet=not verbose)

    agent: Optional[AIAgent] = None

    async def confirm(tool_name: str, arguments: str) -> bool:
        try:
            pretty = json.dumps(json.loads(arguments), indent=2)
        except (ValueError, TypeError):
            pretty = arguments
        print(f"\n  Tool '{tool_name}' wants to run with:\n{pretty}")
        answer = (await _ainput("  Allow? [y/N/a=always/p=permanently] ")).strip().lower()
        if answer in ("a", "always"):
            agent.approval.approve_session(tool_name)
            return True
        if answer in ("p", "permanently"):
            path = agent.allow_tool_permanently(tool_name)
            print(f"  {tool_name} added to tools.always_allow in {path}")
            return True
        return answer in ("y", "yes")

    def on_tool(tool_name: str, preview: str) -> None:
        print(f"\n  -> {tool_name}({preview})")

    def on_fallback(from_spec: str, to_spec: str, error: str) -> None:
        print(f"\n  [fallback] {from_spec} failed ({error}); switching to {to_spec}")

    agent = AIAgent(
        provider=provider,
        config=config,
        model=model,
        max_iterations=max_iterations,
        auto_approve=auto_approve or None,
        stream_callback=_print_stream,
        confirmation_callback=confirm,
        tool_progress_callback=on_tool,
        fallback_callback=on_fallback,
    )

    if list_tools:
        for definition in agent.tool_registry.get_definitions():
            flags = [definition.priority]
            if definition.requires_confirmation:
                flags.append("confirm")
            print(f"  {definition.name} [{', '.join(flags)}]: {definition.description}")
        return

    if list_providers:
        for entry in run_async(agent.llm_client.get_available_providers()):
            mark = "+" if entry["available"] else "-"
            reason = f" ({entry['reason']})" if entry["reason"] else ""
            print(f"  {mark} {entry['id']}: {entry['name']}{reason}")
        return

    sessions = SessionStore()
    if resume:
        try:
            session = sessions.get_last() if resume == "last" else sessions.load(resume)
        except InvalidSessionId as e:
            print(f"Error: {e}")
            sys.exit(1)
        if session is None:
            print(f"Session not found: {resume}")
            return
        agent.load_messages(session.messages)
        print(f"Resumed session {session.id} ({len(session.messages)} messages)")
    else:
        sessions.create()

    if query:
        try:
            result = run_async(_run_single(agent, query))
        except AgentError as e:
            print(f"\nError: {e}")
            sys.exit(1)
        print()
        sessions.save(agent.get_messages_for_save())
        if result.cancelled:
            print("(cancelled)")
        return

    print("Clarissa - AI assistant with tool calling")
    print("=" * 50)
    try:
        asyncio.run(_interactive(agent, sessions))
    except KeyboardInterrupt:
        print()


async def _run_single(agent: AIAgent, query: str) -> AgentResult:
    try:
        return await agent.run(query)
    finally:
        await agent.llm_client.close()


def _cli():
    fire.Fire(main)


if __name__ == "__main__":
    _cli()
