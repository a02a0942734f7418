"""Tool call execution with frozen configuration.

Executes the tool calls of one assistant message:

- calls that need confirmation run one at a time, each after the
  confirmation callback approves it; a rejection produces a rejection
  payload and the tool is never invoked
- every other call runs concurrently with the rest (join-all)
- outcomes are returned in the order of the original ``tool_calls`` list,
  whatever order the tools finished in

Tool failures never raise out of here: they become ``{"error": ...}``
payloads so the model can see them and recover.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from agent.errors import ToolError
from agent.messages import Message, ToolCall
from tools.approval import ApprovalPolicy
from tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

MAX_TOOL_RESULT_CHARS = 100_000

REJECTION_MESSAGE = "User rejected this tool execution"
REJECTION_PAYLOAD = json.dumps({"rejected": True, "message": REJECTION_MESSAGE})
CANCELLED_PAYLOAD = "[Tool execution cancelled - user interrupted]"


@dataclass(frozen=True)
class ToolExecConfig:
    """Immutable configuration for tool execution."""

    registry: ToolRegistry
    approval: ApprovalPolicy
    confirmation_callback: Optional[Callable[[str, str], Any]] = None
    tool_progress_callback: Optional[Callable[[str, str], None]] = None
    tool_result_callback: Optional[Callable[[str, str, bool], None]] = None
    log_prefix: str = ""
    log_prefix_chars: int = 100


@dataclass
class ToolOutcome:
    tool_call: ToolCall
    content: str
    success: bool
    rejected: bool = False
    error: Optional[str] = None

    def to_message(self) -> Message:
        return Message.tool(self.tool_call.id, self.content, name=self.tool_call.name)


def error_payload(message: str, error_type: str) -> str:
    return json.dumps({"error": message, "error_type": error_type}, ensure_ascii=False)


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _truncate(content: str) -> str:
    if len(content) <= MAX_TOOL_RESULT_CHARS:
        return content
    return (
        content[:MAX_TOOL_RESULT_CHARS]
        + f"\n\n[Output truncated: {len(content)} characters total]"
    )


def partition_tool_calls(
    config: ToolExecConfig, tool_calls: List[ToolCall]
) -> Tuple[List[Tuple[int, ToolCall]], List[Tuple[int, ToolCall]]]:
    """Split into (auto_approved, needs_confirmation), keeping original indices."""
    auto: List[Tuple[int, ToolCall]] = []
    gated: List[Tuple[int, ToolCall]] = []
    for i, tc in enumerate(tool_calls):
        if config.confirmation_callback is not None and config.approval.needs_confirmation(config.registry, tc.name):
            gated.append((i, tc))
        else:
            auto.append((i, tc))
    return auto, gated


async def _run_one(config: ToolExecConfig, tool_call: ToolCall) -> ToolOutcome:
    prefix = config.log_prefix
    if config.tool_progress_callback:
        try:
            config.tool_progress_callback(tool_call.name, _preview(tool_call.arguments, config.log_prefix_chars))
        except Exception as cb_err:
            logger.debug("Tool progress callback error: %s", cb_err)

    logger.info("%sTool %s(%s)", prefix, tool_call.name, _preview(tool_call.arguments, config.log_prefix_chars))
    try:
        result = await config.registry.execute(tool_call.name, tool_call.arguments)
        outcome = ToolOutcome(tool_call, _truncate(result), success=True)
    except ToolError as e:
        logger.warning("%sTool %s failed (%s): %s", prefix, tool_call.name, e.kind, e)
        outcome = ToolOutcome(tool_call, error_payload(str(e), e.kind), success=False, error=str(e))
    except Exception as e:
        logger.exception("%sUnexpected error running tool %s", prefix, tool_call.name)
        outcome = ToolOutcome(
            tool_call, error_payload(f"{tool_call.name} failed: {e}", "execution_failed"),
            success=False, error=str(e),
        )

    if config.tool_result_callback:
        try:
            config.tool_result_callback(tool_call.name, outcome.content, outcome.success)
        except Exception as cb_err:
            logger.debug("Tool result callback error: %s", cb_err)
    return outcome


async def _confirm(config: ToolExecConfig, tool_call: ToolCall) -> bool:
    answer = config.confirmation_callback(tool_call.name, tool_call.arguments)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)


async def execute_tool_calls(
    config: ToolExecConfig,
    tool_calls: List[ToolCall],
    *,
    is_interrupted: Callable[[], bool] = lambda: False,
) -> List[ToolOutcome]:
    """Execute all tool calls from an assistant message.

    Returns exactly one ``ToolOutcome`` per call, in declaration order.
    ``is_interrupted()`` is checked before each confirmation-gated call;
    calls not yet started when it turns true are reported as cancelled.
    """
    auto, gated = partition_tool_calls(config, tool_calls)
    outcomes: Dict[int, ToolOutcome] = {}

    auto_task = None
    if auto:
        auto_task = asyncio.ensure_future(
            asyncio.gather(*(_run_one(config, tc) for _, tc in auto))
        )

    try:
        for i, tc in gated:
            if is_interrupted():
                outcomes[i] = ToolOutcome(tc, CANCELLED_PAYLOAD, success=False, error="cancelled")
                continue
            try:
                approved = await _confirm(config, tc)
            except Exception as e:
                logger.warning("%sConfirmation callback failed for %s: %s", config.log_prefix, tc.name, e)
                outcomes[i] = ToolOutcome(
                    tc, error_payload(f"Confirmation failed: {e}", "confirmation_failed"),
                    success=False, error=str(e),
                )
                continue
            if not approved:
                logger.info("%sTool %s rejected by user", config.log_prefix, tc.name)
                outcomes[i] = ToolOutcome(tc, REJECTION_PAYLOAD, success=False, rejected=True)
                continue
            outcomes[i] = await _run_one(config, tc)

        if auto_task is not None:
            for (i, _), outcome in zip(auto, await auto_task):
                outcomes[i] = outcome
    finally:
        if auto_task is not None and not auto_task.done():
            auto_task.cancel()

    return [outcomes[i] for i in range(len(tool_calls))]
