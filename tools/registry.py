"""Tool registry: definitions, priority-aware limiting, and validated dispatch."""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from agent.errors import ToolExecutionFailed, ToolNotFound, ToolValidationFailed
from tools.base import CORE, EXTENDED, Tool, ToolDefinition

logger = logging.getLogger(__name__)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def normalize_result(result: Any) -> str:
    """Tool results travel as text. Non-strings are JSON-encoded."""
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


class ToolRegistry:
    """Registry of available tools.

    Registration order is preserved. Registering a name that already exists
    replaces the tool in place, keeping its original slot.
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every change; used to invalidate the system prompt."""
        return self._version

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool name must not be empty")
        if tool.priority not in (CORE, EXTENDED):
            raise ValueError(f"Tool {tool.name} has unknown priority {tool.priority!r}")
        if tool.name in self._tools:
            logger.warning("Tool '%s' is already registered; replacing it", tool.name)
        self._tools[tool.name] = tool
        self._version += 1

    def unregister(self, name: str) -> bool:
        if self._tools.pop(name, None) is None:
            return False
        self._version += 1
        return True

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def get_tool_names(self) -> List[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> List[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def get_definitions_limited(self, max_tools: Optional[int] = None) -> List[ToolDefinition]:
        """Definitions for at most ``max_tools`` tools, core tools first.

        Within each priority, registration order is kept. ``None`` means
        no limit.
        """
        definitions = self.get_definitions()
        if max_tools is None:
            return definitions
        if max_tools <= 0:
            return []
        core = [d for d in definitions if d.priority == CORE]
        extended = [d for d in definitions if d.priority != CORE]
        return (core + extended)[:max_tools]

    def requires_confirmation(self, name: str) -> bool:
        tool = self._tools.get(name)
        return bool(tool and tool.requires_confirmation)

    async def execute(self, name: str, arguments: Union[str, Dict[str, Any], None]) -> str:
        """Validate ``arguments`` and run the named tool.

        Raises:
            ToolNotFound: no tool is registered under ``name``.
            ToolValidationFailed: arguments are not valid JSON or fail the schema.
            ToolExecutionFailed: the tool raised; the original exception is chained.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)

        if arguments is None or (isinstance(arguments, str) and not arguments.strip()):
            payload: Any = {}
        elif isinstance(arguments, str):
            try:
                payload = json.loads(arguments)
            except json.JSONDecodeError as e:
                raise ToolValidationFailed(name, f"malformed JSON ({e.msg})") from e
        else:
            payload = arguments
        if not isinstance(payload, dict):
            raise ToolValidationFailed(name, "arguments must be a JSON object")

        try:
            args = tool.Arguments.model_validate(payload)
        except ValidationError as e:
            raise ToolValidationFailed(name, _format_validation_error(e)) from e

        try:
            result = await tool.execute(args)
        except Exception as e:
            logger.debug("Tool %s raised: %s", name, e, exc_info=True)
            raise ToolExecutionFailed(name, e) from e
        return normalize_result(result)
