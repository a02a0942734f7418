"""
Base Tool abstraction for the agent's tool registry.

Tools follow a simple pattern:
1. Declare name, description, priority, and a pydantic ``Arguments`` model
2. Implement the async ``execute()`` method
3. Return any value -- the registry normalizes results to text

The ``Arguments`` model is the single source of the JSON schema advertised to
the model and of the validation applied before ``execute()`` runs.
"""

import asyncio
import functools
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict

CORE = "core"
EXTENDED = "extended"
PRIORITIES = (CORE, EXTENDED)


class NoArguments(BaseModel):
    """Argument model for tools that take no parameters."""

    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolDefinition:
    """The model-facing description of a tool."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    requires_confirmation: bool = False
    priority: str = EXTENDED

    def to_openai(self) -> Dict[str, Any]:
        """Convert to OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def schema_from_model(model: Type[BaseModel]) -> Dict[str, Any]:
    """JSON schema for an argument model, trimmed to what providers expect."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


class Tool(ABC):
    """
    Abstract base class for tools.

    Subclasses set the class attributes below and implement ``execute()``.
    """

    name: str = ""
    description: str = ""
    priority: str = EXTENDED
    requires_confirmation: bool = False
    Arguments: Type[BaseModel] = NoArguments

    @abstractmethod
    async def execute(self, args: BaseModel) -> Any:
        """
        Execute the tool with validated arguments.

        Args:
            args: An instance of ``self.Arguments``.

        Returns:
            A string, or any JSON-serializable value.
        """

    def is_available(self) -> Tuple[bool, Optional[str]]:
        """
        Return whether this tool should be exposed in the current process.

        Tools that depend on optional binaries/services/env vars can override
        this to avoid advertising a tool that will fail at runtime.
        """
        return True, None

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=schema_from_model(self.Arguments),
            requires_confirmation=self.requires_confirmation,
            priority=self.priority,
        )


class FunctionTool(Tool):
    """Adapt a plain function (sync or async) into a ``Tool``.

    Sync functions run in the default thread pool so they never block the
    event loop. The function receives the validated fields as keyword
    arguments.
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Union[Any, Awaitable[Any]]],
        arguments: Type[BaseModel] = NoArguments,
        *,
        priority: str = EXTENDED,
        requires_confirmation: bool = False,
    ):
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {PRIORITIES}, got {priority!r}")
        self.name = name
        self.description = description
        self.Arguments = arguments
        self.priority = priority
        self.requires_confirmation = requires_confirmation
        self._func = func

    async def execute(self, args: BaseModel) -> Any:
        kwargs = args.model_dump()
        if inspect.iscoroutinefunction(self._func):
            return await self._func(**kwargs)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._func, **kwargs))
