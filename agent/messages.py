"""Conversation message model.

Messages are stored as small dataclasses and serialized to the OpenAI chat
wire shape (``to_dict``) whenever they leave the agent: provider adapters,
session files, and the context budget manager all work from that shape.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"

ROLES = (SYSTEM, USER, ASSISTANT, TOOL)


@dataclass(frozen=True)
class ToolCall:
    """A finalized tool invocation requested by the model.

    ``arguments`` is the raw JSON text exactly as the model produced it.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Dict[str, Any]:
        """Decode ``arguments``; raises ``ValueError`` on malformed JSON."""
        if not self.arguments or not self.arguments.strip():
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError("tool arguments must be a JSON object")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(id=data.get("id", ""), name=function.get("name", ""), arguments=arguments)


@dataclass
class Message:
    role: str
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=USER, content=content)

    @classmethod
    def assistant(cls, content: Optional[str] = None, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role=ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, content: str, name: Optional[str] = None) -> "Message":
        return cls(role=TOOL, content=content, tool_call_id=tool_call_id, name=name)

    def to_dict(self, include_name: bool = False) -> Dict[str, Any]:
        """Convert to the OpenAI chat message shape.

        ``name`` (the tool name on tool messages) is not part of the wire
        format; pass ``include_name=True`` when persisting.
        """
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if include_name and self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


def messages_to_dicts(messages: List[Message], include_name: bool = False) -> List[Dict[str, Any]]:
    return [m.to_dict(include_name=include_name) for m in messages]


def messages_from_dicts(data: List[Dict[str, Any]]) -> List[Message]:
    return [Message.from_dict(d) for d in data]
