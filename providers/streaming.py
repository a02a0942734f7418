"""Reassembly of streamed tool-call fragments.

Streaming APIs deliver a tool call in pieces addressed by an integer index:
the first delta for a call carries its id (and usually its name), later
deltas carry argument fragments. Nothing is exposed until ``finalize()``.
"""

import logging
import uuid
from typing import Dict, List, Optional

from agent.messages import ToolCall

logger = logging.getLogger(__name__)


class _PartialCall:
    __slots__ = ("id", "name", "arguments")

    def __init__(self, call_id: str, name: str, arguments: str):
        self.id = call_id
        self.name = name
        self.arguments = arguments


class ToolCallAccumulator:
    def __init__(self):
        self._calls: Dict[int, _PartialCall] = {}

    def __bool__(self) -> bool:
        return bool(self._calls)

    def add(
        self,
        index: int,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> None:
        """Merge one delta.

        A delta with a new id starts a call at ``index``. A delta without one
        (or repeating the current id) appends to the call at ``index``.
        Fragments for an index that never started are dropped.
        """
        existing = self._calls.get(index)
        if call_id and (existing is None or existing.id != call_id):
            self._calls[index] = _PartialCall(call_id, name or "", arguments or "")
            return
        if existing is None:
            logger.debug("Dropping tool-call fragment for unknown index %s", index)
            return
        if name and not (call_id and existing.name):
            existing.name += name
        if arguments:
            existing.arguments += arguments

    def finalize(self) -> List[ToolCall]:
        """Completed calls ordered by index."""
        calls = []
        for index in sorted(self._calls):
            partial = self._calls[index]
            if not partial.name:
                logger.warning("Discarding tool call %s with no name", partial.id)
                continue
            calls.append(ToolCall(
                id=partial.id or f"call_{uuid.uuid4().hex[:12]}",
                name=partial.name,
                arguments=partial.arguments or "{}",
            ))
        return calls
