"""Thread-safe confirmation policy for tools that require user approval.

A tool call needs confirmation when its tool declares
``requires_confirmation`` and none of the following apply:

- the global auto-approve switch is on
- the tool was approved for the rest of this session ("always allow")
- the tool is on the permanent allowlist loaded from config
"""

import threading
from typing import Iterable, Set


class ApprovalPolicy:
    def __init__(self, auto_approve: bool = False, permanent: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._auto_approve = auto_approve
        self._session_approved: Set[str] = set()
        self._permanent_approved: Set[str] = set(permanent)

    @property
    def auto_approve(self) -> bool:
        with self._lock:
            return self._auto_approve

    def set_auto_approve(self, enabled: bool) -> None:
        with self._lock:
            self._auto_approve = enabled

    def toggle_auto_approve(self) -> bool:
        """Flip the auto-approve switch; returns the new value."""
        with self._lock:
            self._auto_approve = not self._auto_approve
            return self._auto_approve

    def approve_session(self, tool_name: str) -> None:
        """Always allow ``tool_name`` for the rest of this session."""
        with self._lock:
            self._session_approved.add(tool_name)

    def approve_permanent(self, tool_name: str) -> None:
        with self._lock:
            self._permanent_approved.add(tool_name)

    def is_approved(self, tool_name: str) -> bool:
        with self._lock:
            return tool_name in self._permanent_approved or tool_name in self._session_approved

    def clear_session(self) -> None:
        with self._lock:
            self._session_approved.clear()

    def needs_confirmation(self, registry, tool_name: str) -> bool:
        """Whether a call to ``tool_name`` must go through the confirmation callback."""
        if not registry.requires_confirmation(tool_name):
            return False
        if self.auto_approve:
            return False
        return not self.is_approved(tool_name)
