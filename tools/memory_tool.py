#!/usr/bin/env python3
"""
Memory Tool Module - Persistent Curated Memory

Memories are short facts the user asked the agent to remember. They live in
a single JSON file under the Clarissa home directory and are injected into
the system prompt (only the most recent entries).

Every mutation bumps ``MemoryStore.version`` so the agent can tell when its
cached system prompt is stale.

Content is sanitized before storage: instruction-override markers and
markdown headers are stripped and entries are capped in length.
"""

import json
import logging
import os
import re
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from clarissa_constants import get_clarissa_home
from tools.base import CORE, EXTENDED, Tool

logger = logging.getLogger(__name__)

MAX_MEMORIES = 100
MAX_MEMORIES_FOR_PROMPT = 20
MAX_MEMORY_LENGTH = 500

MEMORY_PROMPT_HEADER = (
    "## Remembered Context\n"
    "The user has asked you to remember the following:"
)

_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"SYSTEM:",
        r"INSTRUCTIONS:",
        r"IGNORE\s*(PREVIOUS|ALL|ABOVE)",
        r"OVERRIDE",
        r"DISREGARD",
        r"FORGET\s*(PREVIOUS|ALL|ABOVE)",
        r"NEW\s*INSTRUCTIONS:",
        r"\[SYSTEM\]",
        r"\[INST\]",
        r"<\|im_start\|>",
        r"<\|im_end\|>",
    )
]
_MARKDOWN_HEADER = re.compile(r"^#{1,6}\s+", re.MULTILINE)
# Zero-width and bidi control characters can hide text from the user.
_INVISIBLE_CHARS = re.compile("[\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff]")


class Memory(BaseModel):
    id: str
    content: str
    created_at: str


_memory_list = TypeAdapter(List[Memory])


def sanitize_memory_content(content: str) -> str:
    """Strip prompt-injection markers and cap the length."""
    sanitized = _INVISIBLE_CHARS.sub("", content).strip()
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = _MARKDOWN_HEADER.sub("", sanitized)
    if len(sanitized) > MAX_MEMORY_LENGTH:
        sanitized = sanitized[:MAX_MEMORY_LENGTH] + "..."
    return sanitized


def _normalize(content: str) -> str:
    return content.strip().lower()


class MemoryStore:
    """File-backed memory list.

    Args:
        path: JSON file to use. Defaults to ``$CLARISSA_HOME/memories.json``.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_clarissa_home() / "memories.json"
        self._memories: List[Memory] = []
        self._loaded = False
        self._version = 0
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._version

    def load_from_disk(self) -> None:
        """(Re)load memories from disk. A corrupt file yields an empty list."""
        with self._lock:
            self._load_locked(force=True)

    def _load_locked(self, force: bool = False) -> None:
        if self._loaded and not force:
            return
        self._loaded = True
        if not self.path.exists():
            self._memories = []
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            memories = _memory_list.validate_python(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Invalid memory data in %s: %s", self.path, e)
            self._memories = []
            return
        seen = set()
        self._memories = []
        for memory in memories:
            key = _normalize(memory.content)
            if key not in seen:
                seen.add(key)
                self._memories.append(memory)

    def _save_locked(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([m.model_dump() for m in self._memories], indent=2, ensure_ascii=False)
        # Atomic: write a temp file, then rename it over the target.
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".mem_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def add(self, content: str) -> Optional[Memory]:
        """Store a memory. Returns None for duplicates or empty content."""
        with self._lock:
            self._load_locked()
            normalized = _normalize(content)
            if not normalized:
                return None
            if any(_normalize(m.content) == normalized for m in self._memories):
                return None

            sanitized = sanitize_memory_content(content)
            if not sanitized:
                return None
            memory = Memory(
                id=f"mem_{uuid.uuid4().hex[:12]}",
                content=sanitized,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            self._memories.append(memory)
            if len(self._memories) > MAX_MEMORIES:
                del self._memories[: len(self._memories) - MAX_MEMORIES]
            self._version += 1
            self._save_locked()
            return memory

    def list(self) -> List[Memory]:
        with self._lock:
            self._load_locked()
            return list(self._memories)

    def forget(self, id_or_index: str) -> bool:
        """Delete by 1-based index or by id."""
        with self._lock:
            self._load_locked()
            target = None
            key = str(id_or_index).strip()
            if key.isdigit() and 1 <= int(key) <= len(self._memories):
                target = int(key) - 1
            else:
                for i, m in enumerate(self._memories):
                    if m.id == key:
                        target = i
                        break
            if target is None:
                return False
            del self._memories[target]
            self._version += 1
            self._save_locked()
            return True

    def clear(self) -> None:
        with self._lock:
            self._memories = []
            self._loaded = True
            self._version += 1
            self._save_locked()

    def get_prompt_context(self) -> Optional[str]:
        """System-prompt block with the most recent memories, or None."""
        with self._lock:
            self._load_locked()
            if not self._memories:
                return None
            recent = self._memories[-MAX_MEMORIES_FOR_PROMPT:]
        lines = "\n".join(f"- {m.content}" for m in recent)
        return f"{MEMORY_PROMPT_HEADER}\n{lines}"


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class RememberTool(Tool):
    name = "remember"
    description = (
        "Save an important fact or preference the user wants you to remember "
        "across conversations. Keep entries short and self-contained."
    )
    priority = CORE

    class Arguments(BaseModel):
        content: str = Field(..., min_length=1, description="The fact to remember")

    def __init__(self, store: MemoryStore):
        self.store = store

    async def execute(self, args: "RememberTool.Arguments") -> dict:
        memory = self.store.add(args.content)
        if memory is None:
            return {"saved": False, "message": "Already remembered (or empty)"}
        return {"saved": True, "id": memory.id, "content": memory.content}


class ForgetTool(Tool):
    name = "forget"
    description = "Delete a remembered fact by its 1-based position or its id."
    priority = EXTENDED

    class Arguments(BaseModel):
        id_or_index: str = Field(..., description="1-based index or memory id")

    def __init__(self, store: MemoryStore):
        self.store = store

    async def execute(self, args: "ForgetTool.Arguments") -> dict:
        removed = self.store.forget(args.id_or_index)
        return {"removed": removed}
