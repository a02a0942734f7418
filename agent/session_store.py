"""Session persistence -- one JSON file per conversation.

Sessions live under ``$CLARISSA_HOME/sessions/<id>.json``. Ids are validated
before they are ever joined into a path, so a crafted id cannot escape the
sessions directory. Messages are stored in OpenAI chat shape without the
system message (the agent rebuilds that on load).
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from clarissa_constants import get_clarissa_home

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class InvalidSessionId(ValueError):
    pass


def validate_session_id(session_id: str) -> str:
    if not session_id or not _SESSION_ID_RE.match(session_id) or ".." in session_id:
        raise InvalidSessionId(f"Invalid session ID: {session_id!r}")
    return session_id


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Session:
    id: str
    name: str
    created_at: str
    updated_at: str
    messages: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "messages": self.messages,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            messages=list(data.get("messages") or []),
        )


class SessionStore:
    """Create, save, load, list, and delete conversation sessions.

    Args:
        sessions_dir: Directory for session files. Defaults to
            ``$CLARISSA_HOME/sessions``.
    """

    def __init__(self, sessions_dir: Optional[Path] = None):
        self.sessions_dir = Path(sessions_dir) if sessions_dir else get_clarissa_home() / "sessions"
        self.current: Optional[Session] = None

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{validate_session_id(session_id)}.json"

    def create(self, name: Optional[str] = None) -> Session:
        session_id = f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        now = _now()
        self.current = Session(
            id=session_id,
            name=name or f"Session {datetime.now().strftime('%Y-%m-%d %H:%M')}",
            created_at=now,
            updated_at=now,
        )
        self.save()
        return self.current

    def save(self, messages: Optional[List[Dict[str, Any]]] = None) -> Optional[Path]:
        """Write the current session (optionally replacing its messages)."""
        if self.current is None:
            return None
        if messages is not None:
            self.current.messages = list(messages)
        self.current.updated_at = _now()
        path = self._path(self.current.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(self.current.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        return path

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            session = Session.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError) as e:
            logger.warning("Could not load session %s: %s", session_id, e)
            return None
        self.current = session
        return session

    def list_sessions(self) -> List[Dict[str, str]]:
        """Summaries sorted by most recently updated first."""
        if not self.sessions_dir.exists():
            return []
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.debug("Skipping unreadable session file %s: %s", path, e)
                continue
            sessions.append({
                "id": data.get("id", path.stem),
                "name": data.get("name", path.stem),
                "updated_at": data.get("updated_at", ""),
            })
        return sorted(sessions, key=lambda s: s["updated_at"], reverse=True)

    def get_last(self) -> Optional[Session]:
        sessions = self.list_sessions()
        if not sessions:
            return None
        return self.load(sessions[0]["id"])

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        if self.current is not None and self.current.id == session_id:
            self.current = None
        return True
