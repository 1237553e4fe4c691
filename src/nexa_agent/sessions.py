# sessions.py
# Session store: an opaque list of ChatSession records in one JSON file.
#
# The store owns naming and lifecycle (create, rename, favorite, delete).
# The driver only writes a session's message list back after each turn.

import logging
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from nexa_agent.models import ChatSession, Message

logger = logging.getLogger(__name__)

_SESSIONS = TypeAdapter(list[ChatSession])


class SessionStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._sessions: list[ChatSession] = self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> list[ChatSession]:
        if not self.path.exists():
            return []
        try:
            return _SESSIONS.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as exc:
            # A corrupt file must not stop the agent from starting.
            logger.error("could not load sessions from %s: %s", self.path, exc)
            return []

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(_SESSIONS.dump_json(self._sessions, indent=2))
        tmp.replace(self.path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> ChatSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def sorted_sessions(self) -> list[ChatSession]:
        """Favorites first, then newest first."""
        return sorted(self._sessions, key=lambda s: (not s.is_favorite, -s.created_at))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, name: str = "New Task") -> ChatSession:
        session = ChatSession(name=name)
        self._sessions.insert(0, session)
        self.save()
        return session

    def add(self, session: ChatSession) -> None:
        """Track a session created elsewhere, newest first. No-op if already stored."""
        if self.get(session.id) is not None:
            return
        self._sessions.insert(0, session)
        self.save()

    def rename(self, session_id: str, name: str) -> bool:
        session = self.get(session_id)
        if session is None or not name.strip():
            return False
        session.name = name.strip()
        self.save()
        return True

    def toggle_favorite(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.is_favorite = not session.is_favorite
        self.save()
        return True

    def delete(self, session_id: str) -> bool:
        before = len(self._sessions)
        self._sessions = [s for s in self._sessions if s.id != session_id]
        if len(self._sessions) == before:
            return False
        self.save()
        return True

    def update_messages(self, session_id: str, messages: list[Message]) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.messages = list(messages)
        self.save()
        return True
