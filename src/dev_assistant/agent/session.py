"""Per-session conversation state for the agent loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass

DEFAULT_SESSION = "default"


@dataclass(slots=True)
class SessionContext:
    """State that survives between turns of one conversation.

    `awaiting_rejection` is armed after a retrieval tool ran and is consumed
    by the very next model output. `last_query` is the most recent question
    answered without escalation.
    """

    session_id: str
    awaiting_rejection: bool = False
    last_query: str | None = None


class SessionStore:
    """Sessions keyed by id, evicting the least recently used past `max_sessions`."""

    def __init__(self, max_sessions: int = 1000) -> None:
        self._sessions: dict[str, SessionContext] = {}
        self._max_sessions = max_sessions
        self._lock = threading.Lock()

    def get(self, session_id: str | None = None) -> SessionContext:
        key = session_id or DEFAULT_SESSION
        with self._lock:
            session = self._sessions.pop(key, None)
            if session is None:
                session = SessionContext(session_id=key)
            self._sessions[key] = session
            while len(self._sessions) > self._max_sessions:
                del self._sessions[next(iter(self._sessions))]
            return session

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
