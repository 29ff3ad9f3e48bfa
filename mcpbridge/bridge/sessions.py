"""Session bookkeeping for HTTP clients.

A session is created once per successful initialize handshake made by an
HTTP client. Its id is handed to the client in the Mcp-Session-Id header
and stays valid until the client deletes it or the bridge stops.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A client session.

    Attributes:
        id: Random UUID4 string, never reused.
        created_at: UTC creation time.
        client_info: The clientInfo the client sent with initialize.
    """

    id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    client_info: Any = None


class SessionManager:
    """In-memory set of live sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def create(self, client_info: Any = None) -> str:
        """Create a session and return its id."""
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())
        self._sessions[session_id] = Session(id=session_id, client_info=client_info)
        logger.info("Session created: %s (client: %s)", session_id, _client_name(client_info))
        return session_id

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def terminate(self, session_id: str) -> bool:
        """Remove a session.

        Returns:
            True if the session existed and was removed.
        """
        if self._sessions.pop(session_id, None) is None:
            return False
        logger.info("Session terminated: %s", session_id)
        return True

    def clear(self) -> None:
        self._sessions.clear()

    @property
    def count(self) -> int:
        return len(self._sessions)


def _client_name(client_info: Any) -> str:
    if isinstance(client_info, dict):
        return str(client_info.get("name", "unknown"))
    return "unknown"
