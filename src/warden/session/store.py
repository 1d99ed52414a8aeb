"""
In-memory session storage for Warden.

The SessionStore owns every Session and is the only writer of their
transcripts. Each store is an explicit instance; nothing is global.

Design Principles:
    - Append-only: messages are never edited or reordered
    - Thread-safe: a lock guards the session map; it is never held while
      the persistence callback runs
    - Non-fatal persistence: the optional `persist` callback runs after
      every mutation, and its failures become PersistenceError warnings
      instead of aborting the conversation
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from warden.errors import PersistenceError, SessionNotFoundError
from warden.schema import Message, MessageRole, Session, ToolInvocation, ToolOutcome, utc_now

logger = logging.getLogger(__name__)

PersistCallback = Callable[[Session], None]
WarningCallback = Callable[[PersistenceError], None]


def default_title(now: datetime) -> str:
    return f"Session {now:%Y-%m-%d %H:%M:%S}"


class SessionStore:
    """
    Owner of all sessions in one process or test.

    Attributes:
        warnings: PersistenceErrors collected so far, oldest first
    """

    def __init__(
        self,
        persist: PersistCallback | None = None,
        on_warning: WarningCallback | None = None,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._persist = persist
        self._on_warning = on_warning
        self.warnings: list[PersistenceError] = []

    def create(self, model_id: str, title: str | None = None) -> Session:
        """Create and store an empty session."""
        now = utc_now()
        session = Session(
            title=title if title is not None else default_title(now),
            model_id=model_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._sessions[session.id] = session
        logger.debug("Created session %s", session.id)
        self._after_mutation(session)
        return session

    def get(self, session_id: str) -> Session:
        """
        Look up a session.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id=session_id, operation="get")
        return session

    def get_optional(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str = "",
        tool_calls: list[ToolInvocation] | None = None,
        tool_results: list[ToolOutcome] | None = None,
    ) -> Message:
        """
        Append a message to a session's transcript.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        message = Message(
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_results=tool_results,
        )
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id=session_id, operation="append")
            session.messages.append(message)
            session.updated_at = message.created_at
        self._after_mutation(session)
        return message

    def messages(self, session_id: str) -> list[Message]:
        """Snapshot of a session's transcript."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id=session_id, operation="messages")
            return list(session.messages)

    def remove(self, session_id: str) -> bool:
        """
        Remove a session.

        Returns:
            True if the session was removed, False if it didn't exist
        """
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list(self) -> list[Session]:
        """All sessions in creation order."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _after_mutation(self, session: Session) -> None:
        if self._persist is None:
            return
        try:
            self._persist(session)
        except Exception as e:
            warning = PersistenceError(
                session_id=session.id,
                underlying_error=f"{type(e).__name__}: {e}",
                operation="persist",
            )
            logger.warning("%s", warning.message)
            with self._lock:
                self.warnings.append(warning)
            if self._on_warning is not None:
                self._on_warning(warning)
