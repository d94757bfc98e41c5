"""Append-only conversation history, keyed by session id."""

import logging
import sqlite3
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from toolstream.errors import SessionNotFoundError
from toolstream.message import Message, message_adapter

logger = logging.getLogger(__name__)


class Session(BaseModel):
    session_id: str
    transcript: list[Message] = Field(default_factory=list)


class SessionStore(ABC):
    """Persistence boundary used by the orchestrator and session manager."""

    @abstractmethod
    async def create_session(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> bool:
        """Return whether *session_id* exists."""
        ...

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> None:
        ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> list[Message]:
        """Return the session's messages in insertion order."""
        ...


class InMemorySessionStore(SessionStore):
    """Keeps sessions in a dict. Useful for tests and demos."""

    def __init__(self):
        self.sessions: dict[str, Session] = {}

    async def create_session(self, session_id: str) -> None:
        if session_id in self.sessions:
            logger.warning("Session %s already exists", session_id)
            return
        self.sessions[session_id] = Session(session_id=session_id)
        logger.info("Created session %s", session_id)

    async def get_session(self, session_id: str) -> bool:
        return session_id in self.sessions

    def _get(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} does not exist")
        return session

    async def append_message(self, session_id: str, message: Message) -> None:
        self._get(session_id).transcript.append(message)
        logger.debug("Appended %s message to session %s", message.role, session_id)

    async def list_messages(self, session_id: str) -> list[Message]:
        return list(self._get(session_id).transcript)


class SQLiteSessionStore(SessionStore):
    """Stores each message as a JSON row in SQLite.

    Args:
        db_path: Database file, or ``":memory:"``.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS sessions ("
            "  id TEXT PRIMARY KEY,"
            "  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS messages ("
            "  id INTEGER PRIMARY KEY AUTOINCREMENT,"
            "  session_id TEXT NOT NULL REFERENCES sessions(id),"
            "  role TEXT NOT NULL,"
            "  payload TEXT NOT NULL"
            ")"
        )
        self._conn.commit()
        logger.info("Opened SQLite session store at %s", db_path)

    async def create_session(self, session_id: str) -> None:
        cursor = self._conn.execute(
            "INSERT OR IGNORE INTO sessions (id) VALUES (?)", (session_id,)
        )
        self._conn.commit()
        if cursor.rowcount == 0:
            logger.warning("Session %s already exists", session_id)
        else:
            logger.info("Created session %s", session_id)

    async def get_session(self, session_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return row is not None

    async def _require(self, session_id: str) -> None:
        if not await self.get_session(session_id):
            raise SessionNotFoundError(f"Session {session_id} does not exist")

    async def append_message(self, session_id: str, message: Message) -> None:
        await self._require(session_id)
        self._conn.execute(
            "INSERT INTO messages (session_id, role, payload) VALUES (?, ?, ?)",
            (session_id, message.role, message.model_dump_json()),
        )
        self._conn.commit()

    async def list_messages(self, session_id: str) -> list[Message]:
        await self._require(session_id)
        rows = self._conn.execute(
            "SELECT payload FROM messages WHERE session_id = ? ORDER BY id",
            (session_id,),
        ).fetchall()
        return [message_adapter.validate_json(payload) for (payload,) in rows]

    def close(self) -> None:
        self._conn.close()
