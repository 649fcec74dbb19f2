"""Chat session storage with SQLite."""

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from gateway_assistant.config import load_runtime_config
from gateway_assistant.exceptions import SessionError, SessionNotFoundError
from gateway_assistant.logging import get_logger

log = get_logger(__name__)

DEFAULT_SESSION_TITLE = "New chat"
AUTO_TITLE_CHARS = 24
MESSAGE_ROLES = ("user", "assistant")


def _now_ms() -> int:
    """Return current time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class SessionSummary:
    """A chat session with its message count."""

    id: str
    title: str
    created_at: int
    updated_at: int
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messageCount": self.message_count,
        }


@dataclass
class ChatMessage:
    """A stored chat message."""

    id: str
    session_id: str
    role: str  # "user" or "assistant"
    content: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }


class SessionStore:
    """Stores chat sessions and their messages.

    The database path comes from ``LOCAL_DB_PATH`` in the runtime settings
    unless given explicitly. When the setting changes between calls the
    store reconnects to the new file.
    """

    def __init__(self, db_path: Path | str | None = None):
        self._fixed_path = Path(db_path).expanduser() if db_path else None
        self._db: aiosqlite.Connection | None = None
        self.db_path: Path | None = None

    def _resolve_path(self) -> Path:
        if self._fixed_path is not None:
            return self._fixed_path.resolve()
        return Path(load_runtime_config().local_db_path).expanduser().resolve()

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized for the current path."""
        path = self._resolve_path()
        if self._db is not None and self.db_path == path:
            return self._db
        if self._db is not None:
            await self._db.close()
            self._db = None

        path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(path))
        await db.execute("PRAGMA journal_mode = WAL")
        await db.execute("PRAGMA foreign_keys = ON")
        await db.execute("""
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                FOREIGN KEY(session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_chat_messages_session_created ON chat_messages(session_id, created_at)"
        )
        await db.commit()

        self._db = db
        self.db_path = path
        log.debug("Session database opened", path=str(path))
        return db

    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> SessionSummary:
        """Create and persist a new session."""
        db = await self._ensure_db()
        now = _now_ms()
        session = SessionSummary(
            id=str(uuid.uuid4()),
            title=title.strip() or DEFAULT_SESSION_TITLE,
            created_at=now,
            updated_at=now,
        )
        await db.execute(
            "INSERT INTO chat_sessions (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (session.id, session.title, session.created_at, session.updated_at),
        )
        await db.commit()
        log.info("Created new session", session_id=session.id)
        return session

    async def list_sessions(self, limit: int = 100) -> list[SessionSummary]:
        """List sessions, most recently updated first."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT s.id, s.title, s.created_at, s.updated_at, COUNT(m.id)
            FROM chat_sessions s
            LEFT JOIN chat_messages m ON m.session_id = s.id
            GROUP BY s.id
            ORDER BY s.updated_at DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [SessionSummary(*row) for row in rows]

    async def session_exists(self, session_id: str) -> bool:
        db = await self._ensure_db()
        async with db.execute("SELECT 1 FROM chat_sessions WHERE id = ?", (session_id,)) as cursor:
            return await cursor.fetchone() is not None

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        """Messages of a session in insertion order."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT id, session_id, role, content, created_at
            FROM chat_messages
            WHERE session_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [ChatMessage(*row) for row in rows]

    async def append_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        """Append a message to a session.

        The first message of a session, when it comes from the user, also
        becomes the session title (first 24 characters).

        Raises:
            SessionError for an unknown role or blank content
            SessionNotFoundError if the session does not exist
        """
        if role not in MESSAGE_ROLES:
            raise SessionError(f"Unsupported message role: {role}")
        normalized = (content or "").strip()
        if not normalized:
            raise SessionError("Message content must not be empty")
        if not await self.session_exists(session_id):
            raise SessionNotFoundError(session_id)

        db = await self._ensure_db()
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=normalized,
            created_at=_now_ms(),
        )
        await db.execute(
            "INSERT INTO chat_messages (id, session_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (message.id, message.session_id, message.role, message.content, message.created_at),
        )
        async with db.execute(
            "SELECT COUNT(1) FROM chat_messages WHERE session_id = ?", (session_id,)
        ) as cursor:
            (count,) = await cursor.fetchone()

        if count == 1 and role == "user":
            await db.execute(
                "UPDATE chat_sessions SET title = ?, updated_at = ? WHERE id = ?",
                (normalized[:AUTO_TITLE_CHARS], message.created_at, session_id),
            )
        else:
            await db.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                (message.created_at, session_id),
            )
        await db.commit()
        return message

    async def rename_session(self, session_id: str, title: str) -> None:
        normalized = (title or "").strip()
        if not normalized:
            raise SessionError("Session title must not be empty")
        db = await self._ensure_db()
        cursor = await db.execute(
            "UPDATE chat_sessions SET title = ?, updated_at = ? WHERE id = ?",
            (normalized, _now_ms(), session_id),
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise SessionNotFoundError(session_id)

    async def delete_session(self, session_id: str) -> None:
        """Delete a session and its messages. Unknown ids are ignored."""
        db = await self._ensure_db()
        await db.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        await db.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        await db.commit()
        log.info("Deleted session", session_id=session_id)

    async def clear_all(self) -> None:
        db = await self._ensure_db()
        await db.execute("DELETE FROM chat_messages")
        await db.execute("DELETE FROM chat_sessions")
        await db.commit()
        log.info("Cleared all sessions")

    async def storage_stats(self) -> dict[str, Any]:
        db = await self._ensure_db()
        async with db.execute("SELECT COUNT(1) FROM chat_sessions") as cursor:
            (session_count,) = await cursor.fetchone()
        async with db.execute("SELECT COUNT(1) FROM chat_messages") as cursor:
            (message_count,) = await cursor.fetchone()
        return {
            "dbPath": str(self.db_path),
            "sessionCount": session_count,
            "messageCount": message_count,
        }

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None


# Global store instance
_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get the global session store."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store


def set_session_store(store: SessionStore) -> None:
    global _store
    _store = store


__all__ = [
    "ChatMessage",
    "SessionStore",
    "SessionSummary",
    "get_session_store",
    "set_session_store",
]
