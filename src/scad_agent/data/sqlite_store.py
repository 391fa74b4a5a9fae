import uuid
from datetime import UTC, datetime

import aiosqlite

from ..config import TITLE_MAX_LENGTH

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    source_code TEXT,
    artifact_url TEXT,
    preview_url TEXT,
    format TEXT,
    is_feedback INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);
"""

MESSAGE_COLUMNS = (
    "id, conversation_id, role, content, source_code, artifact_url, preview_url, "
    "format, is_feedback, created_at"
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


def derive_title(content: str) -> str:
    title = content.strip()
    if len(title) > TITLE_MAX_LENGTH:
        return title[:TITLE_MAX_LENGTH] + "..."
    return title


def _message_row(row) -> dict:
    msg = dict(row)
    msg["is_feedback"] = bool(msg["is_feedback"])
    return msg


class SQLiteStore:
    """Append-only conversation history backed by SQLite."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._db: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Return the database connection, raising if not initialized."""
        if self._db is None:
            raise RuntimeError("SQLiteStore not initialized — call initialize() first")
        return self._db

    async def initialize(self) -> None:
        self._db = await aiosqlite.connect(self._path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # --- Conversations ---

    async def create_conversation(self, title: str | None = None) -> dict:
        cid = _uuid()
        now = _now()
        await self.db.execute(
            "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (cid, title, now, now),
        )
        await self.db.commit()
        return {"id": cid, "title": title, "created_at": now, "updated_at": now, "messages": []}

    async def list_conversations(self) -> list[dict]:
        cursor = await self.db.execute(
            """SELECT c.id, c.title, c.created_at, c.updated_at, COUNT(m.id) AS message_count
               FROM conversations c LEFT JOIN messages m ON m.conversation_id = c.id
               GROUP BY c.id
               ORDER BY c.updated_at DESC"""
        )
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def get_conversation(self, conversation_id: str) -> dict | None:
        cursor = await self.db.execute(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        conv = dict(row)
        conv["messages"] = await self.get_messages(conversation_id)
        return conv

    async def delete_conversation(self, conversation_id: str) -> bool:
        await self.db.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        cursor = await self.db.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,)
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def touch_conversation(self, conversation_id: str) -> None:
        await self.db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (_now(), conversation_id),
        )
        await self.db.commit()

    # --- Messages ---

    async def _insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        source_code: str | None = None,
        artifact_url: str | None = None,
        preview_url: str | None = None,
        fmt: str | None = None,
        is_feedback: bool = False,
    ) -> dict:
        mid = _uuid()
        now = _now()
        await self.db.execute(
            f"INSERT INTO messages ({MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                mid,
                conversation_id,
                role,
                content,
                source_code,
                artifact_url,
                preview_url,
                fmt,
                int(is_feedback),
                now,
            ),
        )
        await self.db.commit()
        await self.touch_conversation(conversation_id)
        return {
            "id": mid,
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "source_code": source_code,
            "artifact_url": artifact_url,
            "preview_url": preview_url,
            "format": fmt,
            "is_feedback": is_feedback,
            "created_at": now,
        }

    async def add_user_message(
        self, conversation_id: str, content: str, is_feedback: bool = False
    ) -> dict:
        message = await self._insert_message(
            conversation_id, "user", content, is_feedback=is_feedback
        )
        if not is_feedback:
            # Title is set once, from the first user prompt
            await self.db.execute(
                "UPDATE conversations SET title = ? WHERE id = ? AND title IS NULL",
                (derive_title(content), conversation_id),
            )
            await self.db.commit()
        return message

    async def add_assistant_message(
        self,
        conversation_id: str,
        content: str,
        source_code: str | None = None,
        artifact_url: str | None = None,
        fmt: str | None = None,
        preview_url: str | None = None,
    ) -> dict:
        return await self._insert_message(
            conversation_id,
            "assistant",
            content,
            source_code=source_code,
            artifact_url=artifact_url,
            preview_url=preview_url,
            fmt=fmt,
        )

    async def get_messages(self, conversation_id: str) -> list[dict]:
        cursor = await self.db.execute(
            f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at, rowid",
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        return [_message_row(r) for r in rows]
