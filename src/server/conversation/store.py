from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from src.chat.errors import PersistenceWriteError
from src.chat.models import (
    CalendarEvent,
    Conversation,
    Human,
    Message,
    Part,
    SessionFilter,
    SessionRecord,
    metadata_from_json,
    parts_from_json,
    parts_to_json,
)

logger = logging.getLogger(__name__)


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    raw_memo_html TEXT NOT NULL DEFAULT '',
    enhanced_memo_html TEXT,
    pre_meeting_memo_html TEXT,
    words TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);
"""

_HUMANS_DDL = """
CREATE TABLE IF NOT EXISTS humans (
    id TEXT PRIMARY KEY,
    full_name TEXT,
    email TEXT,
    job_title TEXT,
    linkedin_username TEXT
);
"""

_PARTICIPANTS_DDL = """
CREATE TABLE IF NOT EXISTS session_participants (
    session_id TEXT NOT NULL,
    human_id TEXT NOT NULL,
    PRIMARY KEY (session_id, human_id),
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE,
    FOREIGN KEY(human_id) REFERENCES humans(id) ON DELETE CASCADE
);
"""

_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    note TEXT NOT NULL DEFAULT '',
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_CONVERSATIONS_DDL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    name TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('system', 'user', 'assistant')),
    parts TEXT NOT NULL,
    metadata TEXT,
    seq INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_conversations_session ON conversations(session_id, updated_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation_seq ON messages(conversation_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user_created ON sessions(user_id, created_at DESC);",
]

_SESSION_COLUMNS = "id, user_id, title, raw_memo_html, enhanced_memo_html, pre_meeting_memo_html, words, created_at"
_MESSAGE_COLUMNS = "id, conversation_id, role, parts, metadata, created_at, updated_at"


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON;")
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteChatStore:
    """SQLite-backed repository for conversations, messages and the notes they discuss."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise database schema."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                for ddl in (
                    _SESSIONS_DDL,
                    _HUMANS_DDL,
                    _PARTICIPANTS_DDL,
                    _EVENTS_DDL,
                    _CONVERSATIONS_DDL,
                    _MESSAGES_DDL,
                ):
                    connection.execute(ddl)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await asyncio.to_thread(_init)
        logger.info("Chat database initialised at %s", self._db_path)

    async def close(self) -> None:  # pragma: no cover - connections are per call
        return None

    # Conversations

    async def create_conversation(
        self, *, session_id: str, user_id: str, name: Optional[str] = None
    ) -> Conversation:
        conversation_id = uuid4().hex
        now = _utc_now_str()
        await self._write(
            "INSERT INTO conversations (id, session_id, user_id, name, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (conversation_id, session_id, user_id, name, now, now),
        )
        return Conversation(
            id=conversation_id,
            session_id=session_id,
            user_id=user_id,
            name=name,
            created_at=_parse_ts(now),
            updated_at=_parse_ts(now),
        )

    async def list_conversations(self, session_id: str) -> list[Conversation]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, session_id, user_id, name, created_at, updated_at FROM conversations"
            " WHERE session_id = ? ORDER BY updated_at DESC",
            (session_id,),
        )
        return [self._row_to_conversation(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, session_id, user_id, name, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        return self._row_to_conversation(row) if row else None

    async def rename_conversation(self, conversation_id: str, name: str) -> None:
        await self._write(
            "UPDATE conversations SET name = ?, updated_at = ? WHERE id = ?",
            (name, _utc_now_str(), conversation_id),
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._write("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    # Messages

    async def create_message(self, message: Message) -> Message:
        if message.conversation_id is None:
            raise PersistenceWriteError(f"Message {message.id} has no conversation")
        created = _format_ts(message.created_at) if message.created_at else _utc_now_str()
        parts_json = parts_to_json(message.parts)
        metadata_json = json.dumps(message.metadata, ensure_ascii=False) if message.metadata else None

        def _insert() -> None:
            with sqlite3.connect(self._db_path) as connection:
                connection.row_factory = sqlite3.Row
                _ensure_pragmas(connection)
                row = connection.execute(
                    "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE conversation_id = ?",
                    (message.conversation_id,),
                ).fetchone()
                next_seq = int(row["max_seq"] or 0) + 1
                connection.execute(
                    "INSERT INTO messages (id, conversation_id, role, parts, metadata, seq, created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        message.id,
                        message.conversation_id,
                        message.role,
                        parts_json,
                        metadata_json,
                        next_seq,
                        created,
                        created,
                    ),
                )
                connection.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (created, message.conversation_id),
                )
                connection.commit()

        async with self._write_lock:
            try:
                await asyncio.to_thread(_insert)
            except sqlite3.Error as e:
                raise PersistenceWriteError(f"Failed to write message {message.id}: {e}") from e

        return Message(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role,
            parts=list(message.parts),
            metadata=dict(message.metadata),
            created_at=_parse_ts(created),
            updated_at=_parse_ts(created),
        )

    async def list_messages(self, conversation_id: str) -> list[Message]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
            (conversation_id,),
        )
        return [self._row_to_message(row) for row in rows]

    async def get_message(self, message_id: str) -> Optional[Message]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",
            (message_id,),
        )
        return self._row_to_message(row) if row else None

    async def update_message_parts(self, message_id: str, parts: list[Part]) -> None:
        await self._write(
            "UPDATE messages SET parts = ?, updated_at = ? WHERE id = ?",
            (parts_to_json(parts), _utc_now_str(), message_id),
        )

    # Notes, people and calendar events

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(row) if row else None

    async def list_sessions(self, session_filter: SessionFilter) -> list[SessionRecord]:
        conditions: list[str] = []
        params: list[Any] = []
        if session_filter.user_id:
            conditions.append("user_id = ?")
            params.append(session_filter.user_id)
        if session_filter.type == "search":
            pattern = f"%{_escape_like(session_filter.query)}%"
            conditions.append(
                "(title LIKE ? ESCAPE '\\' OR raw_memo_html LIKE ? ESCAPE '\\'"
                " OR COALESCE(enhanced_memo_html, '') LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        else:
            if session_filter.start is not None:
                conditions.append("created_at >= ?")
                params.append(_format_ts(session_filter.start))
            if session_filter.end is not None:
                conditions.append("created_at <= ?")
                params.append(_format_ts(session_filter.end))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(session_filter.limit)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_SESSION_COLUMNS} FROM sessions {where} ORDER BY created_at DESC LIMIT ?",
            tuple(params),
        )
        return [self._row_to_session(row) for row in rows]

    async def session_list_participants(self, session_id: str) -> list[Human]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT h.id, h.full_name, h.email, h.job_title, h.linkedin_username FROM humans h"
            " JOIN session_participants p ON p.human_id = h.id WHERE p.session_id = ? ORDER BY h.full_name",
            (session_id,),
        )
        return [self._row_to_human(row) for row in rows]

    async def session_get_event(self, session_id: str) -> Optional[CalendarEvent]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, name, start_date, end_date, note FROM events WHERE session_id = ?",
            (session_id,),
        )
        if row is None:
            return None
        return CalendarEvent(
            id=row["id"],
            name=row["name"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            note=row["note"] or "",
        )

    async def get_human(self, human_id: str) -> Optional[Human]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, full_name, email, job_title, linkedin_username FROM humans WHERE id = ?",
            (human_id,),
        )
        return self._row_to_human(row) if row else None

    async def upsert_session(self, record: SessionRecord) -> None:
        await self._write(
            f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET user_id = excluded.user_id, title = excluded.title,"
            " raw_memo_html = excluded.raw_memo_html, enhanced_memo_html = excluded.enhanced_memo_html,"
            " pre_meeting_memo_html = excluded.pre_meeting_memo_html, words = excluded.words,"
            " created_at = excluded.created_at",
            (
                record.id,
                record.user_id,
                record.title or "",
                record.raw_memo_html or "",
                record.enhanced_memo_html,
                record.pre_meeting_memo_html,
                json.dumps(record.words or [], ensure_ascii=False),
                _format_ts(record.created_at),
            ),
        )

    async def delete_session(self, session_id: str) -> None:
        await self._write("DELETE FROM sessions WHERE id = ?", (session_id,))

    async def upsert_human(self, human: Human) -> None:
        await self._write(
            "INSERT INTO humans (id, full_name, email, job_title, linkedin_username)"
            " VALUES (?, ?, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET full_name = excluded.full_name,"
            " email = excluded.email, job_title = excluded.job_title,"
            " linkedin_username = excluded.linkedin_username",
            (human.id, human.full_name, human.email, human.job_title, human.linkedin_username),
        )

    async def add_participant(self, session_id: str, human_id: str) -> None:
        await self._write(
            "INSERT OR IGNORE INTO session_participants (session_id, human_id) VALUES (?, ?)",
            (session_id, human_id),
        )

    async def set_event(self, session_id: str, event: CalendarEvent) -> None:
        await self._write(
            "INSERT OR REPLACE INTO events (id, session_id, name, start_date, end_date, note)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (event.id, session_id, event.name, event.start_date, event.end_date, event.note),
        )

    async def _write(self, query: str, params: tuple = ()) -> None:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._execute, query, params)
            except sqlite3.Error as e:
                raise PersistenceWriteError(str(e)) from e

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            parts=parts_from_json(row["parts"], message_id=row["id"]),
            metadata=metadata_from_json(row["metadata"], message_id=row["id"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionRecord:
        try:
            words = json.loads(row["words"]) if row["words"] else []
        except ValueError:
            logger.warning("Session %s has unreadable transcript words", row["id"])
            words = []
        return SessionRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"] or "",
            raw_memo_html=row["raw_memo_html"] or "",
            enhanced_memo_html=row["enhanced_memo_html"],
            pre_meeting_memo_html=row["pre_meeting_memo_html"],
            words=words if isinstance(words, list) else [],
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_human(row: sqlite3.Row) -> Human:
        return Human(
            id=row["id"],
            full_name=row["full_name"],
            email=row["email"],
            job_title=row["job_title"],
            linkedin_username=row["linkedin_username"],
        )


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _utc_now_str() -> str:
    return _format_ts(datetime.now(timezone.utc))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1]
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
