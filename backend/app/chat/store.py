"""DuckDB-backed message log.

The message log is the source of truth for chat history. Records are only
ever appended and mutated in place (edit, soft delete, status changes); they
are never physically removed.

Database Schema:
    messages table:
        - seq: Insertion sequence, tie-breaker for equal timestamps
        - id: 32-char hex message id (primary key)
        - room_id: Room identifier ("global", "dm:<a>:<b>", ...)
        - sender_id / sender_username / sender_fullname: Author snapshot
        - recipient_id: Direct-message recipient (NULL for room messages)
        - content, type, status, edited, edit_history (JSON text)
        - deleted, deleted_by
        - created_at, updated_at: Naive UTC timestamps

Thread Safety:
    The DuckDB connection is NOT thread-safe. All calls are expected to come
    from the single event loop that serves the application.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

import duckdb

from .errors import StoreUnavailableError
from .schemas import EditRecord, Message, MessageStatus, SenderProfile

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    seq             BIGINT DEFAULT nextval('messages_seq'),
    id              VARCHAR PRIMARY KEY,
    room_id         VARCHAR NOT NULL,
    sender_id       VARCHAR NOT NULL,
    sender_username VARCHAR,
    sender_fullname VARCHAR,
    recipient_id    VARCHAR,
    content         VARCHAR NOT NULL,
    type            VARCHAR NOT NULL DEFAULT 'text',
    status          VARCHAR NOT NULL DEFAULT 'sent',
    edited          BOOLEAN NOT NULL DEFAULT FALSE,
    edit_history    VARCHAR NOT NULL DEFAULT '[]',
    deleted         BOOLEAN NOT NULL DEFAULT FALSE,
    deleted_by      VARCHAR,
    created_at      TIMESTAMP NOT NULL,
    updated_at      TIMESTAMP NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_room_created ON messages(room_id, created_at)"

_COLUMNS = (
    "id, room_id, sender_id, sender_username, sender_fullname, recipient_id, "
    "content, type, status, edited, edit_history, deleted, deleted_by, "
    "created_at, updated_at"
)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageStore:
    """Append-only message log stored in DuckDB.

    Creation timestamps are strictly increasing within a process: if the
    clock has not advanced since the previous insert, the new record is
    stamped one microsecond later.

    Args:
        db_path: Path to the DuckDB file, or ``":memory:"``.
    """

    _default_db_path: str = "mindmate.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_SEQUENCE)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        row = self._conn.execute("SELECT max(created_at) FROM messages").fetchone()
        self._last_created_at: Optional[datetime] = row[0] if row else None
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StoreUnavailableError("Message store is closed")
        try:
            return self._conn.execute(sql, list(params))
        except duckdb.Error as exc:
            logger.error("[MessageStore] Query failed: %s", exc)
            raise StoreUnavailableError(f"Message store error: {exc}") from exc

    def _next_timestamp(self) -> datetime:
        now = utcnow()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    def _fetch_one(self, message_id: str) -> Optional[Message]:
        row = self._execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        return self._row_to_message(row) if row else None

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        (
            message_id, room_id, sender_id, sender_username, sender_fullname,
            recipient_id, content, type_, status, edited, edit_history,
            deleted, deleted_by, created_at, updated_at,
        ) = row
        sender = None
        if sender_username is not None:
            sender = SenderProfile(
                id=sender_id, username=sender_username, fullname=sender_fullname or ""
            )
        return Message(
            id=message_id,
            roomId=room_id,
            senderId=sender_id,
            sender=sender,
            recipientId=recipient_id,
            content=content,
            type=type_,
            status=MessageStatus(status),
            edited=edited,
            editHistory=[EditRecord(**item) for item in json.loads(edit_history)],
            deleted=deleted,
            deletedBy=deleted_by,
            createdAt=created_at,
            updatedAt=updated_at,
        )

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create(
        self,
        room_id: str,
        sender_id: str,
        content: str,
        sender: Optional[SenderProfile] = None,
        recipient_id: Optional[str] = None,
        type_: str = "text",
    ) -> Message:
        """Append a new message with status ``sent``."""
        created_at = self._next_timestamp()
        message = Message(
            roomId=room_id,
            senderId=sender_id,
            sender=sender,
            recipientId=recipient_id,
            content=content,
            type=type_,
            createdAt=created_at,
            updatedAt=created_at,
        )
        self._execute(
            f"""
            INSERT INTO messages ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, '[]', FALSE, NULL, ?, ?)
            """,
            [
                message.id, room_id, sender_id,
                sender.username if sender else None,
                sender.fullname if sender else None,
                recipient_id, content, type_, message.status.value,
                created_at, created_at,
            ],
        )
        return message

    def mark_deleted(self, message_id: str, deleted_by: str) -> Optional[Message]:
        """Tombstone a message. Content is kept."""
        self._execute(
            "UPDATE messages SET deleted = TRUE, deleted_by = ?, updated_at = ? WHERE id = ?",
            [deleted_by, utcnow(), message_id],
        )
        return self._fetch_one(message_id)

    def edit(self, message_id: str, content: str) -> Optional[Message]:
        """Replace the text, pushing the previous text onto the edit history."""
        current = self._fetch_one(message_id)
        if current is None:
            return None
        now = utcnow()
        history = [record.model_dump(mode="json") for record in current.editHistory]
        history.append(EditRecord(text=current.content, editedAt=now).model_dump(mode="json"))
        self._execute(
            """
            UPDATE messages
            SET content = ?, edited = TRUE, edit_history = ?, updated_at = ?
            WHERE id = ?
            """,
            [content, json.dumps(history), now, message_id],
        )
        return self._fetch_one(message_id)

    def advance_status(self, message_id: str, status: MessageStatus) -> Optional[Message]:
        """Move the status forward; a lower status than the current one is ignored."""
        allowed_from = [s.value for s in MessageStatus if s.rank < status.rank]
        if allowed_from:
            placeholders = ", ".join("?" for _ in allowed_from)
            self._execute(
                f"""
                UPDATE messages SET status = ?, updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
                """,
                [status.value, utcnow(), message_id, *allowed_from],
            )
        return self._fetch_one(message_id)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, message_id: str) -> Optional[Message]:
        return self._fetch_one(message_id)

    def latest(self, room_id: str, limit: int) -> List[Message]:
        """Most recent ``limit`` messages of a room, oldest first."""
        rows = self._execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE room_id = ?
            ORDER BY created_at DESC, seq DESC
            LIMIT ?
            """,
            [room_id, limit],
        ).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    def before(self, room_id: str, cursor: datetime, limit: int) -> List[Message]:
        """Up to ``limit`` messages strictly older than ``cursor``, oldest first."""
        rows = self._execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE room_id = ? AND created_at < ?
            ORDER BY created_at DESC, seq DESC
            LIMIT ?
            """,
            [room_id, cursor, limit],
        ).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
