"""SQLite-backed message repository implementation."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.interfaces import MessageRepository
from ..core.models import UNCATEGORIZED, MessageStats, NormalizedMessage

LOGGER = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    folder TEXT NOT NULL,
    message_id TEXT NOT NULL DEFAULT '',
    thread_id TEXT,
    subject TEXT NOT NULL,
    sender TEXT NOT NULL,
    to_recipients TEXT NOT NULL DEFAULT '',
    sent_at TEXT NOT NULL,
    body TEXT NOT NULL,
    has_attachments INTEGER NOT NULL DEFAULT 0,
    attachment_count INTEGER NOT NULL DEFAULT 0,
    category TEXT NOT NULL DEFAULT 'Uncategorized',
    indexed_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_account_message_id
    ON messages(account_id, message_id) WHERE message_id != '';
CREATE INDEX IF NOT EXISTS idx_messages_account_sent
    ON messages(account_id, sent_at DESC);
CREATE INDEX IF NOT EXISTS idx_messages_category ON messages(category);
"""

_COLUMNS = (
    "id, account_id, folder, message_id, thread_id, subject, sender, "
    "to_recipients, sent_at, body, has_attachments, attachment_count, "
    "category, indexed_at"
)

_RECENT_WINDOWS = (
    ("last_24_hours", timedelta(hours=24)),
    ("last_7_days", timedelta(days=7)),
    ("last_30_days", timedelta(days=30)),
)


class SqliteMessageRepository(MessageRepository):
    """Persist normalized messages using SQLite.

    Messages carrying a protocol ``Message-ID`` are stored once per account,
    so re-delivered messages are recognised and skipped.
    """

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and create the schema when missing."""
        self._settings = settings
        db_path = Path(settings.db_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._connection:
            self._connection.executescript(_SCHEMA)

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMessageRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # MessageRepository API ---------------------------------------------------
    def persist_message(self, message: NormalizedMessage) -> bool:
        """Insert ``message``; return ``False`` if it is a known duplicate."""
        if not message.account_id:
            raise ValueError("Message account_id is required")
        LOGGER.debug("Persisting message %s for %s", message.id, message.account_id)
        with self._lock, self._connection:
            cursor = self._connection.execute(
                f"""
                INSERT OR IGNORE INTO messages ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.account_id,
                    message.folder,
                    message.message_id,
                    message.thread_id,
                    message.subject,
                    message.sender,
                    ",".join(message.to),
                    serialize_datetime(message.date),
                    message.body,
                    int(message.has_attachments),
                    message.attachment_count,
                    message.category,
                    serialize_datetime(message.indexed_at),
                ),
            )
        stored = cursor.rowcount == 1
        if not stored:
            LOGGER.info(
                "Skipping duplicate message %s for %s",
                message.message_id,
                message.account_id,
            )
        return stored

    def update_category(self, message_id: str, category: str) -> None:
        """Set the category of a stored message by generated id."""
        with self._lock, self._connection:
            cursor = self._connection.execute(
                "UPDATE messages SET category = ? WHERE id = ?",
                (category, message_id),
            )
        if cursor.rowcount == 0:
            raise KeyError(message_id)

    def fetch_message(self, message_id: str) -> NormalizedMessage | None:
        """Return a stored message by generated id."""
        with self._lock:
            row = self._connection.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def list_messages(
        self,
        *,
        account_id: str | None = None,
        category: str | None = None,
        query: str | None = None,
        limit: int = 50,
    ) -> list[NormalizedMessage]:
        """Return the most recent messages, newest first.

        ``query`` matches case-insensitively against subject, body and sender.
        """
        if limit <= 0:
            return []
        clauses: list[str] = []
        params: list[object] = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if query:
            pattern = f"%{_escape_like(query)}%"
            clauses.append(
                "(subject LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\' "
                "OR sender LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._lock:
            rows = self._connection.execute(
                f"SELECT {_COLUMNS} FROM messages {where} "
                "ORDER BY sent_at DESC, indexed_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def count_messages(self, account_id: str | None = None) -> int:
        with self._lock:
            if account_id is None:
                row = self._connection.execute("SELECT COUNT(*) FROM messages").fetchone()
            else:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM messages WHERE account_id = ?", (account_id,)
                ).fetchone()
        return int(row[0]) if row else 0

    def message_stats(self, now: datetime | None = None) -> MessageStats:
        """Aggregate stored messages by category, account, folder and recency."""
        reference = now or utcnow()
        totals: dict[str, dict[str, int]] = {}
        with self._lock:
            for column in ("category", "account_id", "folder"):
                rows = self._connection.execute(
                    f"SELECT {column}, COUNT(*) FROM messages GROUP BY {column} ORDER BY {column}"
                ).fetchall()
                totals[column] = {row[0]: int(row[1]) for row in rows}
            recent = {
                label: int(
                    self._connection.execute(
                        "SELECT COUNT(*) FROM messages WHERE indexed_at >= ?",
                        (serialize_datetime(reference - window),),
                    ).fetchone()[0]
                )
                for label, window in _RECENT_WINDOWS
            }
        return MessageStats(
            total=self.count_messages(),
            by_category=totals["category"],
            by_account=totals["account_id"],
            by_folder=totals["folder"],
            recent=recent,
        )

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _split_recipients(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part for part in value.split(",") if part)


def _require_datetime(value: str) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError("Stored timestamp is missing")
    return parsed


def _row_to_message(row: sqlite3.Row) -> NormalizedMessage:
    return NormalizedMessage(
        id=row["id"],
        account_id=row["account_id"],
        folder=row["folder"],
        subject=row["subject"],
        body=row["body"],
        sender=row["sender"],
        to=_split_recipients(row["to_recipients"]),
        date=_require_datetime(row["sent_at"]),
        message_id=row["message_id"],
        thread_id=row["thread_id"],
        has_attachments=bool(row["has_attachments"]),
        attachment_count=int(row["attachment_count"]),
        indexed_at=_require_datetime(row["indexed_at"]),
        category=row["category"] or UNCATEGORIZED,
    )


__all__ = ["SqliteMessageRepository"]
