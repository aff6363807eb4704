"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True, slots=True)
class Account:
    """Mailbox endpoint and credentials; immutable after load."""

    id: str
    host: str
    port: int
    user: str
    password: str
    use_ssl: bool

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, host={self.host!r}, port={self.port}, "
            f"user={self.user!r}, use_ssl={self.use_ssl})"
        )


class AccountState(str, Enum):
    """Lifecycle states of a synchronized account."""

    IDLE = "idle"
    CONNECTING = "connecting"
    BACKFILLING = "backfilling"
    LIVE = "live"
    RECONNECT_PENDING = "reconnect_pending"
    DISCONNECTED = "disconnected"


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class SyncStatus:
    """Connectivity and progress metadata for one account."""

    account_id: str
    connected: bool = False
    state: AccountState = AccountState.IDLE
    last_sync: datetime | None = None
    total_messages: int = 0
    new_messages: int = 0
    parse_errors: int = 0
    watermark: int | None = None
    error: str | None = None


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    """Structured, cleaned representation of a fetched message."""

    id: str
    account_id: str
    folder: str
    subject: str
    body: str
    sender: str
    to: tuple[str, ...]
    date: datetime
    message_id: str
    thread_id: str | None
    has_attachments: bool
    attachment_count: int
    indexed_at: datetime
    category: str = UNCATEGORIZED


@dataclass(frozen=True, slots=True)
class MessageChunk:
    """Raw IMAP payload paired with its UID."""

    uid: int
    raw: bytes


@dataclass(frozen=True, slots=True)
class MailboxInfo:
    """Metadata reported by the server when a folder is selected."""

    name: str
    exists: int
    uidnext: int | None
    uidvalidity: int | None


@dataclass(frozen=True, slots=True)
class IdleNotification:
    """An untagged server response received while idling."""

    kind: str
    number: int | None = None

    @property
    def signals_new_mail(self) -> bool:
        return self.kind in ("EXISTS", "RECENT")


@dataclass(slots=True)
class FetchReport:
    """Outcome summary for a fetch cycle.

    UIDs are consumed in ascending order, so when a cycle aborts ``max_uid``
    is the highest UID below which nothing was left unprocessed.
    """

    requested: int = 0
    fetched: int = 0
    published: int = 0
    failed: int = 0
    skipped: int = 0
    max_uid: int | None = None
    uidnext: int | None = None
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class MessageStats:
    """Counts over stored messages; ``recent`` is keyed by window name."""

    total: int
    by_category: dict[str, int]
    by_account: dict[str, int]
    by_folder: dict[str, int]
    recent: dict[str, int]


__all__ = [
    "Account",
    "AccountState",
    "FetchReport",
    "IdleNotification",
    "MailboxInfo",
    "MessageChunk",
    "MessageStats",
    "NormalizedMessage",
    "SyncStatus",
    "UNCATEGORIZED",
]
