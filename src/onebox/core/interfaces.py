"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import (
    Account,
    IdleNotification,
    MailboxInfo,
    MessageChunk,
    NormalizedMessage,
    SyncStatus,
)


class MailSession(Protocol):
    """A live protocol session bound to a single account."""

    def connect(self) -> None:
        """Open the transport and authenticate."""
        raise NotImplementedError

    def select_mailbox(self) -> MailboxInfo:
        """Select the synchronized folder and return its metadata."""
        raise NotImplementedError

    def search_all(self) -> list[int]:
        """Return every UID in the selected folder."""
        raise NotImplementedError

    def search_since(self, start_uid: int) -> list[int]:
        """Return UIDs greater than or equal to ``start_uid``."""
        raise NotImplementedError

    def fetch_sizes(self, uids: Sequence[int]) -> dict[int, int]:
        """Return the RFC822 size of each requested UID."""
        raise NotImplementedError

    def fetch_message(self, uid: int) -> MessageChunk | None:
        """Return the raw bytes of a message or ``None`` if it vanished."""
        raise NotImplementedError

    def noop(self) -> list[IdleNotification]:
        """Send a keepalive probe, returning changes the server reported."""
        raise NotImplementedError

    def idle_start(self) -> list[IdleNotification]:
        """Enter IDLE mode, returning responses received before it was accepted."""
        raise NotImplementedError

    def idle_wait(self, timeout: float) -> list[IdleNotification]:
        """Wait for server notifications; empty on timeout or interrupt."""
        raise NotImplementedError

    def idle_done(self) -> list[IdleNotification]:
        """Leave IDLE mode, returning notifications drained on the way out."""
        raise NotImplementedError

    def interrupt(self) -> None:
        """Abort blocking operations from another thread."""
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources."""
        raise NotImplementedError


class MessageRepository(Protocol):
    """Abstraction for message persistence."""

    def persist_message(self, message: NormalizedMessage) -> bool:
        """Store ``message``; return ``False`` when it was already stored."""
        raise NotImplementedError

    def update_category(self, message_id: str, category: str) -> None:
        """Set the category of a stored message by generated id."""
        raise NotImplementedError

    def fetch_message(self, message_id: str) -> NormalizedMessage | None:
        """Return a stored message by generated id."""
        raise NotImplementedError

    def close(self) -> None:
        """Close database connections if necessary."""
        raise NotImplementedError


class CategoryService(Protocol):
    """Assigns a sales-intent label to a message."""

    def categorize(self, message: NormalizedMessage) -> str:
        """Return one of the known category labels."""
        raise NotImplementedError


class Notifier(Protocol):
    """Delivers notifications about categorized messages."""

    def notify_interested(self, message: NormalizedMessage) -> None:
        """Announce a message categorized as ``Interested``."""
        raise NotImplementedError


class SessionFactory(Protocol):
    """Creates an unconnected session for an account."""

    def __call__(self, account: Account) -> MailSession:
        raise NotImplementedError


class AccountController(Protocol):
    """Management operations exposed to the HTTP and CLI surfaces."""

    def list_statuses(self) -> list[SyncStatus]:
        raise NotImplementedError

    def get_status(self, account_id: str) -> SyncStatus:
        raise NotImplementedError

    def reconnect_account(self, account_id: str, timeout: float | None = None) -> SyncStatus:
        raise NotImplementedError

    def connect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        raise NotImplementedError

    def disconnect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        raise NotImplementedError

    def shutdown(self, timeout: float | None = 10.0) -> None:
        raise NotImplementedError


__all__ = [
    "AccountController",
    "CategoryService",
    "MailSession",
    "MessageRepository",
    "Notifier",
    "SessionFactory",
]
