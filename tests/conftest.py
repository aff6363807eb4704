"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from email.message import EmailMessage

import pytest

from onebox.core.config import SyncSettings
from onebox.core.events import EventBus
from onebox.core.models import (
    Account,
    IdleNotification,
    MailboxInfo,
    MessageChunk,
    NormalizedMessage,
    SyncStatus,
)
from onebox.core.registry import AccountRegistry
from onebox.sync.state import SyncStateTracker
from onebox.transport import FetchError, SearchError, SessionClosedError

_WAKE = object()


def build_raw_message(
    subject: str = "Hello",
    body: str = "Body text",
    *,
    sender: str = "Alice <alice@example.com>",
    message_id: str | None = "<msg@example.com>",
    html: str | None = None,
) -> bytes:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = "team@example.com"
    message["Date"] = "Mon, 06 Jan 2025 10:00:00 +0000"
    if message_id:
        message["Message-ID"] = message_id
    if html is not None:
        message.set_content(html, subtype="html")
    else:
        message.set_content(body)
    return message.as_bytes()


def make_account(account_id: str = "acct") -> Account:
    return Account(
        id=account_id,
        host="imap.test",
        port=993,
        user=f"{account_id}@example.com",
        password="secret",
        use_ssl=True,
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeSession:
    """In-memory stand-in for :class:`onebox.transport.ImapSession`."""

    def __init__(
        self,
        messages: dict[int, bytes] | None = None,
        *,
        uidnext: int | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self.messages = dict(messages or {})
        self.uidnext = uidnext if uidnext is not None else max(self.messages, default=0) + 1
        self.connect_error = connect_error
        self.fetch_failures: set[int] = set()
        self.sizes: dict[int, int] = {}
        self.fetched: list[int] = []
        self.searches: list[int | None] = []
        self.connected = False
        self.closed = False
        self.selected = False
        self._notifications: queue.Queue[object] = queue.Queue()
        self._interrupted = threading.Event()

    # Test controls -------------------------------------------------------------
    def deliver(self, uid: int, raw: bytes) -> None:
        with self._lock:
            self.messages[uid] = raw
            self.uidnext = max(self.uidnext, uid + 1)
            count = len(self.messages)
        self._notifications.put([IdleNotification(kind="EXISTS", number=count)])

    def drop(self) -> None:
        self._notifications.put(SessionClosedError("Connection reset by peer"))

    # MailSession API -------------------------------------------------------------
    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def select_mailbox(self) -> MailboxInfo:
        self.selected = True
        with self._lock:
            return MailboxInfo("INBOX", len(self.messages), self.uidnext, 1)

    def search_all(self) -> list[int]:
        self._require_selected(SearchError)
        self.searches.append(None)
        with self._lock:
            return sorted(self.messages)

    def search_since(self, start_uid: int) -> list[int]:
        self._require_selected(SearchError)
        self.searches.append(start_uid)
        with self._lock:
            return [uid for uid in sorted(self.messages) if uid >= start_uid]

    def fetch_sizes(self, uids: Iterable[int]) -> dict[int, int]:
        self._require_selected(FetchError)
        with self._lock:
            return {
                uid: self.sizes.get(uid, len(self.messages[uid]))
                for uid in uids
                if uid in self.messages
            }

    def fetch_message(self, uid: int) -> MessageChunk | None:
        if self._interrupted.is_set():
            raise SessionClosedError("Session interrupted")
        self._require_selected(FetchError)
        if uid in self.fetch_failures:
            raise FetchError(f"UID FETCH {uid} failed")
        self.fetched.append(uid)
        with self._lock:
            raw = self.messages.get(uid)
        return MessageChunk(uid=uid, raw=raw) if raw is not None else None

    def noop(self) -> list[IdleNotification]:
        if self._interrupted.is_set():
            raise SessionClosedError("Session interrupted")
        return []

    def idle_start(self) -> list[IdleNotification]:
        if self._interrupted.is_set():
            raise SessionClosedError("Session interrupted")
        return []

    def idle_wait(self, timeout: float) -> list[IdleNotification]:
        try:
            item = self._notifications.get(timeout=timeout)
        except queue.Empty:
            return []
        if item is _WAKE:
            return []
        if isinstance(item, Exception):
            raise item
        return list(item)  # type: ignore[call-overload]

    def idle_done(self) -> list[IdleNotification]:
        if self._interrupted.is_set():
            raise SessionClosedError("Session interrupted")
        return []

    def interrupt(self) -> None:
        self._interrupted.set()
        self._notifications.put(_WAKE)

    def close(self) -> None:
        self.closed = True

    def _require_selected(self, error_type: type[Exception]) -> None:
        # imaplib only allows SEARCH and FETCH in the SELECTED state.
        if not self.selected:
            raise error_type("command illegal in state AUTH, only allowed in states SELECTED")


class SessionFactoryStub:
    """Hands out prepared sessions and records every request."""

    def __init__(self, *sessions: FakeSession) -> None:
        self._sessions = list(sessions)
        self.created: list[FakeSession] = []
        self._lock = threading.Lock()

    def __call__(self, account: Account) -> FakeSession:
        with self._lock:
            session = self._sessions.pop(0) if self._sessions else FakeSession()
            self.created.append(session)
            return session


class EventRecorder:
    """Collects payloads published on the event bus."""

    def __init__(self, bus: EventBus) -> None:
        self.messages: list[NormalizedMessage] = []
        self.statuses: list[SyncStatus] = []
        bus.message_received.subscribe(self.messages.append)
        bus.status_changed.subscribe(self.statuses.append)


@pytest.fixture()
def event_bus() -> Iterable[EventBus]:
    bus = EventBus()
    yield bus
    bus.close()


@pytest.fixture()
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture()
def account() -> Account:
    return make_account()


@pytest.fixture()
def registry(account: Account) -> AccountRegistry:
    return AccountRegistry([account])


@pytest.fixture()
def tracker(registry: AccountRegistry, event_bus: EventBus) -> SyncStateTracker:
    return SyncStateTracker(registry.ids(), event_bus)


@pytest.fixture()
def sync_settings() -> SyncSettings:
    return SyncSettings(keepalive_interval_seconds=0.05, reconnect_delay_seconds=0.1)


def make_message(
    *,
    subject: str = "Hello",
    body: str = "Body text",
    sender: str = "alice@example.com",
    message_id: str = "<1@example.com>",
    account_id: str = "acct",
    message_uuid: str = "11111111-1111-1111-1111-111111111111",
) -> NormalizedMessage:
    timestamp = datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)
    return NormalizedMessage(
        id=message_uuid,
        account_id=account_id,
        folder="INBOX",
        subject=subject,
        body=body,
        sender=sender,
        to=("team@example.com",),
        date=timestamp,
        message_id=message_id,
        thread_id=None,
        has_attachments=False,
        attachment_count=0,
        indexed_at=timestamp,
    )
