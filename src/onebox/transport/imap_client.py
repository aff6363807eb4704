"""IMAP transport adapter providing a live session per account.

Commands go through ``imaplib``. IDLE is driven with raw tagged commands
because ``imaplib`` has no blocking-wait primitive; the wait selects on the
socket together with a self-pipe so another thread can wake it up.
"""

from __future__ import annotations

import imaplib
import logging
import os
import re
import select
import socket
import ssl
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any

from ..core.interfaces import MailSession
from ..core.models import Account, IdleNotification, MailboxInfo, MessageChunk

LOGGER = logging.getLogger(__name__)

_UNTAGGED_NUMERIC = re.compile(rb"^\* (\d+) (EXISTS|EXPUNGE|RECENT|FETCH)\b", re.I)
_UNTAGGED_STATUS = re.compile(rb"^\* (BYE|OK|NO|BAD)\b", re.I)
_STATUS_ITEM = re.compile(rb"(UIDNEXT|UIDVALIDITY|MESSAGES) (\d+)", re.I)
_FETCH_UID = re.compile(rb"\bUID (\d+)", re.I)
_FETCH_SIZE = re.compile(rb"\bRFC822\.SIZE (\d+)", re.I)

_MAX_DONE_LINES = 1000


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


class ConnectError(ImapError):
    """Raised when the transport, TLS, or login handshake fails."""


class SearchError(ImapError):
    """Raised when SELECT or SEARCH is rejected or malformed."""


class FetchError(ImapError):
    """Raised when a FETCH command fails."""


class IdleError(ImapError):
    """Raised when the server refuses or breaks the IDLE exchange."""


class SessionClosedError(ImapError):
    """Raised when the connection drops underneath a command."""


class MessageTooLargeError(FetchError):
    """Raised when a message exceeds the configured byte ceiling."""

    def __init__(self, uid: int, size: int, limit: int) -> None:
        super().__init__(f"Message UID {uid} is {size} bytes (limit {limit})")
        self.uid = uid
        self.size = size
        self.limit = limit


class ImapSession(MailSession):
    """One authenticated IMAP connection bound to a single account."""

    def __init__(
        self,
        account: Account,
        *,
        mailbox: str = "INBOX",
        connect_timeout: float = 10.0,
        max_message_bytes: int = 25 * 1024 * 1024,
        batch_size: int = 50,
    ) -> None:
        self.account = account
        self.mailbox = mailbox
        self._connect_timeout = connect_timeout
        self._max_message_bytes = max_message_bytes
        self._batch_size = batch_size
        self._connection: imaplib.IMAP4 | None = None
        self._idle_tag: bytes | None = None
        self._interrupted = False
        self._interrupt_read, self._interrupt_write = os.pipe()
        os.set_blocking(self._interrupt_read, False)
        os.set_blocking(self._interrupt_write, False)

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Open the transport and authenticate with the account credentials."""
        if self._connection is not None:
            return
        account = self.account
        try:
            if account.use_ssl:
                LOGGER.debug("Connecting to %s:%s via SSL", account.host, account.port)
                connection: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    account.host, account.port, timeout=self._connect_timeout
                )
            else:
                LOGGER.debug(
                    "Connecting to %s:%s without SSL", account.host, account.port
                )
                connection = imaplib.IMAP4(
                    account.host, account.port, timeout=self._connect_timeout
                )
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ConnectError(
                f"Unable to reach {account.host}:{account.port}: {exc}"
            ) from exc

        try:
            LOGGER.debug("Authenticating as %s", account.user)
            connection.login(account.user, account.password)
        except (imaplib.IMAP4.error, OSError) as exc:
            _silently_shutdown(connection)
            raise ConnectError(f"Authentication failed for {account.user}: {exc}") from exc

        # Dead peers are detected by keepalive probes, not socket timeouts.
        sock = connection.socket()
        if sock is not None:
            sock.settimeout(None)
        self._connection = connection
        LOGGER.info("Connected to IMAP account %s (%s)", account.id, account.host)

    def select_mailbox(self) -> MailboxInfo:
        """Select the folder read-only and report EXISTS, UIDNEXT and UIDVALIDITY."""
        data = self._run(
            SearchError,
            f"SELECT {self.mailbox}",
            lambda conn: conn.select(self.mailbox, readonly=True),
        )
        connection = self._require_connection()
        exists = _parse_int(data[0] if data else None) or 0
        uidnext = _parse_int(_first(connection.response("UIDNEXT")[1]))
        uidvalidity = _parse_int(_first(connection.response("UIDVALIDITY")[1]))
        if uidnext is None:
            uidnext, uidvalidity = self._status_fallback(uidvalidity)
        return MailboxInfo(
            name=self.mailbox,
            exists=exists,
            uidnext=uidnext,
            uidvalidity=uidvalidity,
        )

    def search_all(self) -> list[int]:
        """Return every UID in the selected folder in ascending order."""
        data = self._run(
            SearchError, "UID SEARCH ALL", lambda conn: conn.uid("SEARCH", None, "ALL")
        )
        return _parse_uid_list(data)

    def search_since(self, start_uid: int) -> list[int]:
        """Return UIDs ``>= start_uid``.

        ``N:*`` always matches the highest UID even when it is below ``N``,
        so results are filtered against the requested lower bound.
        """
        if start_uid < 1:
            raise ValueError("start_uid must be positive")
        criteria = f"{start_uid}:*"
        LOGGER.debug("Searching for UIDs in range %s", criteria)
        data = self._run(
            SearchError,
            f"UID SEARCH UID {criteria}",
            lambda conn: conn.uid("SEARCH", "UID", criteria),
        )
        return [uid for uid in _parse_uid_list(data) if uid >= start_uid]

    def fetch_sizes(self, uids: Sequence[int]) -> dict[int, int]:
        """Return RFC822.SIZE for each UID, probing in batches."""
        sizes: dict[int, int] = {}
        for chunk in _chunked(uids, self._batch_size):
            uid_set = ",".join(str(uid) for uid in chunk)
            data = self._run(
                FetchError,
                f"UID FETCH {uid_set} (RFC822.SIZE)",
                lambda conn, uid_set=uid_set: conn.uid("FETCH", uid_set, "(RFC822.SIZE)"),
            )
            for entry in data:
                line = entry[0] if isinstance(entry, tuple) else entry
                if not isinstance(line, bytes):
                    continue
                uid_match = _FETCH_UID.search(line)
                size_match = _FETCH_SIZE.search(line)
                if uid_match and size_match:
                    sizes[int(uid_match.group(1))] = int(size_match.group(1))
        return sizes

    def fetch_message(self, uid: int) -> MessageChunk | None:
        """Download the full message without setting ``\\Seen``."""
        uid_str = str(uid)
        LOGGER.debug("Fetching payload for UID %s", uid_str)
        data = self._run(
            FetchError,
            f"UID FETCH {uid_str}",
            lambda conn: conn.uid("FETCH", uid_str, "(BODY.PEEK[])"),
        )
        payload = _extract_payload(data)
        if payload is None:
            LOGGER.warning("No payload returned for UID %s", uid_str)
            return None
        if len(payload) > self._max_message_bytes:
            raise MessageTooLargeError(uid, len(payload), self._max_message_bytes)
        return MessageChunk(uid=uid, raw=payload)

    def noop(self) -> list[IdleNotification]:
        """Probe the connection, returning any mailbox changes it reported."""
        self._run(ImapError, "NOOP", lambda conn: conn.noop())
        connection = self._require_connection()
        notifications: list[IdleNotification] = []
        for kind in ("EXISTS", "RECENT", "EXPUNGE"):
            _, values = connection.response(kind)
            for value in values:
                number = _parse_int(value)
                if number is not None:
                    notifications.append(IdleNotification(kind=kind, number=number))
        return notifications

    def idle_start(self) -> list[IdleNotification]:
        """Send IDLE and wait for the continuation response.

        Untagged responses that arrive before the continuation are returned.
        """
        connection = self._require_connection()
        pending: list[IdleNotification] = []
        try:
            tag = connection._new_tag()  # pylint: disable=protected-access
            connection.send(tag + b" IDLE\r\n")
            while True:
                line = connection.readline()
                if not line:
                    raise SessionClosedError("Connection closed while entering IDLE")
                if line.startswith(b"+"):
                    break
                if line.startswith(tag):
                    raise IdleError(f"IDLE rejected: {line.decode(errors='replace').strip()}")
                notification = parse_untagged(line)
                if notification is not None:
                    pending.append(notification)
        except OSError as exc:
            raise SessionClosedError(f"IDLE start failed: {exc}") from exc
        self._idle_tag = tag
        LOGGER.debug("Entered IDLE for %s with tag %s", self.account.id, tag.decode())
        return pending

    def idle_wait(self, timeout: float) -> list[IdleNotification]:
        """Block until the server speaks, ``timeout`` elapses, or an interrupt."""
        connection = self._require_connection()
        if self._interrupted:
            return []
        sock = connection.socket()
        if not _input_buffered(connection, sock):
            try:
                readable, _, _ = select.select(
                    [sock, self._interrupt_read], [], [], timeout
                )
            except (OSError, ValueError) as exc:
                raise SessionClosedError(f"IDLE wait failed: {exc}") from exc

            if self._interrupt_read in readable:
                _drain_pipe(self._interrupt_read)
                LOGGER.debug("IDLE wait interrupted for %s", self.account.id)
                return []
            if sock not in readable:
                return []

        try:
            line = connection.readline()
        except OSError as exc:
            raise SessionClosedError(f"IDLE read failed: {exc}") from exc
        if not line:
            raise SessionClosedError("Server closed the connection during IDLE")
        notification = parse_untagged(line)
        if notification is None:
            LOGGER.debug("Ignoring IDLE response %r", line)
            return []
        return [notification]

    def idle_done(self) -> list[IdleNotification]:
        """Terminate IDLE and return untagged responses drained on the way."""
        connection = self._require_connection()
        tag = self._idle_tag
        self._idle_tag = None
        drained: list[IdleNotification] = []
        try:
            connection.send(b"DONE\r\n")
            for _ in range(_MAX_DONE_LINES):
                line = connection.readline()
                if not line:
                    raise SessionClosedError("Connection closed while leaving IDLE")
                if line.startswith(b"*"):
                    notification = parse_untagged(line)
                    if notification is not None:
                        drained.append(notification)
                    continue
                if tag is not None and line.startswith(tag):
                    if b" OK" not in line.upper():
                        raise IdleError(
                            f"IDLE completed with {line.decode(errors='replace').strip()}"
                        )
                    break
                LOGGER.warning("Unexpected response leaving IDLE: %r", line)
        except OSError as exc:
            raise SessionClosedError(f"IDLE termination failed: {exc}") from exc
        return drained

    def interrupt(self) -> None:
        """Wake a blocked IDLE wait and abort any in-flight read. Thread-safe."""
        self._interrupted = True
        try:
            os.write(self._interrupt_write, b"x")
        except OSError:
            pass
        connection = self._connection
        if connection is None:
            return
        try:
            sock = connection.socket()
            if sock is not None:
                sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def close(self) -> None:
        """Terminate the session; skips LOGOUT when the socket is already gone."""
        connection = self._connection
        self._connection = None
        if connection is not None:
            if self._interrupted:
                _silently_shutdown(connection)
            else:
                try:
                    LOGGER.debug("Logging out of %s", self.account.id)
                    connection.logout()
                except (imaplib.IMAP4.error, OSError):
                    LOGGER.debug("IMAP logout raised; suppressing during shutdown")
        for descriptor in (self._interrupt_read, self._interrupt_write):
            try:
                os.close(descriptor)
            except OSError:
                pass
        self._interrupt_read = self._interrupt_write = -1

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> imaplib.IMAP4:
        if self._connection is None:
            raise SessionClosedError("IMAP connection has not been established")
        return self._connection

    def _run(
        self,
        error_type: type[ImapError],
        description: str,
        command: Callable[[imaplib.IMAP4], tuple[str, list[Any]]],
    ) -> list[Any]:
        connection = self._require_connection()
        try:
            status, data = command(connection)
        except imaplib.IMAP4.abort as exc:
            raise SessionClosedError(f"{description} aborted: {exc}") from exc
        except OSError as exc:
            raise SessionClosedError(f"{description} failed: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise error_type(f"{description} failed: {exc}") from exc
        if status != "OK":
            raise error_type(f"{description} returned {status}: {data!r}")
        return data

    def _status_fallback(self, uidvalidity: int | None) -> tuple[int | None, int | None]:
        """Ask STATUS for UIDNEXT when SELECT did not report it."""
        try:
            data = self._run(
                SearchError,
                f"STATUS {self.mailbox}",
                lambda conn: conn.status(self.mailbox, "(UIDNEXT UIDVALIDITY)"),
            )
        except SearchError as exc:
            LOGGER.warning("UIDNEXT unavailable for %s: %s", self.account.id, exc)
            return None, uidvalidity
        items: dict[str, int] = {}
        for entry in data:
            if isinstance(entry, bytes):
                for key, value in _STATUS_ITEM.findall(entry):
                    items[key.decode().upper()] = int(value)
        return items.get("UIDNEXT"), items.get("UIDVALIDITY", uidvalidity)


def parse_untagged(line: bytes) -> IdleNotification | None:
    """Convert an untagged server line into a notification, if recognised."""
    stripped = line.strip()
    match = _UNTAGGED_NUMERIC.match(stripped)
    if match:
        return IdleNotification(
            kind=match.group(2).decode().upper(), number=int(match.group(1))
        )
    match = _UNTAGGED_STATUS.match(stripped)
    if match:
        return IdleNotification(kind=match.group(1).decode().upper())
    return None


def _parse_uid_list(data: list[Any]) -> list[int]:
    raw = data[0] if data else None
    if not raw:
        return []
    if not isinstance(raw, bytes):
        raise SearchError(f"Unexpected SEARCH payload type {type(raw).__name__}")
    uids: list[int] = []
    for token in raw.split():
        if not token.isdigit():
            raise SearchError(f"Malformed UID in SEARCH response: {token!r}")
        uids.append(int(token))
    return sorted(uids)


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bytes):
        value = value.decode(errors="replace")
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _first(values: Iterable[Any]) -> Any:
    for value in values:
        return value
    return None


def _chunked(items: Iterable[int], size: int) -> Iterator[list[int]]:
    """Yield successive lists of ``size`` elements."""
    bucket: list[int] = []
    for item in items:
        bucket.append(item)
        if len(bucket) >= size:
            yield bucket
            bucket = []
    if bucket:
        yield bucket


def _extract_payload(fetch_data: list[Any]) -> bytes | None:
    """Extract the literal body from ``imaplib`` FETCH response chunks."""
    for entry in fetch_data:
        if isinstance(entry, tuple) and len(entry) == 2 and isinstance(entry[1], bytes):
            return entry[1]
    return None


def _drain_pipe(descriptor: int) -> None:
    try:
        while os.read(descriptor, 1024):
            pass
    except OSError:
        pass


def _input_buffered(connection: imaplib.IMAP4, sock: socket.socket) -> bool:
    """Report whether a response already sits in a userspace buffer.

    Lines that arrive together with the IDLE continuation are read into the
    buffered file ``imaplib`` reads from (and, for TLS, the SSL record
    buffer), where ``select`` cannot see them.
    """
    if isinstance(sock, ssl.SSLSocket) and sock.pending() > 0:
        return True
    reader = getattr(connection, "file", None)
    if reader is None:
        return False
    sock.setblocking(False)
    try:
        return bool(reader.peek(1))
    except (BlockingIOError, ssl.SSLWantReadError):
        return False
    except OSError as exc:
        raise SessionClosedError(f"IDLE read failed: {exc}") from exc
    finally:
        sock.setblocking(True)


def _silently_shutdown(connection: imaplib.IMAP4) -> None:
    try:
        connection.shutdown()
    except OSError:
        pass


__all__ = [
    "ConnectError",
    "FetchError",
    "IdleError",
    "ImapError",
    "ImapSession",
    "MessageTooLargeError",
    "SearchError",
    "SessionClosedError",
    "parse_untagged",
]
