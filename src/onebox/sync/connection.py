"""Owns the live IMAP session of every account."""

from __future__ import annotations

import logging
import threading

from ..core.config import SyncSettings
from ..core.interfaces import MailSession, SessionFactory
from ..core.models import Account, IdleNotification
from ..core.registry import AccountRegistry
from ..transport.imap_client import ConnectError, ImapError, ImapSession
from .state import SyncStateTracker

LOGGER = logging.getLogger(__name__)


def imap_session_factory(settings: SyncSettings) -> SessionFactory:
    """Return a factory producing :class:`ImapSession` objects for ``settings``."""

    def factory(account: Account) -> MailSession:
        return ImapSession(
            account,
            mailbox=settings.mailbox,
            connect_timeout=settings.connect_timeout_seconds,
            max_message_bytes=settings.max_message_bytes,
            batch_size=settings.fetch_batch_size,
        )

    return factory


class ConnectionManager:
    """Open, track, and tear down sessions; at most one per account."""

    def __init__(
        self,
        registry: AccountRegistry,
        tracker: SyncStateTracker,
        session_factory: SessionFactory,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._factory = session_factory
        self._sessions: dict[str, MailSession] = {}
        self._lock = threading.Lock()

    # Public API --------------------------------------------------------------
    def connect(self, account: Account | str) -> MailSession:
        """Open and authenticate a session for ``account``.

        An existing session is returned unchanged. On failure the error is
        recorded on the account status and no session is registered.
        """
        resolved = self._resolve(account)
        existing = self.session(resolved.id)
        if existing is not None:
            return existing

        LOGGER.info("Connecting %s to %s:%s", resolved.id, resolved.host, resolved.port)
        session = self._factory(resolved)
        try:
            session.connect()
        except ConnectError as exc:
            LOGGER.error("Connection failed for %s: %s", resolved.id, exc)
            _close_quietly(session, resolved.id)
            self._tracker.mark_disconnected(resolved.id, error=str(exc))
            raise

        with self._lock:
            self._sessions[resolved.id] = session
        self._tracker.mark_connected(resolved.id)
        LOGGER.info("Connected %s", resolved.id)
        return session

    def session(self, account_id: str) -> MailSession | None:
        with self._lock:
            return self._sessions.get(account_id)

    def is_connected(self, account_id: str) -> bool:
        return self.session(account_id) is not None

    def keepalive(self, account_id: str) -> list[IdleNotification]:
        """Send a NOOP probe on the account's session."""
        session = self.session(account_id)
        if session is None:
            return []
        return session.noop()

    def interrupt(self, account_id: str) -> None:
        """Wake any blocking call on the account's session from another thread."""
        session = self.session(account_id)
        if session is not None:
            session.interrupt()

    def handle_unsolicited_close(self, account_id: str, reason: str) -> None:
        """Forget a session the server dropped and flag the account as disconnected."""
        session = self._pop(account_id)
        LOGGER.warning("Connection for %s closed unexpectedly: %s", account_id, reason)
        if session is not None:
            _close_quietly(session, account_id)
        self._tracker.mark_disconnected(account_id, error=reason)

    def disconnect(self, account_id: str) -> None:
        """Close the account's session gracefully if one is open."""
        self._registry.get(account_id)
        session = self._pop(account_id)
        if session is None:
            return
        LOGGER.info("Disconnecting %s", account_id)
        _close_quietly(session, account_id)
        self._tracker.mark_disconnected(account_id)

    def disconnect_all(self) -> None:
        for account_id in self._registry.ids():
            self.disconnect(account_id)

    # Internal helpers ---------------------------------------------------------
    def _resolve(self, account: Account | str) -> Account:
        if isinstance(account, Account):
            return self._registry.get(account.id)
        return self._registry.get(account)

    def _pop(self, account_id: str) -> MailSession | None:
        with self._lock:
            return self._sessions.pop(account_id, None)


def _close_quietly(session: MailSession, account_id: str) -> None:
    try:
        session.close()
    except (ImapError, OSError) as exc:
        LOGGER.debug("Ignoring close failure for %s: %s", account_id, exc)


__all__ = ["ConnectionManager", "imap_session_factory"]
