"""Per-account lifecycle state machine and the controller driving all accounts.

Every account is owned by one :class:`AccountWorker` thread. The worker is the
only code that touches the account's session, so fetch cycles for an account
never overlap. Other threads talk to it through a command queue; commands
that tear the session down also interrupt it so a blocking IDLE wait or an
in-flight fetch returns promptly.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum

from ..core.config import SyncSettings
from ..core.interfaces import MailSession
from ..core.models import Account, AccountState, IdleNotification, SyncStatus
from ..core.registry import AccountRegistry
from ..transport.imap_client import (
    ConnectError,
    IdleError,
    ImapError,
    SessionClosedError,
)
from .connection import ConnectionManager
from .fetch import FetchEngine
from .state import SyncStateTracker

LOGGER = logging.getLogger(__name__)

_TRANSITIONS: dict[AccountState, frozenset[AccountState]] = {
    AccountState.IDLE: frozenset({AccountState.CONNECTING, AccountState.DISCONNECTED}),
    AccountState.CONNECTING: frozenset(
        {AccountState.BACKFILLING, AccountState.IDLE, AccountState.DISCONNECTED}
    ),
    AccountState.BACKFILLING: frozenset(
        {
            AccountState.LIVE,
            AccountState.RECONNECT_PENDING,
            AccountState.CONNECTING,
            AccountState.DISCONNECTED,
        }
    ),
    AccountState.LIVE: frozenset(
        {
            AccountState.RECONNECT_PENDING,
            AccountState.CONNECTING,
            AccountState.DISCONNECTED,
        }
    ),
    AccountState.RECONNECT_PENDING: frozenset(
        {AccountState.CONNECTING, AccountState.DISCONNECTED}
    ),
    AccountState.DISCONNECTED: frozenset({AccountState.CONNECTING}),
}


class IllegalTransitionError(RuntimeError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(self, source: AccountState, target: AccountState) -> None:
        super().__init__(f"Illegal transition {source.value} -> {target.value}")
        self.source = source
        self.target = target


class SyncInterruptedError(RuntimeError):
    """Raised to a waiting caller when another command superseded its request."""


class ControllerClosedError(RuntimeError):
    """Raised when commands are issued after shutdown."""


def check_transition(source: AccountState, target: AccountState) -> None:
    if target not in _TRANSITIONS[source]:
        raise IllegalTransitionError(source, target)


class Command(str, Enum):
    CONNECT = "connect"
    RECONNECT = "reconnect"
    DISCONNECT = "disconnect"
    SHUTDOWN = "shutdown"

    @property
    def tears_down(self) -> bool:
        return self is not Command.CONNECT


@dataclass(slots=True)
class _Request:
    command: Command
    future: Future = field(default_factory=Future)


# pylint: disable=too-many-instance-attributes
class AccountWorker(threading.Thread):
    """Actor running the lifecycle of a single account."""

    def __init__(
        self,
        account: Account,
        connections: ConnectionManager,
        engine: FetchEngine,
        tracker: SyncStateTracker,
        settings: SyncSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # pylint: disable=too-many-arguments
        super().__init__(name=f"onebox-{account.id}", daemon=True)
        self.account = account
        self._connections = connections
        self._engine = engine
        self._tracker = tracker
        self._settings = settings
        self._clock = clock
        self._queue: queue.Queue[_Request] = queue.Queue()
        self._deferred: _Request | None = None
        self._teardown_requests = 0
        self._counter_lock = threading.Lock()
        self._state = AccountState.IDLE
        self._reconnect_at: float | None = None
        self._idle_supported = True
        self._closed = False

    @property
    def state(self) -> AccountState:
        return self._state

    # Public API --------------------------------------------------------------
    def submit(self, command: Command) -> Future:
        """Queue ``command``; the returned future resolves once it was handled."""
        request = _Request(command)
        if self._closed:
            request.future.set_exception(ControllerClosedError("worker has shut down"))
            return request.future
        if command.tears_down:
            with self._counter_lock:
                self._teardown_requests += 1
            # Only the session current at submit time may be interrupted.
            self._connections.interrupt(self.account.id)
        self._queue.put(request)
        return request.future

    def run(self) -> None:
        LOGGER.debug("Worker for %s started", self.account.id)
        while True:
            request = self._next_request()
            if request is not None:
                if not self._handle(request):
                    break
                continue
            if self._state is AccountState.RECONNECT_PENDING:
                self._reconnect_after_drop()
            elif self._state is AccountState.LIVE:
                self._live_step()
        LOGGER.debug("Worker for %s stopped", self.account.id)

    # State machine -------------------------------------------------------------
    def _transition(self, target: AccountState) -> None:
        check_transition(self._state, target)
        LOGGER.debug(
            "Account %s: %s -> %s", self.account.id, self._state.value, target.value
        )
        self._state = target
        if target is not AccountState.RECONNECT_PENDING:
            self._reconnect_at = None
        self._tracker.set_state(self.account.id, target)

    def _next_request(self) -> _Request | None:
        if self._deferred is not None:
            request, self._deferred = self._deferred, None
            return request
        state = self._state
        try:
            if state is AccountState.LIVE:
                return self._queue.get_nowait()
            if state is AccountState.RECONNECT_PENDING and self._reconnect_at is not None:
                remaining = self._reconnect_at - self._clock()
                if remaining <= 0:
                    return self._queue.get_nowait()
                return self._queue.get(timeout=remaining)
            return self._queue.get()
        except queue.Empty:
            return None

    def _handle(self, request: _Request) -> bool:
        """Run one command; return ``False`` when the worker must exit."""
        command = request.command
        if command.tears_down:
            with self._counter_lock:
                self._teardown_requests -= 1
        try:
            if command is Command.CONNECT:
                if self._state in (
                    AccountState.IDLE,
                    AccountState.DISCONNECTED,
                    AccountState.RECONNECT_PENDING,
                ):
                    self._start_session()
            elif command is Command.RECONNECT:
                self._teardown()
                self._start_session()
            else:
                self._teardown()
                if self._state is not AccountState.DISCONNECTED:
                    self._transition(AccountState.DISCONNECTED)
        except Exception as exc:  # pylint: disable=broad-except
            request.future.set_exception(exc)
        else:
            request.future.set_result(self._tracker.snapshot(self.account.id))

        if command is Command.SHUTDOWN:
            self._closed = True
            self._drain_pending()
            return False
        return True

    def _start_session(self) -> None:
        """Connect, catch up, and arm live mode."""
        account_id = self.account.id
        self._idle_supported = True
        self._transition(AccountState.CONNECTING)
        try:
            session = self._connections.connect(self.account)
        except ConnectError:
            self._transition(AccountState.IDLE)
            raise
        self._transition(AccountState.BACKFILLING)
        backfilled = self._tracker.watermark(account_id) is None
        try:
            if backfilled:
                report = self._engine.backfill(account_id, session, self._should_continue)
                self._engine.initialize_watermark(account_id, report)
            else:
                self._engine.catch_up(account_id, session, self._should_continue)
            if not self._should_continue():
                raise SyncInterruptedError(
                    f"Startup of {account_id} superseded by another command"
                )
            self._transition(AccountState.LIVE)
            LOGGER.info("Account %s is live", account_id)
            if backfilled:
                # Mail that arrived during backfill is not announced by IDLE.
                self._fetch(session)
        except SessionClosedError as exc:
            if not self._should_continue():
                raise SyncInterruptedError(
                    f"Startup of {account_id} superseded by another command"
                ) from exc
            self._schedule_reconnect(str(exc))
            raise

    def _teardown(self) -> None:
        self._connections.disconnect(self.account.id)

    def _schedule_reconnect(self, reason: str) -> None:
        self._connections.handle_unsolicited_close(self.account.id, reason)
        self._transition(AccountState.RECONNECT_PENDING)
        self._reconnect_at = self._clock() + self._settings.reconnect_delay_seconds
        LOGGER.info(
            "Reconnecting %s in %.1fs",
            self.account.id,
            self._settings.reconnect_delay_seconds,
        )

    def _reconnect_after_drop(self) -> None:
        try:
            self._start_session()
        except (ImapError, SyncInterruptedError) as exc:
            LOGGER.error("Reconnect of %s failed: %s", self.account.id, exc)

    # Live mode -----------------------------------------------------------------
    def _live_step(self) -> None:
        session = self._connections.session(self.account.id)
        if session is None:
            self._schedule_reconnect("Session disappeared while live")
            return
        try:
            if self._idle_supported:
                notifications = self._idle_cycle(session)
            else:
                notifications = self._poll_cycle(session)
            if notifications is None:
                return
            if any(item.kind == "BYE" for item in notifications):
                raise SessionClosedError("Server sent BYE")
            if any(item.signals_new_mail for item in notifications) or not self._idle_supported:
                self._fetch(session)
        except SessionClosedError as exc:
            if self._should_continue():
                self._schedule_reconnect(str(exc))
        except IdleError as exc:
            LOGGER.warning(
                "IDLE unavailable for %s (%s); polling every %.0fs",
                self.account.id,
                exc,
                self._settings.keepalive_interval_seconds,
            )
            self._idle_supported = False
        except ImapError as exc:
            if self._should_continue():
                self._schedule_reconnect(str(exc))

    def _idle_cycle(self, session: MailSession) -> list[IdleNotification] | None:
        notifications = list(session.idle_start())
        if not notifications:
            notifications = session.idle_wait(self._settings.keepalive_interval_seconds)
        if not self._should_continue():
            return None
        notifications.extend(session.idle_done())
        if not notifications:
            notifications = self._connections.keepalive(self.account.id)
        return notifications

    def _poll_cycle(self, session: MailSession) -> list[IdleNotification] | None:
        try:
            self._deferred = self._queue.get(
                timeout=self._settings.keepalive_interval_seconds
            )
            return None
        except queue.Empty:
            pass
        return session.noop()

    def _fetch(self, session: MailSession) -> None:
        try:
            self._engine.fetch_since(self.account.id, session, self._should_continue)
        except SessionClosedError:
            if self._should_continue():
                raise

    # Internal helpers ---------------------------------------------------------
    def _should_continue(self) -> bool:
        with self._counter_lock:
            return self._teardown_requests == 0

    def _drain_pending(self) -> None:
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                return
            request.future.set_exception(ControllerClosedError("worker has shut down"))


class LifecycleController:
    """Entry point for management operations across all accounts."""

    def __init__(
        self,
        registry: AccountRegistry,
        connections: ConnectionManager,
        engine: FetchEngine,
        tracker: SyncStateTracker,
        settings: SyncSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._registry = registry
        self._tracker = tracker
        self._workers = {
            account.id: AccountWorker(
                account, connections, engine, tracker, settings, clock=clock
            )
            for account in registry
        }
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    # Public API --------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise ControllerClosedError("controller has been shut down")
            if self._started:
                return
            for worker in self._workers.values():
                worker.start()
            self._started = True

    def connect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        """Bring every account online; per-account failures are logged only."""
        self.start()
        futures = self._submit_all(Command.CONNECT)
        self._wait(futures, timeout, "connect")
        return self.list_statuses()

    def disconnect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        """Tear down every session and cancel pending reconnects."""
        if not self._started or self._closed:
            return self.list_statuses()
        futures = self._submit_all(Command.DISCONNECT)
        self._wait(futures, timeout, "disconnect")
        return self.list_statuses()

    def reconnect_account(self, account_id: str, timeout: float | None = None) -> SyncStatus:
        """Rebuild one account's session; returns once live or raises the failure."""
        worker = self._worker(account_id)
        self.start()
        return worker.submit(Command.RECONNECT).result(timeout)

    def list_statuses(self) -> list[SyncStatus]:
        return self._tracker.snapshots()

    def get_status(self, account_id: str) -> SyncStatus:
        self._worker(account_id)
        return self._tracker.snapshot(account_id)

    def shutdown(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started
        if not started:
            return
        LOGGER.info("Shutting down %d account worker(s)", len(self._workers))
        futures = self._submit_all(Command.SHUTDOWN)
        self._wait(futures, timeout, "shutdown")
        for worker in self._workers.values():
            worker.join(timeout)

    # Internal helpers ---------------------------------------------------------
    def _worker(self, account_id: str) -> AccountWorker:
        self._registry.get(account_id)
        return self._workers[account_id]

    def _submit_all(self, command: Command) -> dict[str, Future]:
        return {
            account_id: worker.submit(command)
            for account_id, worker in self._workers.items()
        }

    @staticmethod
    def _wait(futures: dict[str, Future], timeout: float | None, action: str) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        for account_id, future in futures.items():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                future.result(remaining)
            except FutureTimeoutError:
                LOGGER.warning("Timed out waiting for %s of %s", action, account_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("Failed to %s %s: %s", action, account_id, exc)


__all__ = [
    "AccountWorker",
    "Command",
    "ControllerClosedError",
    "IllegalTransitionError",
    "LifecycleController",
    "SyncInterruptedError",
    "check_transition",
]
