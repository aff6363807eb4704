"""Tests for session ownership and connect error reporting."""

from __future__ import annotations

import pytest

from conftest import EventRecorder, FakeSession, SessionFactoryStub
from onebox.core.events import EventBus
from onebox.core.models import Account
from onebox.core.registry import AccountRegistry
from onebox.sync.connection import ConnectionManager
from onebox.sync.state import SyncStateTracker
from onebox.transport import ConnectError


def test_successful_connect_registers_session(
    account: Account, registry: AccountRegistry, tracker: SyncStateTracker
) -> None:
    session = FakeSession()
    manager = ConnectionManager(registry, tracker, SessionFactoryStub(session))
    tracker.record_error(account.id, "old failure")

    assert manager.connect(account) is session
    assert manager.session(account.id) is session
    status = tracker.snapshot(account.id)
    assert status.connected is True
    assert status.error is None

    # A second connect keeps the existing session.
    assert manager.connect(account.id) is session


def test_failed_connect_records_error_and_registers_nothing(
    account: Account,
    registry: AccountRegistry,
    tracker: SyncStateTracker,
    recorder: EventRecorder,
    event_bus: EventBus,
) -> None:
    session = FakeSession(connect_error=ConnectError("Authentication failed for acct"))
    manager = ConnectionManager(registry, tracker, SessionFactoryStub(session))

    with pytest.raises(ConnectError):
        manager.connect(account)

    assert manager.session(account.id) is None
    assert session.closed is True
    event_bus.flush()
    assert recorder.statuses[-1].connected is False
    assert recorder.statuses[-1].error == "Authentication failed for acct"


def test_disconnect_is_idempotent(
    account: Account, registry: AccountRegistry, tracker: SyncStateTracker
) -> None:
    session = FakeSession()
    manager = ConnectionManager(registry, tracker, SessionFactoryStub(session))
    manager.connect(account)

    manager.disconnect_all()
    manager.disconnect(account.id)

    assert session.closed is True
    assert manager.session(account.id) is None
    assert tracker.snapshot(account.id).connected is False


def test_unsolicited_close_flags_account(
    account: Account, registry: AccountRegistry, tracker: SyncStateTracker
) -> None:
    manager = ConnectionManager(registry, tracker, SessionFactoryStub(FakeSession()))
    manager.connect(account)

    manager.handle_unsolicited_close(account.id, "Server closed the connection")

    status = tracker.snapshot(account.id)
    assert status.connected is False
    assert status.error == "Server closed the connection"
    assert not manager.is_connected(account.id)
