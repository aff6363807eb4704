"""Tests for typed event channels."""

from __future__ import annotations

import threading

from onebox.core.events import EventBus
from onebox.core.models import SyncStatus


def test_payloads_delivered_in_publish_order(event_bus: EventBus) -> None:
    received: list[str] = []
    event_bus.status_changed.subscribe(lambda status: received.append(status.account_id))

    for account_id in ("a", "b", "c"):
        event_bus.status_changed.publish(SyncStatus(account_id=account_id))
    event_bus.flush()

    assert received == ["a", "b", "c"]


def test_failing_subscriber_does_not_affect_others(event_bus: EventBus) -> None:
    received: list[SyncStatus] = []

    def broken(_status: SyncStatus) -> None:
        raise RuntimeError("boom")

    event_bus.status_changed.subscribe(broken)
    event_bus.status_changed.subscribe(received.append)

    event_bus.status_changed.publish(SyncStatus(account_id="a"))
    event_bus.flush()

    assert [status.account_id for status in received] == ["a"]


def test_delivery_happens_off_the_publishing_thread(event_bus: EventBus) -> None:
    threads: list[str] = []
    event_bus.status_changed.subscribe(lambda _s: threads.append(threading.current_thread().name))

    event_bus.status_changed.publish(SyncStatus(account_id="a"))
    event_bus.flush()

    assert threads == ["onebox-events"]


def test_unsubscribe_and_publish_after_close(event_bus: EventBus) -> None:
    received: list[SyncStatus] = []
    unsubscribe = event_bus.status_changed.subscribe(received.append)
    event_bus.message_received.subscribe(lambda _m: None)

    unsubscribe()
    event_bus.status_changed.publish(SyncStatus(account_id="a"))
    event_bus.flush()
    assert received == []

    event_bus.status_changed.subscribe(received.append)
    event_bus.close()
    event_bus.status_changed.publish(SyncStatus(account_id="b"))
    assert received == []
