"""Tests for per-account status and watermark tracking."""

from __future__ import annotations

import pytest

from conftest import EventRecorder
from onebox.core.events import EventBus
from onebox.core.models import AccountState
from onebox.core.registry import UnknownAccountError
from onebox.sync.state import SyncStateTracker


def test_watermark_never_moves_backwards(tracker: SyncStateTracker) -> None:
    assert tracker.watermark("acct") is None

    assert tracker.initialize_watermark("acct", 100) == 100
    assert tracker.advance_watermark("acct", 90) == 100
    assert tracker.advance_watermark("acct", 101) == 101
    assert tracker.watermark("acct") == 101

    with pytest.raises(ValueError):
        tracker.advance_watermark("acct", -1)


def test_snapshot_is_isolated_from_later_writes(tracker: SyncStateTracker) -> None:
    snapshot = tracker.snapshot("acct")
    tracker.mark_connected("acct")

    assert snapshot.connected is False
    assert tracker.snapshot("acct").connected is True


def test_every_mutation_is_published(
    tracker: SyncStateTracker, recorder: EventRecorder, event_bus: EventBus
) -> None:
    tracker.mark_disconnected("acct", error="bad credentials")
    tracker.set_state("acct", AccountState.CONNECTING)
    tracker.record_message("acct")
    tracker.record_parse_error("acct", "UID 5: malformed")
    event_bus.flush()

    assert len(recorder.statuses) == 4
    last = recorder.statuses[-1]
    assert last.state is AccountState.CONNECTING
    assert last.total_messages == 1
    assert last.parse_errors == 1
    assert last.error == "UID 5: malformed"
    assert recorder.statuses[0].error == "bad credentials"


def test_mark_connected_clears_error(tracker: SyncStateTracker) -> None:
    tracker.record_error("acct", "previous failure")
    tracker.record_message("acct")

    status = tracker.mark_connected("acct")

    assert status.connected is True
    assert status.error is None
    assert status.new_messages == 0
    assert status.total_messages == 1


def test_watermark_cannot_be_set_through_update(tracker: SyncStateTracker) -> None:
    with pytest.raises(ValueError):
        tracker.update("acct", watermark=5)
    with pytest.raises(UnknownAccountError):
        tracker.snapshot("other")
