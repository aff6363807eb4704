"""Per-account sync status and watermark tracking.

Writers are the account's own worker thread; readers (status queries) get
point-in-time copies. Every status mutation is published on the
``status_changed`` channel.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable
from typing import Any

from ..core.datetime_utils import utcnow
from ..core.events import EventBus
from ..core.models import AccountState, SyncStatus
from ..core.registry import UnknownAccountError

LOGGER = logging.getLogger(__name__)


class _AccountRecord:
    """Mutable status plus watermark for one account, guarded by a lock."""

    __slots__ = ("lock", "status")

    def __init__(self, account_id: str) -> None:
        self.lock = threading.Lock()
        self.status = SyncStatus(account_id=account_id)


class SyncStateTracker:
    """Owns the :class:`SyncStatus` and watermark of every account."""

    def __init__(self, account_ids: Iterable[str], events: EventBus) -> None:
        self._records = {account_id: _AccountRecord(account_id) for account_id in account_ids}
        self._events = events

    # Readers -----------------------------------------------------------------
    def snapshot(self, account_id: str) -> SyncStatus:
        """Return a copy of the account status that later writes do not touch."""
        record = self._record(account_id)
        with record.lock:
            return dataclasses.replace(record.status)

    def snapshots(self) -> list[SyncStatus]:
        return [self.snapshot(account_id) for account_id in self._records]

    def watermark(self, account_id: str) -> int | None:
        record = self._record(account_id)
        with record.lock:
            return record.status.watermark

    # Writers -----------------------------------------------------------------
    def update(self, account_id: str, **changes: Any) -> SyncStatus:
        """Apply ``changes`` to the status and publish the result."""
        if "watermark" in changes:
            raise ValueError("Use advance_watermark to move the watermark")
        record = self._record(account_id)
        with record.lock:
            for field_name, value in changes.items():
                if not hasattr(record.status, field_name):
                    raise AttributeError(f"SyncStatus has no field '{field_name}'")
                setattr(record.status, field_name, value)
            snapshot = dataclasses.replace(record.status)
        self._events.status_changed.publish(snapshot)
        return snapshot

    def mark_connected(self, account_id: str) -> SyncStatus:
        return self.update(account_id, connected=True, error=None, new_messages=0)

    def mark_disconnected(self, account_id: str, error: str | None = None) -> SyncStatus:
        if error is None:
            return self.update(account_id, connected=False)
        return self.update(account_id, connected=False, error=error)

    def set_state(self, account_id: str, state: AccountState) -> SyncStatus:
        return self.update(account_id, state=state)

    def record_message(self, account_id: str) -> None:
        """Count one published message."""
        self._increment(account_id, total_messages=1, new_messages=1)

    def record_parse_error(self, account_id: str, error: str) -> None:
        """Count one dropped message and remember why."""
        self._increment(account_id, parse_errors=1, error=error)

    def record_error(self, account_id: str, error: str) -> SyncStatus:
        return self.update(account_id, error=error)

    def touch_sync(self, account_id: str) -> SyncStatus:
        return self.update(account_id, last_sync=utcnow())

    def initialize_watermark(self, account_id: str, value: int) -> int:
        """Set the watermark on first live entry; never lowers an existing one."""
        return self.advance_watermark(account_id, value)

    def advance_watermark(self, account_id: str, value: int) -> int:
        """Move the watermark forward to ``value``; lower values are ignored."""
        if value < 0:
            raise ValueError("watermark cannot be negative")
        record = self._record(account_id)
        with record.lock:
            current = record.status.watermark
            if current is not None and value <= current:
                return current
            record.status.watermark = value
            snapshot = dataclasses.replace(record.status)
        LOGGER.debug("Watermark for %s advanced %s -> %s", account_id, current, value)
        self._events.status_changed.publish(snapshot)
        return value

    # Internal helpers ---------------------------------------------------------
    def _increment(self, account_id: str, error: str | None = None, **deltas: int) -> None:
        record = self._record(account_id)
        with record.lock:
            for field_name, delta in deltas.items():
                setattr(record.status, field_name, getattr(record.status, field_name) + delta)
            if error is not None:
                record.status.error = error
            snapshot = dataclasses.replace(record.status)
        self._events.status_changed.publish(snapshot)

    def _record(self, account_id: str) -> _AccountRecord:
        try:
            return self._records[account_id]
        except KeyError:
            raise UnknownAccountError(account_id) from None


__all__ = ["SyncStateTracker"]
