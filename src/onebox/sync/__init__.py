"""Account synchronization: sessions, fetch cycles, and lifecycle control."""

from .connection import ConnectionManager, imap_session_factory
from .fetch import FetchEngine, compute_start_uid
from .lifecycle import (
    AccountWorker,
    IllegalTransitionError,
    LifecycleController,
    SyncInterruptedError,
)
from .state import SyncStateTracker

__all__ = [
    "AccountWorker",
    "ConnectionManager",
    "FetchEngine",
    "IllegalTransitionError",
    "LifecycleController",
    "SyncInterruptedError",
    "SyncStateTracker",
    "compute_start_uid",
    "imap_session_factory",
]
