"""Transport adapters for remote mail stores."""

from .imap_client import (
    ConnectError,
    FetchError,
    IdleError,
    ImapError,
    ImapSession,
    MessageTooLargeError,
    SearchError,
    SessionClosedError,
)

__all__ = [
    "ConnectError",
    "FetchError",
    "IdleError",
    "ImapError",
    "ImapSession",
    "MessageTooLargeError",
    "SearchError",
    "SessionClosedError",
]
