"""Shared building blocks: settings, logging, the event bus and service wiring."""

from .config import AppSettings, SyncSettings, load_app_settings
from .container import ServiceContainer
from .events import EventBus, EventChannel
from .logging import configure_logging
from .registry import AccountRegistry, UnknownAccountError

__all__ = [
    "AccountRegistry",
    "AppSettings",
    "EventBus",
    "EventChannel",
    "ServiceContainer",
    "SyncSettings",
    "UnknownAccountError",
    "configure_logging",
    "load_app_settings",
]
