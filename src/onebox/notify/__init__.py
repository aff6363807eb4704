"""Notification delivery for categorized messages."""

from .webhook import NotificationError, WebhookNotifier

__all__ = ["NotificationError", "WebhookNotifier"]
