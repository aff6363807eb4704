"""Outbound notifications for messages categorized as interested leads."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .. import __version__
from ..core.config import NotificationSettings
from ..core.datetime_utils import serialize_datetime, utcnow
from ..core.interfaces import Notifier
from ..core.models import NormalizedMessage

LOGGER = logging.getLogger(__name__)

INTERESTED_EVENT = "InterestedLead"
_PREVIEW_LIMIT = 500


class NotificationError(RuntimeError):
    """Raised when a configured notification target rejects a delivery."""


class WebhookNotifier(Notifier):
    """Post interested-lead alerts to Slack and a generic JSON webhook."""

    def __init__(
        self,
        settings: NotificationSettings,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)

    @property
    def slack_configured(self) -> bool:
        return bool(self._settings.slack_webhook_url)

    @property
    def webhook_configured(self) -> bool:
        return bool(self._settings.webhook_url)

    def notify_interested(self, message: NormalizedMessage) -> None:
        """Deliver ``message`` to every configured target.

        Every target is attempted; the first failure is raised afterwards.
        """
        failures: list[str] = []
        slack_url = self._settings.slack_webhook_url
        if slack_url:
            self._deliver(slack_url, build_slack_payload(message), "Slack", failures)
        else:
            LOGGER.warning("Slack webhook URL not configured")

        webhook_url = self._settings.webhook_url
        if webhook_url:
            self._deliver(webhook_url, build_webhook_payload(message), "webhook", failures)
        else:
            LOGGER.warning("External webhook URL not configured")

        if failures:
            raise NotificationError("; ".join(failures))
        LOGGER.info("Interested-lead notifications sent for %s", message.id)

    def close(self) -> None:
        self._client.close()

    def _deliver(
        self, url: str, payload: dict[str, Any], target: str, failures: list[str]
    ) -> None:
        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("%s notification failed: %s", target, exc)
            failures.append(f"{target}: {exc}")


def _preview(body: str) -> str:
    if len(body) <= _PREVIEW_LIMIT:
        return body
    return body[:_PREVIEW_LIMIT] + "..."


def build_slack_payload(message: NormalizedMessage) -> dict[str, Any]:
    """Return a Slack Block Kit payload announcing an interested lead."""
    return {
        "text": "New Interested Lead Detected!",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "New Interested Lead"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Subject:* {message.subject}"},
                    {"type": "mrkdwn", "text": f"*From:* {message.sender}"},
                    {"type": "mrkdwn", "text": f"*Account:* {message.account_id}"},
                    {"type": "mrkdwn", "text": f"*Date:* {serialize_datetime(message.date)}"},
                ],
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*Email Preview:*\n{_preview(message.body)}",
                },
            },
        ],
    }


def build_webhook_payload(message: NormalizedMessage) -> dict[str, Any]:
    """Return the generic JSON event posted for an interested lead."""
    now = serialize_datetime(utcnow())
    return {
        "event": INTERESTED_EVENT,
        "timestamp": now,
        "email": {
            "id": message.id,
            "messageId": message.message_id,
            "subject": message.subject,
            "from": message.sender,
            "to": list(message.to),
            "date": serialize_datetime(message.date),
            "body": message.body,
            "accountId": message.account_id,
            "folder": message.folder,
            "category": message.category,
            "hasAttachments": message.has_attachments,
            "attachmentCount": message.attachment_count,
        },
        "metadata": {"source": "onebox", "version": __version__},
    }


__all__ = [
    "INTERESTED_EVENT",
    "NotificationError",
    "WebhookNotifier",
    "build_slack_payload",
    "build_webhook_payload",
]
