"""Downstream processing of messages published by the sync engine."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable

from ..core.events import EventChannel
from ..core.interfaces import CategoryService, MessageRepository, Notifier
from ..core.models import NormalizedMessage
from ..intelligence.category import INTERESTED

LOGGER = logging.getLogger(__name__)


class MessagePipeline:
    """Persist and categorize each received message, announcing interested leads.

    Messages already stored are skipped entirely, which absorbs the
    at-least-once delivery of the sync engine.
    """

    def __init__(
        self,
        repository: MessageRepository,
        category_service: CategoryService | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._repository = repository
        self._category_service = category_service
        self._notifier = notifier
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, channel: EventChannel[NormalizedMessage]) -> None:
        """Start consuming ``channel``; calling twice is a no-op."""
        if self._unsubscribe is None:
            self._unsubscribe = channel.subscribe(self.process)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def process(self, message: NormalizedMessage) -> NormalizedMessage | None:
        """Run one message through the pipeline; ``None`` means it was a duplicate."""
        if not self._repository.persist_message(message):
            return None
        if self._category_service is None:
            return message

        try:
            category = self._category_service.categorize(message)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Categorization failed for %s: %s", message.id, exc)
            return message

        categorized = dataclasses.replace(message, category=category)
        self._repository.update_category(message.id, category)

        if category == INTERESTED and self._notifier is not None:
            try:
                self._notifier.notify_interested(categorized)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("Notification failed for %s: %s", message.id, exc)
        return categorized


__all__ = ["MessagePipeline"]
