"""FastAPI application exposing account management operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import FastAPI, HTTPException, Query, status as http_status
from pydantic import BaseModel, field_validator

from .. import __version__
from ..core.datetime_utils import serialize_datetime
from ..core.interfaces import AccountController, Notifier
from ..core.models import UNCATEGORIZED, NormalizedMessage, SyncStatus
from ..core.registry import UnknownAccountError
from ..intelligence.category import CATEGORY_LABELS, INTERESTED
from ..storage import SqliteMessageRepository
from ..sync.lifecycle import ControllerClosedError, SyncInterruptedError
from ..transport import ImapError

LOGGER = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
_ASSIGNABLE_CATEGORIES = frozenset((*CATEGORY_LABELS, UNCATEGORIZED))


def create_app(
    controller: AccountController,
    *,
    repository: SqliteMessageRepository | None = None,
    notifier: Notifier | None = None,
    on_shutdown: Sequence[Callable[[], None]] = (),
) -> FastAPI:
    """Create the management API around ``controller``."""
    app = FastAPI(title="Onebox Sync API", version=__version__)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Stop account workers and release collaborators."""
        await asyncio.to_thread(controller.shutdown)
        for callback in on_shutdown:
            callback()
        LOGGER.info("Sync controller stopped")

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        statuses = controller.list_statuses()
        return {
            "status": "ok",
            "version": __version__,
            "accounts": len(statuses),
            "connected": sum(1 for item in statuses if item.connected),
        }

    @app.get("/api/accounts")
    async def list_accounts() -> list[dict[str, Any]]:
        return [_serialize_status(item) for item in controller.list_statuses()]

    @app.get("/api/accounts/{account_id}")
    async def get_account(account_id: str) -> dict[str, Any]:
        try:
            return _serialize_status(controller.get_status(account_id))
        except UnknownAccountError as exc:
            raise _unknown_account(account_id) from exc

    @app.post("/api/accounts/connect")
    async def connect_all() -> list[dict[str, Any]]:
        """Connect every configured account; failures show up in each status."""
        try:
            statuses = await asyncio.to_thread(controller.connect_all)
        except ControllerClosedError as exc:
            raise _unavailable(exc) from exc
        return [_serialize_status(item) for item in statuses]

    @app.post("/api/accounts/disconnect")
    async def disconnect_all() -> list[dict[str, Any]]:
        statuses = await asyncio.to_thread(controller.disconnect_all)
        return [_serialize_status(item) for item in statuses]

    @app.post("/api/accounts/{account_id}/reconnect")
    async def reconnect_account(account_id: str) -> dict[str, Any]:
        """Tear down and rebuild one account session, reporting connect errors."""
        try:
            result = await asyncio.to_thread(controller.reconnect_account, account_id)
        except UnknownAccountError as exc:
            raise _unknown_account(account_id) from exc
        except ImapError as exc:
            LOGGER.warning("Manual reconnect of %s failed: %s", account_id, exc)
            raise HTTPException(
                status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)
            ) from exc
        except SyncInterruptedError as exc:
            raise HTTPException(
                status_code=http_status.HTTP_409_CONFLICT, detail=str(exc)
            ) from exc
        except ControllerClosedError as exc:
            raise _unavailable(exc) from exc
        return _serialize_status(result)

    if repository is not None:

        @app.get("/api/messages")
        async def list_messages(
            account_id: str | None = None,
            category: str | None = None,
            q: str | None = None,
            limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
        ) -> list[dict[str, Any]]:
            messages = await asyncio.to_thread(
                repository.list_messages,
                account_id=account_id,
                category=category,
                query=q,
                limit=limit,
            )
            return [_serialize_message(item) for item in messages]

        @app.get("/api/messages/stats")
        async def message_stats() -> dict[str, Any]:
            stats = await asyncio.to_thread(repository.message_stats)
            return {
                "totalEmails": stats.total,
                "byCategory": stats.by_category,
                "byAccount": stats.by_account,
                "byFolder": stats.by_folder,
                "recentActivity": {
                    _camel_case(key): value for key, value in stats.recent.items()
                },
            }

        @app.get("/api/messages/{message_id}")
        async def get_message(message_id: str) -> dict[str, Any]:
            message = await asyncio.to_thread(repository.fetch_message, message_id)
            if message is None:
                raise _unknown_message(message_id)
            return _serialize_message(message)

        @app.put("/api/messages/{message_id}/category")
        async def update_category(message_id: str, payload: CategoryUpdate) -> dict[str, Any]:
            """Override the category; marking a message Interested notifies as usual."""
            try:
                await asyncio.to_thread(
                    repository.update_category, message_id, payload.category
                )
            except KeyError as exc:
                raise _unknown_message(message_id) from exc
            message = await asyncio.to_thread(repository.fetch_message, message_id)
            if message is None:
                raise _unknown_message(message_id)
            if payload.category == INTERESTED and notifier is not None:
                try:
                    await asyncio.to_thread(notifier.notify_interested, message)
                except Exception as exc:  # pylint: disable=broad-except
                    LOGGER.error("Notification failed for %s: %s", message_id, exc)
            return _serialize_message(message)

    return app


class CategoryUpdate(BaseModel):
    """Request body for a manual category override."""

    category: str

    @field_validator("category")
    @classmethod
    def _known_label(cls, value: str) -> str:
        if value not in _ASSIGNABLE_CATEGORIES:
            raise ValueError(f"Unknown category '{value}'")
        return value


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _unknown_message(message_id: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail=f"Unknown message '{message_id}'",
    )


def _unknown_account(account_id: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail=f"Unknown account '{account_id}'",
    )


def _unavailable(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
    )


def _serialize_status(status: SyncStatus) -> dict[str, Any]:
    return {
        "accountId": status.account_id,
        "connected": status.connected,
        "state": status.state.value,
        "lastSync": serialize_datetime(status.last_sync),
        "totalEmails": status.total_messages,
        "newEmails": status.new_messages,
        "parseErrors": status.parse_errors,
        "watermark": status.watermark,
        "error": status.error,
    }


def _serialize_message(message: NormalizedMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "accountId": message.account_id,
        "folder": message.folder,
        "messageId": message.message_id,
        "threadId": message.thread_id,
        "subject": message.subject,
        "from": message.sender,
        "to": list(message.to),
        "date": serialize_datetime(message.date),
        "body": message.body,
        "category": message.category,
        "hasAttachments": message.has_attachments,
        "attachmentCount": message.attachment_count,
        "indexedAt": serialize_datetime(message.indexed_at),
    }


__all__ = ["create_app"]
