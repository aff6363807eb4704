"""Tests for the FastAPI management application."""

from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from conftest import make_message
from onebox.core.config import StorageSettings
from onebox.core.models import AccountState, SyncStatus
from onebox.core.registry import UnknownAccountError
from onebox.storage import SqliteMessageRepository
from onebox.sync.lifecycle import ControllerClosedError
from onebox.transport import ConnectError
from onebox.web import create_app


class StubController:
    def __init__(self) -> None:
        self.statuses = {
            "work": SyncStatus(
                account_id="work", connected=True, state=AccountState.LIVE, watermark=41
            ),
            "home": SyncStatus(account_id="home", error="Authentication failed"),
        }
        self.reconnect_error: Exception | None = None
        self.closed = False
        self.shutdown_calls = 0

    def list_statuses(self) -> list[SyncStatus]:
        return list(self.statuses.values())

    def get_status(self, account_id: str) -> SyncStatus:
        try:
            return self.statuses[account_id]
        except KeyError as exc:
            raise UnknownAccountError(account_id) from exc

    def reconnect_account(self, account_id: str, timeout: float | None = None) -> SyncStatus:
        status = self.get_status(account_id)
        if self.reconnect_error is not None:
            raise self.reconnect_error
        return status

    def connect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        if self.closed:
            raise ControllerClosedError("Controller has been shut down")
        return self.list_statuses()

    def disconnect_all(self, timeout: float | None = None) -> list[SyncStatus]:
        for status in self.statuses.values():
            status.connected = False
            status.state = AccountState.DISCONNECTED
        return self.list_statuses()

    def shutdown(self, timeout: float = 10.0) -> None:
        self.shutdown_calls += 1


@pytest.fixture()
def controller() -> StubController:
    return StubController()


@pytest.fixture()
def client(controller: StubController) -> TestClient:
    return TestClient(create_app(controller))


def test_health_counts_connected_accounts(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["accounts"] == 2
    assert payload["connected"] == 1


def test_list_and_get_accounts(client: TestClient) -> None:
    listed = client.get("/api/accounts").json()
    assert [item["accountId"] for item in listed] == ["work", "home"]

    work = client.get("/api/accounts/work").json()
    assert work["state"] == "live"
    assert work["watermark"] == 41
    assert client.get("/api/accounts/home").json()["error"] == "Authentication failed"
    assert client.get("/api/accounts/nope").status_code == 404


def test_reconnect_reports_outcome(client: TestClient, controller: StubController) -> None:
    assert client.post("/api/accounts/work/reconnect").json()["accountId"] == "work"
    assert client.post("/api/accounts/nope/reconnect").status_code == 404

    controller.reconnect_error = ConnectError("Authentication failed for work")
    response = client.post("/api/accounts/work/reconnect")
    assert response.status_code == 502
    assert "Authentication failed" in response.json()["detail"]


def test_connect_and_disconnect_all(client: TestClient, controller: StubController) -> None:
    assert len(client.post("/api/accounts/connect").json()) == 2

    disconnected = client.post("/api/accounts/disconnect").json()
    assert {item["state"] for item in disconnected} == {"disconnected"}

    controller.closed = True
    assert client.post("/api/accounts/connect").status_code == 503


def test_shutdown_stops_controller(controller: StubController) -> None:
    released: list[str] = []
    app = create_app(controller, on_shutdown=[lambda: released.append("done")])

    with TestClient(app) as client:
        client.get("/api/health")

    assert controller.shutdown_calls == 1
    assert released == ["done"]


def test_messages_endpoint_lists_stored_messages(controller: StubController) -> None:
    with SqliteMessageRepository(StorageSettings(db_path=":memory:")) as repository:
        repository.persist_message(dataclasses.replace(make_message(), category="Interested"))
        client = TestClient(create_app(controller, repository=repository))

        everything = client.get("/api/messages").json()
        spam = client.get("/api/messages", params={"category": "Spam"}).json()
        rejected = client.get("/api/messages", params={"limit": 0})

    assert [item["subject"] for item in everything] == ["Hello"]
    assert everything[0]["category"] == "Interested"
    assert everything[0]["to"] == ["team@example.com"]
    assert spam == []
    assert rejected.status_code == 422


def test_messages_endpoint_absent_without_repository(client: TestClient) -> None:
    assert client.get("/api/messages").status_code == 404


class RecordingNotifier:
    def __init__(self) -> None:
        self.notified: list[str] = []

    def notify_interested(self, message) -> None:
        self.notified.append(message.id)


@pytest.fixture()
def repository() -> SqliteMessageRepository:
    with SqliteMessageRepository(StorageSettings(db_path=":memory:")) as repo:
        repo.persist_message(make_message(subject="Pricing question"))
        yield repo


def test_get_message_by_id(
    controller: StubController, repository: SqliteMessageRepository
) -> None:
    client = TestClient(create_app(controller, repository=repository))
    message_id = make_message().id

    assert client.get(f"/api/messages/{message_id}").json()["subject"] == "Pricing question"
    assert client.get("/api/messages/missing").status_code == 404
    assert len(client.get("/api/messages", params={"q": "pricing"}).json()) == 1
    assert client.get("/api/messages", params={"q": "invoice"}).json() == []


def test_message_stats_endpoint(
    controller: StubController, repository: SqliteMessageRepository
) -> None:
    client = TestClient(create_app(controller, repository=repository))

    stats = client.get("/api/messages/stats").json()

    assert stats["totalEmails"] == 1
    assert stats["byCategory"] == {"Uncategorized": 1}
    assert stats["byAccount"] == {"acct": 1}
    assert set(stats["recentActivity"]) == {"last24Hours", "last7Days", "last30Days"}


def test_category_override_notifies_interested(
    controller: StubController, repository: SqliteMessageRepository
) -> None:
    notifier = RecordingNotifier()
    client = TestClient(create_app(controller, repository=repository, notifier=notifier))
    message_id = make_message().id

    spam = client.put(f"/api/messages/{message_id}/category", json={"category": "Spam"})
    assert spam.status_code == 200 and spam.json()["category"] == "Spam"
    assert notifier.notified == []

    interested = client.put(
        f"/api/messages/{message_id}/category", json={"category": "Interested"}
    )
    assert interested.json()["category"] == "Interested"
    assert notifier.notified == [message_id]

    assert (
        client.put(f"/api/messages/{message_id}/category", json={"category": "Maybe"}).status_code
        == 422
    )
    assert (
        client.put("/api/messages/missing/category", json={"category": "Spam"}).status_code
        == 404
    )
