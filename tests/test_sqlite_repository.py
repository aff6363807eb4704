"""Tests for the SQLite-backed message repository."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import make_message
from onebox.core.config import StorageSettings
from onebox.storage import SqliteMessageRepository


@pytest.fixture()
def repository(tmp_path: Path) -> SqliteMessageRepository:
    with SqliteMessageRepository(StorageSettings(db_path=tmp_path / "db" / "onebox.db")) as repo:
        yield repo


def test_persist_and_fetch_round_trip(repository: SqliteMessageRepository) -> None:
    message = make_message(subject="Demo")

    assert repository.persist_message(message) is True
    stored = repository.fetch_message(message.id)

    assert stored == message
    assert repository.count_messages() == 1


def test_redelivered_message_is_deduplicated(repository: SqliteMessageRepository) -> None:
    first = make_message(message_uuid="a" * 36)
    redelivered = make_message(message_uuid="b" * 36)
    other_account = make_message(message_uuid="c" * 36, account_id="other")

    assert repository.persist_message(first) is True
    assert repository.persist_message(redelivered) is False
    assert repository.persist_message(other_account) is True
    assert repository.count_messages("acct") == 1


def test_messages_without_message_id_are_always_stored(
    repository: SqliteMessageRepository,
) -> None:
    assert repository.persist_message(make_message(message_id="", message_uuid="a" * 36))
    assert repository.persist_message(make_message(message_id="", message_uuid="b" * 36))
    assert repository.count_messages() == 2


def test_update_category_and_filtered_listing(repository: SqliteMessageRepository) -> None:
    message = make_message()
    repository.persist_message(message)

    repository.update_category(message.id, "Interested")

    listed = repository.list_messages(category="Interested")
    assert [item.id for item in listed] == [message.id]
    assert listed[0].category == "Interested"
    assert repository.list_messages(account_id="other") == []
    with pytest.raises(KeyError):
        repository.update_category("missing", "Spam")


def test_text_query_matches_subject_body_and_sender(
    repository: SqliteMessageRepository,
) -> None:
    repository.persist_message(
        make_message(subject="Pricing question", message_uuid="a" * 36, message_id="<a@x>")
    )
    repository.persist_message(
        make_message(body="Let's talk 100% soon", message_uuid="b" * 36, message_id="<b@x>")
    )
    repository.persist_message(
        make_message(sender="bob@vendor.test", message_uuid="c" * 36, message_id="<c@x>")
    )

    assert [item.id for item in repository.list_messages(query="pricing")] == ["a" * 36]
    assert [item.id for item in repository.list_messages(query="100%")] == ["b" * 36]
    assert [item.id for item in repository.list_messages(query="VENDOR")] == ["c" * 36]
    assert repository.list_messages(query="_") == []


def test_message_stats_groups_and_counts_recent(repository: SqliteMessageRepository) -> None:
    repository.persist_message(make_message(message_uuid="a" * 36, message_id="<a@x>"))
    repository.persist_message(
        make_message(message_uuid="b" * 36, message_id="<b@x>", account_id="other")
    )
    repository.update_category("a" * 36, "Interested")

    stats = repository.message_stats(now=datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc))

    assert stats.total == 2
    assert stats.by_category == {"Interested": 1, "Uncategorized": 1}
    assert stats.by_account == {"acct": 1, "other": 1}
    assert stats.by_folder == {"INBOX": 2}
    assert stats.recent == {"last_24_hours": 2, "last_7_days": 2, "last_30_days": 2}

    later = repository.message_stats(now=datetime(2025, 1, 10, tzinfo=timezone.utc))
    assert later.recent == {"last_24_hours": 0, "last_7_days": 2, "last_30_days": 2}
