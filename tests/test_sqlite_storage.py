from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.errors import StorageError
from core.models import KnownChannel, KnownTopic, MediaLogEntry


def _storage(tmp_path: Path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "data" / "relay.db"))
    storage.init_db()
    return storage


def _entry(message_id: int, topic_id: Optional[int] = None, group_id: Optional[int] = None) -> MediaLogEntry:
    return MediaLogEntry(
        chat_id=-100,
        message_id=message_id,
        topic_id=topic_id,
        group_id=group_id,
        media_ref=f"ref-{message_id}",
        file_unique_id=f"photo:{message_id}",
        caption=f"caption {message_id}",
        media_kind="photo",
    )


def test_rule_lifecycle(tmp_path: Path) -> None:
    storage = _storage(tmp_path)

    rule = storage.add_rule(-100, -200, title="News mirror", target_topic_id=4)
    assert rule.active
    assert [r.id for r in storage.list_rules()] == [rule.id]

    assert storage.toggle_rule(rule.id) is False
    assert storage.list_active_rules(-100) == []
    assert storage.toggle_rule(rule.id) is True
    assert storage.toggle_rule(9999) is None

    assert storage.delete_rule(rule.id) is True
    assert storage.delete_rule(rule.id) is False
    assert storage.list_rules() == []


def test_active_rules_respect_source_topic(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    whole_chat = storage.add_rule(-100, -200)
    topic_only = storage.add_rule(-100, -300, source_topic_id=5)
    storage.add_rule(-999, -200)

    assert [r.id for r in storage.list_active_rules(-100, 5)] == [whole_chat.id, topic_only.id]
    assert [r.id for r in storage.list_active_rules(-100, 6)] == [whole_chat.id]
    assert [r.id for r in storage.list_active_rules(-100)] == [whole_chat.id]


def test_media_log_ignores_repeated_messages(tmp_path: Path) -> None:
    storage = _storage(tmp_path)

    assert storage.append_media_log(_entry(1)) is True
    assert storage.append_media_log(_entry(1)) is False
    assert storage.media_count(-100) == 1


def test_recent_media_is_newest_first_and_limited(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    for message_id in (3, 1, 5, 2, 4):
        storage.append_media_log(_entry(message_id, group_id=77 if message_id > 3 else None))

    rows = storage.query_recent_media(-100, None, 3)

    assert [row.message_id for row in rows] == [5, 4, 3]
    assert rows[0].group_id == 77
    assert rows[0].media_ref == "ref-5"
    assert rows[2].group_id is None
    assert rows[2].caption == "caption 3"


def test_recent_media_filters_by_topic(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    storage.append_media_log(_entry(1, topic_id=5))
    storage.append_media_log(_entry(2, topic_id=6))
    storage.append_media_log(_entry(3, topic_id=5))

    rows = storage.query_recent_media(-100, 5, 10)

    assert [row.message_id for row in rows] == [3, 1]


def test_directory_caches_upsert(tmp_path: Path) -> None:
    storage = _storage(tmp_path)

    storage.upsert_known_channel(KnownChannel(-100, "Old", "channel"))
    storage.upsert_known_channel(KnownChannel(-100, "New", "supergroup", username="news"))
    storage.upsert_known_topic(KnownTopic(-100, 5, "Drafts"))
    storage.upsert_known_topic(KnownTopic(-100, 5, "Releases"))
    storage.append_media_log(_entry(1, topic_id=5))
    storage.append_media_log(_entry(2, topic_id=8))

    assert storage.list_known_channels() == [KnownChannel(-100, "New", "supergroup", "news")]
    assert storage.list_topics(-100) == [KnownTopic(-100, 5, "Releases")]
    assert storage.list_media_topics(-100) == [
        KnownTopic(-100, 5, "Releases"),
        KnownTopic(-100, 8, "topic 8"),
    ]


def test_sent_history_is_per_target(tmp_path: Path) -> None:
    storage = _storage(tmp_path)

    storage.mark_sent(-200, "abc")
    storage.mark_sent(-200, "abc")

    assert storage.is_sent(-200, "abc")
    assert not storage.is_sent(-300, "abc")


def test_unopenable_database_raises_storage_error(tmp_path: Path) -> None:
    storage = SQLiteStorage(str(tmp_path))

    with pytest.raises(StorageError):
        storage.query_recent_media(-100, None, 10)
