from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from telethon import errors

from adapters.telegram_provider import TelethonProvider, classify_error
from core.config import EngineConfig
from core.dispatcher import Dispatcher
from core.errors import DeliveryError, ThrottledError, parse_retry_after
from core.events import EventBus
from core.models import DeliveryTarget, InboundItem, MediaLogEntry
from core.replay import COMPLETED, ReplayCoordinator, ReplayRequest


def _item(message_id: int, caption: str = "") -> InboundItem:
    return InboundItem(
        chat_id=-100,
        message_id=message_id,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        group_id=5,
        media_ref=f"ref-{message_id}",
        file_unique_id=f"photo:{message_id}",
        caption=caption,
        media_kind="photo",
    )


class DummyMessage:
    def __init__(self, message_id: int) -> None:
        self.id = message_id
        self.media = f"media-{message_id}"


class FakeClient:
    """Serves source messages by id; ids in `unreachable` raise ConnectionError."""

    def __init__(self, messages=None, unreachable=(), send_error: "Exception | None" = None) -> None:
        self.messages = messages or {}
        self.unreachable = set(unreachable)
        self.send_error = send_error
        self.calls = []

    async def send_file(self, entity, files, caption=None, reply_to=None):
        self.calls.append(("send_file", entity, files, caption, reply_to))
        if self.send_error is not None:
            raise self.send_error

    async def get_messages(self, entity, ids=None):
        self.calls.append(("get_messages", entity, ids))
        wanted = ids if isinstance(ids, list) else [ids]
        if self.unreachable.intersection(wanted):
            raise ConnectionError("Cannot send requests while disconnected")
        if isinstance(ids, list):
            return [self.messages.get(message_id) for message_id in ids]
        return self.messages.get(ids)

    async def send_message(self, entity, message, reply_to=None):
        self.calls.append(("send_message", entity, message, reply_to))


def _messages(*ids: int) -> dict:
    return {message_id: DummyMessage(message_id) for message_id in ids}


def test_parse_retry_after_variants() -> None:
    assert parse_retry_after("Too Many Requests: retry after 17") == 17
    assert parse_retry_after("A wait of 30 seconds is required") == 30
    assert parse_retry_after("CHAT_WRITE_FORBIDDEN") is None
    assert parse_retry_after("") is None


def test_flood_wait_becomes_throttle() -> None:
    classified = classify_error(errors.FloodWaitError(None, capture=5))

    assert isinstance(classified, ThrottledError)
    assert classified.retry_after == 5


def test_flood_code_without_seconds_uses_message_hint() -> None:
    classified = classify_error(errors.RPCError(None, "A wait of 9 seconds is required", 420))

    assert isinstance(classified, ThrottledError)
    assert classified.retry_after == 9


def test_other_errors_are_fatal() -> None:
    forbidden = classify_error(errors.RPCError(None, "CHAT_WRITE_FORBIDDEN", 403))
    invalid = classify_error(ValueError("Could not find the input entity"))
    disconnected = classify_error(ConnectionError("Cannot send requests while disconnected"))

    assert isinstance(forbidden, DeliveryError)
    assert "CHAT_WRITE_FORBIDDEN" in str(forbidden)
    assert isinstance(invalid, DeliveryError)
    assert isinstance(disconnected, DeliveryError)


def test_send_album_sends_fetched_media_with_captions_and_topic() -> None:
    client = FakeClient(messages=_messages(1, 2))
    provider = TelethonProvider(client)

    asyncio.run(provider.send_album(DeliveryTarget(-200, 4), [_item(1, "first"), _item(2)]))

    assert client.calls == [
        ("get_messages", -100, [1, 2]),
        ("send_file", -200, ["media-1", "media-2"], ["first", ""], 4),
    ]


def test_send_album_with_missing_part_is_fatal() -> None:
    client = FakeClient(messages=_messages(1))
    provider = TelethonProvider(client)

    with pytest.raises(DeliveryError):
        asyncio.run(provider.send_album(DeliveryTarget(-200), [_item(1), _item(2)]))

    assert [call[0] for call in client.calls] == ["get_messages"]


def test_send_album_throttle_is_translated() -> None:
    client = FakeClient(messages=_messages(1), send_error=errors.FloodWaitError(None, capture=12))
    provider = TelethonProvider(client)

    with pytest.raises(ThrottledError) as excinfo:
        asyncio.run(provider.send_album(DeliveryTarget(-200), [_item(1)]))

    assert excinfo.value.retry_after == 12


def test_connection_loss_is_fatal_not_raw() -> None:
    provider = TelethonProvider(FakeClient(unreachable=[7]))

    with pytest.raises(DeliveryError) as excinfo:
        asyncio.run(provider.send_single(DeliveryTarget(-200), _item(7)))

    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_send_single_copies_source_message() -> None:
    messages = _messages(7)
    client = FakeClient(messages=messages)
    provider = TelethonProvider(client)

    asyncio.run(provider.send_single(DeliveryTarget(-200, None), _item(7)))

    assert client.calls == [
        ("get_messages", -100, 7),
        ("send_message", -200, messages[7], None),
    ]


def test_send_single_missing_source_is_fatal() -> None:
    provider = TelethonProvider(FakeClient())

    with pytest.raises(DeliveryError):
        asyncio.run(provider.send_single(DeliveryTarget(-200), _item(7)))


class LogStorage:
    def __init__(self, entries) -> None:
        self.entries = entries

    def query_recent_media(self, chat_id, topic_id, limit):
        return sorted(self.entries, key=lambda entry: entry.message_id, reverse=True)[:limit]


def test_replay_survives_a_dropped_connection() -> None:
    entries = [
        MediaLogEntry(-100, message_id, None, None, f"ref-{message_id}", f"photo:{message_id}", "", "photo")
        for message_id in (1, 2, 3)
    ]
    client = FakeClient(messages=_messages(1, 2, 3), unreachable=[1])
    bus = EventBus()

    async def no_sleep(seconds: float) -> None:
        return None

    dispatcher = Dispatcher(TelethonProvider(client), bus, config=EngineConfig(), sleep=no_sleep)
    coordinator = ReplayCoordinator(LogStorage(entries), dispatcher, bus)
    job = coordinator.submit(ReplayRequest(-100, -200))

    async def scenario() -> list:
        return [(progress.processed, progress.total) async for progress in job.run()]

    progress = asyncio.run(scenario())

    assert progress[-1] == (3, 3)
    assert job.status == COMPLETED
    assert job.skipped == 1
    sent = [call[2].id for call in client.calls if call[0] == "send_message"]
    assert sent == [2, 3]
