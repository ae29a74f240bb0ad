"""Telethon delivery adapter.

Implements the core ProviderPort on top of a connected TelegramClient and
translates Telethon errors into ThrottledError / DeliveryError.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Sequence, TypeVar

from telethon import TelegramClient, errors

from core.errors import DeliveryError, ThrottledError, parse_retry_after
from core.models import DeliveryItem, DeliveryTarget

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_FLOOD_CODES = {420, 429}


def classify_error(exc: Exception) -> Exception:
    """Map a Telethon exception to the core error taxonomy."""

    if isinstance(exc, errors.FloodWaitError):
        return ThrottledError(exc.seconds, str(exc))
    if isinstance(exc, errors.RPCError):
        text = str(exc)
        if exc.code in _FLOOD_CODES or "FLOOD" in (exc.message or ""):
            return ThrottledError(parse_retry_after(text), text)
        return DeliveryError(text)
    return DeliveryError(str(exc) or type(exc).__name__)


class TelethonProvider:
    """Re-sends album media with send_file and copies single messages."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def send_album(self, target: DeliveryTarget, items: Sequence[DeliveryItem]) -> None:
        # Packed bot file ids resolve without a file reference, which Telegram
        # rejects; the live media objects of the source messages carry one.
        chat_id = items[0].chat_id
        ids = [item.message_id for item in items]
        messages = await self._call(self._client.get_messages(chat_id, ids=ids))
        files = []
        for item, message in zip(items, messages):
            if message is None or message.media is None:
                raise DeliveryError(f"Source message {item.chat_id}/{item.message_id} is gone")
            files.append(message.media)
        captions = [item.caption or "" for item in items]
        await self._call(
            self._client.send_file(
                target.chat_id,
                files,
                caption=captions,
                reply_to=target.topic_id,
            )
        )

    async def send_single(self, target: DeliveryTarget, item: DeliveryItem) -> None:
        message = await self._call(self._client.get_messages(item.chat_id, ids=item.message_id))
        if message is None:
            raise DeliveryError(f"Source message {item.chat_id}/{item.message_id} is gone")
        # Sending a Message object copies its text and media without a
        # "forwarded from" header.
        await self._call(self._client.send_message(target.chat_id, message, reply_to=target.topic_id))

    async def _call(self, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except Exception as exc:
            LOGGER.debug("Telegram call failed: %r", exc)
            raise classify_error(exc) from exc
