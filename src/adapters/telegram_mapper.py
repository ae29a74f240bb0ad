"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the forwarding engine.
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

from telethon import utils
from telethon.tl.custom import Message
from telethon.tl.types import (
    Channel,
    Chat,
    MessageActionTopicCreate,
    MessageActionTopicEdit,
    User,
)

from core.models import InboundItem, KnownChannel, KnownTopic


def _topic_id_from_message(message: Any) -> Optional[int]:
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top_id = getattr(reply_to, "reply_to_top_id", None)
    if top_id:
        return top_id
    return getattr(reply_to, "reply_to_msg_id", None)


def _media_of(message: Any) -> Tuple[Optional[str], Any]:
    """Return (kind, media object) for the media types we relay."""

    # Stickers are documents in Telethon but are not relayed as media.
    if getattr(message, "sticker", None):
        return None, None
    photo = getattr(message, "photo", None)
    if photo:
        return "photo", photo
    for kind in ("video", "voice", "audio", "document"):
        document = getattr(message, kind, None)
        if document:
            return kind, document
    return None, None


def build_item(message: Message) -> InboundItem:
    """Build a core InboundItem from a Telethon Message."""

    kind, media = _media_of(message)
    media_ref = None
    file_unique_id = None
    if kind is not None:
        # Marks the item as album-sendable; the provider re-fetches the live
        # media before sending.
        media_ref = utils.pack_bot_file_id(message.media)
        media_id = getattr(media, "id", None)
        if media_id is not None:
            file_unique_id = f"{kind}:{media_id}"

    return InboundItem(
        chat_id=message.chat_id,
        message_id=message.id,
        date=message.date,
        topic_id=_topic_id_from_message(message),
        group_id=getattr(message, "grouped_id", None),
        media_ref=media_ref,
        file_unique_id=file_unique_id,
        caption=getattr(message, "raw_text", None) or "",
        media_kind=kind,
    )


def _chat_kind(entity: Any) -> str:
    if isinstance(entity, Channel):
        return "supergroup" if getattr(entity, "megagroup", False) else "channel"
    if isinstance(entity, Chat):
        return "group"
    if isinstance(entity, User):
        return "private"
    return "chat"


def _chat_title(entity: Any) -> str:
    title = getattr(entity, "title", None)
    if title:
        return str(title)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    return "Unknown"


def build_channel(chat_id: int, entity: Any) -> KnownChannel:
    """Build display metadata for a chat entity."""

    username = getattr(entity, "username", None)
    return KnownChannel(
        chat_id=chat_id,
        title=_chat_title(entity),
        kind=_chat_kind(entity),
        username=username if isinstance(username, str) and username else None,
    )


def build_topic(message: Any) -> Optional[KnownTopic]:
    """Return the topic announced by a topic-created/edited service message."""

    action = getattr(message, "action", None)
    if isinstance(action, MessageActionTopicCreate):
        # The creation service message id is the topic id.
        return KnownTopic(message.chat_id, message.id, action.title)
    if isinstance(action, MessageActionTopicEdit) and action.title:
        topic_id = _topic_id_from_message(message) or message.id
        return KnownTopic(message.chat_id, topic_id, action.title)
    return None
