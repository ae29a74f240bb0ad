"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to Telethon or SQLite types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, Union

ALBUM = "album"
SINGLE = "single"

LOG_RECEIVE = "receive"
LOG_FORWARD = "forward"
LOG_ERROR = "error"
LOG_SYSTEM = "system"


@dataclass(frozen=True)
class DeliveryTarget:
    """Destination chat, optionally narrowed to a forum topic."""

    chat_id: int
    topic_id: Optional[int] = None


@dataclass(frozen=True)
class ForwardingRule:
    """One (source chat, topic) -> (target chat, topic) edge."""

    id: int
    source_chat_id: int
    source_topic_id: Optional[int]
    target_chat_id: int
    target_topic_id: Optional[int]
    title: str
    active: bool
    created_at: Optional[datetime] = None

    @property
    def target(self) -> DeliveryTarget:
        return DeliveryTarget(self.target_chat_id, self.target_topic_id)


@dataclass(frozen=True)
class KnownChannel:
    """Cached display metadata for a chat we have seen activity from."""

    chat_id: int
    title: str
    kind: str
    username: Optional[str] = None


@dataclass(frozen=True)
class KnownTopic:
    """Cached forum topic name. Best-effort, may be stale."""

    chat_id: int
    topic_id: int
    name: str


@dataclass(frozen=True)
class MediaLogEntry:
    """Durable record of one inbound media item."""

    chat_id: int
    message_id: int
    topic_id: Optional[int]
    group_id: Optional[int]
    media_ref: Optional[str]
    file_unique_id: Optional[str]
    caption: str
    media_kind: Optional[str]
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class InboundItem:
    """A single observed message, as seen by the live path."""

    chat_id: int
    message_id: int
    date: datetime
    topic_id: Optional[int] = None
    group_id: Optional[int] = None
    media_ref: Optional[str] = None
    file_unique_id: Optional[str] = None
    caption: str = ""
    media_kind: Optional[str] = None

    @property
    def has_media(self) -> bool:
        return self.media_kind is not None

    def to_log_entry(self) -> MediaLogEntry:
        return MediaLogEntry(
            chat_id=self.chat_id,
            message_id=self.message_id,
            topic_id=self.topic_id,
            group_id=self.group_id,
            media_ref=self.media_ref,
            file_unique_id=self.file_unique_id,
            caption=self.caption,
            media_kind=self.media_kind,
            created_at=self.date,
        )


DeliveryItem = Union[InboundItem, MediaLogEntry]


@dataclass(frozen=True)
class DeliveryUnit:
    """Indivisible piece of delivery work: one item or one whole album."""

    kind: str
    items: Tuple[DeliveryItem, ...]

    @classmethod
    def single(cls, item: DeliveryItem) -> "DeliveryUnit":
        return cls(kind=SINGLE, items=(item,))

    @classmethod
    def album(cls, items) -> "DeliveryUnit":
        return cls(kind=ALBUM, items=tuple(items))

    @property
    def is_album(self) -> bool:
        return self.kind == ALBUM

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one Dispatcher.deliver call."""

    status: str
    attempts: int = 1
    throttles: int = 0
    sent_items: int = 0
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == "delivered"


@dataclass(frozen=True)
class LogEvent:
    """Operator-facing log line published on the event bus."""

    kind: str
    message: str
    time: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ReplayProgress:
    processed: int
    total: int
