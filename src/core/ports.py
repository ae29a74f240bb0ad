"""Ports (interfaces) used by the forwarding engine.

Ports define the minimal contracts for the store, the messaging provider and
event observers so the core can be reused with different backends.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from core.models import (
    DeliveryItem,
    DeliveryTarget,
    ForwardingRule,
    KnownChannel,
    KnownTopic,
    LogEvent,
    MediaLogEntry,
    ReplayProgress,
)


class StoragePort(Protocol):
    """Store operations required by the live and batch paths."""

    def list_active_rules(
        self, source_chat_id: int, source_topic_id: Optional[int] = None
    ) -> List[ForwardingRule]:
        ...

    def append_media_log(self, entry: MediaLogEntry) -> bool:
        ...

    def query_recent_media(
        self, chat_id: int, topic_id: Optional[int], limit: int
    ) -> List[MediaLogEntry]:
        ...

    def upsert_known_channel(self, channel: KnownChannel) -> None:
        ...

    def upsert_known_topic(self, topic: KnownTopic) -> None:
        ...


class SentHistoryPort(Protocol):
    """Append-only ledger of content already delivered to a target."""

    def is_sent(self, target_chat_id: int, fingerprint: str) -> bool:
        ...

    def mark_sent(self, target_chat_id: int, fingerprint: str) -> None:
        ...


class ProviderPort(Protocol):
    """Outbound primitives of the messaging provider.

    Implementations return normally on success and raise ThrottledError or
    DeliveryError from core.errors otherwise.
    """

    async def send_album(self, target: DeliveryTarget, items: Sequence[DeliveryItem]) -> None:
        ...

    async def send_single(self, target: DeliveryTarget, item: DeliveryItem) -> None:
        ...


class EventObserver(Protocol):
    """Receives log and progress notifications. No acknowledgment is expected."""

    def on_log(self, event: LogEvent) -> None:
        ...

    def on_progress(self, progress: Optional[ReplayProgress]) -> None:
        ...
