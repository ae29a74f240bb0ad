"""Live forwarding controller.

This module is integration-agnostic. It records every observed media item,
resolves the active rules for its source, and fans out deliveries through the
Dispatcher. Grouped items detour through the AlbumAggregator first.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from core.aggregator import AlbumAggregator, AlbumKey
from core.config import EngineConfig
from core.dispatcher import Dispatcher
from core.errors import StorageError
from core.events import EventBus
from core.models import (
    LOG_RECEIVE,
    DeliveryOutcome,
    DeliveryUnit,
    ForwardingRule,
    InboundItem,
    KnownChannel,
    KnownTopic,
)
from core.ports import StoragePort
from core.rules import match_rules

LOGGER = logging.getLogger(__name__)


class LiveForwarder:
    """Routes inbound items to every matching rule's target."""

    def __init__(
        self,
        storage: StoragePort,
        dispatcher: Dispatcher,
        events: EventBus,
        config: EngineConfig = EngineConfig(),
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._events = events
        self._titles: Dict[int, str] = {}
        self._target_locks: Dict[int, asyncio.Lock] = {}
        self.aggregator = AlbumAggregator(self._on_album, window=config.album_window)

    def remember_channel(self, channel: KnownChannel) -> None:
        """Upsert chat metadata. Best-effort: the cache is only a lookup aid."""

        self._titles[channel.chat_id] = channel.title
        try:
            self._storage.upsert_known_channel(channel)
        except StorageError:
            LOGGER.exception("Failed to save chat %s", channel.chat_id)

    def remember_topic(self, topic: KnownTopic) -> None:
        try:
            self._storage.upsert_known_topic(topic)
        except StorageError:
            LOGGER.exception("Failed to save topic %s/%s", topic.chat_id, topic.topic_id)

    async def route(self, item: InboundItem) -> None:
        """Process one inbound item through the live path."""

        # The media log is written before routing so a failed send never loses
        # the history batch replay relies on.
        if item.has_media:
            try:
                self._storage.append_media_log(item.to_log_entry())
            except StorageError:
                LOGGER.exception("Failed to save media log %s/%s", item.chat_id, item.message_id)

        title = self._titles.get(item.chat_id, str(item.chat_id))
        topic_part = f" topic: {item.topic_id}" if item.topic_id is not None else ""
        self._events.log(LOG_RECEIVE, f"Message from [{title}]{topic_part}")

        rules = self._resolve(item.chat_id, item.topic_id)
        if not rules:
            return

        if item.group_id is not None:
            self.aggregator.observe(item.chat_id, item.group_id, item)
            return

        unit = DeliveryUnit.single(item)
        await asyncio.gather(*(self._deliver(rule, unit) for rule in rules))

    async def route_album(self, rule: ForwardingRule, items: Sequence[InboundItem]) -> DeliveryOutcome:
        """Deliver a completed album to one rule's target."""

        return await self._deliver(rule, DeliveryUnit.album(items))

    async def close(self) -> None:
        """Flush albums still waiting for their silence window."""

        await self.aggregator.drain()

    async def _on_album(self, key: AlbumKey, items: List[InboundItem]) -> None:
        chat_id, _ = key
        # Rules are resolved again at flush time; one may have been toggled
        # while the album was buffering.
        rules = self._resolve(chat_id, items[0].topic_id)
        if not rules:
            return
        await asyncio.gather(*(self.route_album(rule, items) for rule in rules))

    def _resolve(self, chat_id: int, topic_id: Optional[int]) -> List[ForwardingRule]:
        rules = self._storage.list_active_rules(chat_id, topic_id)
        return match_rules(rules, chat_id, topic_id)

    async def _deliver(self, rule: ForwardingRule, unit: DeliveryUnit) -> DeliveryOutcome:
        # One FIFO lock per target chat keeps per-target order while distinct
        # targets proceed concurrently.
        lock = self._target_locks.setdefault(rule.target_chat_id, asyncio.Lock())
        async with lock:
            return await self._dispatcher.deliver(rule.target, unit)
