"""Album aggregation for the live path.

Telegram delivers the parts of an album as separate messages that share a
grouped id. The aggregator buffers them per (chat_id, group_id) and hands the
whole album to a consumer once a fixed silence window has elapsed since the
first part was seen.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

LOGGER = logging.getLogger(__name__)

AlbumKey = Tuple[int, int]
AlbumConsumer = Callable[[AlbumKey, List[Any]], Awaitable[None]]


@dataclass
class AlbumBuffer:
    items: List[Any] = field(default_factory=list)
    timer: Optional["asyncio.Task[None]"] = None


class AlbumAggregator:
    """Owns the in-flight album buffers and their flush timers."""

    def __init__(self, consumer: AlbumConsumer, window: float = 2.0) -> None:
        self._consumer = consumer
        self._window = window
        self._buffers: Dict[AlbumKey, AlbumBuffer] = {}
        self._timers: Set["asyncio.Task[None]"] = set()

    def observe(self, chat_id: int, group_id: int, item: Any) -> None:
        """Add an item to its album, arming the flush timer on the first part.

        The window is measured from the first part and is not extended by
        later parts. Must be called from within the running event loop.
        """

        key = (chat_id, group_id)
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = AlbumBuffer()
            self._buffers[key] = buffer
            buffer.timer = asyncio.get_running_loop().create_task(self._flush_later(key, buffer))
            self._timers.add(buffer.timer)
            buffer.timer.add_done_callback(self._timers.discard)
        buffer.items.append(item)

    def pending(self) -> int:
        return len(self._buffers)

    async def drain(self) -> None:
        """Flush every open buffer now, e.g. before shutdown."""

        buffers = list(self._buffers.items())
        self._buffers.clear()
        for key, buffer in buffers:
            if buffer.timer is not None:
                buffer.timer.cancel()
            await self._emit(key, buffer)

    async def _flush_later(self, key: AlbumKey, buffer: AlbumBuffer) -> None:
        await asyncio.sleep(self._window)
        # Remove before awaiting the consumer so a straggler opens a new buffer.
        if self._buffers.get(key) is buffer:
            del self._buffers[key]
        await self._emit(key, buffer)

    async def _emit(self, key: AlbumKey, buffer: AlbumBuffer) -> None:
        items = list(buffer.items)
        if not items:
            return
        LOGGER.debug("Flushing album %s with %s items", key, len(items))
        try:
            await self._consumer(key, items)
        except Exception:
            LOGGER.exception("Album consumer failed for %s", key)
