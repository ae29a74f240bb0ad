"""Rate-limited delivery of units to the messaging provider.

Every outbound send goes through Dispatcher.deliver, which owns the decision
between retrying (throttled) and skipping (fatal) a unit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from core.config import DedupConfig, EngineConfig
from core.dedup import compute_fingerprint
from core.errors import ProviderError, StorageError, ThrottledError
from core.events import EventBus
from core.models import (
    LOG_ERROR,
    LOG_FORWARD,
    LOG_SYSTEM,
    DeliveryItem,
    DeliveryOutcome,
    DeliveryTarget,
    DeliveryUnit,
)
from core.ports import ProviderPort, SentHistoryPort

LOGGER = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


def format_target(target: DeliveryTarget) -> str:
    if target.topic_id is None:
        return str(target.chat_id)
    return f"{target.chat_id}#topic:{target.topic_id}"


class Dispatcher:
    """Wraps provider sends with throttle handling, pacing and dedup."""

    def __init__(
        self,
        provider: ProviderPort,
        events: EventBus,
        config: EngineConfig = EngineConfig(),
        ledger: Optional[SentHistoryPort] = None,
        dedup: DedupConfig = DedupConfig(),
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._events = events
        self._config = config
        self._ledger = ledger
        self._dedup = dedup
        self._sleep = sleep

    async def deliver(self, target: DeliveryTarget, unit: DeliveryUnit) -> DeliveryOutcome:
        """Send one unit, retrying on throttle until it is delivered or skipped."""

        label = format_target(target)
        try:
            pending = self._unsent_items(target, unit.items)
        except StorageError as exc:
            self._events.log(LOG_ERROR, f"Sent history unavailable for [{label}]: {exc}")
            return DeliveryOutcome(status="skipped", attempts=0, error=str(exc))
        if not pending:
            self._events.log(LOG_SYSTEM, f"Skipped duplicate {unit.kind} for [{label}]")
            return DeliveryOutcome(status="duplicate", attempts=0)

        # Albums need a resolvable media reference for every part; otherwise
        # each item is copied from its source message.
        as_album = unit.is_album and all(item.media_ref for item in pending)
        attempts = 0
        throttles = 0
        sent = 0

        while True:
            attempts += 1
            try:
                if as_album:
                    await self._provider.send_album(target, pending)
                    self._record_sent(target, pending)
                    sent += len(pending)
                    self._events.log(LOG_FORWARD, f"Album ({len(pending)} items) sent to [{label}]")
                    pending = []
                else:
                    while pending:
                        await self._provider.send_single(target, pending[0])
                        self._record_sent(target, pending[:1])
                        pending = pending[1:]
                        sent += 1
                        self._events.log(LOG_FORWARD, f"Item sent to [{label}]")
                        if pending:
                            await self._sleep(self._config.item_delay)
                return DeliveryOutcome(
                    status="delivered", attempts=attempts, throttles=throttles, sent_items=sent
                )
            except ThrottledError as exc:
                throttles += 1
                cooldown = exc.retry_after
                if cooldown is None:
                    cooldown = self._config.default_cooldown
                wait = cooldown + self._config.throttle_margin
                self._events.log(LOG_ERROR, f"Rate limit on [{label}]. Pausing {wait:g}s...")
                await self._sleep(wait)
            except ProviderError as exc:
                self._events.log(LOG_ERROR, f"Failed {unit.kind} to [{label}]: {exc}")
                return DeliveryOutcome(
                    status="skipped",
                    attempts=attempts,
                    throttles=throttles,
                    sent_items=sent,
                    error=str(exc),
                )

    async def pause_between_units(self) -> None:
        """Steady-state pacing between successfully sent batch units."""

        await self._sleep(self._config.unit_delay)

    def _unsent_items(
        self, target: DeliveryTarget, items: Sequence[DeliveryItem]
    ) -> List[DeliveryItem]:
        if self._ledger is None or not self._dedup.enabled:
            return list(items)
        unsent = []
        for item in items:
            fingerprint = compute_fingerprint(item, self._dedup.mode)
            if fingerprint and self._ledger.is_sent(target.chat_id, fingerprint):
                LOGGER.debug("Dedup skip for message %s -> %s", item.message_id, target.chat_id)
                continue
            unsent.append(item)
        return unsent

    def _record_sent(self, target: DeliveryTarget, items: Sequence[DeliveryItem]) -> None:
        if self._ledger is None or not self._dedup.enabled:
            return
        for item in items:
            fingerprint = compute_fingerprint(item, self._dedup.mode)
            if not fingerprint:
                continue
            try:
                self._ledger.mark_sent(target.chat_id, fingerprint)
            except StorageError:
                # The item is already delivered; a lost ledger row only weakens dedup.
                LOGGER.exception("Failed to record sent history for %s", target.chat_id)
