"""Batch replay of historical media from the media log.

A replay runs in a strict order:
1) Read the newest `limit` media log rows for the source (optionally one topic)
2) Reverse them to chronological order; grouping depends on adjacency
3) Partition into album/single units, optionally keeping albums only
4) Deliver units one at a time through the Dispatcher, with pacing
5) Publish progress per resolved unit, then "Batch complete" and idle

Storage errors while planning surface to the caller before anything is sent.
Once running, per-unit failures are resolved by the Dispatcher and the job
always moves on to the next unit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from core.config import EngineConfig
from core.dispatcher import Dispatcher
from core.errors import ReplayInProgressError
from core.events import EventBus
from core.grouping import albums_only, group_units
from core.models import LOG_SYSTEM, DeliveryTarget, DeliveryUnit, ReplayProgress
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

PLANNED = "planned"
RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReplayRequest:
    source_chat_id: int
    target_chat_id: int
    limit: Optional[int] = None
    source_topic_id: Optional[int] = None
    target_topic_id: Optional[int] = None
    only_albums: bool = False

    @property
    def target(self) -> DeliveryTarget:
        return DeliveryTarget(self.target_chat_id, self.target_topic_id)


class BatchReplayJob:
    """In-flight state of one replay run. Never persisted."""

    def __init__(
        self,
        request: ReplayRequest,
        storage: StoragePort,
        dispatcher: Dispatcher,
        events: EventBus,
        default_window: int = 50,
        on_start: Optional[Callable[["BatchReplayJob"], None]] = None,
        on_finish: Optional[Callable[["BatchReplayJob"], None]] = None,
    ) -> None:
        self.request = request
        self.limit = request.limit or default_window
        self.units: List[DeliveryUnit] = []
        self.cursor = 0
        self.scanned = 0
        self.skipped = 0
        self.throttles = 0
        self.status = PLANNED
        self._storage = storage
        self._dispatcher = dispatcher
        self._events = events
        self._on_start = on_start
        self._on_finish = on_finish
        self._cancel_requested = False

    @property
    def total(self) -> int:
        return len(self.units)

    @property
    def processed(self) -> int:
        return self.cursor

    def plan(self) -> List[DeliveryUnit]:
        """Load the window from storage and build the unit list."""

        newest_first = self._storage.query_recent_media(
            self.request.source_chat_id, self.request.source_topic_id, self.limit
        )
        rows = list(reversed(newest_first))
        self.scanned = len(rows)
        units = group_units(rows)
        if self.request.only_albums:
            units = albums_only(units)
        self.units = units
        LOGGER.info(
            "Replay planned for %s -> %s: %s rows, %s units",
            self.request.source_chat_id,
            self.request.target_chat_id,
            self.scanned,
            self.total,
        )
        return units

    def cancel(self) -> None:
        """Ask the job to stop before the next unit."""

        self._cancel_requested = True

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    async def run(self) -> AsyncIterator[ReplayProgress]:
        """Deliver every planned unit, yielding progress after each one."""

        if self.status != PLANNED:
            raise RuntimeError(f"Replay job already {self.status}")
        # Claims the source/target pair; raises before anything is sent.
        if self._on_start is not None:
            self._on_start(self)
        try:
            if not self.units:
                self.status = COMPLETED
                self._events.log(LOG_SYSTEM, f"No items found in the last {self.scanned} media.")
                return

            self.status = RUNNING
            yield self._publish()

            target = self.request.target
            while self.cursor < self.total:
                if self.cancelled:
                    self.status = CANCELLED
                    self._events.log(LOG_SYSTEM, f"Batch cancelled at {self.cursor}/{self.total}")
                    return

                outcome = await self._dispatcher.deliver(target, self.units[self.cursor])
                self.throttles += outcome.throttles
                if outcome.status == "skipped":
                    self.skipped += 1
                self.cursor += 1
                yield self._publish()

                if outcome.delivered and self.cursor < self.total:
                    await self._dispatcher.pause_between_units()

            self.status = COMPLETED
            self._events.log(LOG_SYSTEM, "Batch complete")
        finally:
            self._events.publish_progress(None)
            if self._on_finish is not None:
                self._on_finish(self)

    def _publish(self) -> ReplayProgress:
        progress = ReplayProgress(processed=self.cursor, total=self.total)
        self._events.publish_progress(progress)
        return progress


class ReplayCoordinator:
    """Creates replay jobs, allowing one active job per (source, target)."""

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
        self._config = config
        self._active: Dict[Tuple[int, int], BatchReplayJob] = {}

    def submit(self, request: ReplayRequest) -> BatchReplayJob:
        """Plan a job; raises StorageError or ReplayInProgressError.

        The pair is only held while the job runs, so a job that is planned
        but never run does not block later submissions.
        """

        self._check_free(request)
        job = BatchReplayJob(
            request,
            self._storage,
            self._dispatcher,
            self._events,
            default_window=self._config.default_window,
            on_start=self._claim,
            on_finish=self._release,
        )
        job.plan()
        if job.units:
            self._events.log(LOG_SYSTEM, f"Started forwarding {job.total} batches.")
        return job

    def active_jobs(self) -> List[BatchReplayJob]:
        return list(self._active.values())

    def _check_free(self, request: ReplayRequest) -> None:
        key = (request.source_chat_id, request.target_chat_id)
        if key in self._active:
            raise ReplayInProgressError(
                f"Replay {request.source_chat_id} -> {request.target_chat_id} is already running"
            )

    def _claim(self, job: BatchReplayJob) -> None:
        self._check_free(job.request)
        self._active[(job.request.source_chat_id, job.request.target_chat_id)] = job

    def _release(self, job: BatchReplayJob) -> None:
        key = (job.request.source_chat_id, job.request.target_chat_id)
        if self._active.get(key) is job:
            del self._active[key]
