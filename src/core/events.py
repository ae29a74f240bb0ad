"""Event bus for operator-facing log and progress notifications."""

from __future__ import annotations

import logging
from typing import List, Optional

from core.models import LOG_ERROR, LogEvent, ReplayProgress
from core.ports import EventObserver

LOGGER = logging.getLogger(__name__)


class EventBus:
    """Fan out log/progress events to observers and mirror them into logging."""

    def __init__(self, mirror: bool = True) -> None:
        self._mirror = mirror
        self._observers: List[EventObserver] = []
        self.progress: Optional[ReplayProgress] = None

    def subscribe(self, observer: EventObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: EventObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def log(self, kind: str, message: str) -> LogEvent:
        event = LogEvent(kind=kind, message=message)
        if self._mirror:
            level = logging.WARNING if kind == LOG_ERROR else logging.INFO
            LOGGER.log(level, "[%s] %s", kind, message)
        for observer in list(self._observers):
            try:
                observer.on_log(event)
            except Exception:
                LOGGER.exception("Observer failed on log event")
        return event

    def publish_progress(self, progress: Optional[ReplayProgress]) -> None:
        """Publish batch progress; None means idle."""

        self.progress = progress
        for observer in list(self._observers):
            try:
                observer.on_progress(progress)
            except Exception:
                LOGGER.exception("Observer failed on progress event")
