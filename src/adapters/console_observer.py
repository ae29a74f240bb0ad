"""Console observer for the event bus, rendered with rich."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from adapters.event_formatting import format_log_line, format_progress
from core.models import LogEvent, ReplayProgress


class ConsoleObserver:
    """Prints log events and drives a progress bar while a batch runs."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console()
        self._progress: Optional[Progress] = None
        self._task_id = None

    def on_log(self, event: LogEvent) -> None:
        if self._console.is_terminal:
            self._console.print(format_log_line(event, mode="markup"), highlight=False)
        else:
            self._console.print(format_log_line(event, mode="plain"), markup=False, highlight=False)

    def on_progress(self, progress: Optional[ReplayProgress]) -> None:
        if progress is None:
            self._stop()
            return
        if not self._console.is_terminal:
            # No live display when piped; one line per step instead.
            self._console.print(f"replay {format_progress(progress)}", markup=False, highlight=False)
            return
        if self._progress is None:
            self._progress = Progress(
                TextColumn("[bold #2AABEE]replay"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
            )
            self._progress.start()
            self._task_id = self._progress.add_task("replay", total=progress.total)
        self._progress.update(self._task_id, completed=progress.processed, total=progress.total)

    def _stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task_id = None
