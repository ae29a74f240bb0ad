"""Shared formatting helpers for operator-facing events.

Keeping formatting here prevents drift between observers and keeps log lines
consistent regardless of where they are rendered.
"""

from __future__ import annotations

from typing import Optional

from rich.markup import escape

from core.models import LOG_ERROR, LOG_FORWARD, LOG_RECEIVE, LOG_SYSTEM, LogEvent, ReplayProgress

KIND_STYLES = {
    LOG_RECEIVE: "cyan",
    LOG_FORWARD: "green",
    LOG_ERROR: "bold red",
    LOG_SYSTEM: "#2AABEE",
}


def _timestamp(event: LogEvent) -> str:
    return event.time.strftime("%H:%M:%S")


def _format_plain(event: LogEvent) -> str:
    return f"[{_timestamp(event)}] {event.kind:<7} {event.message}"


def _format_markup(event: LogEvent) -> str:
    style = KIND_STYLES.get(event.kind, "white")
    return (
        f"[dim]{_timestamp(event)}[/dim] "
        f"[{style}]{event.kind:<7}[/{style}] "
        f"{escape(event.message)}"
    )


def format_log_line(event: LogEvent, mode: str = "plain") -> str:
    """Return the log event formatted for the requested mode."""

    if mode == "plain":
        return _format_plain(event)
    if mode == "markup":
        return _format_markup(event)
    raise ValueError(f"Unsupported log format: {mode}")


def format_progress(progress: Optional[ReplayProgress]) -> str:
    if progress is None:
        return "idle"
    if progress.total == 0:
        return "0/0"
    percent = int(progress.processed * 100 / progress.total)
    return f"{progress.processed}/{progress.total} ({percent}%)"
