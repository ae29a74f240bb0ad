from __future__ import annotations

from datetime import datetime
from io import StringIO

import pytest
from rich.console import Console

from adapters.console_observer import ConsoleObserver
from adapters.event_formatting import format_log_line, format_progress
from core.models import LOG_ERROR, LOG_FORWARD, LogEvent, ReplayProgress

EVENT_TIME = datetime(2024, 5, 1, 9, 4, 7)


def test_plain_log_line_pads_kind() -> None:
    event = LogEvent(LOG_FORWARD, "Album of 3 sent to -200", time=EVENT_TIME)

    assert format_log_line(event) == "[09:04:07] forward Album of 3 sent to -200"


def test_markup_log_line_escapes_message() -> None:
    event = LogEvent(LOG_ERROR, "Bad payload [id=3]", time=EVENT_TIME)

    line = format_log_line(event, mode="markup")

    assert line.startswith("[dim]09:04:07[/dim] [bold red]error  [/bold red] ")
    assert line.endswith("Bad payload \\[id=3]")


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        format_log_line(LogEvent(LOG_FORWARD, "x", time=EVENT_TIME), mode="html")


def test_progress_formatting() -> None:
    assert format_progress(None) == "idle"
    assert format_progress(ReplayProgress(0, 0)) == "0/0"
    assert format_progress(ReplayProgress(1, 3)) == "1/3 (33%)"
    assert format_progress(ReplayProgress(2, 2)) == "2/2 (100%)"


def test_console_observer_prints_plain_progress_when_piped() -> None:
    buffer = StringIO()
    observer = ConsoleObserver(Console(file=buffer, width=120, force_terminal=False, color_system=None))

    observer.on_log(LogEvent(LOG_FORWARD, "Album of 2 sent to -200", time=EVENT_TIME))
    observer.on_progress(ReplayProgress(1, 2))
    observer.on_progress(None)

    lines = buffer.getvalue().splitlines()
    assert lines == [
        "[09:04:07] forward Album of 2 sent to -200",
        "replay 1/2 (50%)",
    ]


def test_console_observer_renders_markup_on_a_terminal() -> None:
    buffer = StringIO()
    observer = ConsoleObserver(Console(file=buffer, width=120, force_terminal=True, color_system=None))

    observer.on_log(LogEvent(LOG_ERROR, "Bad payload [id=3]", time=EVENT_TIME))

    assert buffer.getvalue().splitlines() == ["09:04:07 error   Bad payload [id=3]"]
