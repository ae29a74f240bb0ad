"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    """Timing policy for aggregation, pacing and throttle handling (seconds)."""

    album_window: float = 2.0
    unit_delay: float = 4.0
    item_delay: float = 1.0
    throttle_margin: float = 2.0
    default_cooldown: float = 10.0
    default_window: int = 50


@dataclass(frozen=True)
class DedupConfig:
    """Sent-history deduplication settings.

    mode is one of "off", "media" or "media_caption".
    """

    mode: str = "off"

    @property
    def enabled(self) -> bool:
        return self.mode != "off"
