"""Exception types shared by the core and its adapters."""

from __future__ import annotations

import re
from typing import Optional

_RETRY_PATTERNS = (
    re.compile(r"retry after (\d+)", re.IGNORECASE),
    re.compile(r"wait of (\d+) seconds", re.IGNORECASE),
)


class RelayError(Exception):
    """Base class for telerelay errors."""


class StorageError(RelayError):
    """Raised when the rule/media store cannot be read or written."""


class ProviderError(RelayError):
    """Raised by provider adapters when an outbound send fails."""


class ThrottledError(ProviderError):
    """The provider asked us to back off before sending again."""

    def __init__(self, retry_after: Optional[float], message: str = "") -> None:
        super().__init__(message or f"Throttled (retry after {retry_after})")
        self.retry_after = retry_after


class DeliveryError(ProviderError):
    """Non-transient send failure (bad payload, revoked permission, ...)."""


class ReplayInProgressError(RelayError):
    """A replay for the same source/target pair is already running."""


def parse_retry_after(text: str) -> Optional[int]:
    """Extract a cooldown in seconds from a provider error message."""

    for pattern in _RETRY_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return int(match.group(1))
    return None
