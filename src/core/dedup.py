"""Sent-history fingerprint helpers (core domain)."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

from core.models import DeliveryItem


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return _collapse_whitespace(text).lower()


def compute_fingerprint(item: DeliveryItem, mode: str) -> Optional[str]:
    """Return a content fingerprint for an item based on dedup mode.

    Items without a stable file id cannot be fingerprinted and are never
    treated as duplicates.
    """

    if mode == "off":
        return None

    content_key = item.file_unique_id
    if not content_key:
        return None

    if mode == "media":
        payload = content_key
    elif mode == "media_caption":
        payload = f"{content_key}\n{normalize_for_fingerprint(item.caption or '')}"
    else:
        raise ValueError(f"Unsupported dedup mode: {mode}")

    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
