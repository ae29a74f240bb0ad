"""Static configuration for telerelay.

Engine timings, dedup and logging live in a single JSON file for quick edits
without touching Python. Secrets stay in .env.
"""

import json
import os

from dotenv import load_dotenv

from core.config import DedupConfig, EngineConfig

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.getenv("TELERELAY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database. STORAGE_PATH overrides the directory,
# which is convenient for container volumes.
_storage = _CONFIG.get("storage", {})
_storage_dir = os.getenv("STORAGE_PATH") or os.path.join(PROJECT_ROOT, "data")
DB_PATH = os.path.join(_storage_dir, _storage.get("db_file", "telerelay.db"))

# Engine timings. Milliseconds in the file, seconds in the core.
# - album_window_ms: silence window measured from an album's first part
# - unit_delay_ms / item_delay_ms: pacing between batch units / fallback items
# - throttle_margin_s: added on top of every provider cooldown
# - default_cooldown_s: used when a throttle error carries no cooldown
_engine = _CONFIG.get("engine", {})
ENGINE = EngineConfig(
    album_window=int(_engine.get("album_window_ms", 2000)) / 1000,
    unit_delay=int(_engine.get("unit_delay_ms", 4000)) / 1000,
    item_delay=int(_engine.get("item_delay_ms", 1000)) / 1000,
    throttle_margin=float(_engine.get("throttle_margin_s", 2)),
    default_cooldown=float(_engine.get("default_cooldown_s", 10)),
    default_window=int(_engine.get("default_window", 50)),
)

# Sent-history dedup: "off", "media" or "media_caption".
_dedup = _CONFIG.get("dedup", {})
DEDUP = DedupConfig(mode=_dedup.get("mode", "off"))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
