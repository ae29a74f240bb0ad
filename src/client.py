"""Telegram client factory for telerelay.

We explicitly manage the client's lifecycle (start/run_until_disconnected)
so it is obvious when the session is created and when it ends.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient


def build_client(session_suffix: str = "") -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "telerelay"; separate commands pass a suffix
    so a replay can run next to the live relay without sharing a session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "telerelay") + session_suffix

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client (%s)", session_name)

    # flood_sleep_threshold=0: flood waits surface as errors so the
    # Dispatcher applies its own cooldown policy instead of Telethon's.
    return TelegramClient(session_name, int(api_id), api_hash, flood_sleep_threshold=0)


async def start_bot(client: TelegramClient) -> None:
    """Connect and sign in with BOT_TOKEN."""

    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("Missing BOT_TOKEN in environment")
    await client.start(bot_token=bot_token)
    me = await client.get_me()
    logging.getLogger(__name__).info("Bot started: @%s", getattr(me, "username", None))
