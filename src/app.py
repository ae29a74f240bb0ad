"""Application entry point for the telerelay forwarder."""

from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events
from telethon.tl.types import MessageService, UpdateNewChannelMessage, UpdateNewMessage

import settings
from adapters.console_observer import ConsoleObserver
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_mapper import build_channel, build_item, build_topic
from adapters.telegram_provider import TelethonProvider
from client import build_client, start_bot
from core.dispatcher import Dispatcher
from core.errors import RelayError
from core.events import EventBus
from core.replay import ReplayCoordinator, ReplayRequest
from core.router import LiveForwarder

NAME = "TELERELAY"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/telerelay.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting telerelay")

    storage = _open_storage()
    bus = EventBus()

    client = build_client()
    client.loop.run_until_complete(start_bot(client))

    dispatcher = Dispatcher(
        TelethonProvider(client),
        bus,
        config=settings.ENGINE,
        ledger=storage,
        dedup=settings.DEDUP,
    )
    forwarder = LiveForwarder(storage, dispatcher, bus, config=settings.ENGINE)

    # Messages in groups and channel posts both arrive as NewMessage; every
    # routing decision is deferred to the core forwarder.
    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        try:
            chat = await event.get_chat()
            if chat is not None:
                forwarder.remember_channel(build_channel(event.chat_id, chat))
            await forwarder.route(build_item(event.message))
        except Exception:
            logger.exception("Error while processing message")

    # Topic created/edited service messages are not surfaced by NewMessage.
    @client.on(events.Raw(types=[UpdateNewMessage, UpdateNewChannelMessage]))
    async def topic_handler(update) -> None:
        message = getattr(update, "message", None)
        if not isinstance(message, MessageService):
            return
        try:
            topic = build_topic(message)
            if topic is not None:
                forwarder.remember_topic(topic)
        except Exception:
            logger.exception("Error while processing topic update")

    @client.on(events.ChatAction)
    async def membership_handler(event) -> None:
        try:
            chat = await event.get_chat()
            if chat is not None:
                forwarder.remember_channel(build_channel(event.chat_id, chat))
        except Exception:
            logger.exception("Error while processing chat action")

    logger.info("Client connected. Listening for incoming messages...")
    try:
        client.run_until_disconnected()
    finally:
        client.loop.run_until_complete(forwarder.close())


def _replay(args: argparse.Namespace) -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    storage = _open_storage()
    # The console observer renders events itself, so they are not mirrored
    # into the console log handler a second time.
    bus = EventBus(mirror=False)
    bus.subscribe(ConsoleObserver())

    request = ReplayRequest(
        source_chat_id=args.source,
        target_chat_id=args.target,
        limit=args.limit,
        source_topic_id=args.source_topic,
        target_topic_id=args.target_topic,
        only_albums=args.only_albums,
    )

    client = build_client("-replay")

    async def _run_replay() -> None:
        await start_bot(client)
        try:
            dispatcher = Dispatcher(
                TelethonProvider(client),
                bus,
                config=settings.ENGINE,
                ledger=storage,
                dedup=settings.DEDUP,
            )
            coordinator = ReplayCoordinator(storage, dispatcher, bus, config=settings.ENGINE)
            job = coordinator.submit(request)
            async for _ in job.run():
                pass
            logger.info(
                "Replay %s: units=%s, skipped=%s, throttles=%s",
                job.status,
                job.total,
                job.skipped,
                job.throttles,
            )
        finally:
            await client.disconnect()

    try:
        client.loop.run_until_complete(_run_replay())
    except RelayError as exc:
        logger.error("Replay failed: %s", exc)
        raise SystemExit(1) from exc


def _format_topic(topic_id: Optional[int]) -> str:
    return "*" if topic_id is None else str(topic_id)


def _rules(args: argparse.Namespace) -> None:
    storage = _open_storage()

    if args.rules_command == "add":
        rule = storage.add_rule(
            source_chat_id=args.source,
            target_chat_id=args.target,
            title=args.title,
            source_topic_id=args.source_topic,
            target_topic_id=args.target_topic,
        )
        print(f"Added rule {rule.id}: {rule.title}")
        return

    if args.rules_command == "toggle":
        state = storage.toggle_rule(args.rule_id)
        if state is None:
            raise SystemExit(f"Rule {args.rule_id} not found")
        print(f"Rule {args.rule_id} is now {'active' if state else 'paused'}")
        return

    if args.rules_command == "delete":
        if not storage.delete_rule(args.rule_id):
            raise SystemExit(f"Rule {args.rule_id} not found")
        print(f"Deleted rule {args.rule_id}")
        return

    rules = storage.list_rules()
    if not rules:
        print("No forwarding rules yet.")
        return
    titles = {channel.chat_id: channel.title for channel in storage.list_known_channels()}
    for rule in rules:
        state = "on " if rule.active else "off"
        source = titles.get(rule.source_chat_id, str(rule.source_chat_id))
        target = titles.get(rule.target_chat_id, str(rule.target_chat_id))
        print(
            f"{rule.id}. [{state}] {rule.title} | "
            f"{source} (topic {_format_topic(rule.source_topic_id)}) -> "
            f"{target} (topic {_format_topic(rule.target_topic_id)})"
        )


def _chats() -> None:
    storage = _open_storage()
    channels = storage.list_known_channels()
    if not channels:
        print("No chats seen yet. Add the bot to a chat and post something.")
        return
    for index, channel in enumerate(channels, start=1):
        handle = f"@{channel.username}" if channel.username else "-"
        count = storage.media_count(channel.chat_id)
        print(f"{index}. {channel.kind} | {channel.title} | {handle} | {channel.chat_id} | media: {count}")
        topics = {topic.topic_id: topic for topic in storage.list_topics(channel.chat_id)}
        for topic in storage.list_media_topics(channel.chat_id):
            topics.setdefault(topic.topic_id, topic)
        for topic_id in sorted(topics):
            print(f"     topic {topic_id}: {topics[topic_id].name}")


def _add_topic_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--source", type=int, required=True, help="Source chat id")
    parser.add_argument("--target", type=int, required=True, help="Target chat id")
    parser.add_argument("--source-topic", type=int, default=None, help="Only this source topic")
    parser.add_argument("--target-topic", type=int, default=None, help="Post into this target topic")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="telerelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start live forwarding")

    replay = subparsers.add_parser("replay", help="Replay recent media from the media log")
    _add_topic_args(replay)
    replay.add_argument("--limit", type=int, default=None, help="How many recent media to read")
    replay.add_argument("--only-albums", action="store_true", help="Skip single media")

    rules = subparsers.add_parser("rules", help="Manage forwarding rules")
    rules_sub = rules.add_subparsers(dest="rules_command")
    rules_sub.add_parser("list", help="List rules")
    add = rules_sub.add_parser("add", help="Add a rule")
    _add_topic_args(add)
    add.add_argument("--title", default=None)
    toggle = rules_sub.add_parser("toggle", help="Pause or resume a rule")
    toggle.add_argument("rule_id", type=int)
    delete = rules_sub.add_parser("delete", help="Delete a rule")
    delete.add_argument("rule_id", type=int)

    subparsers.add_parser("chats", help="List chats and topics the bot has seen")

    args = parser.parse_args(argv)
    if args.command == "replay":
        _replay(args)
        return
    if args.command == "rules":
        _rules(args)
        return
    if args.command == "chats":
        _chats()
        return
    _run()


if __name__ == "__main__":
    main()
