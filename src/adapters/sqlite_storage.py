"""SQLite storage adapter.

Implements the core StoragePort and SentHistoryPort, plus the rule CRUD and
directory queries used by the operator CLI.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from core.errors import StorageError
from core.models import ForwardingRule, KnownChannel, KnownTopic, MediaLogEntry


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _row_to_rule(row: sqlite3.Row) -> ForwardingRule:
    return ForwardingRule(
        id=int(row["id"]),
        source_chat_id=int(row["source_chat_id"]),
        source_topic_id=row["source_topic_id"],
        target_chat_id=int(row["target_chat_id"]),
        target_topic_id=row["target_topic_id"],
        title=row["title"] or "Untitled",
        active=bool(row["active"]),
        created_at=_parse_timestamp(row["created_at"]),
    )


def _row_to_entry(row: sqlite3.Row) -> MediaLogEntry:
    return MediaLogEntry(
        chat_id=int(row["chat_id"]),
        message_id=int(row["message_id"]),
        topic_id=row["topic_id"],
        group_id=row["media_group_id"],
        media_ref=row["file_id"],
        file_unique_id=row["file_unique_id"],
        caption=row["caption"] or "",
        media_kind=row["file_type"],
        created_at=_parse_timestamp(row["created_at"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = self._connect()
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"{self._db_path}: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - forwarding_rules: operator-defined source -> target edges
        - known_chats: display metadata for chats we have seen
        - known_topics: forum topic names, best-effort
        - media_log: append-only record of inbound media, read by batch replay
        - sent_history: (target, fingerprint) pairs already delivered
        """

        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._session() as conn:
            # source/target topics are nullable: a NULL source topic matches
            # every topic of the chat, a NULL target topic posts to the main chat.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS forwarding_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_chat_id INTEGER NOT NULL,
                    source_topic_id INTEGER,
                    target_chat_id INTEGER NOT NULL,
                    target_topic_id INTEGER,
                    title TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS known_chats (
                    chat_id INTEGER PRIMARY KEY,
                    title TEXT,
                    type TEXT,
                    username TEXT,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS known_topics (
                    chat_id INTEGER NOT NULL,
                    topic_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (chat_id, topic_id)
                )
                """
            )
            # media_log rows are never updated; UNIQUE(chat_id, message_id)
            # makes repeated observations of the same message a no-op.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS media_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id INTEGER NOT NULL,
                    message_id INTEGER NOT NULL,
                    topic_id INTEGER,
                    media_group_id INTEGER,
                    file_id TEXT,
                    file_unique_id TEXT,
                    caption TEXT,
                    file_type TEXT,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE(chat_id, message_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sent_history (
                    target_chat_id INTEGER NOT NULL,
                    fingerprint TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE(target_chat_id, fingerprint)
                )
                """
            )

    # Rules

    def add_rule(
        self,
        source_chat_id: int,
        target_chat_id: int,
        title: Optional[str] = None,
        source_topic_id: Optional[int] = None,
        target_topic_id: Optional[int] = None,
    ) -> ForwardingRule:
        """Insert a new active rule and return it."""

        created_at = datetime.now(timezone.utc)
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO forwarding_rules (
                    source_chat_id,
                    source_topic_id,
                    target_chat_id,
                    target_topic_id,
                    title,
                    active,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    source_chat_id,
                    source_topic_id,
                    target_chat_id,
                    target_topic_id,
                    title or "Untitled",
                    created_at.isoformat(),
                ),
            )
            rule_id = cur.lastrowid
        return ForwardingRule(
            id=int(rule_id),
            source_chat_id=source_chat_id,
            source_topic_id=source_topic_id,
            target_chat_id=target_chat_id,
            target_topic_id=target_topic_id,
            title=title or "Untitled",
            active=True,
            created_at=created_at,
        )

    def list_rules(self) -> List[ForwardingRule]:
        """Return every rule, newest first."""

        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM forwarding_rules ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [_row_to_rule(row) for row in rows]

    def list_active_rules(
        self, source_chat_id: int, source_topic_id: Optional[int] = None
    ) -> List[ForwardingRule]:
        """Return active rules for a source; NULL-topic rules match any topic."""

        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM forwarding_rules
                WHERE source_chat_id = ?
                  AND active = 1
                  AND (source_topic_id IS NULL OR source_topic_id = ?)
                ORDER BY id
                """,
                (source_chat_id, source_topic_id),
            ).fetchall()
        return [_row_to_rule(row) for row in rows]

    def toggle_rule(self, rule_id: int) -> Optional[bool]:
        """Flip a rule's active flag. Returns the new state, or None if missing."""

        with self._session() as conn:
            row = conn.execute(
                "SELECT active FROM forwarding_rules WHERE id = ?",
                (rule_id,),
            ).fetchone()
            if row is None:
                return None
            new_state = 0 if row["active"] else 1
            conn.execute(
                "UPDATE forwarding_rules SET active = ? WHERE id = ?",
                (new_state, rule_id),
            )
        return bool(new_state)

    def delete_rule(self, rule_id: int) -> bool:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM forwarding_rules WHERE id = ?", (rule_id,))
            return cur.rowcount > 0

    # Directory caches

    def upsert_known_channel(self, channel: KnownChannel) -> None:
        """Insert or refresh chat metadata."""

        now = datetime.now(timezone.utc)
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO known_chats (chat_id, title, type, username, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    title = excluded.title,
                    type = excluded.type,
                    username = excluded.username,
                    updated_at = excluded.updated_at
                """,
                (channel.chat_id, channel.title, channel.kind, channel.username, now.isoformat()),
            )

    def upsert_known_topic(self, topic: KnownTopic) -> None:
        """Insert a topic or rename it when it already exists."""

        now = datetime.now(timezone.utc)
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO known_topics (chat_id, topic_id, name, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(chat_id, topic_id) DO UPDATE SET name = excluded.name
                """,
                (topic.chat_id, topic.topic_id, topic.name, now.isoformat()),
            )

    def list_known_channels(self) -> List[KnownChannel]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM known_chats ORDER BY updated_at DESC").fetchall()
        return [
            KnownChannel(
                chat_id=int(row["chat_id"]),
                title=row["title"] or "Unknown",
                kind=row["type"] or "chat",
                username=row["username"],
            )
            for row in rows
        ]

    def list_topics(self, chat_id: int) -> List[KnownTopic]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM known_topics WHERE chat_id = ? ORDER BY name ASC",
                (chat_id,),
            ).fetchall()
        return [KnownTopic(int(row["chat_id"]), int(row["topic_id"]), row["name"]) for row in rows]

    def list_media_topics(self, chat_id: int) -> List[KnownTopic]:
        """Topics that have media in the log, named when the topic is known."""

        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT m.topic_id AS topic_id, t.name AS name
                FROM media_log m
                LEFT JOIN known_topics t ON m.chat_id = t.chat_id AND m.topic_id = t.topic_id
                WHERE m.chat_id = ? AND m.topic_id IS NOT NULL
                ORDER BY m.topic_id
                """,
                (chat_id,),
            ).fetchall()
        return [
            KnownTopic(chat_id, int(row["topic_id"]), row["name"] or f"topic {row['topic_id']}")
            for row in rows
        ]

    # Media log

    def append_media_log(self, entry: MediaLogEntry) -> bool:
        """Insert a media log row; returns False when it was already logged."""

        created_at = entry.created_at or datetime.now(timezone.utc)
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO media_log (
                    chat_id,
                    message_id,
                    topic_id,
                    media_group_id,
                    file_id,
                    file_unique_id,
                    caption,
                    file_type,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.chat_id,
                    entry.message_id,
                    entry.topic_id,
                    entry.group_id,
                    entry.media_ref,
                    entry.file_unique_id,
                    entry.caption,
                    entry.media_kind,
                    created_at.isoformat(),
                ),
            )
            return cur.rowcount > 0

    def query_recent_media(
        self, chat_id: int, topic_id: Optional[int], limit: int
    ) -> List[MediaLogEntry]:
        """Return up to `limit` entries for a chat, newest message id first."""

        sql = "SELECT * FROM media_log WHERE chat_id = ?"
        params: list = [chat_id]
        if topic_id is not None:
            sql += " AND topic_id = ?"
            params.append(topic_id)
        sql += " ORDER BY message_id DESC LIMIT ?"
        params.append(limit)

        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def media_count(self, chat_id: int) -> int:
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM media_log WHERE chat_id = ?",
                (chat_id,),
            ).fetchone()
        return int(row["count"])

    # Sent history

    def is_sent(self, target_chat_id: int, fingerprint: str) -> bool:
        """Check if a fingerprint has already been delivered to a target."""

        with self._session() as conn:
            row = conn.execute(
                "SELECT 1 FROM sent_history WHERE target_chat_id = ? AND fingerprint = ?",
                (target_chat_id, fingerprint),
            ).fetchone()
        return row is not None

    def mark_sent(self, target_chat_id: int, fingerprint: str) -> None:
        """Insert a fingerprint if it does not exist."""

        now = datetime.now(timezone.utc)
        with self._session() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO sent_history (target_chat_id, fingerprint, created_at)
                VALUES (?, ?, ?)
                """,
                (target_chat_id, fingerprint, now.isoformat()),
            )
