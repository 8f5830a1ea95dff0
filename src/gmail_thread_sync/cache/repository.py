"""SQLite-backed cache of synced threads and messages.

The cache is the long-lived store: the in-memory collection is rebuilt from it
at launch and written back after each sync. Messages cascade-delete with their
thread. AI-sanitized bodies survive every re-write of a message unless they
are explicitly cleared.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from gmail_thread_sync.exceptions import CacheError
from gmail_thread_sync.models import EmailAddress, MailMessage, MailThread
from gmail_thread_sync.sync.preservation import SanitizedKind, resolve_sanitized

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CacheStats:
    """High-level summary stats for the cache."""

    total_threads: int
    total_messages: int
    unread_messages: int
    sanitized_messages: int
    newest_message_date: datetime | None


@dataclass(frozen=True)
class _StoredSanitized:
    value: str
    sanitized_at: datetime | None


class ThreadCacheRepository:
    """Repository for storing and loading synced threads."""

    def __init__(self, db_path: Path) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create or upgrade the cache schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("thread_cache_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise CacheError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    def upsert_threads(self, threads: Iterable[MailThread]) -> None:
        """Persist threads by updating existing rows in place.

        Thread and message rows are upserted by id; messages that are no
        longer part of a thread are removed. A stored sanitized body is kept
        unless the incoming message carries its own.
        """

        threads = list(threads)
        if not threads:
            return

        now = datetime.now(timezone.utc)
        with self._transaction() as conn:
            for thread in threads:
                stored = self._stored_sanitized(conn, [m.id for m in thread.messages])
                self._upsert_thread_row(conn, thread, now)

                keep_ids = [m.id for m in thread.messages]
                placeholders = ",".join("?" for _ in keep_ids)
                conn.execute(
                    f"DELETE FROM messages WHERE thread_id = ? AND id NOT IN ({placeholders})",
                    (thread.id, *keep_ids),
                )

                for position, message in enumerate(thread.messages):
                    row = self._message_row(message, thread.id, position, stored.get(message.id), now)
                    conn.execute(
                        """
                        INSERT INTO messages (
                            id, thread_id, position, from_name, from_email,
                            to_addrs_json, cc_addrs_json, subject, date_iso, snippet,
                            body_plain, body_html, label_ids_json, message_id_header,
                            references_header, sanitized_body, sanitized_at_iso, owner_email
                        )
                        VALUES (
                            :id, :thread_id, :position, :from_name, :from_email,
                            :to_addrs_json, :cc_addrs_json, :subject, :date_iso, :snippet,
                            :body_plain, :body_html, :label_ids_json, :message_id_header,
                            :references_header, :sanitized_body, :sanitized_at_iso, :owner_email
                        )
                        ON CONFLICT(id) DO UPDATE SET
                            thread_id=excluded.thread_id,
                            position=excluded.position,
                            from_name=excluded.from_name,
                            from_email=excluded.from_email,
                            to_addrs_json=excluded.to_addrs_json,
                            cc_addrs_json=excluded.cc_addrs_json,
                            subject=excluded.subject,
                            date_iso=excluded.date_iso,
                            snippet=excluded.snippet,
                            body_plain=excluded.body_plain,
                            body_html=excluded.body_html,
                            label_ids_json=excluded.label_ids_json,
                            message_id_header=excluded.message_id_header,
                            references_header=excluded.references_header,
                            sanitized_body=excluded.sanitized_body,
                            sanitized_at_iso=excluded.sanitized_at_iso,
                            owner_email=excluded.owner_email
                        """,
                        row,
                    )

        logger.info("thread_cache_upserted", strategy="update", thread_count=len(threads))

    def replace_threads(self, threads: Iterable[MailThread]) -> None:
        """Persist threads by deleting and re-inserting them.

        Sanitized bodies of the deleted messages are read first and copied
        forward onto the new rows.
        """

        threads = list(threads)
        if not threads:
            return

        now = datetime.now(timezone.utc)
        with self._transaction() as conn:
            for thread in threads:
                stored = self._stored_sanitized(conn, [m.id for m in thread.messages])
                conn.execute("DELETE FROM threads WHERE id = ?", (thread.id,))
                # Messages may have moved between threads.
                conn.executemany(
                    "DELETE FROM messages WHERE id = ?", [(m.id,) for m in thread.messages]
                )
                self._upsert_thread_row(conn, thread, now)
                conn.executemany(
                    """
                    INSERT INTO messages (
                        id, thread_id, position, from_name, from_email,
                        to_addrs_json, cc_addrs_json, subject, date_iso, snippet,
                        body_plain, body_html, label_ids_json, message_id_header,
                        references_header, sanitized_body, sanitized_at_iso, owner_email
                    )
                    VALUES (
                        :id, :thread_id, :position, :from_name, :from_email,
                        :to_addrs_json, :cc_addrs_json, :subject, :date_iso, :snippet,
                        :body_plain, :body_html, :label_ids_json, :message_id_header,
                        :references_header, :sanitized_body, :sanitized_at_iso, :owner_email
                    )
                    """,
                    [
                        self._message_row(m, thread.id, position, stored.get(m.id), now)
                        for position, m in enumerate(thread.messages)
                    ],
                )

        logger.info("thread_cache_upserted", strategy="replace", thread_count=len(threads))

    def save_threads(self, threads: Iterable[MailThread], strategy: str = "update") -> None:
        """Persist threads with the named strategy ('update' or 'replace')."""
        if strategy == "replace":
            self.replace_threads(threads)
        elif strategy == "update":
            self.upsert_threads(threads)
        else:
            raise ValueError(f"Unknown cache write strategy: {strategy!r}")

    def set_sanitized_bodies(
        self,
        bodies: Mapping[str, str],
        sanitized_at: datetime | None = None,
    ) -> int:
        """Store AI-sanitized bodies by message id. Returns the number of rows updated."""

        if not bodies:
            return 0
        at = (sanitized_at or datetime.now(timezone.utc)).isoformat()
        with self._transaction() as conn:
            cursor = conn.executemany(
                "UPDATE messages SET sanitized_body = ?, sanitized_at_iso = ? WHERE id = ?",
                [(body, at, message_id) for message_id, body in bodies.items()],
            )
            return cursor.rowcount

    def clear_sanitized(self, message_ids: Iterable[str]) -> None:
        """Explicitly reset sanitized bodies so they are recomputed."""

        with self._transaction() as conn:
            conn.executemany(
                "UPDATE messages SET sanitized_body = NULL, sanitized_at_iso = NULL WHERE id = ?",
                [(mid,) for mid in message_ids],
            )

    def load_threads(self, limit: int | None = None) -> list[MailThread]:
        """Load threads ordered by last message date, newest first."""

        with self._connect() as conn:
            sql = "SELECT * FROM threads ORDER BY last_message_ts DESC, rowid ASC"
            params: tuple = ()
            if limit is not None:
                sql += " LIMIT ?"
                params = (limit,)
            thread_rows = conn.execute(sql, params).fetchall()
            if not thread_rows:
                return []

            message_rows = conn.execute(
                "SELECT * FROM messages ORDER BY thread_id, position"
            ).fetchall()

        messages_by_thread: dict[str, list[MailMessage]] = {}
        for row in message_rows:
            messages_by_thread.setdefault(row["thread_id"], []).append(self._row_to_message(row))

        return [
            MailThread(
                id=row["id"],
                history_id=row["history_id"],
                messages=tuple(messages_by_thread.get(row["id"], [])),
            )
            for row in thread_rows
        ]

    def get_thread(self, thread_id: str) -> MailThread | None:
        """Load a single thread by id."""

        with self._connect() as conn:
            row = conn.execute("SELECT * FROM threads WHERE id = ?", (thread_id,)).fetchone()
            if row is None:
                return None
            message_rows = conn.execute(
                "SELECT * FROM messages WHERE thread_id = ? ORDER BY position", (thread_id,)
            ).fetchall()

        return MailThread(
            id=row["id"],
            history_id=row["history_id"],
            messages=tuple(self._row_to_message(r) for r in message_rows),
        )

    def known_history_ids(self) -> dict[str, str | None]:
        """Map of cached thread id to its last known historyId."""

        with self._connect() as conn:
            rows = conn.execute("SELECT id, history_id FROM threads").fetchall()
        return {row["id"]: row["history_id"] for row in rows}

    def delete_thread(self, thread_id: str) -> None:
        """Delete a thread and (by cascade) its messages."""

        with self._transaction() as conn:
            conn.execute("DELETE FROM threads WHERE id = ?", (thread_id,))

    def clear(self) -> None:
        """Delete every cached thread and message."""

        with self._transaction() as conn:
            conn.execute("DELETE FROM threads")
        logger.info("thread_cache_cleared")

    def stats(self) -> CacheStats:
        """Compute high-level cache stats."""

        with self._connect() as conn:
            (total_threads,) = conn.execute("SELECT COUNT(*) FROM threads;").fetchone()
            total, unread, sanitized = conn.execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN label_ids_json LIKE '%"UNREAD"%' THEN 1 ELSE 0 END),
                    SUM(CASE WHEN sanitized_body IS NOT NULL THEN 1 ELSE 0 END)
                FROM messages;
                """
            ).fetchone()
            (newest_ts,) = conn.execute("SELECT MAX(last_message_ts) FROM threads;").fetchone()

        newest = datetime.fromtimestamp(newest_ts, tz=timezone.utc) if newest_ts is not None else None
        return CacheStats(
            total_threads=int(total_threads or 0),
            total_messages=int(total or 0),
            unread_messages=int(unread or 0),
            sanitized_messages=int(sanitized or 0),
            newest_message_date=newest,
        )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                logger.exception("thread_cache_write_failed", error=str(exc))
                raise CacheError(str(exc)) from exc
            except Exception:
                conn.rollback()
                raise

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS threads (
                rowid INTEGER PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                history_id TEXT,
                snippet TEXT NOT NULL,
                last_message_ts REAL NOT NULL,
                unread_count INTEGER NOT NULL,
                fetched_at_iso TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_threads_last_message_ts
                ON threads(last_message_ts);

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL REFERENCES threads(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                from_name TEXT,
                from_email TEXT NOT NULL,
                to_addrs_json TEXT NOT NULL,
                cc_addrs_json TEXT NOT NULL,
                subject TEXT NOT NULL,
                date_iso TEXT NOT NULL,
                snippet TEXT NOT NULL,
                body_plain TEXT,
                body_html TEXT,
                label_ids_json TEXT NOT NULL,
                message_id_header TEXT,
                references_header TEXT,
                sanitized_body TEXT,
                sanitized_at_iso TEXT,
                owner_email TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_thread_id
                ON messages(thread_id, position);
            """
        )

    def _upsert_thread_row(self, conn: sqlite3.Connection, thread: MailThread, now: datetime) -> None:
        last_ts = thread.last_message_date.timestamp() if thread.messages else 0.0
        conn.execute(
            """
            INSERT INTO threads (id, history_id, snippet, last_message_ts, unread_count, fetched_at_iso)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                history_id=excluded.history_id,
                snippet=excluded.snippet,
                last_message_ts=excluded.last_message_ts,
                unread_count=excluded.unread_count,
                fetched_at_iso=excluded.fetched_at_iso
            """,
            (thread.id, thread.history_id, thread.snippet, last_ts, thread.unread_count, now.isoformat()),
        )

    def _stored_sanitized(
        self, conn: sqlite3.Connection, message_ids: list[str]
    ) -> dict[str, _StoredSanitized]:
        if not message_ids:
            return {}
        placeholders = ",".join("?" for _ in message_ids)
        rows = conn.execute(
            f"""
            SELECT id, sanitized_body, sanitized_at_iso FROM messages
            WHERE sanitized_body IS NOT NULL AND id IN ({placeholders})
            """,
            message_ids,
        ).fetchall()
        return {
            row["id"]: _StoredSanitized(
                value=row["sanitized_body"],
                sanitized_at=_parse_iso(row["sanitized_at_iso"]),
            )
            for row in rows
        }

    def _message_row(
        self,
        message: MailMessage,
        thread_id: str,
        position: int,
        stored: _StoredSanitized | None,
        now: datetime,
    ) -> dict:
        resolved = resolve_sanitized(
            message.sanitized_body,
            stored.value if stored else None,
            stored.sanitized_at if stored else None,
            incoming_at=message.sanitized_at,
            now=now,
        )
        has_value = resolved.kind is not SanitizedKind.ABSENT
        return {
            "id": message.id,
            "thread_id": thread_id,
            "position": position,
            "from_name": message.sender.name,
            "from_email": message.sender.email,
            "to_addrs_json": _encode_addresses(message.to),
            "cc_addrs_json": _encode_addresses(message.cc),
            "subject": message.subject,
            "date_iso": message.date.isoformat(),
            "snippet": message.snippet,
            "body_plain": message.body_plain,
            "body_html": message.body_html,
            "label_ids_json": json.dumps(list(message.label_ids)),
            "message_id_header": message.message_id,
            "references_header": message.references,
            "sanitized_body": resolved.value if has_value else None,
            "sanitized_at_iso": (
                resolved.sanitized_at.isoformat() if has_value and resolved.sanitized_at else None
            ),
            "owner_email": message.owner_email,
        }

    def _row_to_message(self, row: sqlite3.Row) -> MailMessage:
        return MailMessage(
            id=row["id"],
            thread_id=row["thread_id"],
            sender=EmailAddress(name=row["from_name"], email=row["from_email"]),
            to=tuple(_decode_addresses(row["to_addrs_json"])),
            cc=tuple(_decode_addresses(row["cc_addrs_json"])),
            subject=row["subject"],
            date=datetime.fromisoformat(row["date_iso"]),
            snippet=row["snippet"],
            body_plain=row["body_plain"],
            body_html=row["body_html"],
            label_ids=tuple(json.loads(row["label_ids_json"])),
            message_id=row["message_id_header"],
            references=row["references_header"],
            sanitized_body=row["sanitized_body"],
            sanitized_at=_parse_iso(row["sanitized_at_iso"]),
            owner_email=row["owner_email"],
        )


def _encode_addresses(addresses: Iterable[EmailAddress]) -> str:
    return json.dumps([{"name": a.name, "email": a.email} for a in addresses])


def _decode_addresses(raw: str) -> list[EmailAddress]:
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [EmailAddress(name=i.get("name"), email=i.get("email", "")) for i in items if isinstance(i, dict)]


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
