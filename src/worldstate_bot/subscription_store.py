"""
Subscription store (SQLite)

Purpose
-------
Durable record of which community wants which feed delivered where, plus the
reference of the message last delivered there so later passes edit in place.

Design
------
- One table, ``subscriptions``, shared by all feeds and keyed by
  (feed_kind, community_id, channel_id, match_key). ``match_key`` is the
  feed's identity for a subscription's criteria, so a channel can hold several
  fissure subscriptions but only one Baro subscription.
- ``match_criteria`` is stored as canonical JSON.
- Thread-local connections; every write holds a lock.
- sqlite errors are logged and re-raised as PersistenceError.

Env
---
SUBSCRIPTIONS_DB_PATH  (default: "data/subscriptions.sqlite")
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import PersistenceError
from .logging_utils import get_logger
from .models import FeedKind, Subscription
from .storage import init_optimized_connection

log = get_logger("subscription_store")

_COLUMNS = (
    "id, feed_kind, community_id, channel_id, match_criteria, "
    "ping_target_id, last_message_ref, last_entity_id"
)


def _row_to_subscription(row: sqlite3.Row) -> Subscription:
    try:
        criteria = json.loads(row["match_criteria"] or "{}")
    except ValueError:
        log.warning("subscription_criteria_corrupt id=%s", row["id"])
        criteria = {}
    return Subscription(
        subscription_id=int(row["id"]),
        feed_kind=FeedKind(row["feed_kind"]),
        community_id=row["community_id"],
        target_channel_id=row["channel_id"],
        match_criteria=criteria,
        ping_target_id=row["ping_target_id"],
        last_message_ref=row["last_message_ref"],
        last_entity_id=row["last_entity_id"],
    )


class SubscriptionStore:
    def __init__(self, path: Union[str, Path] = "data/subscriptions.sqlite"):
        self.path = str(path)
        self._lock = threading.Lock()
        self._thread_local = threading.local()
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection, created on first access from each thread."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            try:
                conn = init_optimized_connection(self.path, timeout=30)
            except sqlite3.Error as e:
                raise PersistenceError(f"cannot open {self.path}: {e}") from e
            self._thread_local.conn = conn
            log.debug(
                "subscription_store_connection_created thread_id=%s",
                threading.current_thread().ident,
            )
        return conn

    def _init_schema(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_kind TEXT NOT NULL,
                    community_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    match_key TEXT NOT NULL DEFAULT '',
                    match_criteria TEXT NOT NULL DEFAULT '{}',
                    ping_target_id TEXT,
                    last_message_ref TEXT,
                    last_entity_id TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    UNIQUE (feed_kind, community_id, channel_id, match_key)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_feed_community "
                "ON subscriptions (feed_kind, community_id)"
            )
            conn.commit()
            log.info("subscription_store_initialized path=%s", self.path)
        except sqlite3.Error as e:
            log.error("subscription_store_schema_init_failed err=%s", str(e), exc_info=True)
            raise PersistenceError(f"schema init failed: {e}") from e

    def _query(self, sql: str, params: tuple) -> List[Subscription]:
        try:
            rows = self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            log.error("subscription_query_failed err=%s", str(e))
            raise PersistenceError(f"query failed: {e}") from e
        return [_row_to_subscription(r) for r in rows]

    def _write(self, op: str, sql: str, params: tuple) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount
            except sqlite3.Error as e:
                conn.rollback()
                log.error("subscription_%s_failed err=%s", op, str(e))
                raise PersistenceError(f"{op} failed: {e}") from e

    def list_all(self, feed_kind: FeedKind) -> List[Subscription]:
        return self._query(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE feed_kind = ? ORDER BY id",
            (FeedKind(feed_kind).value,),
        )

    def list_by_community(self, feed_kind: FeedKind, community_id: str) -> List[Subscription]:
        return self._query(
            f"SELECT {_COLUMNS} FROM subscriptions "
            "WHERE feed_kind = ? AND community_id = ? ORDER BY id",
            (FeedKind(feed_kind).value, str(community_id)),
        )

    def get(self, subscription_id: int) -> Optional[Subscription]:
        found = self._query(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE id = ?", (int(subscription_id),)
        )
        return found[0] if found else None

    def update_message_ref(self, subscription_id: int, message_ref: Optional[str]) -> None:
        self._write(
            "update_message_ref",
            "UPDATE subscriptions SET last_message_ref = ?, updated_at = ? WHERE id = ?",
            (message_ref, int(time.time()), int(subscription_id)),
        )

    def mark_delivered(self, subscription_id: int, entity_id: str) -> None:
        """Remember the entity last delivered so a restart does not re-ping it."""
        self._write(
            "mark_delivered",
            "UPDATE subscriptions SET last_entity_id = ?, updated_at = ? WHERE id = ?",
            (entity_id, int(time.time()), int(subscription_id)),
        )

    def upsert(
        self,
        feed_kind: FeedKind,
        community_id: str,
        channel_id: str,
        match_criteria: Optional[Dict[str, Any]] = None,
        ping_target_id: Optional[str] = None,
        match_key: str = "",
    ) -> Subscription:
        """
        Create the subscription or update it in place.

        An existing row keeps its message reference so the next pass edits
        the message already in the channel.
        """
        kind = FeedKind(feed_kind).value
        ts = int(time.time())
        criteria = json.dumps(match_criteria or {}, sort_keys=True)
        self._write(
            "upsert",
            """
            INSERT INTO subscriptions (
                feed_kind, community_id, channel_id, match_key, match_criteria,
                ping_target_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (feed_kind, community_id, channel_id, match_key) DO UPDATE SET
                match_criteria = excluded.match_criteria,
                ping_target_id = excluded.ping_target_id,
                updated_at = excluded.updated_at
            """,
            (kind, str(community_id), str(channel_id), match_key, criteria,
             ping_target_id, ts, ts),
        )
        found = self._query(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE feed_kind = ? "
            "AND community_id = ? AND channel_id = ? AND match_key = ?",
            (kind, str(community_id), str(channel_id), match_key),
        )
        if not found:
            raise PersistenceError("upsert did not persist a row")
        log.info(
            "subscription_upserted id=%d feed=%s community=%s channel=%s",
            found[0].subscription_id,
            kind,
            community_id,
            channel_id,
        )
        return found[0]

    def delete(self, subscription_id: int) -> bool:
        deleted = self._write(
            "delete", "DELETE FROM subscriptions WHERE id = ?", (int(subscription_id),)
        )
        log.info("subscription_deleted id=%s found=%s", subscription_id, bool(deleted))
        return bool(deleted)

    def close(self) -> None:
        """Close this thread's connection and truncate the WAL."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            return
        try:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        except sqlite3.Error as e:
            log.warning("subscription_store_close_error err=%s", str(e))
        finally:
            conn.close()
            self._thread_local.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
