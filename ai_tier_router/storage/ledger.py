"""
Per-user daily usage ledger.

Counters are keyed by (user_id, day) so a new calendar day starts from
zero without any explicit reset. Increments must never lose updates
under concurrent requests from the same user.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageRecord


def usage_day(tz_name: str, now: Optional[datetime] = None) -> date:
    """Calendar day of ``now`` in the configured time zone.

    Daily limits reset at local midnight for the deployment region, not
    at UTC midnight. Naive datetimes are taken to be UTC.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def _check_deltas(chat_delta: int, token_delta: int) -> None:
    if chat_delta < 0 or token_delta < 0:
        raise ValueError("usage deltas cannot be negative")


def _check_limit(limit: Optional[int]) -> None:
    if limit is not None and limit < 0:
        raise ValueError("daily chat limit cannot be negative")


_SELECT_USAGE = (
    "SELECT chat_count, token_count, last_updated FROM daily_usage "
    "WHERE user_id = ? AND day = ?"
)


class SqliteUsageLedger:
    """Usage ledger backed by the ``daily_usage`` table.

    Every write runs inside one ``BEGIN IMMEDIATE`` transaction, which
    holds the database write lock from the first statement, so concurrent
    writers queue instead of overwriting each other.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def get(self, user_id: str, day: date) -> UsageRecord:
        """Read the record for a user and day, zero-valued if absent."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(_SELECT_USAGE, (user_id, day.isoformat())).fetchone()
        finally:
            conn.close()
        return self._to_record(user_id, day, row)

    def increment(self, user_id: str, day: date, chat_delta: int = 1, token_delta: int = 0) -> UsageRecord:
        """Atomically add to a user's counters for a day.

        The upsert adds to the stored counters inside the database and the
        read-back happens in the same transaction, so the returned record
        reflects exactly this increment.

        Args:
            user_id: User identity
            day: Ledger day (see ``usage_day``)
            chat_delta: Chats to add
            token_delta: Tokens to add

        Returns:
            The record after the increment

        Raises:
            ValueError: If a delta is negative
        """
        _check_deltas(chat_delta, token_delta)
        now = datetime.now(timezone.utc).isoformat()

        with self._write_transaction() as conn:
            conn.execute(
                """
                INSERT INTO daily_usage (user_id, day, chat_count, token_count, last_updated)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, day) DO UPDATE SET
                    chat_count = chat_count + excluded.chat_count,
                    token_count = token_count + excluded.token_count,
                    last_updated = excluded.last_updated
                """,
                (user_id, day.isoformat(), chat_delta, token_delta, now),
            )
            row = conn.execute(_SELECT_USAGE, (user_id, day.isoformat())).fetchone()

        return self._to_record(user_id, day, row)

    def reserve_chat(self, user_id: str, day: date, limit: Optional[int]) -> bool:
        """Count one chat against the daily limit if it still fits.

        The check and the increment share one write transaction, so two
        concurrent requests can never both take the last slot.

        Args:
            user_id: User identity
            day: Ledger day
            limit: Daily chat ceiling, ``None`` for unlimited

        Returns:
            True if the chat was counted, False if the limit is reached
        """
        _check_limit(limit)
        now = datetime.now(timezone.utc).isoformat()

        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT chat_count FROM daily_usage WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            ).fetchone()
            used = row[0] if row else 0
            if limit is not None and used >= limit:
                return False
            conn.execute(
                """
                INSERT INTO daily_usage (user_id, day, chat_count, token_count, last_updated)
                VALUES (?, ?, 1, 0, ?)
                ON CONFLICT(user_id, day) DO UPDATE SET
                    chat_count = chat_count + 1,
                    last_updated = excluded.last_updated
                """,
                (user_id, day.isoformat(), now),
            )
        return True

    def release_chat(self, user_id: str, day: date) -> None:
        """Give back a chat taken by ``reserve_chat`` that produced no answer."""
        now = datetime.now(timezone.utc).isoformat()
        with self._write_transaction() as conn:
            conn.execute(
                "UPDATE daily_usage SET chat_count = chat_count - 1, last_updated = ? "
                "WHERE user_id = ? AND day = ? AND chat_count > 0",
                (now, user_id, day.isoformat()),
            )

    @staticmethod
    def _to_record(user_id: str, day: date, row) -> UsageRecord:
        if row is None:
            return UsageRecord(user_id=user_id, day=day)
        return UsageRecord(
            user_id=user_id,
            day=day,
            chat_count=row[0],
            token_count=row[1],
            last_updated=datetime.fromisoformat(row[2]),
        )


class InMemoryUsageLedger:
    """Process-local usage ledger guarded by a lock."""

    def __init__(self):
        self._records: Dict[Tuple[str, date], UsageRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, day: date) -> UsageRecord:
        with self._lock:
            return self._records.get((user_id, day), UsageRecord(user_id=user_id, day=day))

    def increment(self, user_id: str, day: date, chat_delta: int = 1, token_delta: int = 0) -> UsageRecord:
        _check_deltas(chat_delta, token_delta)
        with self._lock:
            return self._add(user_id, day, chat_delta, token_delta)

    def reserve_chat(self, user_id: str, day: date, limit: Optional[int]) -> bool:
        _check_limit(limit)
        with self._lock:
            current = self._records.get((user_id, day), UsageRecord(user_id=user_id, day=day))
            if limit is not None and current.chat_count >= limit:
                return False
            self._add(user_id, day, 1, 0)
            return True

    def release_chat(self, user_id: str, day: date) -> None:
        with self._lock:
            current = self._records.get((user_id, day))
            if current is None or current.chat_count == 0:
                return
            self._records[(user_id, day)] = UsageRecord(
                user_id=user_id,
                day=day,
                chat_count=current.chat_count - 1,
                token_count=current.token_count,
                last_updated=datetime.now(timezone.utc),
            )

    def _add(self, user_id: str, day: date, chat_delta: int, token_delta: int) -> UsageRecord:
        # Caller holds the lock
        current = self._records.get((user_id, day), UsageRecord(user_id=user_id, day=day))
        updated = UsageRecord(
            user_id=user_id,
            day=day,
            chat_count=current.chat_count + chat_delta,
            token_count=current.token_count + token_delta,
            last_updated=datetime.now(timezone.utc),
        )
        self._records[(user_id, day)] = updated
        return updated
