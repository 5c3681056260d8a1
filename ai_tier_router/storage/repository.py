"""
Repository functions for data access.

Creates the schema and handles the append-only invocation event log.
"""

from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import InvocationEvent

_EVENT_COLUMNS = (
    "timestamp, capability, tier, user_id, model, outcome, prompt_tokens, "
    "completion_tokens, total_tokens, latency_ms, estimated_cost, request_id"
)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the daily_usage and invocation_event tables if missing.

    ``daily_usage`` holds one row per (user_id, day) and is only ever
    changed by an atomic upsert. ``invocation_event`` is an append-only
    ledger: no UPDATE or DELETE is ever performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS daily_usage (
                user_id TEXT NOT NULL,
                day TEXT NOT NULL,
                chat_count INTEGER NOT NULL DEFAULT 0 CHECK (chat_count >= 0),
                token_count INTEGER NOT NULL DEFAULT 0 CHECK (token_count >= 0),
                last_updated TEXT NOT NULL,
                PRIMARY KEY (user_id, day)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS invocation_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                capability TEXT,
                tier TEXT,
                user_id TEXT,
                model TEXT NOT NULL,
                outcome TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL DEFAULT 0,
                completion_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                latency_ms REAL NOT NULL,
                estimated_cost REAL,
                request_id TEXT
            )
        """)
    finally:
        conn.close()


def insert_invocation_event(event: InvocationEvent, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single invocation event to the event ledger.

    Args:
        event: The event to record
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(
            f"INSERT INTO invocation_event ({_EVENT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.timestamp.isoformat(),
                event.capability,
                event.tier,
                event.user_id,
                event.model,
                event.outcome,
                event.prompt_tokens,
                event.completion_tokens,
                event.total_tokens,
                event.latency_ms,
                event.estimated_cost,
                event.request_id,
            ),
        )
    finally:
        conn.close()


def fetch_recent_invocation_events(
    model: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[InvocationEvent]:
    """Fetch recent invocation events, optionally filtered.

    Args:
        model: Optional filter for a specific model
        user_id: Optional filter for a specific user
        limit: Maximum number of events to return
        db_path: Path to SQLite database file

    Returns:
        List of events ordered newest first
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_EVENT_COLUMNS} FROM invocation_event"
        params = []
        conditions = []

        if model:
            conditions.append("model = ?")
            params.append(model)
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        events = []
        for row in cursor.fetchall():
            events.append(InvocationEvent(
                timestamp=datetime.fromisoformat(row[0]),
                capability=row[1],
                tier=row[2],
                user_id=row[3],
                model=row[4],
                outcome=row[5],
                prompt_tokens=row[6],
                completion_tokens=row[7],
                total_tokens=row[8],
                latency_ms=row[9],
                estimated_cost=row[10],
                request_id=row[11],
            ))
        return events
    finally:
        conn.close()
